"""Pillow-backed image codec.

Decodes arbitrary input bytes (EXIF orientation applied), fits images into a
target box, and encodes JPEG. HEIC input is supported when pillow-heif is
installed.
"""

from __future__ import annotations

from io import BytesIO
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError

try:  # pragma: no cover - optional dependency
    from pillow_heif import register_heif_opener  # type: ignore

    register_heif_opener()
    PIL_HEIF_AVAILABLE = True
except ImportError:  # pragma: no cover - optional dependency
    PIL_HEIF_AVAILABLE = False


class PillowImageCodec:
    """Implements the `ImageCodec` protocol with Pillow."""

    def decode(self, data: bytes) -> Any:
        try:
            with Image.open(BytesIO(data)) as im:
                im.load()
                return ImageOps.exif_transpose(im)
        except (UnidentifiedImageError, OSError, ValueError) as ex:
            raise ValueError(f"undecodable image: {ex}") from ex
        except Image.DecompressionBombError as ex:
            raise ValueError(f"image too large: {ex}") from ex

    def encode(self, image: Any, quality: int) -> bytes:
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buf = BytesIO()
        image.save(buf, format="JPEG", quality=max(1, min(int(quality), 100)))
        return buf.getvalue()

    def resize(self, image: Any, target_box: tuple[int, int]) -> Any:
        """Scale `image` to fit `target_box`, up or down, keeping aspect ratio."""
        box_w, box_h = target_box
        width, height = image.size
        if width <= 0 or height <= 0:
            raise ValueError("image has no pixels")
        ratio = min(box_w / width, box_h / height)
        size = (max(1, round(width * ratio)), max(1, round(height * ratio)))
        return image.resize(size, Image.Resampling.LANCZOS)
