"""Tests for the Pillow codec and the parallel photo import pipeline."""

from __future__ import annotations

from io import BytesIO

from conftest import START, FakeCodec
from PIL import Image
import pytest

from infrastructure.image_service import PillowImageCodec
from infrastructure.import_service import ImportService
from infrastructure.memory_store import MemoryKeyValueStore
from infrastructure.settings import LibrarySettings


def _png(size: tuple[int, int], color: str = "red", mode: str = "RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def test_codec_encodes_jpeg_and_fits_box() -> None:
    codec = PillowImageCodec()
    image = codec.decode(_png((800, 600)))

    thumb = codec.resize(image, (160, 240))
    assert thumb.size == (160, 120)

    data = codec.encode(thumb, 86)
    with Image.open(BytesIO(data)) as im:
        assert im.format == "JPEG"
        assert im.size == (160, 120)


def test_codec_converts_alpha_to_rgb() -> None:
    codec = PillowImageCodec()
    image = codec.decode(_png((10, 10), "blue", mode="RGBA"))
    with Image.open(BytesIO(codec.encode(image, 92))) as im:
        assert im.mode == "RGB"


def test_codec_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        PillowImageCodec().decode(b"definitely not an image")


def test_import_with_pillow_writes_photo_and_thumbnail() -> None:
    blobs = MemoryKeyValueStore()
    service = ImportService(blobs, PillowImageCodec(), LibrarySettings(import_workers=2))

    payloads = [_png((300, 600)), b"junk", _png((50, 50))]
    items = service.prepare_batch(payloads, ["A", "B", "C"], START)

    assert [it.id for it in items] == ["A", "C"]
    assert items[0].photo_key == "Photos/A.jpg"
    assert items[0].thumb_key == "Thumbs/A.jpg"
    assert items[0].created_at == START
    with Image.open(BytesIO(blobs.read("Thumbs/A.jpg"))) as im:
        assert im.size == (120, 240)
    with Image.open(BytesIO(blobs.read("Photos/A.jpg"))) as im:
        assert im.size == (300, 600)
    assert not blobs.exists("Photos/B.jpg")


def test_thumbnail_failure_keeps_item() -> None:
    class NoResize(FakeCodec):
        def resize(self, image, target_box):
            raise ValueError("resize failed")

    blobs = MemoryKeyValueStore()
    item = ImportService(blobs, NoResize()).prepare(b"IMG-1", "A", START)

    assert item is not None
    assert item.thumb_key is None
    assert blobs.keys() == ["Photos/A.jpg"]


def test_prepare_batch_requires_matching_ids() -> None:
    with pytest.raises(ValueError):
        ImportService(MemoryKeyValueStore(), FakeCodec()).prepare_batch([b"IMG"], [], START)


def test_oversized_photo_is_dropped_from_batch(monkeypatch) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    blobs = MemoryKeyValueStore()
    service = ImportService(blobs, PillowImageCodec(), LibrarySettings(import_workers=2))

    payloads = [_png((20, 20)), _png((100, 100), mode="L")]
    items = service.prepare_batch(payloads, ["A", "B"], START)

    assert [it.id for it in items] == ["A"]
    assert not blobs.exists("Photos/B.jpg")


def test_codec_reports_oversized_image_as_undecodable(monkeypatch) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(ValueError):
        PillowImageCodec().decode(_png((100, 100), mode="L"))


def test_unexpected_codec_error_skips_only_that_photo() -> None:
    class Crashing(FakeCodec):
        def decode(self, data: bytes) -> bytes:
            if data == b"IMG-crash":
                raise RuntimeError("decoder bug")
            return super().decode(data)

    blobs = MemoryKeyValueStore()
    items = ImportService(blobs, Crashing()).prepare_batch(
        [b"IMG-1", b"IMG-crash", b"IMG-3"], ["A", "B", "C"], START
    )

    assert [it.id for it in items] == ["A", "C"]
