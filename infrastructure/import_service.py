"""Photo import pipeline.

Each payload is decoded, re-encoded as the full-size JPEG and written to the
blob store; a thumbnail is then derived on a best-effort basis. Payloads are
independent, so a batch is spread over a bounded thread pool. Unreadable
payloads are dropped from the batch; the rest are returned in input order.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from loguru import logger

from core.models import LibraryItem
from core.services.interfaces import ImageCodec, KeyValueStore
from infrastructure.settings import LibrarySettings
from infrastructure.utils import photo_key, thumb_key


class ImportService:
    """Implements the `PhotoImporter` protocol on top of an image codec."""

    def __init__(
        self,
        blobs: KeyValueStore,
        codec: ImageCodec,
        settings: LibrarySettings | None = None,
    ) -> None:
        self._blobs = blobs
        self._codec = codec
        self._settings = settings or LibrarySettings()

    def prepare(self, data: bytes, item_id: str, now: datetime) -> LibraryItem | None:
        """Store one photo and its thumbnail; return None when the photo is unusable."""
        try:
            image = self._codec.decode(data)
            encoded = self._codec.encode(image, self._settings.jpeg_quality)
        except (ValueError, OSError) as ex:
            logger.warning("Skipping undecodable photo {}: {}", item_id, ex)
            return None

        photo = photo_key(item_id)
        try:
            self._blobs.write(photo, encoded)
        except (OSError, ValueError) as ex:
            logger.error("Writing photo {} failed: {}", photo, ex)
            return None

        thumb: str | None = thumb_key(item_id)
        try:
            small = self._codec.resize(image, self._settings.thumb_size)
            self._blobs.write(thumb, self._codec.encode(small, self._settings.thumb_quality))
        except (ValueError, OSError) as ex:
            logger.warning("Thumbnail for {} failed: {}", item_id, ex)
            thumb = None

        return LibraryItem(id=item_id, photo_key=photo, thumb_key=thumb, created_at=now)

    def _prepare_isolated(self, data: bytes, item_id: str, now: datetime) -> LibraryItem | None:
        try:
            return self.prepare(data, item_id, now)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Import of {} failed", item_id)
            return None

    def prepare_batch(
        self, payloads: Sequence[bytes], ids: Sequence[str], now: datetime
    ) -> list[LibraryItem]:
        """Prepare `payloads` in parallel; ids[i] is assigned to payloads[i]."""
        if len(payloads) != len(ids):
            raise ValueError("payloads and ids differ in length")
        if not payloads:
            return []
        workers = max(1, min(self._settings.import_workers, len(payloads)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="photo-import") as pool:
            results = list(
                pool.map(lambda pair: self._prepare_isolated(*pair, now), zip(payloads, ids))
            )
        items = [it for it in results if it is not None]
        logger.info("Prepared {} of {} photo(s)", len(items), len(payloads))
        return items
