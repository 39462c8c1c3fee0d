"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.models import CatalogSnapshot, LibraryItem
from core.services.catalog_store import CatalogStore
from infrastructure.backup_service import ZipBackupArchiver
from infrastructure.import_service import ImportService
from infrastructure.json_repository import JsonCatalogRepository
from infrastructure.memory_store import MemoryKeyValueStore
from infrastructure.utils import photo_key, thumb_key

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = START) -> None:
        self._now = start

    def now(self) -> datetime:
        current = self._now
        self._now += timedelta(seconds=1)
        return current


class SequentialIds:
    def __init__(self, prefix: str = "ID") -> None:
        self._prefix = prefix
        self._n = 0

    def new_id(self) -> str:
        self._n += 1
        return f"{self._prefix}-{self._n}"


class FakeCodec:
    """Codec over raw bytes: payloads starting with b"IMG" decode, others fail."""

    def decode(self, data: bytes) -> bytes:
        if not data.startswith(b"IMG"):
            raise ValueError("not an image")
        return data

    def encode(self, image: bytes, quality: int) -> bytes:
        return b"JPEG:" + image

    def resize(self, image: bytes, target_box: tuple[int, int]) -> bytes:
        return image[:6]


def make_item(item_id: str, offset: int = 0) -> LibraryItem:
    return LibraryItem(
        id=item_id,
        photo_key=photo_key(item_id),
        thumb_key=thumb_key(item_id),
        created_at=START + timedelta(minutes=offset),
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def library() -> CatalogSnapshot:
    """Snapshot with items a, b, c, d and nothing else."""
    return CatalogSnapshot(items=tuple(make_item(i, n) for n, i in enumerate("abcd")))


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


def build_memory_store(storage: MemoryKeyValueStore, clock=None, ids=None) -> CatalogStore:
    clock = clock or FixedClock()
    store = CatalogStore(
        JsonCatalogRepository(storage),
        storage,
        clock=clock,
        ids=ids or SequentialIds(),
        importer=ImportService(storage, FakeCodec()),
        archiver=ZipBackupArchiver(clock),
    )
    store.reload()
    return store


@pytest.fixture
def store(memory_store, clock, ids):
    """Catalog store over an in-memory key-value store, closed after the test."""
    s = build_memory_store(memory_store, clock, ids)
    yield s
    s.close()
