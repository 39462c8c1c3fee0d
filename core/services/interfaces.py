"""Core service interfaces and shared data structures.

This module defines the collaborator protocols the catalog depends on
(image codec, key-value storage, clock, id generator) and the simple
dataclasses used to report outcomes across the infrastructure and UI layers.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from core.errors import CatalogError, CorruptDocumentError
from core.models import CatalogSnapshot, LibraryItem


class ImageCodec(Protocol):
    """Decodes, resizes and encodes raster images."""

    def decode(self, data: bytes) -> Any:
        """Decode `data` into an image object; raise ValueError when unreadable."""
        raise NotImplementedError

    def encode(self, image: Any, quality: int) -> bytes:
        """Encode `image` as JPEG at `quality` (1-100)."""
        raise NotImplementedError

    def resize(self, image: Any, target_box: tuple[int, int]) -> Any:
        """Return `image` scaled to fit inside `target_box`, keeping aspect."""
        raise NotImplementedError


class KeyValueStore(Protocol):
    """Durable byte storage addressed by slash-separated keys.

    `write` must be atomic: readers observe either the old or the new value.
    """

    def read(self, key: str) -> bytes | None:
        """Return stored bytes for `key`, or None if absent."""
        raise NotImplementedError

    def write(self, key: str, data: bytes) -> None:
        """Store `data` under `key`; raise OSError on failure."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove `key`; absent keys are ignored."""
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> list[str]:
        """Return all keys starting with `prefix`, sorted."""
        raise NotImplementedError

    def replace_all(self, entries: Mapping[str, bytes]) -> None:
        """Atomically replace the entire store content with `entries`."""
        raise NotImplementedError


class Clock(Protocol):
    def now(self) -> datetime:
        raise NotImplementedError


class IdGenerator(Protocol):
    def new_id(self) -> str:
        raise NotImplementedError


class RestoreMode(str, Enum):
    """How a validated backup is applied to storage.

    REPLACE swaps the whole storage content in one step. STRUCTURED writes
    blobs and documents one by one through the regular store interfaces.
    """

    REPLACE = "replace"
    STRUCTURED = "structured"


@dataclass
class LoadResult:
    """Decoded snapshot plus what happened while decoding it.

    Attributes:
        snapshot: Repaired catalog state.
        upgraded: Collections rewritten by the sortIndex backfill.
        errors: Documents that could not be parsed and loaded empty.
        dropped_items: Ids of items whose photo blob is missing.
    """

    snapshot: CatalogSnapshot
    upgraded: frozenset[str] = frozenset()
    errors: list[CorruptDocumentError] = field(default_factory=list)
    dropped_items: list[str] = field(default_factory=list)


class CatalogRepository(Protocol):
    """Loads and saves the six collections."""

    def load(self) -> LoadResult:
        raise NotImplementedError

    def save(self, snapshot: CatalogSnapshot, collections: Iterable[str]) -> None:
        """Write `collections`; raise PersistenceError on failure."""
        raise NotImplementedError

    def decode(
        self,
        documents: Mapping[str, bytes | None],
        photo_exists: Callable[[str], bool] | None = None,
    ) -> LoadResult:
        """Decode documents keyed by file name without touching storage."""
        raise NotImplementedError

    def encode(self, snapshot: CatalogSnapshot) -> dict[str, bytes]:
        """Serialize every collection keyed by document file name."""
        raise NotImplementedError


class PhotoImporter(Protocol):
    """Turns raw image bytes into stored blobs plus item records."""

    def prepare_batch(
        self, payloads: Sequence[bytes], ids: Sequence[str], now: datetime
    ) -> list[LibraryItem]:
        """Encode and store each payload; unreadable payloads are left out."""
        raise NotImplementedError


class BackupArchiver(Protocol):
    """Packs and unpacks backup containers."""

    def pack(self, documents: Mapping[str, bytes], blobs: Mapping[str, bytes]) -> bytes:
        raise NotImplementedError

    def unpack(self, data: bytes) -> BackupContents:
        """Validate and unpack `data`; raise BackupFormatError when malformed."""
        raise NotImplementedError


@dataclass
class MutationResult:
    """Outcome of a store mutation.

    Attributes:
        snapshot: Snapshot published after the call (unchanged on error).
        value: Entity created or affected, when the operation has one.
        error: Typed NotFound / validation error for a no-op call.
        persisted: Future resolved when the changed documents hit storage;
            None when nothing needed saving.
    """

    snapshot: CatalogSnapshot
    value: Any = None
    error: CatalogError | None = None
    persisted: Future | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DeleteResult:
    """Outcome of a discard operation.

    Attributes:
        success_paths: Paths successfully discarded.
        failed: Tuples of (path, reason) for failures.
    """

    success_paths: list[str]
    failed: list[tuple[str, str]]


@dataclass
class RestoreResult:
    """Terminal outcome of a backup restore."""

    success: bool
    error: CatalogError | None = None
    snapshot: CatalogSnapshot | None = None


@dataclass
class BackupContents:
    """A validated, fully unpacked backup container.

    Attributes:
        documents: Document file name -> raw JSON bytes.
        blobs: Blob key (`Photos/<id>.jpg`, `Thumbs/<id>.jpg`) -> bytes.
        manifest: Decoded manifest.json.
    """

    documents: dict[str, bytes] = field(default_factory=dict)
    blobs: dict[str, bytes] = field(default_factory=dict)
    manifest: dict[str, Any] = field(default_factory=dict)
