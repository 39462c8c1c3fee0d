"""Catalog store: the public service over the entity model and repository.

Every mutation runs under one re-entrant lock, so the snapshot is never
changed by two callers at once. A mutation applies a pure model function,
publishes the new snapshot to observers, and queues a save of the changed
collections on a single background writer. The returned `MutationResult`
carries that save as a future the caller may wait on or ignore.

Reading `snapshot` takes no lock; it always returns the last published,
immutable snapshot. Imports, exports and restores hold the mutation lock for
their whole duration so nothing interleaves with them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
import threading
from typing import Any

from loguru import logger

from core.errors import BackupFormatError, CatalogError, PersistenceError
from core.models import (
    ALL_COLLECTIONS,
    CatalogSnapshot,
    DisplayCategory,
    FilterMode,
    FilterPreset,
    LibraryItem,
    SampleSet,
    Tag,
)
from core.services import catalog_model as model
from core.services.filter_service import TagFilterService
from core.services.interfaces import (
    BackupArchiver,
    CatalogRepository,
    Clock,
    IdGenerator,
    KeyValueStore,
    MutationResult,
    PhotoImporter,
    RestoreMode,
    RestoreResult,
)
from core.services.sort_service import SetGroup, SortService

SnapshotObserver = Callable[[CatalogSnapshot], None]
ErrorObserver = Callable[[CatalogError], None]


class CatalogStore:
    """Owns the catalog state and sequences all access to it.

    `storage` holds the photo and thumbnail blobs. For REPLACE restores it
    must also be the store the repository reads its documents from.
    """

    def __init__(
        self,
        repository: CatalogRepository,
        storage: KeyValueStore,
        *,
        clock: Clock,
        ids: IdGenerator,
        importer: PhotoImporter | None = None,
        archiver: BackupArchiver | None = None,
        restore_mode: RestoreMode = RestoreMode.REPLACE,
    ) -> None:
        self._repo = repository
        self._storage = storage
        self._clock = clock
        self._ids = ids
        self._importer = importer
        self._archiver = archiver
        self._restore_mode = restore_mode

        self._mutex = threading.RLock()
        self._snapshot = CatalogSnapshot()
        self._observers: list[SnapshotObserver] = []
        self._error_observers: list[ErrorObserver] = []
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="catalog-persist")
        self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="catalog-restore")
        self._closed = False
        self._sorter = SortService()
        self._filter = TagFilterService()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> CatalogStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Wait for queued saves and stop the background workers."""
        with self._mutex:
            if self._closed:
                return
            self._closed = True
        self._background.shutdown(wait=True)
        self.flush()
        self._writer.shutdown(wait=True)

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("catalog store is closed")

    def reload(self) -> CatalogSnapshot:
        """Replace the in-memory state with what the repository holds."""
        with self._mutex:
            self._check_open()
            self.flush()
            result = self._repo.load()
            for error in result.errors:
                self._emit_error(error)
            self._publish(result.snapshot)
            if result.upgraded:
                logger.info("Writing back upgraded collections: {}", sorted(result.upgraded))
                self._persist(result.snapshot, result.upgraded)
            return result.snapshot

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        """Call `observer` with every published snapshot; returns an unsubscribe function."""
        with self._mutex:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._mutex:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def subscribe_errors(self, observer: ErrorObserver) -> Callable[[], None]:
        """Call `observer` with NotFound, validation and persistence errors.

        Persistence errors are delivered from the writer thread.
        """
        with self._mutex:
            self._error_observers.append(observer)

        def unsubscribe() -> None:
            with self._mutex:
                if observer in self._error_observers:
                    self._error_observers.remove(observer)

        return unsubscribe

    def _publish(self, snapshot: CatalogSnapshot) -> None:
        self._snapshot = snapshot
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Snapshot observer failed")

    def _emit_error(self, error: CatalogError) -> None:
        for observer in list(self._error_observers):
            try:
                observer(error)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Error observer failed")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _submit(self, job: Callable[[], Any]) -> Future:
        future = self._writer.submit(job)
        with self._pending_lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._pending_lock:
                self._pending.discard(f)

        future.add_done_callback(_done)
        return future

    def _persist(self, snapshot: CatalogSnapshot, collections: Iterable[str]) -> Future:
        names = frozenset(collections)

        def job() -> None:
            try:
                self._repo.save(snapshot, names)
            except PersistenceError as ex:
                logger.error("Saving {} failed: {}", sorted(names), ex)
                self._emit_error(ex)
                raise

        return self._submit(job)

    def flush(self, timeout: float | None = None) -> bool:
        """Block until queued saves finish; False if `timeout` expired first."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _apply(self, fn: Callable[..., model.Outcome], *args: Any, **kwargs: Any) -> MutationResult:
        with self._mutex:
            self._check_open()
            outcome = fn(self._snapshot, *args, **kwargs)
            if outcome.error is not None:
                logger.debug("{} rejected: {}", fn.__name__, outcome.error)
                self._emit_error(outcome.error)
                return MutationResult(snapshot=self._snapshot, error=outcome.error)
            if not outcome.changed:
                return MutationResult(snapshot=self._snapshot, value=outcome.value)
            self._publish(outcome.snapshot)
            persisted = self._persist(outcome.snapshot, outcome.changed)
            return MutationResult(
                snapshot=outcome.snapshot, value=outcome.value, persisted=persisted
            )

    def _apply_new(
        self, fn: Callable[..., model.Outcome], *args: Any, **kwargs: Any
    ) -> MutationResult:
        """Like `_apply`, drawing the new entity's id and timestamp under the lock."""
        with self._mutex:
            new_id = self._ids.new_id()
            return self._apply(fn, *args, new_id=new_id, now=self._clock.now(), **kwargs)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def import_photos(self, payloads: Sequence[bytes]) -> list[LibraryItem]:
        """Import raw image bytes; undecodable payloads are skipped.

        Decoding runs in parallel; the catalog is updated once for the batch.
        """
        if self._importer is None:
            raise RuntimeError("no photo importer configured")
        with self._mutex:
            self._check_open()
            ids = [self._ids.new_id() for _ in payloads]
            items = self._importer.prepare_batch(payloads, ids, self._clock.now())
            if not items:
                return []
            result = self._apply(model.add_items, items)
            return list(result.value or ())

    def delete_item(self, item_id: str) -> MutationResult:
        """Remove an item from the catalog and every set, then discard its blobs."""
        with self._mutex:
            result = self._apply(model.delete_item, item_id)
            if not result.ok or result.persisted is None:
                return result
            item: LibraryItem = result.value
            saved = result.persisted
            keys = [item.photo_key] + ([item.thumb_key] if item.thumb_key else [])

            def discard() -> None:
                # Blobs go only once no saved document references them.
                error = saved.exception()
                if error is not None:
                    logger.warning("Keeping blobs of {}; catalog save failed", item.id)
                    raise error
                for key in keys:
                    try:
                        self._storage.delete(key)
                    except OSError as ex:
                        logger.error("Discarding {} failed: {}", key, ex)

            result.persisted = self._submit(discard)
            return result

    def photo_bytes(self, item_id: str) -> bytes | None:
        item = self._snapshot.item(item_id)
        return self._storage.read(item.photo_key) if item else None

    def thumbnail_bytes(self, item_id: str) -> bytes | None:
        """Thumbnail of an item, falling back to the full photo."""
        item = self._snapshot.item(item_id)
        if item is None:
            return None
        if item.thumb_key:
            data = self._storage.read(item.thumb_key)
            if data is not None:
                return data
        return self._storage.read(item.photo_key)

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    def create_set(self, title: str, item_ids: Sequence[str]) -> MutationResult:
        return self._apply_new(model.create_set, title, item_ids)

    def rename_set(self, set_id: str, title: str) -> MutationResult:
        return self._apply(model.rename_set, set_id, title)

    def set_main_photo(self, set_id: str, photo_id: str | None) -> MutationResult:
        return self._apply(model.set_main_photo, set_id, photo_id)

    def set_cover_photo(self, set_id: str, photo_id: str | None) -> MutationResult:
        return self._apply(model.set_cover_photo, set_id, photo_id)

    def add_photos_to_set(self, set_id: str, item_ids: Sequence[str]) -> MutationResult:
        return self._apply(model.add_photos_to_set, set_id, item_ids)

    def remove_photo_from_set(self, set_id: str, item_id: str) -> MutationResult:
        return self._apply(model.remove_photo_from_set, set_id, item_id)

    def reorder_photos_in_set(
        self, set_id: str, source_indices: Iterable[int], target: int
    ) -> MutationResult:
        return self._apply(model.reorder_photos_in_set, set_id, list(source_indices), target)

    def reorder_sets(
        self, category_id: str | None, source_indices: Iterable[int], target: int
    ) -> MutationResult:
        return self._apply(model.reorder_sets, category_id, list(source_indices), target)

    def delete_set(self, set_id: str) -> MutationResult:
        return self._apply(model.delete_set, set_id)

    def assign_set_to_category(self, set_id: str, category_id: str | None) -> MutationResult:
        return self._apply(model.assign_set_to_category, set_id, category_id)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def create_category(self, name: str) -> MutationResult:
        return self._apply_new(model.create_category, name)

    def rename_category(self, category_id: str, name: str) -> MutationResult:
        return self._apply(model.rename_category, category_id, name)

    def delete_category(self, category_id: str) -> MutationResult:
        return self._apply(model.delete_category, category_id)

    def move_category(self, source_indices: Iterable[int], target: int) -> MutationResult:
        return self._apply(model.move_category, list(source_indices), target)

    def move_category_step(self, category_id: str, direction: int) -> MutationResult:
        return self._apply(model.move_category_step, category_id, direction)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def create_tag(self, name: str) -> MutationResult:
        return self._apply_new(model.create_tag, name)

    def rename_tag(self, tag_id: str, name: str) -> MutationResult:
        return self._apply(model.rename_tag, tag_id, name)

    def delete_tag(self, tag_id: str) -> MutationResult:
        return self._apply(model.delete_tag, tag_id)

    def move_tag(self, source_indices: Iterable[int], target: int) -> MutationResult:
        return self._apply(model.move_tag, list(source_indices), target)

    def assign_tag_to_set(self, set_id: str, tag_id: str) -> MutationResult:
        return self._apply(model.assign_tag_to_set, set_id, tag_id)

    def unassign_tag_from_set(self, set_id: str, tag_id: str) -> MutationResult:
        return self._apply(model.unassign_tag_from_set, set_id, tag_id)

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def create_preset(
        self,
        name: str,
        mode: FilterMode,
        tag_ids: Iterable[str],
        is_pinned: bool = False,
    ) -> MutationResult:
        return self._apply_new(model.create_preset, name, mode, list(tag_ids), is_pinned=is_pinned)

    def rename_preset(self, preset_id: str, name: str) -> MutationResult:
        return self._apply(model.rename_preset, preset_id, name)

    def delete_preset(self, preset_id: str) -> MutationResult:
        return self._apply(model.delete_preset, preset_id)

    def toggle_pin_preset(self, preset_id: str) -> MutationResult:
        return self._apply(model.toggle_pin_preset, preset_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def tags_for_set(self, set_id: str) -> list[Tag]:
        return self._sorter.tags_for_set(self._snapshot, set_id)

    def sets_for_category(self, category_id: str | None) -> list[SampleSet]:
        return self._sorter.sets_for_category(self._snapshot, category_id)

    def sets_for_tag(self, tag_id: str) -> list[SampleSet]:
        return self._sorter.sets_for_tag(self._snapshot, tag_id)

    def categories_sorted(self) -> list[DisplayCategory]:
        return self._sorter.categories_sorted(self._snapshot)

    def tags_sorted(self) -> list[Tag]:
        return self._sorter.tags_sorted(self._snapshot)

    def presets_sorted(self) -> list[FilterPreset]:
        return self._sorter.presets_sorted(self._snapshot)

    def set_groups(self) -> list[SetGroup]:
        return self._sorter.set_groups(self._snapshot)

    def filter_sets(
        self, tag_ids: Iterable[str], mode: FilterMode = FilterMode.OR
    ) -> list[SampleSet]:
        return self._filter.apply(self._snapshot, tag_ids, mode)

    def apply_preset(self, preset_id: str) -> list[SampleSet]:
        """Sets matching a saved preset; an unknown preset matches nothing."""
        snapshot = self._snapshot
        preset = snapshot.preset(preset_id)
        if preset is None:
            return []
        return self._filter.apply_preset(snapshot, preset)

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------

    def export_backup(self) -> bytes:
        """Pack the current snapshot and the blobs it references.

        Raises:
            PersistenceError: A referenced photo blob cannot be read.
        """
        if self._archiver is None:
            raise RuntimeError("no backup archiver configured")
        with self._mutex:
            self._check_open()
            snapshot = self._snapshot
            logger.info("Exporting backup of {} item(s)", len(snapshot.items))
            documents = self._repo.encode(snapshot)
            blobs: dict[str, bytes] = {}
            for item in snapshot.items:
                data = self._storage.read(item.photo_key)
                if data is None:
                    raise PersistenceError(item.photo_key, "photo blob missing")
                blobs[item.photo_key] = data
                if item.thumb_key:
                    thumb = self._storage.read(item.thumb_key)
                    if thumb is not None:
                        blobs[item.thumb_key] = thumb
            return self._archiver.pack(documents, blobs)

    def import_backup(self, data: bytes, mode: RestoreMode | None = None) -> RestoreResult:
        """Replace the whole catalog with the content of a backup container.

        The container is validated completely before storage is touched; a
        rejected container leaves the current library as it was.
        """
        if self._archiver is None:
            raise RuntimeError("no backup archiver configured")
        mode = RestoreMode(mode or self._restore_mode)
        with self._mutex:
            if self._closed:
                return RestoreResult(success=False, error=CatalogError("catalog store is closed"))
            self.flush()
            logger.info("Restoring backup ({} bytes, mode={})", len(data), mode.value)
            try:
                contents = self._archiver.unpack(data)
                decoded = self._repo.decode(
                    contents.documents, photo_exists=contents.blobs.__contains__
                )
                if decoded.errors:
                    raise BackupFormatError(str(decoded.errors[0]))
                if mode is RestoreMode.REPLACE:
                    self._storage.replace_all({**contents.documents, **contents.blobs})
                else:
                    self._restore_structured(contents.blobs, decoded.snapshot)
            except BackupFormatError as ex:
                logger.error("Backup rejected: {}", ex)
                self._emit_error(ex)
                return RestoreResult(success=False, error=ex)
            except (OSError, ValueError) as ex:
                error = PersistenceError("restore", str(ex))
                logger.error("Restore failed: {}", error)
                self._emit_error(error)
                return RestoreResult(success=False, error=error)
            except PersistenceError as ex:
                logger.error("Restore failed: {}", ex)
                self._emit_error(ex)
                return RestoreResult(success=False, error=ex)

            snapshot = self.reload()
            logger.info(
                "Restore complete: {} item(s), {} set(s)", len(snapshot.items), len(snapshot.sets)
            )
            return RestoreResult(success=True, snapshot=snapshot)

    def import_backup_async(self, data: bytes, mode: RestoreMode | None = None) -> Future:
        """Run `import_backup` in the background; the future yields a `RestoreResult`."""
        self._check_open()
        return self._background.submit(self.import_backup, data, mode)

    def _restore_structured(self, blobs: dict[str, bytes], snapshot: CatalogSnapshot) -> None:
        """Write blobs, then documents; roll every touched key back on failure.

        Keys the backup does not contain are removed only after everything
        else is written.
        """
        documents = self._repo.encode(snapshot)
        touched = list(blobs) + list(documents)
        previous = {key: self._storage.read(key) for key in touched}
        stale = set(self._storage.keys()) - set(touched)
        written: list[str] = []
        try:
            for key, data in blobs.items():
                written.append(key)
                self._storage.write(key, data)
            written.extend(documents)
            self._repo.save(snapshot, ALL_COLLECTIONS)
        except (OSError, ValueError, PersistenceError):
            self._roll_back(written, previous)
            raise
        for key in sorted(stale):
            if "/" not in key:
                continue
            try:
                self._storage.delete(key)
            except OSError as ex:
                logger.warning("Leaving stale blob {}: {}", key, ex)

    def _roll_back(self, keys: Iterable[str], previous: dict[str, bytes | None]) -> None:
        logger.warning("Rolling back partial restore")
        for key in reversed(list(keys)):
            old = previous[key]
            try:
                if old is None:
                    self._storage.delete(key)
                else:
                    self._storage.write(key, old)
            except (OSError, ValueError) as ex:
                logger.error("Rollback of {} failed: {}", key, ex)
