"""Qt view-model bridging a `CatalogStore` to widgets.

The store notifies observers from whichever thread published the change
(persistence failures arrive from the writer thread). Re-emitting them as Qt
signals lets receivers living on the GUI thread get them through queued
connections.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger
from PySide6.QtCore import QObject, Signal

from app.viewmodels.group_vm import SetGroupVM
from app.viewmodels.set_vm import SetVM
from core.errors import CatalogError, PersistenceError
from core.models import CatalogSnapshot, FilterMode
from core.services.catalog_store import CatalogStore
from core.services.filter_service import TagFilterService
from core.services.sort_service import SortService


class LibraryVM(QObject):
    """Main application view-model.

    Holds the grouped set list shown by the library screen together with the
    active tag filter.
    """

    snapshotChanged = Signal(object)  # CatalogSnapshot
    groupsChanged = Signal()
    persistenceFailed = Signal(str)
    operationRejected = Signal(str)

    def __init__(
        self,
        store: CatalogStore,
        sorter: SortService | None = None,
        uncategorized_title: str = "Uncategorized",
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._store = store
        self._sorter = sorter or SortService()
        self._filter = TagFilterService()
        self._uncategorized_title = uncategorized_title
        self._filter_tags: frozenset[str] = frozenset()
        self._filter_mode = FilterMode.OR
        self.groups: list[SetGroupVM] = []
        self._unsubscribe = [
            store.subscribe(self._on_snapshot),
            store.subscribe_errors(self._on_error),
        ]
        self._rebuild(store.snapshot)

    @property
    def store(self) -> CatalogStore:
        return self._store

    @property
    def group_count(self) -> int:
        """Number of groups currently shown."""
        return len(self.groups)

    @property
    def filter_tags(self) -> frozenset[str]:
        return self._filter_tags

    @property
    def filter_mode(self) -> FilterMode:
        return self._filter_mode

    def set_filter(self, tag_ids: Iterable[str], mode: FilterMode = FilterMode.OR) -> None:
        """Show only sets matching the tags; an empty selection clears the filter."""
        self._filter_tags = frozenset(tag_ids)
        self._filter_mode = FilterMode(mode)
        self._rebuild(self._store.snapshot)

    def clear_filter(self) -> None:
        self.set_filter(())

    def apply_preset(self, preset_id: str) -> bool:
        """Load a preset into the active filter; False if it does not exist."""
        preset = self._store.snapshot.preset(preset_id)
        if preset is None:
            logger.warning("Preset {} not found", preset_id)
            return False
        self.set_filter(preset.tag_ids, preset.mode)
        return True

    def close(self) -> None:
        """Stop listening to the store."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _on_snapshot(self, snapshot: CatalogSnapshot) -> None:
        self._rebuild(snapshot)
        self.snapshotChanged.emit(snapshot)

    def _on_error(self, error: CatalogError) -> None:
        if isinstance(error, PersistenceError):
            self.persistenceFailed.emit(str(error))
        else:
            self.operationRejected.emit(str(error))

    def _rebuild(self, snapshot: CatalogSnapshot) -> None:
        visible = {
            s.id
            for s in self._filter.apply(snapshot, self._filter_tags, self._filter_mode)
        }
        groups: list[SetGroupVM] = []
        for group in self._sorter.set_groups(snapshot, self._uncategorized_title):
            items = [
                SetVM(sample_set=s, tags=self._sorter.tags_for_set(snapshot, s.id))
                for s in group.sets
                if s.id in visible
            ]
            if items:
                groups.append(
                    SetGroupVM(
                        group_id=group.id,
                        title=group.title,
                        category_id=group.category_id,
                        items=items,
                    )
                )
        self.groups = groups
        self.groupsChanged.emit()
