"""Composition root: wires file-backed infrastructure into a `CatalogStore`."""

from __future__ import annotations

from loguru import logger

from core.services.catalog_store import CatalogStore
from infrastructure.backup_service import ZipBackupArchiver
from infrastructure.delete_service import DeleteService
from infrastructure.file_store import FileKeyValueStore
from infrastructure.image_service import PillowImageCodec
from infrastructure.import_service import ImportService
from infrastructure.json_repository import JsonCatalogRepository
from infrastructure.settings import LibrarySettings
from infrastructure.utils import SystemClock, UuidGenerator


def build_store(settings: LibrarySettings | None = None) -> CatalogStore:
    """Create a store over the data root and load the persisted catalog."""
    settings = settings or LibrarySettings()
    logger.info("Opening library at {}", settings.data_root)
    clock = SystemClock()
    storage = FileKeyValueStore(settings.data_root, DeleteService(use_trash=settings.use_trash))
    store = CatalogStore(
        JsonCatalogRepository(storage),
        storage,
        clock=clock,
        ids=UuidGenerator(),
        importer=ImportService(storage, PillowImageCodec(), settings),
        archiver=ZipBackupArchiver(clock),
    )
    store.reload()
    return store
