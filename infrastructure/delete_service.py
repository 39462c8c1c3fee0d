"""Discard service for blob files and replaced data directories.

Files are moved to the recycle bin by default so a photo removed from the
library, or a data directory replaced by a restore, can still be recovered
by the user. With trash disabled they are removed outright.
"""

from __future__ import annotations

from collections.abc import Iterable
import os
from pathlib import Path
import shutil

from loguru import logger
from send2trash import send2trash

from core.services.interfaces import DeleteResult


class DeleteService:
    """Coordinates discards and reports per-path results."""

    def __init__(self, use_trash: bool = True) -> None:
        self._use_trash = use_trash

    @property
    def use_trash(self) -> bool:
        return self._use_trash

    def _remove(self, path: Path) -> None:
        if self._use_trash:
            send2trash(str(path))
        elif path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()

    def discard(self, paths: Iterable[str | os.PathLike[str]]) -> DeleteResult:
        """Discard each path; missing paths count as failures."""
        success: list[str] = []
        failed: list[tuple[str, str]] = []
        for p in paths:
            path = Path(os.path.normpath(p))
            if not path.exists():
                logger.error("Path does not exist: {}", path)
                failed.append((str(p), "Path does not exist"))
                continue
            try:
                self._remove(path)
                success.append(str(p))
            except (OSError, RuntimeError) as ex:
                logger.error("Discard failed for {}: {}", path, ex)
                failed.append((str(p), str(ex)))
        if success:
            logger.info(
                "Discarded {} path(s) ({})", len(success), "trash" if self._use_trash else "unlink"
            )
        return DeleteResult(success_paths=success, failed=failed)
