"""Directory-backed key-value store with atomic writes.

Keys are relative POSIX paths under the store root (`catalog.json`,
`Photos/<id>.jpg`). Every write goes to a temporary sibling file that is
fsynced and then renamed over the destination, so a crash leaves either the
old or the new content. `replace_all` swaps the whole directory the same way.
"""

from __future__ import annotations

from collections.abc import Mapping
import os
from pathlib import Path, PurePosixPath
import shutil
import time
import uuid

from loguru import logger

from infrastructure.delete_service import DeleteService

_TMP_SUFFIX = ".tmp"


def _check_key(key: str) -> PurePosixPath:
    rel = PurePosixPath(key)
    if not key or rel.is_absolute() or ".." in rel.parts or "\\" in key:
        raise ValueError(f"Invalid storage key: {key!r}")
    return rel


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically write `data` into `path`."""
    tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}{_TMP_SUFFIX}")
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with tmp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    # Replace can fail briefly on Windows while another process holds the file.
    for attempt in range(5):
        try:
            tmp_path.replace(path)
            return
        except PermissionError:
            if attempt == 4:
                tmp_path.unlink(missing_ok=True)
                raise
            time.sleep(0.05 * (attempt + 1))
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise


class FileKeyValueStore:
    """Store rooted at one directory on the local filesystem."""

    def __init__(self, root: str | Path, delete_service: DeleteService | None = None) -> None:
        self._root = Path(root)
        self._deleter = delete_service or DeleteService(use_trash=False)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        return self._root.joinpath(*_check_key(key).parts)

    def read(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as ex:
            logger.warning("Read failed for {}: {}", path, ex)
            return None

    def write(self, key: str, data: bytes) -> None:
        atomic_write_bytes(self._path(key), data)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            result = self._deleter.discard([path])
            if result.failed:
                raise OSError(result.failed[0][1])

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def keys(self, prefix: str = "") -> list[str]:
        if not self._root.exists():
            return []
        found = []
        for path in self._root.rglob("*"):
            if not path.is_file() or path.name.endswith(_TMP_SUFFIX):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)

    def replace_all(self, entries: Mapping[str, bytes]) -> None:
        """Replace the directory content with `entries` in one rename.

        The new tree is fully written to a staging directory beside the root
        first; a failure there leaves the current directory untouched. The
        previous directory is discarded only after the swap succeeded.
        """
        token = uuid.uuid4().hex[:8]
        staging = self._root.parent / f".{self._root.name}.staging-{token}"
        previous = self._root.parent / f".{self._root.name}.previous-{token}"
        try:
            staging.mkdir(parents=True)
            for key, data in entries.items():
                target = staging.joinpath(*_check_key(key).parts)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
        except (OSError, ValueError):
            shutil.rmtree(staging, ignore_errors=True)
            raise

        had_root = self._root.exists()
        if had_root:
            self._root.rename(previous)
        try:
            staging.rename(self._root)
        except OSError:
            if had_root:
                previous.rename(self._root)
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("Replaced data directory {} ({} entries)", self._root, len(entries))
        if had_root:
            result = self._deleter.discard([previous])
            if result.failed:
                logger.warning("Previous data directory left at {}", previous)
