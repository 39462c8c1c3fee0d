"""Backup containers for the whole library.

A backup is a ZIP archive with this layout:
  - manifest.json           format marker, version, counts
  - catalog.json, sets.json, categories.json, tags.json,
    set_tag_links.json, presets.json
  - Photos/<id>.jpg         full-size photos
  - Thumbs/<id>.jpg         thumbnails

`unpack` validates everything (archive integrity, manifest, member names,
document syntax) before returning, so a caller that only applies a fully
unpacked container never leaves a half-restored library behind.
"""

from __future__ import annotations

from collections.abc import Mapping
from io import BytesIO
import json
from pathlib import Path, PurePosixPath
from typing import Any
from zipfile import ZIP_DEFLATED, ZIP_STORED, BadZipFile, ZipFile

from loguru import logger

from core.errors import BackupFormatError, CorruptDocumentError
from core.services.interfaces import BackupContents, Clock
from infrastructure.file_store import atomic_write_bytes
from infrastructure.json_repository import DOCUMENT_NAMES, parse_document
from infrastructure.utils import PHOTOS_DIR, THUMBS_DIR, SystemClock, format_timestamp

BACKUP_FORMAT = "com.samplemate.backup"
BACKUP_VERSION = 1
BACKUP_SUFFIX = ".samplemate"
MANIFEST_NAME = "manifest.json"

_BLOB_FOLDERS = {PHOTOS_DIR.lower(): PHOTOS_DIR, THUMBS_DIR.lower(): THUMBS_DIR}


def _member_key(name: str) -> str | None:
    """Validate a member name and return its normalized key (None for directories)."""
    if name.endswith("/"):
        return None
    if "\\" in name:
        raise BackupFormatError(f"unsafe member name: {name}")
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise BackupFormatError(f"unsafe member name: {name}")
    if len(path.parts) == 2 and path.parts[0].lower() in _BLOB_FOLDERS:
        return f"{_BLOB_FOLDERS[path.parts[0].lower()]}/{path.parts[1]}"
    return path.as_posix()


class ZipBackupArchiver:
    """Implements the `BackupArchiver` protocol with ZIP containers."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()

    def pack(self, documents: Mapping[str, bytes], blobs: Mapping[str, bytes]) -> bytes:
        """Build a container from documents and blobs."""
        manifest = {
            "format": BACKUP_FORMAT,
            "version": BACKUP_VERSION,
            "createdAt": format_timestamp(self._clock.now()),
            "photos": sum(1 for k in blobs if k.startswith(f"{PHOTOS_DIR}/")),
            "thumbs": sum(1 for k in blobs if k.startswith(f"{THUMBS_DIR}/")),
        }
        buf = BytesIO()
        with ZipFile(buf, "w") as zf:
            zf.writestr(MANIFEST_NAME, json.dumps(manifest, indent=2), compress_type=ZIP_DEFLATED)
            for name in sorted(documents):
                zf.writestr(name, documents[name], compress_type=ZIP_DEFLATED)
            # JPEG data does not shrink under deflate.
            for key in sorted(blobs):
                zf.writestr(key, blobs[key], compress_type=ZIP_STORED)
        logger.info(
            "Packed backup: {} document(s), {} blob(s), {} bytes",
            len(documents),
            len(blobs),
            buf.tell(),
        )
        return buf.getvalue()

    def _read_manifest(self, zf: ZipFile) -> dict[str, Any]:
        try:
            manifest = json.loads(zf.read(MANIFEST_NAME).decode("utf-8"))
        except KeyError as ex:
            raise BackupFormatError("missing manifest.json") from ex
        except (UnicodeDecodeError, json.JSONDecodeError) as ex:
            raise BackupFormatError(f"unreadable manifest: {ex}") from ex
        if not isinstance(manifest, dict) or manifest.get("format") != BACKUP_FORMAT:
            raise BackupFormatError("not a SampleMate backup")
        version = manifest.get("version")
        if not isinstance(version, int) or version < 1 or version > BACKUP_VERSION:
            raise BackupFormatError(f"unsupported backup version: {version!r}")
        return manifest

    def unpack(self, data: bytes) -> BackupContents:
        """Validate and fully unpack a container.

        Raises:
            BackupFormatError: The data is not a readable backup of a
                supported version, or one of its members is unsafe or corrupt.
        """
        try:
            zf = ZipFile(BytesIO(data))
        except BadZipFile as ex:
            raise BackupFormatError(f"not a zip archive: {ex}") from ex

        with zf:
            manifest = self._read_manifest(zf)
            contents = BackupContents(manifest=manifest)
            document_names = set(DOCUMENT_NAMES.values())
            try:
                for info in zf.infolist():
                    key = _member_key(info.filename)
                    if key is None or key == MANIFEST_NAME:
                        continue
                    if key in document_names:
                        raw = zf.read(info)
                        parse_document(key, raw)
                        contents.documents[key] = raw
                    elif key.split("/", 1)[0] in (PHOTOS_DIR, THUMBS_DIR) and "/" in key:
                        contents.blobs[key] = zf.read(info)
                    else:
                        logger.debug("Ignoring unknown backup member {}", info.filename)
            except CorruptDocumentError as ex:
                raise BackupFormatError(str(ex)) from ex
            except (BadZipFile, OSError, EOFError) as ex:
                raise BackupFormatError(f"damaged archive: {ex}") from ex

        logger.info(
            "Unpacked backup: {} document(s), {} blob(s)",
            len(contents.documents),
            len(contents.blobs),
        )
        return contents


def write_backup_file(path: str | Path, data: bytes) -> Path:
    """Atomically write a container; the suffix is added when missing."""
    target = Path(path)
    if not target.suffix:
        target = target.with_suffix(BACKUP_SUFFIX)
    atomic_write_bytes(target, data)
    return target


def read_backup_file(path: str | Path) -> bytes:
    """Read a container from disk.

    Raises:
        BackupFormatError: The file cannot be read.
    """
    try:
        return Path(path).read_bytes()
    except OSError as ex:
        raise BackupFormatError(f"cannot read backup {path}: {ex}") from ex
