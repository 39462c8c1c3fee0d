"""Tests for ZIP backup containers."""

from __future__ import annotations

from io import BytesIO
import json
from pathlib import Path
from zipfile import ZipFile

from conftest import FixedClock
import pytest

from core.errors import BackupFormatError
from infrastructure.backup_service import (
    BACKUP_FORMAT,
    BACKUP_SUFFIX,
    MANIFEST_NAME,
    ZipBackupArchiver,
    read_backup_file,
    write_backup_file,
)

DOCUMENTS = {"catalog.json": b"[]", "sets.json": b'[{"id": "S1"}]'}
BLOBS = {"Photos/A.jpg": b"\xff\xd8photo", "Thumbs/A.jpg": b"\xff\xd8thumb"}


def _archiver() -> ZipBackupArchiver:
    return ZipBackupArchiver(FixedClock())


def _zip(members: dict[str, bytes]) -> bytes:
    buf = BytesIO()
    with ZipFile(buf, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()


def _manifest(**overrides) -> bytes:
    manifest = {"format": BACKUP_FORMAT, "version": 1}
    manifest.update(overrides)
    return json.dumps(manifest).encode()


def test_pack_then_unpack() -> None:
    archiver = _archiver()
    contents = archiver.unpack(archiver.pack(DOCUMENTS, BLOBS))

    assert contents.documents == DOCUMENTS
    assert contents.blobs == BLOBS
    assert contents.manifest["format"] == BACKUP_FORMAT
    assert contents.manifest["photos"] == 1
    assert contents.manifest["thumbs"] == 1
    assert contents.manifest["createdAt"].startswith("2024-05-01T12:00:00")


def test_blob_folder_names_are_case_insensitive() -> None:
    data = _zip({MANIFEST_NAME: _manifest(), "photos/A.jpg": b"p", "THUMBS/A.jpg": b"t"})
    contents = _archiver().unpack(data)
    assert contents.blobs == {"Photos/A.jpg": b"p", "Thumbs/A.jpg": b"t"}


def test_unknown_members_are_ignored() -> None:
    data = _zip({MANIFEST_NAME: _manifest(), "notes.txt": b"hi", "catalog.json": b"[]"})
    contents = _archiver().unpack(data)
    assert contents.documents == {"catalog.json": b"[]"}
    assert contents.blobs == {}


@pytest.mark.parametrize(
    "data",
    [
        b"not a zip at all",
        _zip({"catalog.json": b"[]"}),
        _zip({MANIFEST_NAME: b"{broken"}),
        _zip({MANIFEST_NAME: _manifest(format="com.other.app")}),
        _zip({MANIFEST_NAME: _manifest(version=99)}),
        _zip({MANIFEST_NAME: _manifest(), "sets.json": b"{}"}),
        _zip({MANIFEST_NAME: _manifest(), "tags.json": b"[oops"}),
        _zip({MANIFEST_NAME: _manifest(), "../escape.jpg": b"x"}),
        _zip({MANIFEST_NAME: _manifest(), "/abs/path.jpg": b"x"}),
    ],
    ids=[
        "not-zip",
        "no-manifest",
        "bad-manifest",
        "foreign-format",
        "future-version",
        "document-not-array",
        "document-not-json",
        "parent-traversal",
        "absolute-name",
    ],
)
def test_malformed_containers_are_rejected(data: bytes) -> None:
    with pytest.raises(BackupFormatError):
        _archiver().unpack(data)


def test_backup_file_helpers(tmp_path: Path) -> None:
    target = write_backup_file(tmp_path / "library", b"payload")
    assert target.suffix == BACKUP_SUFFIX
    assert read_backup_file(target) == b"payload"

    with pytest.raises(BackupFormatError):
        read_backup_file(tmp_path / "missing.samplemate")
