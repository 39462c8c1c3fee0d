"""Utilities for timestamps, ids, and blob key naming.

Timestamp parsing is best-effort and does not raise; callers should expect
`None` when a value cannot be interpreted.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any
import uuid

from loguru import logger

PHOTOS_DIR = "Photos"
THUMBS_DIR = "Thumbs"
BLOB_SUFFIX = ".jpg"

# Reference date of the numeric timestamps written by the first app releases.
REFERENCE_DATE = datetime(2001, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or seconds since `REFERENCE_DATE`."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return REFERENCE_DATE + timedelta(seconds=float(value))
        except (OverflowError, ValueError):
            logger.warning("Timestamp out of range: {}", value)
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            logger.warning("Invalid timestamp: {}", value)
            return None
    return None


def format_timestamp(dt: datetime) -> str:
    """Format `dt` as ISO-8601, keeping microseconds and offset."""
    return dt.isoformat()


def photo_key(item_id: str) -> str:
    return f"{PHOTOS_DIR}/{item_id}{BLOB_SUFFIX}"


def thumb_key(item_id: str) -> str:
    return f"{THUMBS_DIR}/{item_id}{BLOB_SUFFIX}"


def normalize_blob_key(value: str, folder: str) -> str | None:
    """Map a stored photo reference to a blob key under `folder`.

    Early documents stored absolute file paths; only the file name survives
    a move between devices, so it is re-rooted under `folder`.
    """
    if not value:
        return None
    posix = value.replace("\\", "/")
    parts = PurePosixPath(posix).parts
    if len(parts) == 2 and parts[0].lower() == folder.lower():
        return f"{folder}/{parts[1]}"
    name = PureWindowsPath(value).name if "\\" in value else PurePosixPath(posix).name
    return f"{folder}/{name}" if name else None


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class UuidGenerator:
    """Random uppercase UUID4 strings."""

    def new_id(self) -> str:
        return str(uuid.uuid4()).upper()
