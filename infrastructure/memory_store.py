"""In-memory key-value store used by tests and ephemeral catalogs."""

from __future__ import annotations

from collections.abc import Mapping
import threading


class MemoryKeyValueStore:
    """Dictionary-backed store; every operation is atomic under one lock."""

    def __init__(self, entries: Mapping[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(entries or {})
        self._lock = threading.Lock()

    def read(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(data)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def replace_all(self, entries: Mapping[str, bytes]) -> None:
        fresh = {k: bytes(v) for k, v in entries.items()}
        with self._lock:
            self._data = fresh
