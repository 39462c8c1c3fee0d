"""Settings access helpers for JSON-based configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Any

DATA_ROOT_ENV = "SAMPLEMATE_DATA_ROOT"
DEFAULT_DATA_ROOT = "~/.local/share/SampleMate/v1"


class JsonSettings:
    """Lightweight JSON settings reader with dotted-key access."""

    def __init__(self, settings_path: str | Path) -> None:
        self._path = Path(settings_path)
        if not self._path.exists():
            raise FileNotFoundError(f"settings.json not found: {self._path}")
        with self._path.open("r", encoding="utf-8") as f:
            self._data = json.load(f)

    def get(self, key: str, default: Any | None = None) -> Any:
        """Return value for dotted `key`, or `default` if not present."""
        parts = key.split(".")
        node: Any = self._data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node


def _expand(path: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(path)))


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class LibrarySettings:
    """Resolved library configuration.

    Attributes:
        data_root: Versioned application-data directory holding the documents
            and the Photos/ and Thumbs/ blob folders.
        jpeg_quality: JPEG quality for imported full-size photos.
        thumb_quality: JPEG quality for thumbnails.
        thumb_size: Box (width, height) thumbnails are fitted into.
        import_workers: Upper bound of parallel decode workers.
        use_trash: Send discarded files to the recycle bin instead of deleting.
        log_dir: Log directory; defaults to `logs` beside the data root.
        log_level: Minimum loguru level for the file sink.
    """

    data_root: Path = field(default_factory=lambda: _expand(DEFAULT_DATA_ROOT))
    jpeg_quality: int = 92
    thumb_quality: int = 86
    thumb_size: tuple[int, int] = (160, 240)
    import_workers: int = 4
    use_trash: bool = True
    log_dir: Path | None = None
    log_level: str = "INFO"

    @property
    def resolved_log_dir(self) -> Path:
        return self.log_dir or self.data_root.parent / "logs"

    @classmethod
    def from_settings(cls, settings: JsonSettings) -> LibrarySettings:
        """Build from a settings file; `SAMPLEMATE_DATA_ROOT` overrides the data root."""
        root = os.environ.get(DATA_ROOT_ENV) or settings.get(
            "library.data_root", DEFAULT_DATA_ROOT
        )
        raw_box = settings.get("import.thumb_size", [160, 240])
        if isinstance(raw_box, list) and len(raw_box) == 2:
            thumb_size = (_int(raw_box[0], 160), _int(raw_box[1], 240))
        else:
            thumb_size = (160, 240)
        log_dir = settings.get("logging.dir")
        return cls(
            data_root=_expand(str(root)),
            jpeg_quality=_int(settings.get("import.jpeg_quality", 92), 92),
            thumb_quality=_int(settings.get("import.thumb_quality", 86), 86),
            thumb_size=thumb_size,
            import_workers=max(1, _int(settings.get("import.workers", 4), 4)),
            use_trash=bool(settings.get("storage.use_trash", True)),
            log_dir=_expand(str(log_dir)) if log_dir else None,
            log_level=str(settings.get("logging.level", "INFO")),
        )
