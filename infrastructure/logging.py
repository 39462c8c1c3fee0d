"""Logging initialization utilities using loguru."""

from __future__ import annotations

from pathlib import Path

from loguru import logger


def init_logging(log_dir: str | Path, level: str = "INFO") -> None:
    """Initialize rotating file logging under the given directory."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        str(log_path / "app_{time:YYYYMMDD}.log"),
        rotation="10 MB",
        retention="10 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        level=level,
    )


def find_latest_log_file(log_dir: str | Path) -> Path | None:
    """Find the latest log file in the specified directory."""
    try:
        log_path = Path(log_dir)
        if not log_path.exists():
            return None

        log_files = list(log_path.glob("app_*.log"))
        if not log_files:
            return None

        return max(log_files, key=lambda p: p.stat().st_mtime)
    except (OSError, ValueError):
        return None
