"""Tests for the samplemate command line."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

from PIL import Image
import pytest
from typer.testing import CliRunner

from app.cli import app
from infrastructure.logging import find_latest_log_file

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def no_trash(monkeypatch) -> list[str]:
    """Keep discards inside tmp_path instead of the user's recycle bin."""
    trashed: list[str] = []
    monkeypatch.setattr("infrastructure.delete_service.send2trash", trashed.append)
    return trashed


def _image(path: Path, color: str = "green") -> Path:
    buf = BytesIO()
    Image.new("RGB", (64, 48), color).save(buf, format="PNG")
    path.write_bytes(buf.getvalue())
    return path


def _import(root: Path, tmp_path: Path, title: str = "Trip") -> None:
    files = [_image(tmp_path / "one.png"), _image(tmp_path / "two.png", "blue")]
    result = runner.invoke(
        app,
        ["import-photos", *map(str, files), "--set", title, "--data-root", str(root)],
    )
    assert result.exit_code == 0, result.output
    assert "Imported 2 of 2 photo(s)." in result.output


# ---------------------------------------------------------------------------
# samplemate import-photos / info
# ---------------------------------------------------------------------------


def test_import_then_info(tmp_path: Path) -> None:
    root = tmp_path / "lib" / "v1"
    _import(root, tmp_path)

    result = runner.invoke(app, ["info", "--data-root", str(root)])

    assert result.exit_code == 0, result.output
    assert "Items:      2" in result.output
    assert "Trip (2 photos)" in result.output
    assert len(list((root / "Photos").glob("*.jpg"))) == 2


def test_import_missing_file_exits_1(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["import-photos", str(tmp_path / "nope.png"), "--data-root", str(tmp_path / "v1")]
    )
    assert result.exit_code == 1


def test_import_undecodable_file_exits_1(tmp_path: Path) -> None:
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"not an image")
    result = runner.invoke(app, ["import-photos", str(bad), "--data-root", str(tmp_path / "v1")])
    assert result.exit_code == 1
    assert "Imported 0 of 1" in result.output


# ---------------------------------------------------------------------------
# samplemate export-backup / restore-backup
# ---------------------------------------------------------------------------


def test_export_and_restore_into_other_library(tmp_path: Path) -> None:
    source = tmp_path / "source" / "v1"
    target = tmp_path / "target" / "v1"
    _import(source, tmp_path)
    backup = tmp_path / "lib"

    exported = runner.invoke(app, ["export-backup", str(backup), "--data-root", str(source)])
    assert exported.exit_code == 0, exported.output
    assert (tmp_path / "lib.samplemate").exists()

    restored = runner.invoke(
        app,
        ["restore-backup", str(tmp_path / "lib.samplemate"), "--yes", "--data-root", str(target)],
    )
    assert restored.exit_code == 0, restored.output
    assert "Restored 2 item(s) and 1 set(s)." in restored.output

    info = runner.invoke(app, ["info", "--data-root", str(target)])
    assert "Trip (2 photos)" in info.output


def test_restore_garbage_exits_1_and_keeps_library(tmp_path: Path) -> None:
    root = tmp_path / "lib" / "v1"
    _import(root, tmp_path)
    garbage = tmp_path / "garbage.samplemate"
    garbage.write_bytes(b"nope")

    result = runner.invoke(app, ["restore-backup", str(garbage), "-y", "--data-root", str(root)])

    assert result.exit_code == 1
    assert "Restore failed" in result.output
    info = runner.invoke(app, ["info", "--data-root", str(root)])
    assert "Trip (2 photos)" in info.output


def test_restore_asks_for_confirmation(tmp_path: Path) -> None:
    backup = tmp_path / "x.samplemate"
    backup.write_bytes(b"whatever")
    result = runner.invoke(
        app, ["restore-backup", str(backup), "--data-root", str(tmp_path / "v1")], input="n\n"
    )
    assert result.exit_code == 1
    assert not (tmp_path / "v1").exists()


def test_logs_follow_data_root_override(tmp_path: Path) -> None:
    root = tmp_path / "custom" / "v1"

    result = runner.invoke(app, ["info", "--data-root", str(root)])

    assert result.exit_code == 0, result.output
    assert find_latest_log_file(tmp_path / "custom" / "logs") is not None
