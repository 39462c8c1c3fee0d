"""Tests for DeleteService discards."""

from __future__ import annotations

from pathlib import Path

from infrastructure.delete_service import DeleteService


def test_unlink_files_and_directories(tmp_path: Path) -> None:
    f = tmp_path / "a.jpg"
    f.write_bytes(b"x")
    d = tmp_path / "dir"
    (d / "sub").mkdir(parents=True)
    (d / "sub" / "b.jpg").write_bytes(b"y")

    result = DeleteService(use_trash=False).discard([f, d])

    assert result.success_paths == [str(f), str(d)]
    assert result.failed == []
    assert not f.exists()
    assert not d.exists()


def test_missing_path_is_a_failure(tmp_path: Path) -> None:
    result = DeleteService(use_trash=False).discard([tmp_path / "nope.jpg"])
    assert result.success_paths == []
    assert result.failed == [(str(tmp_path / "nope.jpg"), "Path does not exist")]


def test_trash_mode_uses_send2trash(tmp_path: Path, monkeypatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr("infrastructure.delete_service.send2trash", calls.append)
    f = tmp_path / "a.jpg"
    f.write_bytes(b"x")

    result = DeleteService().discard([f])

    assert calls == [str(f)]
    assert result.success_paths == [str(f)]


def test_trash_errors_are_collected(tmp_path: Path, monkeypatch) -> None:
    def refuse(path: str) -> None:
        raise OSError("trash unavailable")

    monkeypatch.setattr("infrastructure.delete_service.send2trash", refuse)
    f = tmp_path / "a.jpg"
    f.write_bytes(b"x")

    result = DeleteService(use_trash=True).discard([f])

    assert result.failed == [(str(f), "trash unavailable")]
    assert f.exists()
