"""SampleMate command line: inspect, import into, back up and restore a library."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Annotated, Optional

import typer
from loguru import logger

from core.errors import BackupFormatError, CatalogError
from core.services.catalog_store import CatalogStore
from core.services.interfaces import RestoreMode
from infrastructure.backup_service import read_backup_file, write_backup_file
from infrastructure.bootstrap import build_store
from infrastructure.logging import init_logging
from infrastructure.settings import JsonSettings, LibrarySettings

BASE_DIR = Path(__file__).resolve().parent.parent
SETTINGS_FILE = BASE_DIR / "settings.json"

app = typer.Typer(
    name="samplemate",
    help="SampleMate library tool: photo sets, categories, tags and backups.",
    add_completion=False,
)

DataRootOption = Annotated[
    Optional[Path],
    typer.Option("--data-root", help="Library directory (overrides settings.json)."),
]


def load_settings(data_root: Path | None = None) -> LibrarySettings:
    """Read settings.json when present and apply a data root override."""
    if SETTINGS_FILE.exists():
        settings = LibrarySettings.from_settings(JsonSettings(SETTINGS_FILE))
    else:
        settings = LibrarySettings()
    if data_root is not None:
        settings = replace(settings, data_root=data_root.expanduser())
    return settings


def _open(data_root: Path | None) -> CatalogStore:
    settings = load_settings(data_root)
    init_logging(settings.resolved_log_dir, settings.log_level)
    logger.info("Opening library at {}", settings.data_root)
    return build_store(settings)


@app.command("info")
def info_cmd(data_root: DataRootOption = None) -> None:
    """Show library counts and the set groups."""
    with _open(data_root) as store:
        snap = store.snapshot
        typer.echo(f"Items:      {len(snap.items)}")
        typer.echo(f"Sets:       {len(snap.sets)}")
        typer.echo(f"Categories: {len(snap.categories)}")
        typer.echo(f"Tags:       {len(snap.tags)}")
        typer.echo(f"Presets:    {len(snap.presets)}")
        for group in store.set_groups():
            typer.echo(f"\n{group.title}")
            for s in group.sets:
                tags = ", ".join(t.name for t in store.tags_for_set(s.id))
                suffix = f"  [{tags}]" if tags else ""
                typer.echo(f"  {s.title} ({len(s.photo_ids)} photos){suffix}")


@app.command("import-photos")
def import_photos_cmd(
    files: Annotated[list[Path], typer.Argument(help="Image files to import.")],
    set_title: Annotated[
        Optional[str],
        typer.Option("--set", help="Also create a set from the imported photos."),
    ] = None,
    data_root: DataRootOption = None,
) -> None:
    """Import image files into the library."""
    payloads: list[bytes] = []
    for path in files:
        try:
            payloads.append(path.read_bytes())
        except OSError as ex:
            typer.echo(f"Cannot read {path}: {ex}", err=True)
            raise typer.Exit(code=1) from ex

    with _open(data_root) as store:
        items = store.import_photos(payloads)
        typer.echo(f"Imported {len(items)} of {len(payloads)} photo(s).")
        if set_title is not None and items:
            result = store.create_set(set_title, [it.id for it in items])
            if not result.ok:
                typer.echo(f"Set not created: {result.error}", err=True)
                raise typer.Exit(code=1)
            typer.echo(f"Created set '{result.value.title}'.")
        if not store.flush(timeout=60):
            typer.echo("Saving the catalog timed out.", err=True)
            raise typer.Exit(code=1)
    if len(items) < len(payloads):
        raise typer.Exit(code=1)


@app.command("export-backup")
def export_backup_cmd(
    output: Annotated[Path, typer.Argument(help="Backup file to write.")],
    data_root: DataRootOption = None,
) -> None:
    """Write the whole library into one backup file."""
    with _open(data_root) as store:
        try:
            data = store.export_backup()
        except CatalogError as ex:
            typer.echo(f"Export failed: {ex}", err=True)
            raise typer.Exit(code=1) from ex
    target = write_backup_file(output, data)
    typer.echo(f"Backup written to {target} ({len(data)} bytes).")


@app.command("restore-backup")
def restore_backup_cmd(
    source: Annotated[Path, typer.Argument(help="Backup file to restore.")],
    mode: Annotated[
        RestoreMode,
        typer.Option("--mode", case_sensitive=False, help="How storage is replaced."),
    ] = RestoreMode.REPLACE,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation.")] = False,
    data_root: DataRootOption = None,
) -> None:
    """Replace the whole library with the content of a backup file."""
    try:
        data = read_backup_file(source)
    except BackupFormatError as ex:
        typer.echo(str(ex), err=True)
        raise typer.Exit(code=1) from ex

    if not yes:
        typer.confirm("This replaces the current library. Continue?", abort=True)

    with _open(data_root) as store:
        result = store.import_backup(data, mode)
    if not result.success:
        typer.echo(f"Restore failed: {result.error}", err=True)
        raise typer.Exit(code=1)
    snap = result.snapshot
    logger.info("Restored {} from {}", len(snap.items) if snap else 0, source)
    typer.echo(
        f"Restored {len(snap.items)} item(s) and {len(snap.sets)} set(s)."
        if snap
        else "Restored."
    )


if __name__ == "__main__":
    app()
