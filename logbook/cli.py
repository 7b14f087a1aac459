"""Command-line interface for the logbook store."""

import asyncio
import logging
import sys
from pathlib import Path

import click

from logbook import __version__
from logbook.backup.service import BackupService
from logbook.config import get_settings
from logbook.db.database import create_engine, open_store
from logbook.errors import BackupCancelled, DestinationUnavailable, InvalidFormat, MigrationFailure
from logbook.migrations import MIGRATIONS, MigrationEngine
from logbook.preferences.service import init_settings


def setup_logging(level: str) -> None:
    """Set up logging configuration.

    Args:
        level: Log level string.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


async def _open():
    store = await open_store()
    await init_settings(store)
    return store


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
def main(log_level: str):
    """Logbook - local data store, backup and restore."""
    setup_logging(log_level)


@main.command()
def migrate():
    """Bring the database schema up to date."""

    async def run():
        engine = create_engine()
        try:
            return await MigrationEngine(MIGRATIONS).run(engine)
        finally:
            await engine.dispose()

    try:
        report = asyncio.run(run())
    except MigrationFailure as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if report.applied:
        click.echo(f"Migrated from v{report.from_version} to v{report.to_version}")
    else:
        click.echo(f"Schema is current (v{report.to_version})")


@main.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--archive", is_flag=True, help="Write a ZIP archive with attachments")
def export(path: Path, archive: bool):
    """Export all data to PATH."""

    async def run():
        store = await _open()
        try:
            service = BackupService(store)
            if archive:
                path.write_bytes(await service.export_archive())
            else:
                path.write_text(await service.export_snapshot(), encoding="utf-8")
        finally:
            await store.close()

    asyncio.run(run())
    click.echo(f"Backup written to {path}")


@main.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.confirmation_option(prompt="This replaces ALL data in the logbook. Continue?")
def import_(path: Path):
    """Replace all data with the backup at PATH (JSON or ZIP)."""

    async def run():
        store = await _open()
        try:
            return await BackupService(store).import_file(path.read_bytes(), path.name)
        finally:
            await store.close()

    try:
        result = asyncio.run(run())
    except InvalidFormat as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    for table, count in result.records_imported.items():
        click.echo(f"  {table}: {count}")
    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)


@main.command()
@click.option("--ask", is_flag=True, help="Ask for a file name if no backup folder is usable")
def backup(ask: bool):
    """Write a backup archive through the destination fallback chain."""

    async def prompt(suggested: str) -> Path | None:
        answer = click.prompt(f"Save {suggested} as (empty to cancel)", default="", show_default=False)
        if not answer.strip():
            return None
        chosen = Path(answer).expanduser()
        return chosen / suggested if chosen.is_dir() else chosen

    async def run():
        store = await _open()
        try:
            return await BackupService(store).run_backup(prompt=prompt if ask else None)
        finally:
            await store.close()

    try:
        filename, result = asyncio.run(run())
    except (DestinationUnavailable, BackupCancelled) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if result.path is None:
        click.echo("Backup cancelled")
    else:
        click.echo(f"Backup {filename} written to {result.path} ({result.method})")


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port")
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    log_level = "debug" if get_settings().debug else "info"
    uvicorn.run("logbook.main:app", host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    main()
