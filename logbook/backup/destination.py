"""Backup destination resolution.

A backup is written to the first destination that works:

1. the folder the user chose earlier, if it is still writable;
2. an interactive save prompt, when the caller can show one;
3. the downloads folder, under a name that does not overwrite anything.
"""

import enum
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from logbook.db.store import EntityStore
from logbook.errors import DestinationUnavailable

logger = logging.getLogger(__name__)

DESTINATION_KEY = "backup_destination"

# Receives the suggested file name, returns the chosen path or None if cancelled
SavePrompt = Callable[[str], Awaitable[Path | None]]


class Permission(str, enum.Enum):
    """Result of a folder permission check."""

    GRANTED = "granted"
    DENIED = "denied"
    # The folder no longer exists; the handle can never be used again
    REVOKED = "revoked"


@dataclass(frozen=True)
class DirectoryHandle:
    """A backup folder chosen by the user."""

    path: Path
    label: str

    def to_meta(self) -> dict[str, Any]:
        return {"path": str(self.path), "label": self.label}

    @classmethod
    def from_meta(cls, value: dict[str, Any]) -> "DirectoryHandle":
        path = Path(value["path"])
        return cls(path=path, label=value.get("label") or path.name)


@dataclass(frozen=True)
class WriteResult:
    """Where a backup ended up.

    Attributes:
        method: ``directory``, ``save_as``, ``download`` or ``cancelled``.
        path: Written file, None when cancelled.
    """

    method: str
    path: Path | None = None


async def check_permission(path: Path) -> Permission:
    """Check that ``path`` is a folder we may write into."""
    if not await aiofiles.os.path.isdir(path):
        return Permission.REVOKED
    if not await aiofiles.os.access(path, os.W_OK):
        return Permission.DENIED
    return Permission.GRANTED


async def write_file(target: Path, data: bytes) -> None:
    """Write ``data`` to ``target`` through a temporary sibling file.

    A partially written backup never carries the final name.
    """
    partial = target.with_name(f"{target.name}.part")
    try:
        async with aiofiles.open(partial, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(partial, target)
    except OSError:
        if await aiofiles.os.path.exists(partial):
            await aiofiles.os.remove(partial)
        raise


async def available_path(directory: Path, filename: str) -> Path:
    """First non-existing ``name``, ``name (1)``, ``name (2)`` ... in ``directory``."""
    candidate = directory / filename
    stem, suffix = candidate.stem, candidate.suffix
    counter = 1
    while await aiofiles.os.path.exists(candidate):
        candidate = directory / f"{stem} ({counter}){suffix}"
        counter += 1
    return candidate


class DestinationResolver:
    """Chooses where backup files are written."""

    def __init__(self, store: EntityStore, download_dir: Path):
        """Initialize the resolver.

        Args:
            store: Entity store holding the persisted folder handle.
            download_dir: Last-resort folder for forced saves.
        """
        self.store = store
        self.download_dir = download_dir

    async def get_handle(self) -> DirectoryHandle | None:
        value = await self.store.get_meta(DESTINATION_KEY)
        return DirectoryHandle.from_meta(value) if value else None

    async def set_handle(self, path: Path, label: str | None = None) -> DirectoryHandle:
        """Remember a backup folder for future writes.

        Raises:
            DestinationUnavailable: If the folder does not exist or is not
                writable.
        """
        path = Path(path).expanduser()
        if await check_permission(path) is not Permission.GRANTED:
            raise DestinationUnavailable(f"Cannot write backups to {path}")
        handle = DirectoryHandle(path=path, label=label or path.name)
        await self.store.set_meta(DESTINATION_KEY, handle.to_meta())
        logger.info(f"Backup folder set to {path}")
        return handle

    async def clear_handle(self) -> None:
        await self.store.delete_meta(DESTINATION_KEY)
        logger.info("Backup folder cleared")

    async def write(
        self, filename: str, data: bytes, *, prompt: SavePrompt | None = None
    ) -> WriteResult:
        """Write a backup file through the fallback chain.

        Args:
            filename: Suggested file name.
            data: File contents.
            prompt: Interactive save dialog. Omitted for unattended backups.

        Returns:
            WriteResult naming the mechanism that succeeded.

        Raises:
            DestinationUnavailable: If no mechanism could write the file.
        """
        handle = await self.get_handle()
        if handle is not None:
            result = await self._write_to_handle(handle, filename, data)
            if result is not None:
                return result

        if prompt is not None:
            chosen = await prompt(filename)
            if chosen is None:
                logger.info("Backup save cancelled by user")
                return WriteResult(method="cancelled")
            try:
                await write_file(Path(chosen), data)
                logger.info(f"Backup saved to {chosen}")
                return WriteResult(method="save_as", path=Path(chosen))
            except OSError as exc:
                logger.warning(f"Saving backup to {chosen} failed: {exc}")

        try:
            await aiofiles.os.makedirs(self.download_dir, exist_ok=True)
            target = await available_path(self.download_dir, filename)
            await write_file(target, data)
        except OSError as exc:
            raise DestinationUnavailable(f"Could not save backup {filename}: {exc}") from exc
        logger.info(f"Backup downloaded to {target}")
        return WriteResult(method="download", path=target)

    async def _write_to_handle(
        self, handle: DirectoryHandle, filename: str, data: bytes
    ) -> WriteResult | None:
        permission = await check_permission(handle.path)
        if permission is Permission.REVOKED:
            logger.warning(f"Backup folder {handle.path} is gone; forgetting it")
            await self.clear_handle()
            return None
        if permission is Permission.DENIED:
            logger.warning(f"Backup folder {handle.path} is not writable")
            return None

        target = handle.path / filename
        try:
            await write_file(target, data)
        except OSError as exc:
            logger.warning(f"Writing backup to {target} failed: {exc}")
            return None
        logger.info(f"Backup written to {target}")
        return WriteResult(method="directory", path=target)
