"""Business logic for backup/restore operations."""

import asyncio
import logging
from datetime import datetime

from logbook.backup import archive
from logbook.backup.destination import DestinationResolver, SavePrompt, WriteResult
from logbook.backup.schemas import BackupSnapshot, ImportResult, ValidationResult
from logbook.backup.serializers import encode_snapshot, parse_snapshot, serialize
from logbook.config import get_settings
from logbook.db.store import EntityStore
from logbook.errors import InvalidFormat
from logbook.preferences.service import init_settings

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPES = {"application/zip", "application/x-zip-compressed"}


def backup_filename(now: datetime, *, auto: bool = False, label: str | None = None) -> str:
    """Name of a backup archive.

    Args:
        now: Local time of the backup.
        auto: Scheduled backups include the time of day.
        label: Name suffix, defaults to the configured label.

    Returns:
        e.g. ``2025.06.01 08.30 - Logbook Backup.zip``.
    """
    label = label or get_settings().backup_filename_label
    stamp = now.strftime("%Y.%m.%d %H.%M" if auto else "%Y.%m.%d")
    return f"{stamp} - {label}.zip"


class BackupService:
    """Service for backup and restore operations."""

    def __init__(self, store: EntityStore, resolver: DestinationResolver | None = None):
        """Initialize backup service.

        Args:
            store: Entity store.
            resolver: Destination resolver for backup files.
        """
        self.store = store
        self.resolver = resolver or DestinationResolver(store, get_settings().download_dir)

    async def export_snapshot(self) -> str:
        """Export every table as backup JSON.

        Returns:
            Backup JSON text.
        """
        snapshot = await serialize(self.store)
        logger.info(f"Exported backup: {snapshot.record_counts}")
        return encode_snapshot(snapshot)

    async def export_archive(self, *, cancel: asyncio.Event | None = None) -> bytes:
        """Export every table as a ZIP archive with extracted attachments.

        Args:
            cancel: Event that aborts packaging when set.

        Returns:
            ZIP archive bytes.

        Raises:
            BackupCancelled: If packaging was cancelled.
        """
        return await archive.pack(await self.export_snapshot(), cancel=cancel)

    def validate(self, text: str | bytes) -> ValidationResult:
        """Validate backup JSON without touching the store.

        Args:
            text: Backup JSON text.

        Returns:
            ValidationResult with record counts, warnings and errors.
        """
        try:
            snapshot = parse_snapshot(text)
        except InvalidFormat as exc:
            return ValidationResult(is_valid=False, errors=[str(exc)])
        return ValidationResult(
            is_valid=True,
            format_version=snapshot.format_version,
            exported_at=snapshot.exported_at or None,
            record_counts=snapshot.record_counts,
            warnings=self._unknown_table_warnings(snapshot),
        )

    async def validate_file(
        self, data: bytes, filename: str | None = None, content_type: str | None = None
    ) -> ValidationResult:
        """Validate an uploaded JSON or ZIP backup."""
        try:
            text = await self._read_upload(data, filename, content_type)
        except InvalidFormat as exc:
            return ValidationResult(is_valid=False, errors=[str(exc)])
        return self.validate(text)

    async def import_snapshot(self, text: str | bytes) -> ImportResult:
        """Replace the store contents with a backup.

        Args:
            text: Backup JSON text.

        Returns:
            ImportResult with per-table counts.

        Raises:
            InvalidFormat: If the backup is malformed. The store is untouched.
        """
        return await self.restore(parse_snapshot(text))

    async def import_archive(self, data: bytes) -> ImportResult:
        """Replace the store contents with the ``backup.json`` of an archive.

        Raises:
            InvalidFormat: If the archive or its JSON is malformed.
        """
        return await self.import_snapshot(await archive.unpack(data))

    async def import_file(
        self, data: bytes, filename: str | None = None, content_type: str | None = None
    ) -> ImportResult:
        """Import an uploaded backup, detecting JSON or ZIP."""
        return await self.import_snapshot(await self._read_upload(data, filename, content_type))

    async def restore(self, snapshot: BackupSnapshot) -> ImportResult:
        """Swap the store contents for a validated snapshot.

        All tables are cleared and refilled in one transaction, so an
        interrupted restore leaves the previous contents in place. Record ids
        and timestamps are kept as they appear in the snapshot.

        Args:
            snapshot: Validated snapshot.

        Returns:
            ImportResult with per-table counts and warnings.
        """
        warnings = self._unknown_table_warnings(snapshot)
        for warning in warnings:
            logger.warning(warning)

        imported: dict[str, int] = {}
        async with self.store.transaction() as tx:
            for name in self.store.table_names:
                await tx.table(name).clear()
            for name in self.store.table_names:
                records = snapshot.tables.get(name, [])
                if records:
                    # Records without an id take fresh ids after every kept one
                    keyed = [r for r in records if r.get("id") is not None]
                    unkeyed = [r for r in records if r.get("id") is None]
                    await tx.table(name).bulk_insert(keyed + unkeyed)
                imported[name] = len(records)

        if await init_settings(self.store):
            warnings.append("Backup had no settings; defaults were restored")

        logger.info(f"Restored backup from {snapshot.exported_at or 'unknown date'}: {imported}")
        return ImportResult(success=True, records_imported=imported, warnings=warnings)

    async def run_backup(
        self,
        *,
        now: datetime | None = None,
        auto: bool = False,
        prompt: SavePrompt | None = None,
        cancel: asyncio.Event | None = None,
    ) -> tuple[str, WriteResult]:
        """Export an archive and hand it to the destination resolver.

        Args:
            now: Time used in the file name, defaults to local now.
            auto: Use the scheduled backup file name.
            prompt: Interactive save dialog for manual backups.
            cancel: Event that aborts packaging when set.

        Returns:
            Tuple of (file name, WriteResult).

        Raises:
            BackupCancelled: If packaging was cancelled.
            DestinationUnavailable: If the file could not be written.
        """
        now = now or datetime.now().astimezone()
        data = await self.export_archive(cancel=cancel)
        filename = backup_filename(now, auto=auto)
        result = await self.resolver.write(filename, data, prompt=prompt)
        return filename, result

    def _unknown_table_warnings(self, snapshot: BackupSnapshot) -> list[str]:
        known = set(self.store.table_names)
        return [
            f"Ignoring unknown table '{name}' ({len(records)} records)"
            for name, records in snapshot.tables.items()
            if name not in known
        ]

    @staticmethod
    async def _read_upload(data: bytes, filename: str | None, content_type: str | None) -> str:
        is_archive = (
            (filename or "").lower().endswith(".zip")
            or content_type in ZIP_CONTENT_TYPES
            or archive.is_zip(data)
        )
        if is_archive:
            return await archive.unpack(data)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidFormat("Backup file is neither a ZIP archive nor UTF-8 JSON") from exc
