"""Daily unattended backup."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from logbook.backup.service import BackupService
from logbook.preferences.service import SettingsService

logger = logging.getLogger(__name__)


def local_now() -> datetime:
    return datetime.now().astimezone()


def should_run_today(last_backup: str | datetime | None, now: datetime) -> bool:
    """Whether no backup has been recorded on ``now``'s calendar day.

    Args:
        last_backup: The last backup marker, ISO string or datetime.
        now: Current time, timezone-aware.

    Returns:
        True when the marker is missing, unreadable or on an earlier day.
    """
    if last_backup is None:
        return True
    if isinstance(last_backup, str):
        try:
            last_backup = datetime.fromisoformat(last_backup)
        except ValueError:
            logger.warning(f"Unreadable last backup date {last_backup!r}; backing up")
            return True
    if last_backup.tzinfo is not None and now.tzinfo is not None:
        last_backup = last_backup.astimezone(now.tzinfo)
    return last_backup.date() != now.date()


class AutoBackupScheduler:
    """Writes at most one backup per calendar day while enabled."""

    def __init__(
        self,
        backup_service: BackupService,
        settings_service: SettingsService,
        interval_minutes: int = 60,
        clock: Callable[[], datetime] = local_now,
    ):
        """Initialize the scheduler.

        Args:
            backup_service: Produces and writes the archive.
            settings_service: Holds the enable flag and last backup marker.
            interval_minutes: Minutes between checks.
            clock: Source of the current local time.
        """
        self.backup_service = backup_service
        self.settings_service = settings_service
        self.interval_minutes = interval_minutes
        self.clock = clock
        self._task: asyncio.Task | None = None

    async def run_once(self) -> bool:
        """Back up now if enabled and not yet done today.

        Failures are logged and never raised; the marker only moves after the
        file has been written.

        Returns:
            True if a backup file was written.
        """
        try:
            settings = await self.settings_service.get()
            now = self.clock()
            if not settings.auto_backup:
                return False
            if not should_run_today(settings.last_backup_date, now):
                return False
            filename, result = await self.backup_service.run_backup(now=now, auto=True)
            if result.path is None:
                return False
            await self.settings_service.mark_backup(now)
            logger.info(f"Auto-backup {filename} written via {result.method}")
            return True
        except Exception as exc:
            logger.error(f"Auto-backup failed: {exc}")
            return False

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_minutes * 60)

    def start(self) -> None:
        """Start periodic checks on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info(f"Auto-backup checks every {self.interval_minutes} minutes")

    async def stop(self) -> None:
        """Cancel periodic checks and wait for the task to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
