"""Business logic for the settings record."""

import logging
from datetime import datetime

from logbook.db.models import AppSettings, AppSettingsUpdate, TableName
from logbook.db.store import EntityStore

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = AppSettings().model_dump(
    exclude={"id", "created_at", "updated_at", "last_backup_date"}, exclude_none=True
)


async def init_settings(store: EntityStore) -> bool:
    """Seed the default settings record if the table is empty.

    Returns:
        True if defaults were written.
    """
    table = store.table(TableName.SETTINGS.value)
    if await table.count() > 0:
        return False
    await table.insert(DEFAULT_SETTINGS)
    logger.info("Seeded default settings")
    return True


class SettingsService:
    """Service for reading and updating application settings."""

    def __init__(self, store: EntityStore):
        """Initialize settings service.

        Args:
            store: Entity store.
        """
        self.store = store
        self.table = store.table(TableName.SETTINGS.value)

    async def get(self) -> AppSettings:
        """Get the settings record, creating defaults on first use.

        Returns:
            AppSettings: Current settings.
        """
        record = await self.table.first()
        if record is None:
            await init_settings(self.store)
            record = await self.table.first()
        return AppSettings.model_validate(record)

    async def update(self, changes: AppSettingsUpdate) -> AppSettings:
        """Apply a partial update.

        Args:
            changes: Fields to change; unset fields are left alone.

        Returns:
            AppSettings: Settings after the update.
        """
        current = await self.get()
        record = await self.table.update(current.id, changes.model_dump(exclude_unset=True))
        return AppSettings.model_validate(record)

    async def mark_backup(self, when: datetime) -> None:
        """Record a successful backup.

        Args:
            when: Time the backup finished.
        """
        current = await self.get()
        await self.table.update(current.id, {"last_backup_date": when.isoformat()})
        logger.info(f"Last backup date set to {when.isoformat()}")
