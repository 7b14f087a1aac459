"""Record level operations spanning several tables."""

import logging

from logbook.db.models import TableName
from logbook.db.store import EntityStore

logger = logging.getLogger(__name__)

# Tables emptied by "clear log data"; vessel, crew and settings are kept
LOG_DATA_TABLES = (TableName.LOG_ENTRIES.value, TableName.PASSAGES.value)


async def clear_log_data(store: EntityStore) -> dict[str, int]:
    """Delete all log entries and passages in one transaction.

    Args:
        store: Entity store.

    Returns:
        Number of records removed per table.
    """
    removed: dict[str, int] = {}
    async with store.transaction() as tx:
        for name in LOG_DATA_TABLES:
            removed[name] = await tx.table(name).clear()
    logger.warning(f"Cleared log data: {removed}")
    return removed
