"""Database engine configuration and store startup."""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from logbook.config import get_settings
from logbook.db.store import EntityStore, utcnow
from logbook.migrations import MIGRATIONS, Migration, MigrationEngine

logger = logging.getLogger(__name__)


def create_engine(database_url: str | None = None, **kwargs) -> AsyncEngine:
    """Create the async engine for the local store.

    The SQLite driver is switched to manual transaction control so that DDL
    issued by migrations commits or rolls back with the rest of the step.

    Args:
        database_url: SQLAlchemy URL. Defaults to the configured one.
        **kwargs: Extra engine options, e.g. ``poolclass``.

    Returns:
        AsyncEngine: Configured engine.
    """
    settings = get_settings()
    engine = create_async_engine(
        database_url or settings.database_url,
        echo=settings.debug,
        **kwargs,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


async def open_store(
    engine: AsyncEngine | None = None,
    migrations: Sequence[Migration] = MIGRATIONS,
    clock: Callable[[], datetime] = utcnow,
) -> EntityStore:
    """Migrate the database and hand out a store.

    Args:
        engine: Engine to use. A default engine is created when omitted.
        migrations: Version chain to apply.
        clock: Source of timestamps.

    Returns:
        EntityStore: Store at the latest schema version.

    Raises:
        MigrationFailure: If the schema could not be brought up to date.
            The engine is disposed and no store is returned.
    """
    engine = engine or create_engine()
    migration_engine = MigrationEngine(migrations, clock=clock)
    try:
        report = await migration_engine.run(engine)
    except Exception:
        await engine.dispose()
        raise
    if report.applied:
        logger.info(f"Applied migrations {list(report.applied)}")
    return EntityStore(engine, migration_engine.schema.values(), clock=clock)
