"""Forward-only migration engine.

Each migration runs in its own transaction together with the bump of the
recorded schema version, so a failure leaves the store at the last version
that completed. Structural changes go through Alembic ``Operations`` bound to
the migration connection.
"""

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.ext.asyncio import AsyncEngine

from logbook.db.schema import (
    SCHEMA_VERSION_KEY,
    UPGRADE_NOTICE_KEY,
    IndexSpec,
    TableSpec,
    meta_select,
    meta_table,
    meta_upsert,
    record_table,
)
from logbook.db.store import Record, row_to_record, utcnow
from logbook.errors import MigrationFailure
from logbook.migrations.steps import (
    CreateIndex,
    CreateTable,
    DropIndex,
    DropTable,
    Migration,
    RenameTable,
    SeedDefaults,
    Step,
    TransformRows,
    build_schema,
    fold_step,
)

logger = logging.getLogger(__name__)


class MigrationTransaction:
    """Synchronous record access handed to data steps."""

    def __init__(self, connection: sa.Connection, clock: Callable[[], datetime] = utcnow):
        self.connection = connection
        self.clock = clock

    def count(self, table: str) -> int:
        stmt = sa.select(sa.func.count()).select_from(record_table(table))
        return self.connection.execute(stmt).scalar_one()

    def rows(self, table: str) -> list[Record]:
        t = record_table(table)
        return [row_to_record(row) for row in self.connection.execute(sa.select(t).order_by(t.c.id))]

    def clear(self, table: str) -> None:
        self.connection.execute(sa.delete(record_table(table)))

    def add(self, table: str, record: Mapping[str, Any]) -> int:
        """Insert one record, stamping timestamps the caller left out."""
        now = self.clock().isoformat()
        data = {"created_at": now, "updated_at": now}
        data.update({key: value for key, value in record.items() if key != "id"})
        values: dict[str, Any] = {"data": data}
        if record.get("id") is not None:
            values["id"] = record["id"]
        result = self.connection.execute(sa.insert(record_table(table)).values(**values))
        return result.inserted_primary_key[0]

    def bulk_add(self, table: str, records: Iterable[Mapping[str, Any]]) -> list[int]:
        return [self.add(table, record) for record in records]

    def put(self, table: str, record: Mapping[str, Any]) -> None:
        """Replace the stored fields of an existing record."""
        t = record_table(table)
        data = {key: value for key, value in record.items() if key != "id"}
        data["updated_at"] = self.clock().isoformat()
        self.connection.execute(sa.update(t).where(t.c.id == record["id"]).values(data=data))


@dataclass(frozen=True)
class MigrationReport:
    """Outcome of a migration run."""

    from_version: int
    to_version: int
    applied: tuple[int, ...]
    notice: bool


class MigrationEngine:
    """Applies a version chain to a database."""

    def __init__(self, migrations: Sequence[Migration], clock: Callable[[], datetime] = utcnow):
        """Validate and hold a migration chain.

        Args:
            migrations: Migrations in ascending version order.
            clock: Source of timestamps for seeded records.

        Raises:
            ValueError: If versions are not strictly increasing from 1, or a
                structural step does not fit the layout built so far.
        """
        versions = [migration.version for migration in migrations]
        if versions and versions[0] < 1:
            raise ValueError("Schema versions start at 1")
        for previous, current in zip(versions, versions[1:]):
            if current <= previous:
                raise ValueError(
                    f"Migration versions must strictly increase: v{current} follows v{previous}"
                )
        self.migrations = tuple(migrations)
        self.clock = clock
        # Folding the whole chain surfaces definition errors before any run
        self.schema = build_schema(self.migrations)

    @property
    def latest(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    async def current_version(self, engine: AsyncEngine) -> int:
        async with engine.begin() as conn:
            return await conn.run_sync(_read_version)

    async def run(self, engine: AsyncEngine) -> MigrationReport:
        """Bring the database up to the latest version.

        Args:
            engine: Async engine of the database to migrate.

        Returns:
            MigrationReport describing what ran.

        Raises:
            MigrationFailure: If a migration fails, or the database was
                written by a newer schema than this build knows.
        """
        from_version = await self.current_version(engine)
        if from_version > self.latest:
            raise MigrationFailure(
                from_version,
                f"store is at v{from_version} but this build only knows up to v{self.latest}",
            )

        schema = build_schema(self.migrations, from_version)
        pending = [m for m in self.migrations if m.version > from_version]
        if not pending:
            logger.info(f"Store schema is current at v{from_version}")
            return MigrationReport(from_version, from_version, (), False)

        applied: list[int] = []
        for migration in pending:
            logger.info(
                f"Applying migration v{migration.version}"
                + (f": {migration.description}" if migration.description else "")
            )
            try:
                async with engine.begin() as conn:
                    await conn.run_sync(self._apply, migration, schema)
            except Exception as exc:
                logger.error(f"Migration v{migration.version} failed: {exc}")
                raise MigrationFailure(migration.version, str(exc)) from exc
            for step in migration.changes:
                schema = fold_step(schema, step)
            applied.append(migration.version)

        notice = from_version > 0 and any(m.notify or m.structural for m in pending)
        if notice:
            async with engine.begin() as conn:
                await conn.execute(
                    meta_upsert(
                        UPGRADE_NOTICE_KEY,
                        {"from_version": from_version, "to_version": self.latest},
                    )
                )

        logger.info(f"Store migrated from v{from_version} to v{self.latest}")
        return MigrationReport(from_version, self.latest, tuple(applied), notice)

    def _apply(
        self, connection: sa.Connection, migration: Migration, schema: dict[str, TableSpec]
    ) -> None:
        op = Operations(MigrationContext.configure(connection))
        tx = MigrationTransaction(connection, self.clock)
        for step in migration.changes:
            _apply_step(op, tx, schema, step)
            schema = fold_step(schema, step)
        connection.execute(meta_upsert(SCHEMA_VERSION_KEY, migration.version))


def _read_version(connection: sa.Connection) -> int:
    meta_table.create(connection, checkfirst=True)
    value = connection.execute(meta_select(SCHEMA_VERSION_KEY)).scalar()
    return int(value) if value is not None else 0


def _create_index(op: Operations, table: str, index: IndexSpec) -> None:
    op.create_index(
        index.sql_name(table),
        table,
        [sa.text(f"json_extract(data, '$.{name}')") for name in index.fields],
    )


def _apply_step(
    op: Operations, tx: MigrationTransaction, schema: Mapping[str, TableSpec], step: Step
) -> None:
    if isinstance(step, CreateTable):
        op.create_table(
            step.table,
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("data", sa.JSON, nullable=False),
            sqlite_autoincrement=True,
        )
        for name in step.indexes:
            _create_index(op, step.table, IndexSpec.parse(name))
    elif isinstance(step, RenameTable):
        # Index names embed the table name, so they move with it
        indexes = schema[step.old].indexes
        for index in indexes:
            op.drop_index(index.sql_name(step.old), table_name=step.old)
        op.rename_table(step.old, step.new)
        for index in indexes:
            _create_index(op, step.new, index)
    elif isinstance(step, DropTable):
        op.drop_table(step.table)
    elif isinstance(step, CreateIndex):
        _create_index(op, step.table, IndexSpec.parse(step.index))
    elif isinstance(step, DropIndex):
        op.drop_index(IndexSpec.parse(step.index).sql_name(step.table), table_name=step.table)
    elif isinstance(step, TransformRows):
        logger.info(f"Transforming rows: {step.description}")
        step.apply(tx)
    elif isinstance(step, SeedDefaults):
        _seed(tx, step)
    else:
        raise TypeError(f"Unknown migration step: {step!r}")


def _seed(tx: MigrationTransaction, step: SeedDefaults) -> None:
    existing = tx.count(step.guard_table)
    if existing:
        logger.info(f"Skipping seed of {', '.join(step.tables)}: {step.guard_table} has {existing} rows")
        return
    for table in reversed(step.tables):
        tx.clear(table)
    if step.seed is not None:
        step.seed(tx)
        logger.info(f"Seeded {', '.join(step.tables)}")
