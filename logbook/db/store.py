"""Async entity store over SQLite JSON tables."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from logbook.db.schema import (
    UPGRADE_NOTICE_KEY,
    TableSpec,
    meta_delete,
    meta_select,
    meta_upsert,
    record_table,
)
from logbook.errors import Conflict, NotFound, SchemaError

logger = logging.getLogger(__name__)

Record = dict[str, Any]

# Fields owned by the store; caller values for these are discarded
RESERVED_FIELDS = frozenset({"id", "created_at", "updated_at"})


def utcnow() -> datetime:
    return datetime.now(UTC)


def row_to_record(row: sa.Row) -> Record:
    return {"id": row.id, **row.data}


def _payload(record: Mapping[str, Any]) -> Record:
    return {key: value for key, value in record.items() if key not in RESERVED_FIELDS}


def _bound(spec_fields: tuple[str, ...], value: Any) -> sa.ColumnElement[Any]:
    if len(spec_fields) == 1:
        return sa.literal(value)
    if not isinstance(value, (list, tuple)) or len(value) != len(spec_fields):
        raise SchemaError(
            f"Compound index '{'+'.join(spec_fields)}' needs a bound of "
            f"{len(spec_fields)} values"
        )
    return sa.tuple_(*(sa.literal(part) for part in value))


class Table:
    """CRUD and indexed queries for one entity table.

    Bound to a connection when obtained from ``EntityStore.transaction()``,
    otherwise every call opens its own connection.
    """

    def __init__(
        self, store: "EntityStore", spec: TableSpec, connection: AsyncConnection | None = None
    ):
        self.store = store
        self.spec = spec
        self.name = spec.name
        self._table = record_table(spec.name)
        self._connection = connection

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[AsyncConnection]:
        if self._connection is not None:
            yield self._connection
            return
        async with self.store.engine.connect() as conn:
            yield conn

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[AsyncConnection]:
        if self._connection is not None:
            yield self._connection
            return
        async with self.store.write_lock:
            async with self.store.engine.begin() as conn:
                yield conn

    async def _fetch(self, conn: AsyncConnection, record_id: int) -> sa.Row | None:
        result = await conn.execute(sa.select(self._table).where(self._table.c.id == record_id))
        return result.first()

    async def insert(self, record: Mapping[str, Any]) -> int:
        """Insert a record and stamp both timestamps.

        Args:
            record: Field values. A caller-supplied ``id`` is kept.

        Returns:
            The id of the new record.

        Raises:
            Conflict: If a record with the supplied id already exists.
        """
        now = self.store.timestamp()
        data = {**_payload(record), "created_at": now, "updated_at": now}
        values: dict[str, Any] = {"data": data}
        record_id = record.get("id")
        if record_id is not None:
            values["id"] = record_id

        async with self._writing() as conn:
            if record_id is not None and await self._fetch(conn, record_id) is not None:
                raise Conflict(self.name, record_id)
            result = await conn.execute(sa.insert(self._table).values(**values))
            return result.inserted_primary_key[0]

    async def update(self, record_id: int, changes: Mapping[str, Any]) -> Record:
        """Shallow-merge ``changes`` into a record.

        Returns:
            The updated record.

        Raises:
            NotFound: If no record has this id.
        """
        async with self._writing() as conn:
            row = await self._fetch(conn, record_id)
            if row is None:
                raise NotFound(self.name, record_id)
            data = {**row.data, **_payload(changes), "updated_at": self.store.timestamp()}
            await conn.execute(
                sa.update(self._table).where(self._table.c.id == record_id).values(data=data)
            )
        return {"id": record_id, **data}

    async def delete(self, record_id: int) -> None:
        """Hard delete a record.

        Raises:
            NotFound: If no record has this id.
        """
        async with self._writing() as conn:
            result = await conn.execute(sa.delete(self._table).where(self._table.c.id == record_id))
            if result.rowcount == 0:
                raise NotFound(self.name, record_id)

    async def get(self, record_id: int) -> Record | None:
        async with self._reading() as conn:
            row = await self._fetch(conn, record_id)
        return row_to_record(row) if row is not None else None

    async def query(
        self,
        index: str,
        lower: Any = None,
        upper: Any = None,
        *,
        reverse: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        """Range query over a declared index, bounds inclusive.

        Args:
            index: Index name, e.g. ``date`` or ``passage_id+date``.
            lower: Lower bound, a tuple for compound indexes. None for open.
            upper: Upper bound, a tuple for compound indexes. None for open.
            reverse: Return records in descending index order.
            limit: Maximum number of records.

        Returns:
            Records ordered by the index, then by id.

        Raises:
            SchemaError: If the index is not declared for this table.
        """
        spec = self.spec.index(index)
        expressions = spec.expressions()
        key = expressions[0] if not spec.compound else sa.tuple_(*expressions)

        stmt = sa.select(self._table)
        if lower is not None:
            stmt = stmt.where(key >= _bound(spec.fields, lower))
        if upper is not None:
            stmt = stmt.where(key <= _bound(spec.fields, upper))

        ordering = [*expressions, self._table.c.id]
        stmt = stmt.order_by(*(col.desc() if reverse else col.asc() for col in ordering))
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._reading() as conn:
            result = await conn.execute(stmt)
            return [row_to_record(row) for row in result]

    async def where_equals(self, index: str, value: Any) -> list[Record]:
        return await self.query(index, value, value)

    async def all(self) -> list[Record]:
        async with self._reading() as conn:
            result = await conn.execute(sa.select(self._table).order_by(self._table.c.id))
            return [row_to_record(row) for row in result]

    async def first(self) -> Record | None:
        async with self._reading() as conn:
            result = await conn.execute(
                sa.select(self._table).order_by(self._table.c.id).limit(1)
            )
            row = result.first()
        return row_to_record(row) if row is not None else None

    async def count(self) -> int:
        async with self._reading() as conn:
            result = await conn.execute(sa.select(sa.func.count()).select_from(self._table))
            return result.scalar_one()

    async def bulk_insert(self, records: Iterable[Mapping[str, Any]]) -> list[int]:
        """Insert records verbatim, keeping ids and timestamps as given.

        Raises:
            Conflict: If a supplied id is already taken.
        """
        ids: list[int] = []
        async with self._writing() as conn:
            for record in records:
                values: dict[str, Any] = {
                    "data": {key: value for key, value in record.items() if key != "id"}
                }
                if record.get("id") is not None:
                    values["id"] = record["id"]
                try:
                    result = await conn.execute(sa.insert(self._table).values(**values))
                except IntegrityError as exc:
                    raise Conflict(self.name, record.get("id")) from exc
                ids.append(result.inserted_primary_key[0])
        return ids

    async def clear(self) -> int:
        """Delete every record. Returns the number removed."""
        async with self._writing() as conn:
            result = await conn.execute(sa.delete(self._table))
            return result.rowcount


class StoreTransaction:
    """Tables bound to one connection inside ``EntityStore.transaction()``."""

    def __init__(self, store: "EntityStore", connection: AsyncConnection):
        self.store = store
        self.connection = connection

    def table(self, name: str) -> Table:
        return Table(self.store, self.store.spec(name), self.connection)


class EntityStore:
    """Client-local store of structured entities.

    Only obtained through ``open_store()``, after migrations have run.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        tables: Iterable[TableSpec],
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the store.

        Args:
            engine: Async engine of a migrated database.
            tables: Table layout at the current schema version.
            clock: Source of timestamps.
        """
        self.engine = engine
        self.clock = clock
        self.write_lock = asyncio.Lock()
        self._specs = {spec.name: spec for spec in tables}

    @property
    def table_names(self) -> list[str]:
        return list(self._specs)

    def spec(self, name: str) -> TableSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise SchemaError(f"Unknown table: {name}") from None

    def table(self, name: str) -> Table:
        return Table(self, self.spec(name))

    def timestamp(self) -> str:
        return self.clock().isoformat()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """Multi-table transaction holding the write lock.

        Commits on normal exit and rolls back if the block raises.
        """
        async with self.write_lock:
            async with self.engine.begin() as conn:
                yield StoreTransaction(self, conn)

    async def get_meta(self, key: str, default: Any = None) -> Any:
        async with self.engine.connect() as conn:
            result = await conn.execute(meta_select(key))
            row = result.first()
        return row.value if row is not None else default

    async def set_meta(self, key: str, value: Any) -> None:
        async with self.write_lock:
            async with self.engine.begin() as conn:
                await conn.execute(meta_upsert(key, value))

    async def delete_meta(self, key: str) -> None:
        async with self.write_lock:
            async with self.engine.begin() as conn:
                await conn.execute(meta_delete(key))

    async def pop_upgrade_notice(self) -> dict[str, Any] | None:
        """Return the pending upgrade notice once, then forget it.

        Read and delete share one transaction under the write lock, so
        concurrent callers see the notice at most once between them.
        """
        async with self.write_lock:
            async with self.engine.begin() as conn:
                row = (await conn.execute(meta_select(UPGRADE_NOTICE_KEY))).first()
                if row is None:
                    return None
                await conn.execute(meta_delete(UPGRADE_NOTICE_KEY))
        logger.info(f"Upgrade notice delivered: {row.value}")
        return row.value

    async def close(self) -> None:
        await self.engine.dispose()
