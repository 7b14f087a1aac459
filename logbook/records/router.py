"""Generic record CRUD API routes."""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Query, status

from logbook.db.store import Record, Table
from logbook.dependencies import Store
from logbook.errors import Conflict, NotFound, SchemaError
from logbook.records.service import clear_log_data

logger = logging.getLogger(__name__)

router = APIRouter()


def _table(store: Store, name: str) -> Table:
    try:
        return store.table(name)
    except SchemaError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _parse_bound(value: str | None) -> Any:
    """Read a query bound as JSON, falling back to the raw string.

    ``5`` is a number, ``"5"`` a string, ``[3, "2024-05-01"]`` a compound key.
    """
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return value
    return tuple(parsed) if isinstance(parsed, list) else parsed


@router.post("/clear-log-data")
async def clear_logs(store: Store) -> dict[str, int]:
    """Delete all log entries and passages.

    Returns:
        Number of removed records per table.
    """
    return await clear_log_data(store)


@router.get("/{table}")
async def list_records(table: str, store: Store) -> list[Record]:
    """List all records of a table in id order."""
    return await _table(store, table).all()


@router.post("/{table}", status_code=status.HTTP_201_CREATED)
async def create_record(
    table: str, store: Store, record: Annotated[dict[str, Any], Body()]
) -> Record:
    """Create a record.

    Args:
        table: Table name.
        store: Entity store.
        record: Field values; ``id`` is optional.

    Returns:
        The stored record.
    """
    target = _table(store, table)
    try:
        record_id = await target.insert(record)
    except Conflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return await target.get(record_id)


@router.get("/{table}/query")
async def query_records(
    table: str,
    store: Store,
    index: Annotated[str, Query(description="Index name, e.g. date or passage_id+date")],
    lower: Annotated[str | None, Query(description="Inclusive lower bound (JSON)")] = None,
    upper: Annotated[str | None, Query(description="Inclusive upper bound (JSON)")] = None,
    reverse: bool = False,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[Record]:
    """Range query over a table index.

    Returns:
        Matching records ordered by the index.
    """
    try:
        return await _table(store, table).query(
            index, _parse_bound(lower), _parse_bound(upper), reverse=reverse, limit=limit
        )
    except SchemaError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{table}/{record_id}")
async def get_record(table: str, record_id: int, store: Store) -> Record:
    """Get one record."""
    record = await _table(store, table).get(record_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{table} record {record_id} not found",
        )
    return record


@router.patch("/{table}/{record_id}")
async def update_record(
    table: str, record_id: int, store: Store, changes: Annotated[dict[str, Any], Body()]
) -> Record:
    """Merge changes into a record."""
    try:
        return await _table(store, table).update(record_id, changes)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/{table}/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_record(table: str, record_id: int, store: Store) -> None:
    """Delete a record."""
    try:
        await _table(store, table).delete(record_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
