"""Snapshot building, encoding and validation for backup/restore.

Handles conversion between the store's tables and the JSON backup document.
"""

import json
import logging
from typing import Any

from logbook.backup.schemas import FORMAT_VERSION, BackupSnapshot
from logbook.db.store import EntityStore
from logbook.errors import InvalidFormat

logger = logging.getLogger(__name__)

# SQLite INTEGER PRIMARY KEY is a signed 64-bit rowid
MIN_RECORD_ID = -(2**63)
MAX_RECORD_ID = 2**63 - 1


async def serialize(store: EntityStore) -> BackupSnapshot:
    """Read every table in full into one snapshot.

    Args:
        store: Entity store.

    Returns:
        BackupSnapshot stamped with the current format version.
    """
    tables: dict[str, list[dict[str, Any]]] = {}
    for name in store.table_names:
        tables[name] = await store.table(name).all()
    return BackupSnapshot(
        format_version=FORMAT_VERSION,
        exported_at=store.timestamp(),
        tables=tables,
    )


def encode_snapshot(snapshot: BackupSnapshot) -> str:
    """Encode a snapshot as the backup JSON text.

    Args:
        snapshot: Snapshot to encode.

    Returns:
        Pretty-printed JSON with non-ASCII characters kept as-is.
    """
    return json.dumps(snapshot.model_dump(by_alias=True), indent=2, ensure_ascii=False)


def parse_snapshot(text: str | bytes) -> BackupSnapshot:
    """Parse and validate backup JSON.

    Nothing is written; callers may restore the result only after this
    returns.

    Args:
        text: Backup JSON text.

    Returns:
        The validated snapshot.

    Raises:
        InvalidFormat: If the document is not a supported backup.
    """
    try:
        document = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidFormat(f"Backup is not valid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise InvalidFormat("Backup document must be a JSON object")
    if "formatVersion" not in document:
        raise InvalidFormat("Missing 'formatVersion' in backup file")
    if "tables" not in document:
        raise InvalidFormat("Missing 'tables' in backup file")

    version = document["formatVersion"]
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidFormat(f"Invalid format version: {version!r}")
    if not 1 <= version <= FORMAT_VERSION:
        raise InvalidFormat(
            f"Unsupported format version {version}; this build reads up to {FORMAT_VERSION}"
        )

    tables = document["tables"]
    if not isinstance(tables, dict):
        raise InvalidFormat("'tables' must be an object of table name -> records")
    for name, records in tables.items():
        _check_records(name, records)

    exported_at = document.get("exportedAt")
    return BackupSnapshot(
        format_version=version,
        exported_at=exported_at if isinstance(exported_at, str) else "",
        tables=tables,
    )


def _check_records(table: str, records: Any) -> None:
    if not isinstance(records, list):
        raise InvalidFormat(f"Table '{table}' must be a list of records")
    seen: set[int] = set()
    for position, record in enumerate(records):
        if not isinstance(record, dict):
            raise InvalidFormat(f"Record {position} of '{table}' is not an object")
        record_id = record.get("id")
        if record_id is None:
            continue
        if isinstance(record_id, bool) or not isinstance(record_id, int):
            raise InvalidFormat(f"Record {position} of '{table}' has a non-integer id: {record_id!r}")
        if not MIN_RECORD_ID <= record_id <= MAX_RECORD_ID:
            raise InvalidFormat(f"Record {position} of '{table}' has an out of range id: {record_id}")
        if record_id in seen:
            raise InvalidFormat(f"Duplicate id {record_id} in '{table}'")
        seen.add(record_id)
