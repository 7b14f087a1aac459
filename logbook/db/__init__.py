"""Database module."""

from logbook.db.schema import IndexSpec, TableSpec
from logbook.db.store import EntityStore, Record, StoreTransaction, Table

__all__ = ["EntityStore", "IndexSpec", "Record", "StoreTransaction", "Table", "TableSpec"]
