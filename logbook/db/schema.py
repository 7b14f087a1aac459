"""Table and index descriptors, and the SQL shapes behind them.

Every entity table has the same physical layout: an integer primary key and a
JSON document holding the rest of the record. Secondary indexes are SQLite
expression indexes over ``json_extract(data, '$.<field>')``; compound indexes
list several fields and are named by joining them with ``+``.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from logbook.errors import SchemaError

META_TABLE = "store_meta"
SCHEMA_VERSION_KEY = "schema_version"
UPGRADE_NOTICE_KEY = "upgrade_notice"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(value: str, kind: str) -> str:
    if not _IDENTIFIER.match(value):
        raise SchemaError(f"Invalid {kind} name: {value!r}")
    return value


@dataclass(frozen=True)
class IndexSpec:
    """A secondary index over one or more record fields."""

    fields: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.fields:
            raise SchemaError("An index needs at least one field")
        for name in self.fields:
            _check_identifier(name, "field")

    @classmethod
    def parse(cls, name: str) -> "IndexSpec":
        """Build an index from its ``field`` or ``field+field`` name."""
        return cls(tuple(name.split("+")))

    @property
    def name(self) -> str:
        return "+".join(self.fields)

    @property
    def compound(self) -> bool:
        return len(self.fields) > 1

    def sql_name(self, table: str) -> str:
        return f"ix_{table}_{'_'.join(self.fields)}"

    def expressions(self) -> list[sa.ColumnElement[Any]]:
        """SQL expressions in the exact form used by the index definition."""
        return [field_expression(name) for name in self.fields]


@dataclass(frozen=True)
class TableSpec:
    """A table name plus its declared indexes."""

    name: str
    indexes: tuple[IndexSpec, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        _check_identifier(self.name, "table")

    def index(self, name: str) -> IndexSpec:
        """Look up a declared index by name.

        Raises:
            SchemaError: If the table declares no such index.
        """
        for spec in self.indexes:
            if spec.name == name:
                return spec
        raise SchemaError(f"Table '{self.name}' has no index '{name}'")

    def has_index(self, name: str) -> bool:
        return any(spec.name == name for spec in self.indexes)


def field_expression(name: str) -> sa.ColumnElement[Any]:
    """``json_extract`` over one record field.

    Rendered as literal SQL so queries match the expression index verbatim.
    """
    _check_identifier(name, "field")
    return sa.literal_column(f"json_extract(data, '$.{name}')")


@lru_cache(maxsize=None)
def record_table(name: str) -> sa.Table:
    """SQLAlchemy table object for an entity table."""
    _check_identifier(name, "table")
    return sa.Table(
        name,
        sa.MetaData(),
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("data", sa.JSON, nullable=False),
        sqlite_autoincrement=True,
    )


_meta_metadata = sa.MetaData()

meta_table = sa.Table(
    META_TABLE,
    _meta_metadata,
    sa.Column("key", sa.String(64), primary_key=True),
    sa.Column("value", sa.JSON, nullable=True),
)


def meta_select(key: str) -> sa.Select:
    return sa.select(meta_table.c.value).where(meta_table.c.key == key)


def meta_upsert(key: str, value: Any) -> sa.Insert:
    stmt = sqlite_insert(meta_table).values(key=key, value=value)
    return stmt.on_conflict_do_update(index_elements=[meta_table.c.key], set_={"value": value})


def meta_delete(key: str) -> sa.Delete:
    return sa.delete(meta_table).where(meta_table.c.key == key)
