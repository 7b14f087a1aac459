"""Migration step types and the schema they describe."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Union

from logbook.db.schema import IndexSpec, TableSpec

if TYPE_CHECKING:
    from logbook.migrations.engine import MigrationTransaction


@dataclass(frozen=True)
class CreateTable:
    table: str
    indexes: tuple[str, ...] = ()


@dataclass(frozen=True)
class RenameTable:
    old: str
    new: str


@dataclass(frozen=True)
class DropTable:
    table: str


@dataclass(frozen=True)
class CreateIndex:
    table: str
    index: str


@dataclass(frozen=True)
class DropIndex:
    table: str
    index: str


@dataclass(frozen=True)
class TransformRows:
    """Run ``apply`` against the migration transaction.

    ``apply`` must be idempotent.
    """

    description: str
    apply: Callable[["MigrationTransaction"], None]


@dataclass(frozen=True)
class SeedDefaults:
    """Replace the contents of ``tables`` with a seed set.

    Skipped when ``guard`` (defaults to the first table) already has rows.
    ``seed`` of None only clears.
    """

    tables: tuple[str, ...]
    seed: Callable[["MigrationTransaction"], None] | None = None
    guard: str | None = None

    @property
    def guard_table(self) -> str:
        return self.guard or self.tables[0]


Step = Union[CreateTable, RenameTable, DropTable, CreateIndex, DropIndex, TransformRows, SeedDefaults]

STRUCTURAL_STEPS = (CreateTable, RenameTable, DropTable, CreateIndex, DropIndex)


@dataclass(frozen=True)
class Migration:
    """One schema version and the ordered changes that reach it.

    Attributes:
        version: Target schema version.
        changes: Steps applied in order inside one transaction.
        notify: Ask the UI to show a one-time upgrade notice.
        description: Human readable summary for logs.
    """

    version: int
    changes: tuple[Step, ...] = field(default_factory=tuple)
    notify: bool = False
    description: str = ""

    @property
    def structural(self) -> bool:
        return any(isinstance(step, STRUCTURAL_STEPS) for step in self.changes)


def fold_step(schema: Mapping[str, TableSpec], step: Step) -> dict[str, TableSpec]:
    """Return the table layout after ``step``.

    Raises:
        ValueError: If the step does not fit the current layout.
    """
    tables = dict(schema)
    if isinstance(step, CreateTable):
        if step.table in tables:
            raise ValueError(f"Table '{step.table}' already exists")
        tables[step.table] = TableSpec(
            step.table, tuple(IndexSpec.parse(name) for name in step.indexes)
        )
    elif isinstance(step, RenameTable):
        spec = _require(tables, step.old)
        if step.new in tables:
            raise ValueError(f"Table '{step.new}' already exists")
        del tables[step.old]
        tables[step.new] = replace(spec, name=step.new)
    elif isinstance(step, DropTable):
        _require(tables, step.table)
        del tables[step.table]
    elif isinstance(step, CreateIndex):
        spec = _require(tables, step.table)
        if spec.has_index(step.index):
            raise ValueError(f"Index '{step.index}' already exists on '{step.table}'")
        tables[step.table] = replace(spec, indexes=(*spec.indexes, IndexSpec.parse(step.index)))
    elif isinstance(step, DropIndex):
        spec = _require(tables, step.table)
        if not spec.has_index(step.index):
            raise ValueError(f"Index '{step.index}' does not exist on '{step.table}'")
        tables[step.table] = replace(
            spec, indexes=tuple(ix for ix in spec.indexes if ix.name != step.index)
        )
    return tables


def build_schema(migrations: tuple[Migration, ...], version: int | None = None) -> dict[str, TableSpec]:
    """Fold the structural steps of ``migrations`` up to ``version``."""
    tables: dict[str, TableSpec] = {}
    for migration in migrations:
        if version is not None and migration.version > version:
            break
        for step in migration.changes:
            tables = fold_step(tables, step)
    return tables


def _require(tables: Mapping[str, TableSpec], name: str) -> TableSpec:
    if name not in tables:
        raise ValueError(f"Table '{name}' does not exist")
    return tables[name]
