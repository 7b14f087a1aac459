"""Schema migrations."""

from logbook.migrations.engine import MigrationEngine, MigrationReport, MigrationTransaction
from logbook.migrations.steps import (
    CreateIndex,
    CreateTable,
    DropIndex,
    DropTable,
    Migration,
    RenameTable,
    SeedDefaults,
    TransformRows,
)
from logbook.migrations.versions import LATEST_VERSION, MIGRATIONS

__all__ = [
    "LATEST_VERSION",
    "MIGRATIONS",
    "CreateIndex",
    "CreateTable",
    "DropIndex",
    "DropTable",
    "Migration",
    "MigrationEngine",
    "MigrationReport",
    "MigrationTransaction",
    "RenameTable",
    "SeedDefaults",
    "TransformRows",
]
