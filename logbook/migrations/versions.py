"""The shipped schema version chain.

Append new migrations at the end; released versions are never edited.
"""

from logbook.migrations.engine import MigrationTransaction
from logbook.migrations.seeds import seed_storage_layout
from logbook.migrations.steps import (
    CreateIndex,
    CreateTable,
    DropIndex,
    Migration,
    SeedDefaults,
    TransformRows,
)

STORAGE_LAYOUT_TABLES = ("storage_areas", "storage_sections")


def _clear_flat_storage(tx: MigrationTransaction) -> None:
    # v6 sections had no area; nothing user-entered could be kept
    tx.clear("storage_items")
    tx.clear("storage_sections")


def _reset_storage_layout() -> SeedDefaults:
    """Clear-only layout reset, superseded by the seed in v13."""
    return SeedDefaults(STORAGE_LAYOUT_TABLES, guard="storage_items")


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        1,
        (
            CreateTable("vessel", ("name", "flag", "mmsi")),
            CreateTable(
                "crew",
                ("last_name", "first_name", "role", "is_active", "on_board_from", "on_board_to"),
            ),
            CreateTable(
                "log_entries",
                ("date", "time", "departure_port", "destination_port", "watch_officer"),
            ),
            CreateTable(
                "passages",
                ("departure_port", "arrival_port", "departure_date", "arrival_date", "customs_cleared"),
            ),
            CreateTable("maintenance", ("date", "category", "engine_hours_at_service")),
            CreateTable("settings"),
            CreateTable("watches", ("date", "watch_officer")),
            CreateTable("checklists", ("date", "type")),
        ),
        description="Initial tables",
    ),
    Migration(2, (CreateIndex("log_entries", "date+time"),), description="Log entries by date and time"),
    Migration(
        3,
        (
            CreateIndex("log_entries", "passage_id"),
            DropIndex("log_entries", "departure_port"),
            DropIndex("log_entries", "destination_port"),
        ),
        description="Log entries belong to passages",
    ),
    Migration(4, (CreateIndex("maintenance", "status"),), description="Maintenance status"),
    Migration(
        5,
        (CreateIndex("log_entries", "passage_id+date"),),
        notify=True,
        description="Per-passage date range index",
    ),
    Migration(
        6,
        (
            CreateTable("storage_sections", ("order",)),
            CreateTable("storage_items", ("section_id", "category", "expiry_date")),
        ),
        description="Flat storage plan",
    ),
    Migration(
        7,
        (
            CreateTable("storage_areas", ("order",)),
            CreateIndex("storage_sections", "area_id"),
            CreateIndex("storage_items", "area_id"),
            TransformRows("drop flat storage sections", _clear_flat_storage),
        ),
        description="Storage areas and sections",
    ),
    Migration(8, (_reset_storage_layout(),), description="Reset storage layout"),
    Migration(9, (_reset_storage_layout(),), description="Reset storage layout"),
    Migration(10, (_reset_storage_layout(),), description="Reset storage layout"),
    Migration(11, (_reset_storage_layout(),), description="Reset storage layout"),
    Migration(12, (_reset_storage_layout(),), description="Reset storage layout"),
    Migration(
        13,
        (SeedDefaults(STORAGE_LAYOUT_TABLES, seed=seed_storage_layout, guard="storage_items"),),
        description="Default storage layout",
    ),
)

LATEST_VERSION = MIGRATIONS[-1].version
