"""Tests for the migration engine."""

import pytest
import sqlalchemy as sa

from logbook.db.database import create_engine, open_store
from logbook.errors import MigrationFailure, SchemaError
from logbook.migrations import (
    LATEST_VERSION,
    MIGRATIONS,
    CreateIndex,
    CreateTable,
    DropIndex,
    DropTable,
    Migration,
    MigrationEngine,
    RenameTable,
    SeedDefaults,
    TransformRows,
)


async def table_names(engine) -> set[str]:
    async with engine.connect() as conn:
        return set(await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_table_names()))


def fail(tx) -> None:
    raise RuntimeError("disk on fire")


class TestChainValidation:
    """Test version chain checks."""

    def test_versions_must_increase(self):
        """Test that a repeated version is rejected."""
        with pytest.raises(ValueError):
            MigrationEngine([Migration(1, (CreateTable("a"),)), Migration(1, (CreateTable("b"),))])

    def test_versions_must_not_go_back(self):
        """Test that a decreasing version is rejected."""
        with pytest.raises(ValueError):
            MigrationEngine([Migration(2, (CreateTable("a"),)), Migration(1, (CreateTable("b"),))])

    def test_structural_steps_must_fit(self):
        """Test that an index on a missing table is rejected up front."""
        with pytest.raises(ValueError):
            MigrationEngine([Migration(1, (CreateIndex("a", "date"),))])

    def test_shipped_chain_is_valid(self):
        """Test that the shipped chain builds the full layout."""
        engine = MigrationEngine(MIGRATIONS)

        assert engine.latest == LATEST_VERSION == 13
        assert set(engine.schema) == {
            "vessel", "crew", "log_entries", "passages", "maintenance", "settings",
            "watches", "checklists", "storage_areas", "storage_sections", "storage_items",
        }


class TestFreshInstall:
    """Test migrating an empty database."""

    @pytest.mark.asyncio
    async def test_fresh_store_reaches_latest(self, db_url):
        """Test that all versions are applied to a new database."""
        engine = create_engine(db_url)
        try:
            report = await MigrationEngine(MIGRATIONS).run(engine)

            assert report.from_version == 0
            assert report.to_version == LATEST_VERSION
            assert report.applied == tuple(range(1, LATEST_VERSION + 1))
            assert report.notice is False
            assert await MigrationEngine(MIGRATIONS).current_version(engine) == LATEST_VERSION
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_fresh_store_seeds_storage_layout(self, store):
        """Test that the default storage plan is present."""
        assert await store.table("storage_areas").count() == 12
        assert await store.table("storage_sections").count() == 40
        assert await store.table("storage_items").count() == 0

    @pytest.mark.asyncio
    async def test_repeated_runs_are_stable(self, db_url):
        """Test that running the chain again changes nothing."""
        first = await open_store(create_engine(db_url))
        areas = await first.table("storage_areas").all()
        await first.close()

        engine = create_engine(db_url)
        try:
            report = await MigrationEngine(MIGRATIONS).run(engine)
        finally:
            await engine.dispose()
        second = await open_store(create_engine(db_url))
        try:
            assert report.applied == ()
            assert await second.table("storage_areas").all() == areas
            assert await second.table("storage_sections").count() == 40
        finally:
            await second.close()


class TestUpgrades:
    """Test upgrading stores written by earlier versions."""

    @pytest.mark.asyncio
    async def test_upgrade_keeps_records_and_notifies_once(self, db_url):
        """Test an upgrade from v4 keeps data and sets a one-shot notice."""
        old = await open_store(create_engine(db_url), migrations=MIGRATIONS[:4])
        await old.table("log_entries").insert({"date": "2024-07-01", "passage_id": 3})
        await old.close()

        store = await open_store(create_engine(db_url))
        try:
            entries = await store.table("log_entries").query("passage_id+date", (3, "2024-01-01"), (3, "2024-12-31"))
            assert len(entries) == 1
            assert await store.pop_upgrade_notice() == {"from_version": 4, "to_version": LATEST_VERSION}
            assert await store.pop_upgrade_notice() is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_storage_seed_skipped_when_items_exist(self, db_url):
        """Test that the layout seed leaves a used storage plan alone."""
        old = await open_store(create_engine(db_url), migrations=MIGRATIONS[:7])
        area_id = await old.table("storage_areas").insert({"name": "Achterpiek", "order": 1})
        await old.table("storage_items").insert({"area_id": area_id, "name": "Ersatzimpeller"})
        await old.close()

        store = await open_store(create_engine(db_url))
        try:
            areas = await store.table("storage_areas").all()
            assert [a["name"] for a in areas] == ["Achterpiek"]
            assert await store.table("storage_items").count() == 1
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_newer_store_is_refused(self, db_url):
        """Test that a store from a newer build is not opened."""
        store = await open_store(create_engine(db_url))
        await store.close()

        with pytest.raises(MigrationFailure):
            await open_store(create_engine(db_url), migrations=MIGRATIONS[:5])


class TestFailures:
    """Test failing migrations."""

    @pytest.mark.asyncio
    async def test_failed_migration_rolls_back(self, db_url):
        """Test that a failure leaves the store at the last good version."""
        chain = [
            Migration(1, (CreateTable("notes", ("date",)),)),
            Migration(2, (CreateTable("tags"), TransformRows("explode", fail))),
        ]
        engine = create_engine(db_url)
        try:
            with pytest.raises(MigrationFailure) as exc_info:
                await MigrationEngine(chain).run(engine)

            assert exc_info.value.version == 2
            assert await MigrationEngine(chain).current_version(engine) == 1
            tables = await table_names(engine)
            assert "notes" in tables
            assert "tags" not in tables
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_open_store_raises_instead_of_returning(self, db_url):
        """Test that open_store never hands out a half-migrated store."""
        chain = [Migration(1, (TransformRows("explode", fail),))]

        with pytest.raises(MigrationFailure):
            await open_store(create_engine(db_url), migrations=chain)


class TestSteps:
    """Test individual step kinds."""

    @pytest.mark.asyncio
    async def test_rename_table_moves_rows_and_indexes(self, db_url):
        """Test that a renamed table keeps its records and indexes."""
        v1 = [Migration(1, (CreateTable("notes", ("date",)),))]
        old = await open_store(create_engine(db_url), migrations=v1)
        await old.table("notes").insert({"date": "2025-01-02", "text": "Reffen geübt"})
        await old.close()

        chain = [*v1, Migration(2, (RenameTable("notes", "journal"),))]
        store = await open_store(create_engine(db_url), migrations=chain)
        try:
            rows = await store.table("journal").query("date", "2025-01-01", "2025-01-31")
            assert [r["text"] for r in rows] == ["Reffen geübt"]
            with pytest.raises(SchemaError):
                store.table("notes")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_drop_table_and_index(self, db_url):
        """Test dropping a table and an index."""
        chain = [
            Migration(1, (CreateTable("notes", ("date", "kind")), CreateTable("scratch"))),
            Migration(2, (DropIndex("notes", "kind"), DropTable("scratch"))),
        ]
        store = await open_store(create_engine(db_url), migrations=chain)
        try:
            assert "scratch" not in store.table_names
            with pytest.raises(SchemaError):
                await store.table("notes").query("kind", "a", "z")
            assert "scratch" not in await table_names(store.engine)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_seed_runs_once_and_respects_guard(self, db_url):
        """Test that seeding is skipped when the guard table has rows."""

        def seed(tx):
            tx.bulk_add("colors", [{"name": "red"}, {"name": "blue"}])

        chain = [
            Migration(1, (CreateTable("colors"),)),
            Migration(2, (SeedDefaults(("colors",), seed=seed),)),
            Migration(3, (SeedDefaults(("colors",), seed=seed),)),
        ]
        store = await open_store(create_engine(db_url), migrations=chain)
        try:
            assert await store.table("colors").count() == 2
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_transform_rows(self, db_url, clock):
        """Test a data transform over existing records."""
        v1 = [Migration(1, (CreateTable("crew"),))]
        old = await open_store(create_engine(db_url), migrations=v1)
        await old.table("crew").insert({"name": "Anna Berg"})
        await old.close()

        def split_names(tx):
            for record in tx.rows("crew"):
                if "name" in record:
                    first, _, last = record.pop("name").partition(" ")
                    tx.put("crew", {**record, "first_name": first, "last_name": last})

        chain = [*v1, Migration(2, (TransformRows("split names", split_names),))]
        store = await open_store(create_engine(db_url), migrations=chain, clock=clock)
        try:
            (record,) = await store.table("crew").all()
            assert record["first_name"] == "Anna"
            assert record["last_name"] == "Berg"
            assert "name" not in record
            assert record["updated_at"] == clock.now.isoformat()
        finally:
            await store.close()
