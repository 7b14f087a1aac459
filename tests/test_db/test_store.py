"""Tests for the entity store."""

import asyncio

import pytest

from logbook.db.schema import UPGRADE_NOTICE_KEY
from logbook.db.store import EntityStore
from logbook.errors import Conflict, NotFound, SchemaError


class TestInsert:
    """Test record creation."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_timestamps(self, store: EntityStore, clock):
        """Test that insert returns an id and stamps both timestamps."""
        crew = store.table("crew")

        record_id = await crew.insert({"first_name": "Anna", "last_name": "Berg"})
        record = await crew.get(record_id)

        assert record["id"] == record_id
        assert record["first_name"] == "Anna"
        assert record["created_at"] == clock.now.isoformat()
        assert record["updated_at"] == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_insert_discards_caller_timestamps(self, store: EntityStore, clock):
        """Test that callers cannot set timestamps."""
        crew = store.table("crew")

        record_id = await crew.insert({"first_name": "Anna", "created_at": "1999-01-01T00:00:00"})
        record = await crew.get(record_id)

        assert record["created_at"] == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_ids_are_unique_and_increasing(self, store: EntityStore):
        """Test that ids are assigned in increasing order."""
        vessel = store.table("vessel")

        first = await vessel.insert({"name": "Wanderer"})
        second = await vessel.insert({"name": "Seeschwalbe"})

        assert second > first

    @pytest.mark.asyncio
    async def test_ids_not_reused_after_delete(self, store: EntityStore):
        """Test that a deleted id is not handed out again."""
        vessel = store.table("vessel")
        first = await vessel.insert({"name": "Wanderer"})
        await vessel.delete(first)

        second = await vessel.insert({"name": "Wanderer II"})

        assert second != first

    @pytest.mark.asyncio
    async def test_insert_with_existing_id_conflicts(self, store: EntityStore):
        """Test that inserting a taken id raises Conflict."""
        vessel = store.table("vessel")
        await vessel.insert({"id": 7, "name": "Wanderer"})

        with pytest.raises(Conflict) as exc_info:
            await vessel.insert({"id": 7, "name": "Other"})

        assert exc_info.value.record_id == 7
        assert (await vessel.get(7))["name"] == "Wanderer"


class TestUpdateDelete:
    """Test record updates and deletion."""

    @pytest.mark.asyncio
    async def test_update_merges_and_restamps(self, store: EntityStore, clock):
        """Test that update merges fields and only moves updated_at."""
        crew = store.table("crew")
        record_id = await crew.insert({"first_name": "Anna", "role": "crew"})
        created = clock.now.isoformat()
        clock.advance(hours=2)

        updated = await crew.update(record_id, {"role": "skipper", "id": 99, "created_at": "x"})
        stored = await crew.get(record_id)

        assert updated == stored
        assert stored["id"] == record_id
        assert stored["first_name"] == "Anna"
        assert stored["role"] == "skipper"
        assert stored["created_at"] == created
        assert stored["updated_at"] == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, store: EntityStore):
        """Test that updating a missing record raises NotFound."""
        with pytest.raises(NotFound):
            await store.table("crew").update(404, {"role": "skipper"})

    @pytest.mark.asyncio
    async def test_delete_is_hard(self, store: EntityStore):
        """Test that deleted records are gone."""
        crew = store.table("crew")
        record_id = await crew.insert({"first_name": "Anna"})

        await crew.delete(record_id)

        assert await crew.get(record_id) is None
        assert await crew.count() == 0

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, store: EntityStore):
        """Test that deleting a missing record raises NotFound."""
        with pytest.raises(NotFound):
            await store.table("crew").delete(404)


class TestQuery:
    """Test indexed range queries."""

    @pytest.mark.asyncio
    async def test_range_is_inclusive_and_ordered(self, store: EntityStore):
        """Test that bounds are inclusive and results follow the index."""
        entries = store.table("log_entries")
        for date in ["2025-05-03", "2025-05-01", "2025-05-05", "2025-05-02"]:
            await entries.insert({"date": date, "time": "12:00"})

        result = await entries.query("date", "2025-05-02", "2025-05-03")

        assert [r["date"] for r in result] == ["2025-05-02", "2025-05-03"]

    @pytest.mark.asyncio
    async def test_open_bounds_reverse_and_limit(self, store: EntityStore):
        """Test open ranges with reverse order and a limit."""
        entries = store.table("log_entries")
        for date in ["2025-05-01", "2025-05-02", "2025-05-03"]:
            await entries.insert({"date": date})

        result = await entries.query("date", reverse=True, limit=2)

        assert [r["date"] for r in result] == ["2025-05-03", "2025-05-02"]

    @pytest.mark.asyncio
    async def test_ties_are_ordered_by_id(self, store: EntityStore):
        """Test that equal keys come back in id order."""
        entries = store.table("log_entries")
        first = await entries.insert({"date": "2025-05-01", "time": "10:00"})
        second = await entries.insert({"date": "2025-05-01", "time": "08:00"})

        result = await entries.where_equals("date", "2025-05-01")

        assert [r["id"] for r in result] == [first, second]

    @pytest.mark.asyncio
    async def test_compound_index_range(self, store: EntityStore):
        """Test a per-passage date range over a compound index."""
        entries = store.table("log_entries")
        await entries.insert({"passage_id": 1, "date": "2025-05-01"})
        await entries.insert({"passage_id": 1, "date": "2025-05-04"})
        await entries.insert({"passage_id": 1, "date": "2025-05-09"})
        await entries.insert({"passage_id": 2, "date": "2025-05-02"})

        result = await entries.query("passage_id+date", (1, "2025-05-01"), (1, "2025-05-05"))

        assert [(r["passage_id"], r["date"]) for r in result] == [
            (1, "2025-05-01"),
            (1, "2025-05-04"),
        ]

    @pytest.mark.asyncio
    async def test_compound_bound_must_match_fields(self, store: EntityStore):
        """Test that a scalar bound on a compound index is rejected."""
        with pytest.raises(SchemaError):
            await store.table("log_entries").query("date+time", "2025-05-01")

    @pytest.mark.asyncio
    async def test_dropped_index_is_not_queryable(self, store: EntityStore):
        """Test that an index removed by a migration raises SchemaError."""
        with pytest.raises(SchemaError):
            await store.table("log_entries").query("departure_port", "Kiel", "Kiel")

    @pytest.mark.asyncio
    async def test_unknown_table(self, store: EntityStore):
        """Test that unknown tables raise SchemaError."""
        with pytest.raises(SchemaError):
            store.table("sails")


class TestBulkAndTransactions:
    """Test bulk operations and multi-table transactions."""

    @pytest.mark.asyncio
    async def test_bulk_insert_preserves_ids_and_timestamps(self, store: EntityStore):
        """Test that bulk insert stores records verbatim."""
        crew = store.table("crew")
        records = [
            {"id": 5, "first_name": "Anna", "created_at": "2024-01-01T00:00:00+00:00",
             "updated_at": "2024-02-01T00:00:00+00:00"},
            {"id": 9, "first_name": "Ben", "created_at": "2024-03-01T00:00:00+00:00",
             "updated_at": "2024-03-01T00:00:00+00:00"},
        ]

        ids = await crew.bulk_insert(records)

        assert ids == [5, 9]
        assert await crew.all() == records

    @pytest.mark.asyncio
    async def test_clear_returns_removed_count(self, store: EntityStore):
        """Test that clear empties the table."""
        crew = store.table("crew")
        await crew.insert({"first_name": "Anna"})
        await crew.insert({"first_name": "Ben"})

        assert await crew.clear() == 2
        assert await crew.count() == 0
        assert await crew.first() is None

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, store: EntityStore):
        """Test that a failing transaction leaves every table unchanged."""
        await store.table("vessel").insert({"name": "Wanderer"})

        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                await tx.table("vessel").clear()
                await tx.table("crew").insert({"first_name": "Anna"})
                raise RuntimeError("interrupted")

        assert await store.table("vessel").count() == 1
        assert await store.table("crew").count() == 0

    @pytest.mark.asyncio
    async def test_transaction_commits(self, store: EntityStore):
        """Test that a completed transaction is visible afterwards."""
        async with store.transaction() as tx:
            await tx.table("passages").insert({"departure_port": "Kiel"})
            await tx.table("log_entries").insert({"date": "2025-05-01"})

        assert await store.table("passages").count() == 1
        assert await store.table("log_entries").count() == 1


class TestMeta:
    """Test store metadata."""

    @pytest.mark.asyncio
    async def test_meta_round_trip(self, store: EntityStore):
        """Test setting, overwriting and deleting a meta value."""
        assert await store.get_meta("backup_destination") is None

        await store.set_meta("backup_destination", {"path": "/tmp/a", "label": "a"})
        await store.set_meta("backup_destination", {"path": "/tmp/b", "label": "b"})
        assert await store.get_meta("backup_destination") == {"path": "/tmp/b", "label": "b"}

        await store.delete_meta("backup_destination")
        assert await store.get_meta("backup_destination", "unset") == "unset"

    @pytest.mark.asyncio
    async def test_fresh_store_has_no_upgrade_notice(self, store: EntityStore):
        """Test that a new install does not announce an upgrade."""
        assert await store.pop_upgrade_notice() is None

    @pytest.mark.asyncio
    async def test_upgrade_notice_delivered_once_to_concurrent_callers(self, store: EntityStore):
        """Test that simultaneous readers share a single delivery of the notice."""
        await store.set_meta(UPGRADE_NOTICE_KEY, {"from_version": 4, "to_version": 13})

        results = await asyncio.gather(*(store.pop_upgrade_notice() for _ in range(5)))

        assert [r for r in results if r is not None] == [{"from_version": 4, "to_version": 13}]
        assert await store.get_meta(UPGRADE_NOTICE_KEY) is None
