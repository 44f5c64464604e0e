"""Tests for the pull engine."""

import pytest

from table_sync.connectors.base import Eq
from table_sync.connectors.sqlite import SQLiteTable
from table_sync.core.checkpoint import Checkpoint, CheckpointFields
from table_sync.core.pull import PullEngine

from conftest import FakeClock


async def _insert(table: SQLiteTable, *ids: str) -> None:
    for id_ in ids:
        await table.insert({"id": id_, "name": f"human-{id_}", "age": 30})


class TestPullEngine:
    """Tests for PullEngine class."""

    @pytest.mark.asyncio
    async def test_pull_from_start(self, humans: SQLiteTable, fields: CheckpointFields) -> None:
        """No checkpoint pulls the oldest rows first."""
        await _insert(humans, "1", "2")
        engine = PullEngine(humans, fields)

        event = await engine.pull(None, batch_size=10)

        assert [d["id"] for d in event.documents] == ["1", "2"]
        assert event.checkpoint == Checkpoint(humans.clock(), "2")

    @pytest.mark.asyncio
    async def test_tie_break_on_primary_key(
        self,
        humans: SQLiteTable,
        fields: CheckpointFields,
    ) -> None:
        """Rows sharing a timestamp are split across batches without skips."""
        await _insert(humans, "1", "2", "3")
        engine = PullEngine(humans, fields)
        modified = humans.clock()

        first = await engine.pull(None, batch_size=1)
        second = await engine.pull(first.checkpoint, batch_size=1)
        third = await engine.pull(second.checkpoint, batch_size=1)

        assert first.checkpoint == Checkpoint(modified, "1")
        assert [d["id"] for d in second.documents] == ["2"]
        assert [d["id"] for d in third.documents] == ["3"]

    @pytest.mark.asyncio
    async def test_at_tip_returns_same_checkpoint(
        self,
        humans: SQLiteTable,
        fields: CheckpointFields,
    ) -> None:
        await _insert(humans, "1")
        engine = PullEngine(humans, fields)
        event = await engine.pull(None, batch_size=5)

        again = await engine.pull(event.checkpoint, batch_size=5)

        assert again.documents == []
        assert again.checkpoint == event.checkpoint

    @pytest.mark.asyncio
    async def test_empty_table(self, humans: SQLiteTable, fields: CheckpointFields) -> None:
        event = await PullEngine(humans, fields).pull(None, batch_size=5)
        assert event.documents == []
        assert event.checkpoint is None

    @pytest.mark.asyncio
    async def test_newer_rows_after_checkpoint(
        self,
        humans: SQLiteTable,
        clock: FakeClock,
        fields: CheckpointFields,
    ) -> None:
        """A later write with a lower key still sorts after the checkpoint."""
        await _insert(humans, "5")
        engine = PullEngine(humans, fields)
        event = await engine.pull(None, batch_size=5)

        clock.now = "2024-01-02T00:00:00.000000+00:00"
        await _insert(humans, "1")
        event = await engine.pull(event.checkpoint, batch_size=5)

        assert [d["id"] for d in event.documents] == ["1"]
        assert event.checkpoint == Checkpoint(clock.now, "1")

    @pytest.mark.asyncio
    async def test_soft_deleted_rows_are_pulled(
        self,
        humans: SQLiteTable,
        fields: CheckpointFields,
    ) -> None:
        await humans.insert({"id": "1", "name": "Gone", "age": 1, "_deleted": True})
        event = await PullEngine(humans, fields).pull(None, batch_size=5)
        assert event.documents[0]["_deleted"] is True

    @pytest.mark.asyncio
    async def test_soft_delete_after_checkpoint_is_pulled(
        self,
        humans: SQLiteTable,
        clock: FakeClock,
        fields: CheckpointFields,
    ) -> None:
        """Flagging a row as deleted moves it past the checkpoint again."""
        await _insert(humans, "1")
        engine = PullEngine(humans, fields)
        event = await engine.pull(None, batch_size=5)
        assert event.documents[0]["_deleted"] is False

        clock.now = "2024-01-02T00:00:00.000000+00:00"
        assert await humans.update({"_deleted": True}, Eq("id", "1")) == 1
        event = await engine.pull(event.checkpoint, batch_size=5)

        assert [d["id"] for d in event.documents] == ["1"]
        assert event.documents[0]["_deleted"] is True
        assert event.checkpoint == Checkpoint(clock.now, "1")

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, humans: SQLiteTable, fields: CheckpointFields) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            await PullEngine(humans, fields).pull(None, batch_size=0)


class TestIterChanges:
    """Tests for PullEngine.iter_changes()."""

    @pytest.mark.asyncio
    async def test_full_pass_without_duplicates(
        self,
        humans: SQLiteTable,
        clock: FakeClock,
        fields: CheckpointFields,
    ) -> None:
        """Checkpoints increase and every row is seen exactly once."""
        for day in range(1, 4):
            clock.now = f"2024-01-0{day}T00:00:00.000000+00:00"
            await _insert(humans, f"{day}a", f"{day}b", f"{day}c")

        events = [e async for e in PullEngine(humans, fields).iter_changes(None, batch_size=2)]

        ids = [d["id"] for e in events for d in e.documents]
        assert len(ids) == 9
        assert len(set(ids)) == 9
        checkpoints = [e.checkpoint for e in events]
        assert checkpoints == sorted(checkpoints)
        assert len(events) == 5

    @pytest.mark.asyncio
    async def test_exact_multiple_ends_on_empty_batch(
        self,
        humans: SQLiteTable,
        fields: CheckpointFields,
    ) -> None:
        await _insert(humans, "1", "2")
        events = [e async for e in PullEngine(humans, fields).iter_changes(None, batch_size=1)]
        assert [e.documents[0]["id"] for e in events] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_nothing_to_pull(self, humans: SQLiteTable, fields: CheckpointFields) -> None:
        events = [e async for e in PullEngine(humans, fields).iter_changes(None, batch_size=3)]
        assert events == []
