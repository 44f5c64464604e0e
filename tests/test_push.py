"""Tests for the push engine."""

from typing import Any

import pytest

from table_sync.connectors.base import And, Eq, Is
from table_sync.connectors.sqlite import SQLiteTable
from table_sync.core.push import (
    AmbiguousUpdateError,
    ConditionalUpdateStrategy,
    ConfigurationError,
    InvariantViolationError,
    PushEngine,
    PushRow,
    UnsupportedFieldTypeError,
)

from conftest import FakeClock


async def _seed(table: SQLiteTable, **document: Any) -> dict[str, Any]:
    """Insert a row and return it as the remote store has it."""
    await table.insert({"id": "1", "name": "Alice", "age": 5, **document})
    rows = await table.select(Eq("id", document.get("id", "1")))
    return rows[0]


class TestInsert:
    """Tests for pushing new documents."""

    @pytest.mark.asyncio
    async def test_insert_applied(self, humans: SQLiteTable) -> None:
        engine = PushEngine(humans, "id")

        conflicts = await engine.push_one(PushRow({"id": "1", "name": "Alice", "age": 5}))

        assert conflicts == []
        assert humans.get_row_count() == 1

    @pytest.mark.asyncio
    async def test_duplicate_key_is_conflict(self, humans: SQLiteTable) -> None:
        """The existing remote row is returned, not overwritten."""
        existing = await _seed(humans)
        engine = PushEngine(humans, "id")

        conflicts = await engine.push_one(PushRow({"id": "1", "name": "Mallory", "age": 1}))

        assert conflicts == [existing]
        assert (await engine.fetch_by_primary_key("1"))["name"] == "Alice"


class TestUpdate:
    """Tests for conditional updates."""

    @pytest.mark.asyncio
    async def test_matching_assumed_state(self, humans: SQLiteTable, clock: FakeClock) -> None:
        remote = await _seed(humans)
        clock.now = "2024-02-01T00:00:00.000000+00:00"
        engine = PushEngine(humans, "id")

        conflicts = await engine.push_one(PushRow({**remote, "name": "Alicia"}, remote))

        assert conflicts == []
        row = await engine.fetch_by_primary_key("1")
        assert row["name"] == "Alicia"
        assert row["_modified"] == clock.now

    @pytest.mark.asyncio
    async def test_stale_assumed_state(self, humans: SQLiteTable) -> None:
        remote = await _seed(humans)
        stale = {**remote, "name": "Alice (old)"}
        engine = PushEngine(humans, "id")

        conflicts = await engine.push_one(PushRow({**remote, "name": "Bob"}, stale))

        assert conflicts == [remote]
        assert (await engine.fetch_by_primary_key("1"))["name"] == "Alice"

    @pytest.mark.asyncio
    async def test_null_does_not_match_value(self, humans: SQLiteTable) -> None:
        """age IS NULL must not match a remote age of 5."""
        remote = await _seed(humans)
        assumed = {**remote, "age": None}

        conflicts = await PushEngine(humans, "id").push_one(PushRow({**remote, "age": 6}, assumed))

        assert conflicts == [remote]

    @pytest.mark.asyncio
    async def test_null_matches_null(self, humans: SQLiteTable) -> None:
        remote = await _seed(humans, age=None)

        conflicts = await PushEngine(humans, "id").push_one(PushRow({**remote, "age": 6}, remote))

        assert conflicts == []

    @pytest.mark.asyncio
    async def test_structured_field_rejected(self, humans: SQLiteTable) -> None:
        remote = await _seed(humans)
        assumed = {**remote, "tags": {"a": 1}}

        with pytest.raises(UnsupportedFieldTypeError, match="Unsupported field of type dict: tags"):
            await PushEngine(humans, "id").push_one(PushRow(remote, assumed))

    @pytest.mark.asyncio
    async def test_empty_assumed_state(self, humans: SQLiteTable) -> None:
        await _seed(humans)
        with pytest.raises(ConfigurationError):
            await PushEngine(humans, "id").push_one(PushRow({"id": "1"}, {}))

    @pytest.mark.asyncio
    async def test_ambiguous_update(self, humans: SQLiteTable) -> None:
        await _seed(humans, id="1")
        await _seed(humans, id="2")

        with pytest.raises(AmbiguousUpdateError):
            await PushEngine(humans, "id").push_one(PushRow({"age": 7}, {"age": 5}))

    @pytest.mark.asyncio
    async def test_missing_row_violates_invariant(self, humans: SQLiteTable) -> None:
        """A failed update whose row cannot be found is not a conflict."""
        with pytest.raises(InvariantViolationError):
            await PushEngine(humans, "id").push_one(
                PushRow({"id": "404", "name": "x"}, {"id": "404", "name": "y"})
            )


class TestConditionalUpdateStrategy:
    """Tests for the default update strategy."""

    def test_build_condition(self, humans: SQLiteTable) -> None:
        """Strings and numbers use eq; booleans and null use is."""
        strategy = ConditionalUpdateStrategy(humans)
        where = strategy.build_condition(
            {"id": "1", "age": 5, "score": 1.5, "_deleted": False, "nick": None}
        )
        assert where == And(
            (
                Eq("id", "1"),
                Eq("age", 5),
                Eq("score", 1.5),
                Is("_deleted", False),
                Is("nick", None),
            )
        )

    def test_list_rejected(self, humans: SQLiteTable) -> None:
        with pytest.raises(UnsupportedFieldTypeError) as exc_info:
            ConditionalUpdateStrategy(humans).build_condition({"tags": ["a"]})
        assert exc_info.value.field_name == "tags"

    @pytest.mark.asyncio
    async def test_apply_requires_assumed_state(self, humans: SQLiteTable) -> None:
        with pytest.raises(ValueError):
            await ConditionalUpdateStrategy(humans).apply(PushRow({"id": "1"}))


class TestCustomStrategy:
    """Tests for pluggable update strategies."""

    @pytest.mark.asyncio
    async def test_strategy_refusal_is_conflict(self, humans: SQLiteTable) -> None:
        remote = await _seed(humans)

        class Refuse:
            async def apply(self, row: PushRow) -> bool:
                return False

        engine = PushEngine(humans, "id", update_strategy=Refuse())
        assert await engine.push_one(PushRow(remote, remote)) == [remote]

    @pytest.mark.asyncio
    async def test_strategy_is_used(self, humans: SQLiteTable) -> None:
        remote = await _seed(humans)
        seen: list[PushRow] = []

        class Accept:
            async def apply(self, row: PushRow) -> bool:
                seen.append(row)
                return True

        row = PushRow({**remote, "name": "Z"}, remote)
        assert await PushEngine(humans, "id", update_strategy=Accept()).push_one(row) == []
        assert seen == [row]

    @pytest.mark.asyncio
    async def test_non_bool_result(self, humans: SQLiteTable) -> None:
        class Sloppy:
            async def apply(self, row: PushRow) -> bool:
                return 1  # type: ignore[return-value]

        engine = PushEngine(humans, "id", update_strategy=Sloppy())
        with pytest.raises(ConfigurationError, match="expected bool"):
            await engine.push_one(PushRow({"id": "1"}, {"id": "1"}))


class TestBatch:
    """Tests for PushEngine.push()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [0, 2])
    async def test_only_single_row_batches(self, humans: SQLiteTable, size: int) -> None:
        rows = [PushRow({"id": str(i)}) for i in range(size)]
        with pytest.raises(ValueError, match=f"Invalid batch size {size}"):
            await PushEngine(humans, "id").push(rows)

    @pytest.mark.asyncio
    async def test_single_row_batch(self, humans: SQLiteTable) -> None:
        conflicts = await PushEngine(humans, "id").push([PushRow({"id": "1", "name": "A"})])
        assert conflicts == []
