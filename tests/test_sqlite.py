"""Tests for the SQLite table connector."""

from pathlib import Path

import pytest

from table_sync.connectors.base import (
    And,
    ChangeNotification,
    ChangeType,
    Eq,
    Gt,
    Is,
    Or,
    RemoteError,
    UniqueViolationError,
)
from table_sync.connectors.sqlite import SQLiteTable, render_filter

from conftest import FakeClock


class TestRenderFilter:
    """Tests for render_filter()."""

    def test_leaves(self) -> None:
        assert render_filter(Gt("age", 5)) == ('"age" > ?', [5])
        assert render_filter(Eq("name", "x")) == ('"name" = ?', ["x"])
        assert render_filter(Is("age", None)) == ('"age" IS ?', [None])

    def test_nested(self) -> None:
        where = Or((Gt("m", 1), And((Eq("m", 1), Gt("id", "a")))))
        assert render_filter(where) == (
            '("m" > ? OR ("m" = ? AND "id" > ?))',
            [1, 1, "a"],
        )

    def test_empty_groups(self) -> None:
        assert render_filter(And(())) == ("1", [])
        assert render_filter(Or(())) == ("0", [])


class TestSQLiteTable:
    """Tests for SQLiteTable class."""

    def test_create_table(self, humans: SQLiteTable) -> None:
        columns = {c.name: c for c in humans.get_columns()}
        assert list(columns) == ["id", "name", "age", "_modified", "_deleted"]
        assert columns["id"].is_primary_key
        assert columns["_deleted"].is_boolean
        assert humans.get_row_count() == 0

    @pytest.mark.asyncio
    async def test_insert_sets_modified(self, humans: SQLiteTable, clock: FakeClock) -> None:
        await humans.insert({"id": "1", "name": "Alice", "age": 5, "_modified": "ignored"})

        rows = await humans.select()

        assert rows == [
            {"id": "1", "name": "Alice", "age": 5, "_modified": clock.now, "_deleted": False}
        ]

    @pytest.mark.asyncio
    async def test_duplicate_key(self, humans: SQLiteTable) -> None:
        await humans.insert({"id": "1", "name": "Alice"})
        with pytest.raises(UniqueViolationError) as exc_info:
            await humans.insert({"id": "1", "name": "Bob"})
        assert exc_info.value.code == "23505"

    @pytest.mark.asyncio
    async def test_unknown_column(self, humans: SQLiteTable) -> None:
        with pytest.raises(RemoteError):
            await humans.insert({"id": "1", "nope": 1})

    @pytest.mark.asyncio
    async def test_select_order_and_limit(self, humans: SQLiteTable) -> None:
        for id_ in ("b", "c", "a"):
            await humans.insert({"id": id_})

        rows = await humans.select(Gt("id", "a"), order_by=["id"], limit=1)

        assert [r["id"] for r in rows] == ["b"]

    @pytest.mark.asyncio
    async def test_update_returns_count(self, humans: SQLiteTable, clock: FakeClock) -> None:
        await humans.insert({"id": "1", "age": 5})
        await humans.insert({"id": "2", "age": 5})
        clock.now = "2024-06-01T00:00:00.000000+00:00"

        assert await humans.update({"age": 6}, Eq("id", "1")) == 1
        assert await humans.update({"age": 7}, Eq("id", "404")) == 0
        assert await humans.update({"name": "same"}, Eq("age", 5)) == 1

        row = (await humans.select(Eq("id", "1")))[0]
        assert row["age"] == 6
        assert row["_modified"] == clock.now

    @pytest.mark.asyncio
    async def test_change_notifications(self, humans: SQLiteTable) -> None:
        received: list[ChangeNotification] = []
        subscription = await humans.changes.subscribe("humans", received.append)

        await humans.insert({"id": "1", "age": 5})
        await humans.update({"age": 6}, Eq("id", "1"))
        await humans.delete(Eq("id", "1"))
        await subscription.unsubscribe()
        await humans.insert({"id": "2"})

        assert [n.event_type for n in received] == [
            ChangeType.INSERT,
            ChangeType.UPDATE,
            ChangeType.DELETE,
        ]
        assert received[1].new is not None and received[1].new["age"] == 6
        assert received[2].new is None
        assert received[2].old is not None and received[2].old["id"] == "1"

    @pytest.mark.asyncio
    async def test_soft_delete_flag(self, humans: SQLiteTable) -> None:
        await humans.insert({"id": "1"})
        await humans.update({"_deleted": True}, Is("_deleted", False))

        rows = await humans.select(Is("_deleted", True))

        assert [r["id"] for r in rows] == ["1"]

    @pytest.mark.asyncio
    async def test_in_memory(self) -> None:
        table = SQLiteTable(":memory:", "notes", primary_key="key")
        table.create_table({"body": "TEXT"})
        await table.insert({"key": 1, "body": "x"})
        assert table.get_row_count() == 1
        await table.close()

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path: Path) -> None:
        async with SQLiteTable(tmp_path / "db.sqlite", "notes") as table:
            table.create_table()
            await table.insert({"id": "1"})
        assert table._connection is None
