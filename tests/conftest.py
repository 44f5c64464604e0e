"""Shared fixtures."""

import asyncio
from pathlib import Path
from typing import Iterator

import pytest

from table_sync.connectors.sqlite import SQLiteTable
from table_sync.core.checkpoint import CheckpointFields


class FakeClock:
    """Clock returning a settable timestamp."""

    def __init__(self, now: str = "2024-01-01T00:00:00.000000+00:00") -> None:
        self.now = now

    def __call__(self) -> str:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at a fixed timestamp."""
    return FakeClock()


@pytest.fixture
def humans(tmp_path: Path, clock: FakeClock) -> Iterator[SQLiteTable]:
    """A ``humans`` table with name and age columns."""
    table = SQLiteTable(tmp_path / "remote.db", "humans", clock=clock)
    table.create_table({"name": "TEXT", "age": "INTEGER"})
    yield table
    asyncio.run(table.close())


@pytest.fixture
def fields() -> CheckpointFields:
    return CheckpointFields(primary_key="id")
