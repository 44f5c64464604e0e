"""
Push Engine - optimistic-concurrency writes of local changes.

Handles one document per call:
- New documents are inserted; a duplicate key becomes a conflict
- Updates are applied only if the remote row still matches the state
  the local change was based on; otherwise a conflict
- Conflicts return the authoritative remote row for external resolution
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from table_sync.connectors.base import (
    And,
    Eq,
    Filter,
    Is,
    RemoteTable,
    UniqueViolationError,
)

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Document shape and update strategy do not fit together. Never retried."""


class UnsupportedFieldTypeError(ConfigurationError):
    """The default update strategy cannot compare a field of this type."""

    def __init__(self, field_name: str, value: Any) -> None:
        super().__init__(
            f"Unsupported field of type {type(value).__name__}: {field_name}"
        )
        self.field_name = field_name


class AmbiguousUpdateError(ConfigurationError):
    """A conditional update touched more than one row."""

    def __init__(self, count: int) -> None:
        super().__init__(f"Conditional update affected {count} rows, expected 0 or 1")
        self.count = count


class InvariantViolationError(Exception):
    """The remote table broke primary-key uniqueness."""


@dataclass
class PushRow:
    """A pending local write."""

    new_document_state: dict[str, Any]
    assumed_master_state: dict[str, Any] | None = None

    @property
    def is_insert(self) -> bool:
        """No prior remote state is known."""
        return self.assumed_master_state is None


class UpdateStrategy(Protocol):
    """
    Applies an update that is conditional on ``row.assumed_master_state``.

    Must return True iff the update was applied and False iff it was not
    because the remote row differs.
    """

    async def apply(self, row: PushRow) -> bool: ...


class ConditionalUpdateStrategy:
    """
    Default update strategy: update only if every assumed field still matches.

    Strings and numbers compare with ``=``, booleans and nulls with ``IS``.
    Structured values (dicts, lists) cannot be compared and raise
    UnsupportedFieldTypeError.
    """

    def __init__(self, table: RemoteTable) -> None:
        self.table = table

    def build_condition(self, assumed: dict[str, Any]) -> Filter:
        """Build the filter matching a row equal to ``assumed``."""
        if not assumed:
            raise ConfigurationError("Assumed master state has no fields to compare")

        conditions: list[Filter] = []
        for field_name, value in assumed.items():
            # bool before int: bool is an int subclass
            if value is None or isinstance(value, bool):
                conditions.append(Is(field_name, value))
            elif isinstance(value, (str, int, float)):
                conditions.append(Eq(field_name, value))
            else:
                raise UnsupportedFieldTypeError(field_name, value)
        return And(tuple(conditions))

    async def apply(self, row: PushRow) -> bool:
        if row.assumed_master_state is None:
            raise ValueError("Conditional update requires an assumed master state")

        where = self.build_condition(row.assumed_master_state)
        count = await self.table.update(row.new_document_state, where)
        if count > 1:
            raise AmbiguousUpdateError(count)
        return count == 1


class PushEngine:
    """
    Applies local changes to the remote table one document at a time.

    Example:
        engine = PushEngine(table, primary_key="id")

        conflicts = await engine.push_one(PushRow({"id": "1", "name": "Alice"}))
        if conflicts:
            resolve(local, conflicts[0])
    """

    def __init__(
        self,
        table: RemoteTable,
        primary_key: str,
        update_strategy: UpdateStrategy | None = None,
    ) -> None:
        """
        Initialize push engine.

        Args:
            table: Remote table to write to
            primary_key: Primary key column name
            update_strategy: Replaces the default conditional update
        """
        self.table = table
        self.primary_key = primary_key
        self.update_strategy = update_strategy or ConditionalUpdateStrategy(table)

    async def push(self, rows: Sequence[PushRow]) -> list[dict[str, Any]]:
        """
        Push a batch of rows. Only batches of exactly one row are supported.

        Returns:
            The remote state of conflicting rows
        """
        if len(rows) != 1:
            raise ValueError(f"Invalid batch size {len(rows)}, expected 1")
        return await self.push_one(rows[0])

    async def push_one(self, row: PushRow) -> list[dict[str, Any]]:
        """
        Push a single local change.

        Returns:
            [] when applied, otherwise [current remote row]
        """
        if row.is_insert:
            return await self._handle_insertion(row.new_document_state)
        return await self._handle_update(row)

    async def _handle_insertion(self, document: dict[str, Any]) -> list[dict[str, Any]]:
        """Insert a new row, returning the existing one on a key collision."""
        try:
            await self.table.insert(document)
        except UniqueViolationError:
            key = document[self.primary_key]
            logger.info("Insert conflict on %s %s=%r", self.table.name, self.primary_key, key)
            return [await self.fetch_by_primary_key(key)]
        return []

    async def _handle_update(self, row: PushRow) -> list[dict[str, Any]]:
        """Apply a conditional update, returning the current row if it was not applied."""
        applied = await self.update_strategy.apply(row)
        if not isinstance(applied, bool):
            raise ConfigurationError(
                f"Update strategy returned {type(applied).__name__}, expected bool"
            )
        if applied:
            return []

        key = row.new_document_state[self.primary_key]
        logger.info("Update conflict on %s %s=%r", self.table.name, self.primary_key, key)
        return [await self.fetch_by_primary_key(key)]

    async def fetch_by_primary_key(self, value: Any) -> dict[str, Any]:
        """Fetch the single remote row with the given primary key."""
        rows = await self.table.select(where=Eq(self.primary_key, value), limit=2)
        if len(rows) != 1:
            raise InvariantViolationError(
                f"Expected one row in {self.table.name} with "
                f"{self.primary_key}={value!r}, found {len(rows)}"
            )
        return rows[0]
