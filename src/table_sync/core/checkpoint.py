"""
Checkpoint model.

A checkpoint marks how far the remote table has been replicated. Rows are
totally ordered by ``(modified, primary key)``; the primary key breaks ties
between rows whose timestamps coarsened to the same value, so resumed pulls
never skip or repeat a row at a batch boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from table_sync.config import DEFAULT_DELETED_FIELD, DEFAULT_LAST_MODIFIED_FIELD
from table_sync.connectors.base import And, Eq, Filter, Gt, Or


class CheckpointError(ValueError):
    """Raised when a row lacks the columns a checkpoint is derived from."""


@dataclass(frozen=True, order=True)
class Checkpoint:
    """Position ``(modified, primary_key_value)`` in the replicated table."""

    modified: Any
    primary_key_value: Any

    def __str__(self) -> str:
        return f"({self.modified}, {self.primary_key_value})"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "modified": self.modified,
            "primary_key_value": self.primary_key_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Checkpoint | None":
        """Create from dictionary. Returns None for an empty checkpoint."""
        if not data:
            return None
        return cls(
            modified=data.get("modified"),
            primary_key_value=data.get("primary_key_value"),
        )


@dataclass(frozen=True)
class CheckpointFields:
    """Column names of the three designated document fields."""

    primary_key: str
    modified: str = DEFAULT_LAST_MODIFIED_FIELD
    deleted: str = DEFAULT_DELETED_FIELD


@dataclass
class ChangeEvent:
    """
    A batch of remote changes and the checkpoint reached after them.

    Produced by both the pull path and the realtime relay.
    """

    checkpoint: Checkpoint | None
    documents: list[dict[str, Any]] = field(default_factory=list)

    @property
    def at_tip(self) -> bool:
        """True when a pull found nothing past the checkpoint."""
        return not self.documents


def row_to_checkpoint(row: dict[str, Any], fields: CheckpointFields) -> Checkpoint:
    """Derive the checkpoint of a single row."""
    missing = [c for c in (fields.modified, fields.primary_key) if c not in row]
    if missing:
        raise CheckpointError(
            f"Row is missing checkpoint column(s): {', '.join(missing)}"
        )
    return Checkpoint(
        modified=row[fields.modified],
        primary_key_value=row[fields.primary_key],
    )


def checkpoint_filter(
    checkpoint: Checkpoint | None,
    fields: CheckpointFields,
) -> Filter | None:
    """
    Build the filter selecting rows strictly after ``checkpoint``.

    ``modified > C.modified OR (modified = C.modified AND pk > C.pk)``

    Returns None (full sync) when there is no checkpoint yet or its
    modified value is empty.
    """
    if checkpoint is None or not checkpoint.modified:
        return None

    is_newer = Gt(fields.modified, checkpoint.modified)
    is_same_age = Eq(fields.modified, checkpoint.modified)
    has_higher_key = Gt(fields.primary_key, checkpoint.primary_key_value)
    return Or((is_newer, And((is_same_age, has_higher_key))))


def build_change_event(
    rows: Sequence[dict[str, Any]],
    fields: CheckpointFields,
    fallback: Checkpoint | None = None,
) -> ChangeEvent:
    """
    Turn ordered rows into a ChangeEvent.

    The checkpoint comes from the last row. With no rows the fallback
    checkpoint is returned unchanged.
    """
    if not rows:
        return ChangeEvent(checkpoint=fallback, documents=[])
    return ChangeEvent(
        checkpoint=row_to_checkpoint(rows[-1], fields),
        documents=list(rows),
    )


def is_deleted(document: dict[str, Any], fields: CheckpointFields) -> bool:
    """Whether the document carries the soft-delete flag."""
    return bool(document.get(fields.deleted, False))
