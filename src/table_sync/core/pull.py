"""
Pull Engine - checkpoint-ordered reads of remote changes.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from table_sync.connectors.base import RemoteTable
from table_sync.core.checkpoint import (
    ChangeEvent,
    Checkpoint,
    CheckpointFields,
    build_change_event,
    checkpoint_filter,
)

logger = logging.getLogger(__name__)


class PullEngine:
    """
    Fetches the next ordered slice of remote rows after a checkpoint.

    The engine never retries; RemoteError propagates to the caller,
    whose retry policy decides what happens next.

    Example:
        engine = PullEngine(table, CheckpointFields(primary_key="id"))

        event = await engine.pull(None, batch_size=100)
        while event.documents:
            apply(event.documents)
            event = await engine.pull(event.checkpoint, batch_size=100)
    """

    def __init__(self, table: RemoteTable, fields: CheckpointFields) -> None:
        self.table = table
        self.fields = fields

    async def pull(
        self,
        last_checkpoint: Checkpoint | None,
        batch_size: int,
    ) -> ChangeEvent:
        """
        Pull up to ``batch_size`` rows after ``last_checkpoint``.

        Args:
            last_checkpoint: Checkpoint of the previous pull (None = from start)
            batch_size: Maximum rows to return

        Returns:
            ChangeEvent; no documents and the same checkpoint when at the tip
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        rows = await self.table.select(
            where=checkpoint_filter(last_checkpoint, self.fields),
            order_by=(self.fields.modified, self.fields.primary_key),
            limit=batch_size,
        )
        event = build_change_event(rows, self.fields, last_checkpoint)

        logger.debug(
            "Pulled %d row(s) from %s after %s",
            len(event.documents),
            self.table.name,
            last_checkpoint,
        )
        return event

    async def iter_changes(
        self,
        checkpoint: Checkpoint | None,
        batch_size: int,
    ) -> AsyncIterator[ChangeEvent]:
        """
        Pull repeatedly until the remote tip is reached.

        Yields every non-empty batch. A batch shorter than ``batch_size``
        means nothing newer existed when it was read.
        """
        while True:
            event = await self.pull(checkpoint, batch_size)
            if not event.documents:
                return
            yield event
            checkpoint = event.checkpoint
            if len(event.documents) < batch_size:
                return
