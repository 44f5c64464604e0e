"""
Table Replication - wires pull, push and realtime for one remote table.

This is the surface an orchestrator drives:
- pull(checkpoint, batch_size) -> ChangeEvent
- push_one(row) -> conflicts
- subscribe()/unsubscribe() on the live-event sink
- start()/cancel() for the realtime relay
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Sequence

from table_sync.config import ReplicationOptions
from table_sync.connectors.base import ChangeFeed, RemoteTable
from table_sync.core.checkpoint import ChangeEvent, Checkpoint
from table_sync.core.pull import PullEngine
from table_sync.core.push import PushEngine, PushRow, UpdateStrategy
from table_sync.core.relay import LiveEventSink, LiveItem, RealtimeRelay

logger = logging.getLogger(__name__)


class TableReplication:
    """
    Replication adapter between a local collection and one remote table.

    Example:
        options = ReplicationOptions(table="humans", primary_key="id")

        async with TableReplication(table, options, feed=feed) as replication:
            queue = replication.subscribe()
            event = await replication.pull(None)
            conflicts = await replication.push_one(PushRow(doc))
    """

    def __init__(
        self,
        table: RemoteTable,
        options: ReplicationOptions,
        feed: ChangeFeed | None = None,
        update_strategy: UpdateStrategy | None = None,
    ) -> None:
        """
        Initialize replication.

        Args:
            table: Remote table
            options: Replication options (column names, batch size, realtime)
            feed: Change feed for realtime notifications (optional)
            update_strategy: Replaces the default conditional update (optional)
        """
        self.table = table
        self.options = options
        self.fields = options.checkpoint_fields()

        self.pull_engine = PullEngine(table, self.fields)
        self.push_engine = PushEngine(table, options.primary_key, update_strategy)
        self.live_events = LiveEventSink()

        self.relay: RealtimeRelay | None = None
        if feed is not None and options.realtime_enabled:
            self.relay = RealtimeRelay(
                feed,
                table.name,
                self.fields,
                self.live_events,
                channel=f"table-sync-{options.identifier}",
            )

    async def start(self) -> None:
        """Start realtime notifications, if enabled."""
        logger.info(
            "Starting replication %s of %s (realtime=%s)",
            self.options.identifier,
            self.table.name,
            self.relay is not None,
        )
        if self.relay is not None:
            await self.relay.start()

    async def cancel(self) -> None:
        """Stop realtime notifications. Awaiting this guarantees no further live events."""
        if self.relay is not None:
            await self.relay.cancel()

    async def __aenter__(self) -> "TableReplication":
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.cancel()

    async def pull(
        self,
        checkpoint: Checkpoint | None,
        batch_size: int | None = None,
    ) -> ChangeEvent:
        """Pull the next batch after ``checkpoint``."""
        if batch_size is None:
            batch_size = self.options.batch_size
        return await self.pull_engine.pull(checkpoint, batch_size)

    def iter_changes(
        self,
        checkpoint: Checkpoint | None,
        batch_size: int | None = None,
    ) -> AsyncIterator[ChangeEvent]:
        """Pull batches until the remote tip is reached."""
        if batch_size is None:
            batch_size = self.options.batch_size
        return self.pull_engine.iter_changes(checkpoint, batch_size)

    async def push_one(self, row: PushRow) -> list[dict[str, Any]]:
        """Push one local change; returns the remote row on conflict."""
        return await self.push_engine.push_one(row)

    async def push(self, rows: Sequence[PushRow]) -> list[dict[str, Any]]:
        """Push a batch of exactly one row."""
        return await self.push_engine.push(rows)

    async def fetch_by_primary_key(self, value: Any) -> dict[str, Any]:
        return await self.push_engine.fetch_by_primary_key(value)

    def subscribe(self) -> asyncio.Queue[LiveItem]:
        """Receive live events on a new queue; an Exception item means the feed failed."""
        return self.live_events.subscribe()

    def unsubscribe(self, queue: asyncio.Queue[LiveItem]) -> None:
        self.live_events.unsubscribe(queue)
