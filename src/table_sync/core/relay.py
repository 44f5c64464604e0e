"""
Realtime Relay - republishes remote change notifications as ChangeEvents.

Runs independently of the pull path. Events have the same shape as pull
results so the orchestrator can treat both sources alike.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator

from table_sync.connectors.base import (
    ChangeFeed,
    ChangeNotification,
    ChangeType,
    Subscription,
)
from table_sync.core.checkpoint import (
    ChangeEvent,
    CheckpointError,
    CheckpointFields,
    build_change_event,
)

logger = logging.getLogger(__name__)

# What a sink queue carries: an event, or the error that ended the feed
LiveItem = ChangeEvent | Exception


class RelayClosedError(RuntimeError):
    """Raised when starting a relay that was already cancelled."""


class LiveEventSink:
    """
    Fan-out of live ChangeEvents to any number of consumers.

    Each subscriber gets its own unbounded queue. There is no backpressure;
    slow consumers buffer without limit. When the upstream feed fails, the
    exception itself is put on every queue so consumers can stop.

    Example:
        sink = LiveEventSink()
        queue = sink.subscribe()
        ...
        item = await queue.get()
        if isinstance(item, Exception):
            raise item
        sink.unsubscribe(queue)
    """

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[LiveItem]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def subscribe(self) -> asyncio.Queue[LiveItem]:
        """Register a consumer and return the queue events arrive on."""
        queue: asyncio.Queue[LiveItem] = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[LiveItem]) -> None:
        """Stop delivering to ``queue``. Unknown queues are ignored."""
        if queue in self._queues:
            self._queues.remove(queue)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every current subscriber."""
        for queue in list(self._queues):
            queue.put_nowait(event)

    def publish_error(self, error: Exception) -> None:
        """Tell every current subscriber that no more events will follow."""
        for queue in list(self._queues):
            queue.put_nowait(error)

    async def stream(self) -> AsyncIterator[ChangeEvent]:
        """
        Iterate over events until the consumer stops iterating.

        Raises:
            Exception: The error passed to ``publish_error``
        """
        queue = self.subscribe()
        try:
            while True:
                item = await queue.get()
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.unsubscribe(queue)


class RelayState(str, Enum):
    """Lifecycle of a realtime relay."""

    STOPPED = "stopped"
    SUBSCRIBED = "subscribed"


class RealtimeRelay:
    """
    Subscribes to change notifications for one table and publishes
    insert/update events to a LiveEventSink.

    Physical deletes are never relayed: they carry no row to derive a
    checkpoint from, and deletion is represented by the soft-delete flag.

    If the feed ends the subscription (for example the connection was lost),
    the relay goes back to STOPPED, keeps the error in ``error`` and passes
    it to the sink. It can then be started again.

    Example:
        relay = RealtimeRelay(feed, "humans", fields, sink)
        await relay.start()
        ...
        await relay.cancel()  # no event is published after this returns
    """

    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        fields: CheckpointFields,
        sink: LiveEventSink,
        channel: str | None = None,
    ) -> None:
        self.feed = feed
        self.table = table
        self.fields = fields
        self.sink = sink
        self.channel = channel
        self.error: Exception | None = None
        self._state = RelayState.STOPPED
        self._subscription: Subscription | None = None
        self._closed = False

    @property
    def state(self) -> RelayState:
        return self._state

    async def start(self) -> None:
        """Subscribe to the table's change notifications."""
        if self._closed:
            raise RelayClosedError(f"Relay for {self.table} was cancelled")
        if self._state is RelayState.SUBSCRIBED:
            return

        # Left over from a subscription the feed ended
        await self._release()
        self.error = None

        # Enter SUBSCRIBED before the acknowledgement so events sent right after it are kept
        self._state = RelayState.SUBSCRIBED
        try:
            self._subscription = await self.feed.subscribe(
                self.table,
                self._on_notification,
                channel=self.channel,
                on_error=self._on_error,
            )
        except BaseException:
            self._state = RelayState.STOPPED
            raise
        if self._closed:
            # cancel() ran while the subscription was being acknowledged
            await self._release()
            return
        logger.info("Realtime relay subscribed to %s", self.table)

    async def cancel(self) -> None:
        """Unsubscribe and stop publishing. Safe to call more than once."""
        self._closed = True
        if self._state is RelayState.STOPPED:
            await self._release()
            return

        # Leave SUBSCRIBED first so notifications racing the unsubscribe are dropped
        self._state = RelayState.STOPPED
        await self._release()
        logger.info("Realtime relay for %s cancelled", self.table)

    async def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()

    def _on_notification(self, notification: ChangeNotification) -> None:
        if self._state is not RelayState.SUBSCRIBED:
            return
        if notification.event_type is ChangeType.DELETE or not notification.new:
            logger.debug("Ignoring %s notification on %s", notification.event_type.value, self.table)
            return

        try:
            event = build_change_event([notification.new], self.fields)
        except CheckpointError as e:
            logger.warning("Dropping %s notification on %s: %s", notification.event_type.value, self.table, e)
            return
        self.sink.publish(event)

    def _on_error(self, error: Exception) -> None:
        if self._state is not RelayState.SUBSCRIBED:
            return

        self._state = RelayState.STOPPED
        self.error = error
        logger.warning("Realtime relay for %s stopped: %s", self.table, error)
        self.sink.publish_error(error)
