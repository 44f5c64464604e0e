"""
Supabase Realtime change feed.

Speaks the Phoenix channel protocol used by Supabase Realtime over a single
websocket:
- ``phx_join`` with a ``postgres_changes`` config per subscribed table
- ``phx_reply`` acknowledgements
- ``postgres_changes`` messages turned into ChangeNotifications
- Periodic heartbeats, ``phx_leave`` on unsubscribe
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from itertools import count
from typing import Any, Awaitable, Callable

import websockets

from table_sync.config import RemoteConfig
from table_sync.connectors.base import (
    ChangeFeed,
    ChangeNotification,
    ChangeType,
    ErrorCallback,
    NotificationCallback,
    RemoteError,
    Subscription,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1.0.0"


class RealtimeError(RemoteError):
    """Realtime connection or subscription failure."""

    pass


@dataclass
class _Channel:
    table: str
    callback: NotificationCallback
    join_ref: str
    on_error: ErrorCallback | None = None


def parse_postgres_change(data: dict[str, Any]) -> ChangeNotification | None:
    """Convert the ``data`` of a postgres_changes message. Unknown types yield None."""
    try:
        event_type = ChangeType(data.get("type") or data.get("eventType"))
    except ValueError:
        return None
    return ChangeNotification(
        event_type=event_type,
        table=data.get("table", ""),
        new=data.get("record") or None,
        old=data.get("old_record") or None,
    )


class RealtimeSubscription(Subscription):
    """A joined realtime channel."""

    def __init__(self, feed: "SupabaseRealtimeFeed", topic: str) -> None:
        self._feed = feed
        self.topic = topic

    async def unsubscribe(self) -> None:
        await self._feed._leave(self.topic)


class SupabaseRealtimeFeed(ChangeFeed):
    """
    Change feed backed by Supabase Realtime.

    The websocket is opened on the first subscription and closed when the
    last channel is left.

    Example:
        feed = SupabaseRealtimeFeed("https://project.supabase.co", "api-key")

        subscription = await feed.subscribe("humans", on_change)
        ...
        await subscription.unsubscribe()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        db_schema: str = "public",
        heartbeat_interval: float = 25.0,
        connect: Callable[[str], Awaitable[Any]] | None = None,
    ) -> None:
        """
        Initialize realtime feed.

        Args:
            base_url: Project URL
            api_key: API key (also used as access token)
            db_schema: Schema of the subscribed tables
            heartbeat_interval: Seconds between heartbeats
            connect: Websocket connect function (default: websockets.connect)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.db_schema = db_schema
        self.heartbeat_interval = heartbeat_interval
        self._connect = connect or websockets.connect

        self._websocket: Any = None
        self._channels: dict[str, _Channel] = {}
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._refs = count(1)
        self._receive_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        """Websocket URL of the realtime service."""
        url = self.base_url
        if url.startswith("https://"):
            url = "wss://" + url[len("https://"):]
        elif url.startswith("http://"):
            url = "ws://" + url[len("http://"):]
        return f"{url}/realtime/v1/websocket?apikey={self.api_key}&vsn={PROTOCOL_VERSION}"

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    async def _ensure_connected(self) -> None:
        """Open the websocket and start the background tasks if needed."""
        async with self._lock:
            if self._websocket is not None:
                return

            logger.info("Connecting to realtime at %s", self.base_url)
            try:
                self._websocket = await self._connect(self.endpoint)
            except (OSError, websockets.WebSocketException) as e:
                raise RealtimeError(f"Connection error: {e}") from e

            self._receive_task = asyncio.create_task(self._receive_loop())
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _send(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
        ref: str | None = None,
        join_ref: str | None = None,
    ) -> str:
        """Send a Phoenix message and return its ref."""
        if self._websocket is None:
            raise RealtimeError("Realtime connection is not open")

        ref = ref or str(next(self._refs))
        message: dict[str, Any] = {
            "topic": topic,
            "event": event,
            "payload": payload,
            "ref": ref,
        }
        if join_ref:
            message["join_ref"] = join_ref

        try:
            await self._websocket.send(json.dumps(message))
        except websockets.ConnectionClosed as e:
            raise RealtimeError(f"Connection closed: {e}") from e
        return ref

    async def subscribe(
        self,
        table: str,
        callback: NotificationCallback,
        channel: str | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        await self._ensure_connected()

        topic = f"realtime:{channel or 'table-sync-' + table}"
        if topic in self._channels:
            raise RealtimeError(f"Channel {topic} is already joined")

        ref = str(next(self._refs))
        reply: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[ref] = reply
        self._channels[topic] = _Channel(
            table=table,
            callback=callback,
            join_ref=ref,
            on_error=on_error,
        )

        payload = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {"event": "*", "schema": self.db_schema, "table": table},
                ],
            },
            "access_token": self.api_key,
        }

        try:
            await self._send(topic, "phx_join", payload, ref=ref, join_ref=ref)
            response = await reply
        except BaseException:
            self._channels.pop(topic, None)
            self._pending.pop(ref, None)
            raise

        if response.get("status") != "ok":
            self._channels.pop(topic, None)
            raise RealtimeError(
                f"Subscription to {table} rejected: {response.get('response')}"
            )

        logger.info("Joined realtime channel %s", topic)
        return RealtimeSubscription(self, topic)

    async def _leave(self, topic: str) -> None:
        """Leave a channel; closes the connection after the last one."""
        channel = self._channels.pop(topic, None)
        if channel is not None and self._websocket is not None:
            try:
                await self._send(topic, "phx_leave", {}, join_ref=channel.join_ref)
            except RealtimeError as e:
                logger.debug("Could not send phx_leave for %s: %s", topic, e)

        if not self._channels:
            await self.close()

    async def close(self) -> None:
        """Stop background tasks and close the websocket."""
        tasks = [t for t in (self._heartbeat_task, self._receive_task) if t is not None]
        self._heartbeat_task = None
        self._receive_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await websocket.close()
        self._channels.clear()
        self._fail_pending(RealtimeError("Realtime connection closed"))

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _receive_loop(self) -> None:
        websocket = self._websocket
        try:
            async for raw in websocket:
                self._handle_raw(raw)
        except websockets.ConnectionClosed as e:
            logger.warning("Realtime connection closed: %s", e)

        # Server side close; no further notifications will arrive
        self._websocket = None
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        error = RealtimeError("Realtime connection closed by server")
        self._fail_pending(error)
        self._fail_channels(error)

    def _fail_channels(self, error: RealtimeError) -> None:
        """Drop every channel and tell its subscriber why."""
        channels, self._channels = self._channels, {}
        for topic, channel in channels.items():
            if channel.on_error is None:
                continue
            try:
                channel.on_error(error)
            except Exception:
                logger.exception("Error callback for %s failed", topic)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._send("phoenix", "heartbeat", {})
            except RealtimeError as e:
                logger.warning("Realtime heartbeat failed: %s", e)
                return

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed realtime message: %r", raw[:200])
            return
        if isinstance(message, dict):
            self._handle_message(message)

    def _handle_message(self, message: dict[str, Any]) -> None:
        """Route one decoded Phoenix message."""
        event = message.get("event")
        topic = message.get("topic")
        payload = message.get("payload") or {}

        if event == "phx_reply":
            future = self._pending.pop(str(message.get("ref")), None)
            if future is not None and not future.done():
                future.set_result(payload)
            return

        channel = self._channels.get(topic)
        if channel is None:
            return

        if event == "postgres_changes":
            notification = parse_postgres_change(payload.get("data") or {})
            if notification is None:
                return
            try:
                channel.callback(notification)
            except Exception:
                # A failing callback must not end the receive loop
                logger.exception("Notification callback for %s failed", topic)
        elif event in ("phx_error", "phx_close"):
            # The server dropped this channel; it will not deliver again
            logger.warning("Realtime channel %s reported %s: %s", topic, event, payload)
            self._channels.pop(topic, None)
            if channel.on_error is not None:
                try:
                    channel.on_error(RealtimeError(f"Realtime channel {topic} closed: {event}"))
                except Exception:
                    logger.exception("Error callback for %s failed", topic)
        elif event == "system" and payload.get("status") == "error":
            logger.warning("Realtime channel %s error: %s", topic, payload.get("message"))


def create_realtime_feed(remote: RemoteConfig) -> SupabaseRealtimeFeed:
    """Create a SupabaseRealtimeFeed from remote settings."""
    return SupabaseRealtimeFeed(
        base_url=remote.url,
        api_key=remote.api_key.get_secret_value(),
        db_schema=remote.db_schema,
        heartbeat_interval=remote.heartbeat_interval_seconds,
    )
