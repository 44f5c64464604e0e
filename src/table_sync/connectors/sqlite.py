"""
SQLite Table Connector.

A relational table on SQLite that behaves like the remote store:
- Filter/order/limit queries
- Insert with primary-key uniqueness errors
- Conditional update returning the affected row count
- Last-modified timestamps assigned on every write
- In-process change notifications for the realtime relay

Useful for tests, demos and offline experiments.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Any, Callable, Generator, Sequence

from table_sync.config import DEFAULT_DELETED_FIELD, DEFAULT_LAST_MODIFIED_FIELD
from table_sync.connectors.base import (
    And,
    ChangeFeed,
    ChangeNotification,
    ChangeType,
    Eq,
    ErrorCallback,
    Filter,
    Gt,
    Is,
    NotificationCallback,
    Or,
    RemoteError,
    RemoteTable,
    Subscription,
    UniqueViolationError,
)

# PostgreSQL's unique_violation, reported for duplicate keys
UNIQUE_VIOLATION_CODE = "23505"


@dataclass
class ColumnInfo:
    """Information about a table column."""

    name: str
    type: str
    notnull: bool
    default_value: Any
    is_primary_key: bool

    @property
    def is_boolean(self) -> bool:
        return self.type.upper() in ("BOOLEAN", "BOOL")


def utc_now() -> str:
    """Default clock: ISO-8601 UTC timestamp with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def quote_identifier(name: str) -> str:
    """Quote a column or table name for SQL."""
    return '"' + name.replace('"', '""') + '"'


def render_filter(where: Filter) -> tuple[str, list[Any]]:
    """Render a filter as an SQL expression with ``?`` parameters."""
    if isinstance(where, Gt):
        return f"{quote_identifier(where.column)} > ?", [where.value]
    if isinstance(where, Eq):
        return f"{quote_identifier(where.column)} = ?", [where.value]
    if isinstance(where, Is):
        return f"{quote_identifier(where.column)} IS ?", [where.value]
    if isinstance(where, (And, Or)):
        if not where.filters:
            return ("1" if isinstance(where, And) else "0"), []
        joiner = " AND " if isinstance(where, And) else " OR "
        parts: list[str] = []
        params: list[Any] = []
        for sub in where.filters:
            sql, sub_params = render_filter(sub)
            parts.append(sql)
            params.extend(sub_params)
        return f"({joiner.join(parts)})", params
    raise TypeError(f"Unsupported filter: {where!r}")


# =============================================================================
# Change feed
# =============================================================================


@dataclass
class _LocalSubscriber:
    table: str
    callback: NotificationCallback
    on_error: ErrorCallback | None = None


class LocalSubscription(Subscription):
    """Subscription to a LocalChangeFeed."""

    def __init__(self, feed: "LocalChangeFeed", subscription_id: int) -> None:
        self._feed = feed
        self._id = subscription_id

    async def unsubscribe(self) -> None:
        self._feed._remove(self._id)


class LocalChangeFeed(ChangeFeed):
    """
    In-process change feed. Notifications are delivered synchronously
    to callbacks subscribed to the written table.
    """

    def __init__(self) -> None:
        self._subscribers: dict[int, _LocalSubscriber] = {}
        self._ids = count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(
        self,
        table: str,
        callback: NotificationCallback,
        channel: str | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        subscription_id = next(self._ids)
        self._subscribers[subscription_id] = _LocalSubscriber(table, callback, on_error)
        return LocalSubscription(self, subscription_id)

    def notify(self, notification: ChangeNotification) -> None:
        """Deliver a notification to subscribers of its table."""
        for subscriber in list(self._subscribers.values()):
            if subscriber.table == notification.table:
                subscriber.callback(notification)

    def fail(self, error: Exception) -> None:
        """End every subscription with ``error``, as a lost connection would."""
        subscribers, self._subscribers = self._subscribers, {}
        for subscriber in subscribers.values():
            if subscriber.on_error is not None:
                subscriber.on_error(error)

    def _remove(self, subscription_id: int) -> None:
        self._subscribers.pop(subscription_id, None)


# =============================================================================
# Table
# =============================================================================


class SQLiteTable(RemoteTable):
    """
    SQLite-backed table implementing the remote store interface.

    Example:
        table = SQLiteTable(Path("remote.db"), "humans")
        table.create_table({"name": "TEXT", "age": "INTEGER"})

        await table.insert({"id": "1", "name": "Alice", "age": None})
        rows = await table.select(Eq("id", "1"))
    """

    def __init__(
        self,
        path: Path | str,
        name: str,
        primary_key: str = "id",
        modified_field: str = DEFAULT_LAST_MODIFIED_FIELD,
        deleted_field: str = DEFAULT_DELETED_FIELD,
        clock: Callable[[], Any] | None = None,
        feed: LocalChangeFeed | None = None,
    ) -> None:
        """
        Initialize SQLite table.

        Args:
            path: Database file (or ":memory:")
            name: Table name
            primary_key: Primary key column
            modified_field: Column set to ``clock()`` on every write
            deleted_field: Soft-delete flag column
            clock: Timestamp source (default: UTC now)
            feed: Change feed to notify (default: a new LocalChangeFeed)
        """
        self.path = path if path == ":memory:" else Path(path)
        self.name = name
        self.primary_key = primary_key
        self.modified_field = modified_field
        self.deleted_field = deleted_field
        self.clock = clock or utc_now
        self.changes = feed or LocalChangeFeed()
        self._connection: sqlite3.Connection | None = None
        self._columns: list[ColumnInfo] | None = None

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with proper cleanup."""
        if self._connection is None:
            self._connection = self._create_connection()

        try:
            yield self._connection
        except Exception:
            self._connection.rollback()
            raise

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection."""
        conn = sqlite3.connect(
            str(self.path),
            check_same_thread=False,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        if self.path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def create_table(
        self,
        columns: dict[str, str] | None = None,
        primary_key_type: str = "TEXT",
    ) -> None:
        """
        Create the table if it does not exist.

        Args:
            columns: Document columns besides the primary key, modified and
                deleted columns, as {name: SQL type}
            primary_key_type: SQL type of the primary key
        """
        definitions = [f"{quote_identifier(self.primary_key)} {primary_key_type} PRIMARY KEY NOT NULL"]
        for column, sql_type in (columns or {}).items():
            definitions.append(f"{quote_identifier(column)} {sql_type}")
        definitions.append(f"{quote_identifier(self.modified_field)} TEXT NOT NULL")
        definitions.append(f"{quote_identifier(self.deleted_field)} BOOLEAN NOT NULL DEFAULT 0")

        with self.connection() as conn:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {quote_identifier(self.name)} "
                f"({', '.join(definitions)})"
            )
            conn.commit()
        self._columns = None

    def get_columns(self) -> list[ColumnInfo]:
        """Column information for the table."""
        if self._columns is None:
            with self.connection() as conn:
                cursor = conn.execute(f"PRAGMA table_info({quote_identifier(self.name)})")
                self._columns = [
                    ColumnInfo(
                        name=row["name"],
                        type=row["type"],
                        notnull=bool(row["notnull"]),
                        default_value=row["dflt_value"],
                        is_primary_key=bool(row["pk"]),
                    )
                    for row in cursor
                ]
        return self._columns

    def get_row_count(self) -> int:
        """Get the row count for the table."""
        with self.connection() as conn:
            cursor = conn.execute(f"SELECT COUNT(*) as count FROM {quote_identifier(self.name)}")
            row = cursor.fetchone()
            return row["count"] if row else 0

    def _to_document(self, row: sqlite3.Row) -> dict[str, Any]:
        """Convert a row, restoring booleans SQLite stores as integers."""
        document = dict(row)
        for column in self.get_columns():
            if column.is_boolean and document.get(column.name) is not None:
                document[column.name] = bool(document[column.name])
        return document

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a statement, commit, and return the rows it produced."""
        try:
            with self.connection() as conn:
                cursor = conn.execute(sql, params)
                rows = [self._to_document(row) for row in cursor.fetchall()]
                conn.commit()
                return rows
        except sqlite3.IntegrityError as e:
            message = str(e)
            if "UNIQUE" in message or "PRIMARY KEY" in message:
                raise UniqueViolationError(message, code=UNIQUE_VIOLATION_CODE) from e
            raise RemoteError(message) from e
        except sqlite3.Error as e:
            raise RemoteError(str(e)) from e

    async def select(
        self,
        where: Filter | None = None,
        order_by: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {quote_identifier(self.name)}"
        params: list[Any] = []
        if where is not None:
            clause, params = render_filter(where)
            sql += f" WHERE {clause}"
        if order_by:
            sql += " ORDER BY " + ", ".join(f"{quote_identifier(c)} ASC" for c in order_by)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return self._execute(sql, params)

    async def insert(self, document: dict[str, Any]) -> None:
        values = dict(document)
        values[self.modified_field] = self.clock()

        columns = ", ".join(quote_identifier(c) for c in values)
        placeholders = ", ".join("?" for _ in values)
        rows = self._execute(
            f"INSERT INTO {quote_identifier(self.name)} ({columns}) "
            f"VALUES ({placeholders}) RETURNING *",
            list(values.values()),
        )
        for row in rows:
            self.changes.notify(ChangeNotification(ChangeType.INSERT, self.name, new=row))

    async def update(self, values: dict[str, Any], where: Filter) -> int:
        values = {k: v for k, v in values.items() if k != self.modified_field}
        values[self.modified_field] = self.clock()

        assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in values)
        clause, params = render_filter(where)
        rows = self._execute(
            f"UPDATE {quote_identifier(self.name)} SET {assignments} "
            f"WHERE {clause} RETURNING *",
            [*values.values(), *params],
        )
        for row in rows:
            self.changes.notify(ChangeNotification(ChangeType.UPDATE, self.name, new=row))
        return len(rows)

    async def delete(self, where: Filter) -> int:
        """Physically delete rows. Notifies DELETE events without a new row."""
        clause, params = render_filter(where)
        rows = self._execute(
            f"DELETE FROM {quote_identifier(self.name)} WHERE {clause} RETURNING *",
            params,
        )
        for row in rows:
            self.changes.notify(ChangeNotification(ChangeType.DELETE, self.name, old=row))
        return len(rows)
