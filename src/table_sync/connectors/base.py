"""
Remote store interfaces.

Everything the replication core needs from the remote side:
- Filter expressions (gt, eq, is, and, or) over named columns
- A queryable table with select/insert/conditional update
- A change-notification feed scoped to a table
- The error types connectors raise
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Sequence, Union


class RemoteError(Exception):
    """Base exception for remote store failures (network, permission, query)."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class UniqueViolationError(RemoteError):
    """Raised when an insert collides with an existing primary key."""

    pass


# =============================================================================
# Filters
# =============================================================================


@dataclass(frozen=True)
class Gt:
    """``column > value``"""

    column: str
    value: Any


@dataclass(frozen=True)
class Eq:
    """``column = value``"""

    column: str
    value: Any


@dataclass(frozen=True)
class Is:
    """``column IS value`` where value is None, True or False."""

    column: str
    value: bool | None


@dataclass(frozen=True)
class And:
    """Conjunction of filters."""

    filters: tuple["Filter", ...]


@dataclass(frozen=True)
class Or:
    """Disjunction of filters."""

    filters: tuple["Filter", ...]


Filter = Union[Gt, Eq, Is, And, Or]


# =============================================================================
# Tables
# =============================================================================


class RemoteTable(ABC):
    """
    A remote relational table the replication reads from and writes to.

    Implementations raise RemoteError (or a subclass) for every failure
    and never retry on their own.
    """

    name: str

    @abstractmethod
    async def select(
        self,
        where: Filter | None = None,
        order_by: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching ``where``, ordered ascending by ``order_by``."""

    @abstractmethod
    async def insert(self, document: dict[str, Any]) -> None:
        """Insert one row. Raises UniqueViolationError on a duplicate key."""

    @abstractmethod
    async def update(self, values: dict[str, Any], where: Filter) -> int:
        """Update rows matching ``where`` and return the affected row count."""

    async def close(self) -> None:
        """Release connections held by the table."""

    async def __aenter__(self) -> "RemoteTable":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


# =============================================================================
# Change notifications
# =============================================================================


class ChangeType(str, Enum):
    """Row-level change kinds reported by a change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeNotification:
    """One row-level change reported by the remote store."""

    event_type: ChangeType
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = field(default=None, repr=False)


NotificationCallback = Callable[[ChangeNotification], None]
ErrorCallback = Callable[[Exception], None]


class Subscription(ABC):
    """Handle for an active change-feed subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivery. No callback runs once this returns."""


class ChangeFeed(ABC):
    """Source of change notifications for remote tables."""

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        callback: NotificationCallback,
        channel: str | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Register ``callback`` for insert, update and delete events on ``table``.

        Returns once the remote store has acknowledged the subscription.
        ``on_error`` is called once if the subscription ends without being
        unsubscribed (e.g. the connection was lost); no callback runs after it.
        """
