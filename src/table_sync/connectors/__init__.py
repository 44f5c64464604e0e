"""Remote store connectors for Table Sync."""

from table_sync.connectors.base import (
    ChangeFeed,
    ChangeNotification,
    ChangeType,
    RemoteError,
    RemoteTable,
    UniqueViolationError,
)
from table_sync.connectors.postgrest import PostgRESTTable
from table_sync.connectors.realtime import SupabaseRealtimeFeed
from table_sync.connectors.sqlite import LocalChangeFeed, SQLiteTable

__all__ = [
    "ChangeFeed",
    "ChangeNotification",
    "ChangeType",
    "RemoteError",
    "RemoteTable",
    "UniqueViolationError",
    "PostgRESTTable",
    "SupabaseRealtimeFeed",
    "LocalChangeFeed",
    "SQLiteTable",
]
