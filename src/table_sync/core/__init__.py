"""Core replication components for Table Sync."""

from table_sync.core.checkpoint import ChangeEvent, Checkpoint, CheckpointFields
from table_sync.core.pull import PullEngine
from table_sync.core.push import ConditionalUpdateStrategy, PushEngine, PushRow
from table_sync.core.relay import LiveEventSink, RealtimeRelay
from table_sync.core.replication import TableReplication
from table_sync.core.state import CheckpointStore

__all__ = [
    "ChangeEvent",
    "Checkpoint",
    "CheckpointFields",
    "PullEngine",
    "ConditionalUpdateStrategy",
    "PushEngine",
    "PushRow",
    "LiveEventSink",
    "RealtimeRelay",
    "TableReplication",
    "CheckpointStore",
]
