"""Table Sync - offline-first replication between local documents and a remote table."""

__version__ = "0.4.0"
__author__ = "Table Sync Contributors"

from table_sync.config import ReplicationOptions, Settings

__all__ = ["ReplicationOptions", "Settings", "__version__"]
