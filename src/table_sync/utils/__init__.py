"""Utility modules for Table Sync."""

from table_sync.utils.logger import get_logger, setup_logging

__all__ = ["setup_logging", "get_logger"]
