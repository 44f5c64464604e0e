"""
Logging for Table Sync.

All modules log through children of the ``table_sync`` logger. This module
attaches the handlers:
- Rich console output on stderr (stdout is left to command output)
- JSON lines or plain text for log collectors
- A rotating log file
- Replication context (identifier, table) stamped on every record
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from table_sync.config import LoggingConfig

console = Console(stderr=True)

logger = logging.getLogger("table_sync")

# Client libraries that log every request or frame at INFO/DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "websockets")

CONTEXT_FIELDS = ("identifier", "table")

PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ReplicationContextFilter(logging.Filter):
    """Adds the replication identifier and table to every record."""

    def __init__(self, identifier: str, table: str) -> None:
        super().__init__()
        self.identifier = identifier
        self.table = table

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "identifier"):
            record.identifier = self.identifier
        if not hasattr(record, "table"):
            record.table = self.table
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including replication context if present."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def _console_handler(format_style: str) -> logging.Handler:
    handler: logging.Handler
    if format_style == "rich":
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    elif format_style == "json":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    format_style: str = "rich",
    max_file_size_mb: int = 10,
    backup_count: int = 3,
    context: ReplicationContextFilter | None = None,
) -> None:
    """
    Configure the ``table_sync`` logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a rotating log file
        format_style: "rich", "json", or "simple"
        max_file_size_mb: Max log file size before rotation
        backup_count: Number of rotated files to keep
        context: Filter stamping replication context on records
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger.handlers.clear()
    logger.setLevel(log_level)

    handlers = [_console_handler(format_style)]
    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setFormatter(
            JsonFormatter()
            if format_style == "json"
            else logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT)
        )
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(log_level)
        # Handler filters also see records from child loggers
        if context is not None:
            handler.addFilter(context)
        logger.addHandler(handler)

    noisy_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def setup_logging_from_config(
    config: LoggingConfig,
    level: str | None = None,
    identifier: str | None = None,
    table: str | None = None,
) -> None:
    """Configure logging from the logging section of Settings."""
    context = None
    if identifier is not None and table is not None:
        context = ReplicationContextFilter(identifier, table)

    setup_logging(
        level=level or config.level,
        log_file=config.file,
        format_style=config.format,
        max_file_size_mb=config.max_file_size_mb,
        backup_count=config.backup_count,
        context=context,
    )


def get_logger(name: str = "table_sync") -> logging.Logger:
    """Get a logger under the package namespace."""
    if name != "table_sync" and not name.startswith("table_sync."):
        name = f"table_sync.{name}"
    return logging.getLogger(name)
