"""
Checkpoint Store - persistence of pull checkpoints between runs.

The replication core keeps no state; this store is what the CLI uses,
acting as orchestrator, to resume pulling where the last run stopped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from table_sync.core.checkpoint import Checkpoint

logger = logging.getLogger(__name__)


@dataclass
class CheckpointRecord:
    """Stored progress of one replication."""

    identifier: str
    table: str
    checkpoint: dict[str, Any] | None = None
    documents_pulled: int = 0
    updated_at: str | None = None

    @property
    def key(self) -> str:
        return f"{self.identifier}:{self.table}"


class CheckpointStore:
    """
    JSON file holding one checkpoint per (identifier, table).

    Example:
        store = CheckpointStore(Path(".table-sync-state.json"))

        checkpoint = store.get_checkpoint("default", "humans")
        ...
        store.save_checkpoint("default", "humans", event.checkpoint, pulled=10)
    """

    def __init__(self, state_file: Path | str) -> None:
        self.state_file = Path(state_file)
        self._records: dict[str, CheckpointRecord] | None = None

    @property
    def records(self) -> dict[str, CheckpointRecord]:
        """All stored records, loading the file on first access."""
        if self._records is None:
            self._records = self.load()
        return self._records

    def load(self) -> dict[str, CheckpointRecord]:
        """Load records from file. A missing or corrupted file yields no records."""
        if not self.state_file.exists():
            return {}

        try:
            data = json.loads(self.state_file.read_text())
            records = [CheckpointRecord(**item) for item in data.get("checkpoints", [])]
        except (json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning("Could not load state file %s: %s", self.state_file, e)
            return {}
        return {record.key: record for record in records}

    def save(self) -> None:
        """Write all records to file."""
        data = {"checkpoints": [asdict(r) for r in self.records.values()]}
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.state_file.with_suffix(".tmp")
        tmp_file.write_text(json.dumps(data, indent=2, default=str))
        tmp_file.replace(self.state_file)

    def get_checkpoint(self, identifier: str, table: str) -> Checkpoint | None:
        """Checkpoint to resume from (None = start from the beginning)."""
        record = self.records.get(f"{identifier}:{table}")
        if record is None:
            return None
        return Checkpoint.from_dict(record.checkpoint)

    def save_checkpoint(
        self,
        identifier: str,
        table: str,
        checkpoint: Checkpoint | None,
        pulled: int = 0,
    ) -> CheckpointRecord:
        """
        Record a new checkpoint and persist it.

        Args:
            identifier: Replication identifier
            table: Table name
            checkpoint: Checkpoint reached
            pulled: Documents pulled since the last save
        """
        key = f"{identifier}:{table}"
        record = self.records.get(key) or CheckpointRecord(identifier=identifier, table=table)
        record.checkpoint = checkpoint.to_dict() if checkpoint else None
        record.documents_pulled += pulled
        record.updated_at = datetime.now(timezone.utc).isoformat()
        self.records[key] = record
        self.save()
        return record

    def clear(self, identifier: str | None = None, table: str | None = None) -> None:
        """Forget one checkpoint, or all of them and the file."""
        if identifier is not None and table is not None:
            if self.records.pop(f"{identifier}:{table}", None) is not None:
                self.save()
            return

        self._records = {}
        if self.state_file.exists():
            self.state_file.unlink()

    def get_summary(self) -> list[dict[str, Any]]:
        """Summary of stored checkpoints for display."""
        return [
            {
                "identifier": record.identifier,
                "table": record.table,
                "modified": (record.checkpoint or {}).get("modified"),
                "primary_key_value": (record.checkpoint or {}).get("primary_key_value"),
                "documents_pulled": record.documents_pulled,
                "updated_at": record.updated_at,
            }
            for record in self.records.values()
        ]
