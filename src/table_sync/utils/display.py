"""
Rich Terminal Display Components.

Provides console UI for:
- Live pull progress
- Summary and checkpoint tables
- Change events and conflict rows
- Status messages
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from table_sync.core.checkpoint import ChangeEvent


console = Console()


class PullDisplay:
    """
    Spinner with running counts while pulling.

    The total is unknown until the tip is reached, so only counts are shown.

    Example:
        with PullDisplay("humans") as display:
            async for event in replication.iter_changes(checkpoint):
                display.update(len(event.documents), event.checkpoint)
    """

    def __init__(self, table: str) -> None:
        self.table = table
        self.documents = 0
        self.batches = 0
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            TextColumn("{task.fields[status]}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        self._task_id: Any = None

    def start(self) -> None:
        """Start the progress display."""
        self._task_id = self.progress.add_task(
            f"[cyan]PULL {self.table}",
            total=None,
            status="waiting for first batch",
        )
        self.progress.start()

    def stop(self) -> None:
        """Stop the progress display."""
        self.progress.stop()

    def update(self, documents: int, checkpoint: Any) -> None:
        """Record one pulled batch."""
        self.documents += documents
        self.batches += 1
        if self._task_id is not None:
            self.progress.update(
                self._task_id,
                status=f"{self.documents:,} documents, {self.batches} batches, at {checkpoint}",
            )

    def __enter__(self) -> "PullDisplay":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


def print_summary(stats: dict[str, Any]) -> None:
    """Print a summary table after a pull completes."""
    table = Table(title="Pull Summary", border_style="green")

    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Table", stats.get("table", "N/A"))
    table.add_row("Duration", f"{stats.get('duration', 0):.1f}s")
    table.add_row("Batches", f"{stats.get('batches', 0):,}")
    table.add_row("Documents", f"{stats.get('documents', 0):,}")
    table.add_row("Soft-deleted", f"{stats.get('deleted', 0):,}")
    table.add_row("Checkpoint", str(stats.get("checkpoint") or "none"))

    console.print(table)


def print_checkpoints(rows: list[dict[str, Any]]) -> None:
    """Print stored checkpoints."""
    table = Table(title="Stored Checkpoints", border_style="blue")
    table.add_column("Replication", style="cyan")
    table.add_column("Table")
    table.add_column("Modified")
    table.add_column("Primary Key")
    table.add_column("Pulled", justify="right")
    table.add_column("Updated")

    for row in rows:
        table.add_row(
            row["identifier"],
            row["table"],
            str(row.get("modified") or "[dim]none[/dim]"),
            str(row.get("primary_key_value") or "[dim]none[/dim]"),
            f"{row.get('documents_pulled', 0):,}",
            row.get("updated_at") or "",
        )

    console.print(table)


def print_event(event: ChangeEvent) -> None:
    """Print a live change event."""
    for document in event.documents:
        console.print(
            f"[yellow]⟳[/yellow] [dim]{event.checkpoint}[/dim] "
            f"{json.dumps(document, default=str)}"
        )


def print_document(document: dict[str, Any], title: str = "Document") -> None:
    """Print one document as a two-column table."""
    table = Table(title=title, border_style="yellow")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in document.items():
        table.add_row(key, json.dumps(value, default=str))
    console.print(table)


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
