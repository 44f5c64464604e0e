"""
Table Sync CLI - Command Line Interface.

Commands:
    pull    Pull remote changes since the stored checkpoint
    push    Push one local document with conflict detection
    watch   Print realtime change events
    status  Show stored checkpoints
    config  Manage configuration
"""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import SecretStr
from rich.console import Console
from rich.table import Table

from table_sync import __version__
from table_sync.config import Settings, load_settings
from table_sync.connectors.base import RemoteError
from table_sync.connectors.postgrest import create_postgrest_table
from table_sync.connectors.realtime import create_realtime_feed
from table_sync.core.checkpoint import is_deleted
from table_sync.core.push import ConfigurationError, InvariantViolationError, PushRow
from table_sync.core.replication import TableReplication
from table_sync.core.state import CheckpointStore
from table_sync.utils.display import (
    PullDisplay,
    print_checkpoints,
    print_document,
    print_error,
    print_event,
    print_info,
    print_success,
    print_summary,
    print_warning,
)
from table_sync.utils.logger import setup_logging_from_config


app = typer.Typer(
    name="table-sync",
    help="Offline-first replication between local documents and a remote table.",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

CONFLICT_EXIT_CODE = 2


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]table-sync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Table Sync - replicate a remote table with checkpoints, conflicts and realtime."""
    pass


# Shared options
ConfigOption = typer.Option(None, "--config", "-c", help="Path to config file.", exists=True)
UrlOption = typer.Option(None, "--url", help="Remote project URL (overrides config).")
ApiKeyOption = typer.Option(
    None,
    "--api-key",
    envvar="TABLE_SYNC_REMOTE__API_KEY",
    help="Remote API key.",
)
TableOption = typer.Option(None, "--table", "-t", help="Remote table (overrides config).")
PrimaryKeyOption = typer.Option(None, "--primary-key", help="Primary key column.")
QuietOption = typer.Option(False, "--quiet", "-q", help="Minimal output.")


# =============================================================================
# PULL Command
# =============================================================================
@app.command()
def pull(
    config_file: Optional[Path] = ConfigOption,
    url: Optional[str] = UrlOption,
    api_key: Optional[str] = ApiKeyOption,
    table: Optional[str] = TableOption,
    primary_key: Optional[str] = PrimaryKeyOption,
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        max=1000,
        help="Rows per pull request.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Append pulled documents to this JSON-lines file.",
    ),
    reset: bool = typer.Option(
        False,
        "--reset",
        help="Forget the stored checkpoint and pull everything.",
    ),
    quiet: bool = QuietOption,
) -> None:
    """
    Pull remote changes since the stored checkpoint.

    Example:
        table-sync pull --table humans --output humans.jsonl
    """
    settings = _load(config_file, url=url, api_key=api_key, table=table, primary_key=primary_key)
    if batch_size:
        settings.replication.batch_size = batch_size
    _setup_logging(settings, quiet)

    options = settings.replication
    store = CheckpointStore(settings.state_file)
    if reset:
        store.clear(options.identifier, options.table)
    checkpoint = store.get_checkpoint(options.identifier, options.table)

    if checkpoint and not quiet:
        print_info(f"Resuming {options.table} from {checkpoint}")

    async def run() -> dict[str, Any]:
        stats: dict[str, Any] = {
            "table": options.table,
            "batches": 0,
            "documents": 0,
            "deleted": 0,
            "checkpoint": checkpoint,
        }
        async with create_postgrest_table(settings.remote, options.table) as remote:
            replication = TableReplication(remote, options)
            with PullDisplay(options.table) if not quiet else _NullDisplay() as display:
                async for event in replication.iter_changes(checkpoint):
                    if output:
                        _append_documents(output, event.documents)
                    store.save_checkpoint(
                        options.identifier,
                        options.table,
                        event.checkpoint,
                        pulled=len(event.documents),
                    )
                    stats["batches"] += 1
                    stats["documents"] += len(event.documents)
                    stats["deleted"] += sum(
                        1 for d in event.documents if is_deleted(d, replication.fields)
                    )
                    stats["checkpoint"] = event.checkpoint
                    display.update(len(event.documents), event.checkpoint)
        return stats

    start_time = time.time()
    try:
        stats = asyncio.run(run())
    except RemoteError as e:
        print_error(f"Pull failed: {e}")
        print_info("The checkpoint of the last completed batch was kept; run pull again to resume.")
        raise typer.Exit(1)
    stats["duration"] = time.time() - start_time

    if not quiet:
        console.print()
        print_summary(stats)
    print_success(f"Pulled {stats['documents']:,} documents from {options.table}")


# =============================================================================
# PUSH Command
# =============================================================================
@app.command()
def push(
    document: Path = typer.Option(
        ...,
        "--document",
        "-d",
        help="JSON file with the new document state.",
        exists=True,
        dir_okay=False,
    ),
    assumed: Optional[Path] = typer.Option(
        None,
        "--assumed",
        "-a",
        help="JSON file with the remote state the change is based on (omit for inserts).",
        exists=True,
        dir_okay=False,
    ),
    config_file: Optional[Path] = ConfigOption,
    url: Optional[str] = UrlOption,
    api_key: Optional[str] = ApiKeyOption,
    table: Optional[str] = TableOption,
    primary_key: Optional[str] = PrimaryKeyOption,
    quiet: bool = QuietOption,
) -> None:
    """
    Push one document. A conflict prints the current remote row and exits with code 2.

    Example:
        table-sync push --table humans --document alice.json --assumed alice-before.json
    """
    settings = _load(config_file, url=url, api_key=api_key, table=table, primary_key=primary_key)
    _setup_logging(settings, quiet)

    row = PushRow(
        new_document_state=_read_json(document),
        assumed_master_state=_read_json(assumed) if assumed else None,
    )

    async def run() -> list[dict[str, Any]]:
        async with create_postgrest_table(settings.remote, settings.replication.table) as remote:
            return await TableReplication(remote, settings.replication).push_one(row)

    try:
        conflicts = asyncio.run(run())
    except (RemoteError, ConfigurationError, InvariantViolationError) as e:
        print_error(f"Push failed: {e}")
        raise typer.Exit(1)

    if conflicts:
        print_warning("Conflict: the remote row differs from the assumed state.")
        print_document(conflicts[0], title="Remote State")
        raise typer.Exit(CONFLICT_EXIT_CODE)

    print_success("Push applied.")


# =============================================================================
# WATCH Command
# =============================================================================
@app.command()
def watch(
    config_file: Optional[Path] = ConfigOption,
    url: Optional[str] = UrlOption,
    api_key: Optional[str] = ApiKeyOption,
    table: Optional[str] = TableOption,
    primary_key: Optional[str] = PrimaryKeyOption,
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        min=1,
        help="Stop after this many events.",
    ),
) -> None:
    """
    Print realtime insert/update events until interrupted.

    Example:
        table-sync watch --table humans
    """
    settings = _load(config_file, url=url, api_key=api_key, table=table, primary_key=primary_key)
    _setup_logging(settings)

    if not settings.replication.realtime_enabled:
        print_error("Realtime is disabled (replication.live and replication.realtime must be true).")
        raise typer.Exit(1)

    async def run() -> int:
        received = 0
        async with create_postgrest_table(settings.remote, settings.replication.table) as remote:
            replication = TableReplication(
                remote,
                settings.replication,
                feed=create_realtime_feed(settings.remote),
            )
            queue = replication.subscribe()
            async with replication:
                print_info(f"Watching {settings.replication.table} (Ctrl+C to stop)")
                while limit is None or received < limit:
                    item = await queue.get()
                    if isinstance(item, Exception):
                        # The feed ended; the relay is stopped
                        raise item
                    print_event(item)
                    received += 1
        return received

    try:
        received = asyncio.run(run())
    except KeyboardInterrupt:
        print_info("Stopped.")
        return
    except RemoteError as e:
        print_error(f"Watch failed: {e}")
        raise typer.Exit(1)

    print_success(f"Received {received} event(s).")


# =============================================================================
# STATUS Command
# =============================================================================
@app.command()
def status(
    state_file: Path = typer.Option(
        Path(".table-sync-state.json"),
        "--state-file",
        help="Path to state file.",
    ),
) -> None:
    """Show stored pull checkpoints."""
    store = CheckpointStore(state_file)
    rows = store.get_summary()

    if not rows:
        print_info("No checkpoints found. Run a pull first.")
        raise typer.Exit(0)

    print_checkpoints(rows)


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a config file with the current settings.",
    ),
    output: Path = typer.Option(
        Path("table-sync.toml"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
) -> None:
    """Manage configuration."""
    settings = Settings()

    if init:
        settings.to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        options = settings.replication
        table.add_row("Remote URL", settings.remote.url or "[dim]not set[/dim]")
        table.add_row(
            "API Key",
            "***" if settings.remote.api_key.get_secret_value() else "[dim]not set[/dim]",
        )
        table.add_row("Schema", settings.remote.db_schema)
        table.add_row("Table", options.table or "[dim]not set[/dim]")
        table.add_row("Primary Key", options.primary_key)
        table.add_row("Modified Field", options.last_modified_field)
        table.add_row("Deleted Field", options.deleted_field)
        table.add_row("Batch Size", f"{options.batch_size} rows")
        table.add_row("Realtime", "on" if options.realtime_enabled else "off")
        table.add_row("State File", str(settings.state_file))

        console.print(table)
        return

    console.print("Use --show to view config or --init to create config file.")


# =============================================================================
# Helper Functions
# =============================================================================
class _NullDisplay:
    """Stand-in for PullDisplay in quiet mode."""

    def update(self, documents: int, checkpoint: Any) -> None:
        pass

    def __enter__(self) -> "_NullDisplay":
        return self

    def __exit__(self, *args: Any) -> None:
        pass


def _load(config_file: Path | None = None, **overrides: Any) -> Settings:
    """Build settings from config file and CLI overrides, exiting on missing values."""
    try:
        settings = _build_settings(config_file, **overrides)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    errors = settings.validate_credentials()
    if errors:
        for err in errors:
            print_error(err)
        print_info("Use --help for configuration options.")
        raise typer.Exit(1)
    return settings


def _setup_logging(settings: Settings, quiet: bool = False) -> None:
    """Configure logging with the replication identifier and table as context."""
    setup_logging_from_config(
        settings.logging,
        level="WARNING" if quiet else None,
        identifier=settings.replication.identifier,
        table=settings.replication.table,
    )


def _build_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Build settings from config file and overrides."""
    if config_file:
        settings = load_settings(config_file)
    else:
        settings = Settings()

    if overrides.get("url"):
        settings.remote.url = overrides["url"]
    if overrides.get("api_key"):
        settings.remote.api_key = SecretStr(overrides["api_key"])
    if overrides.get("table"):
        settings.replication.table = overrides["table"]
    if overrides.get("primary_key"):
        settings.replication.primary_key = overrides["primary_key"]

    return settings


def _read_json(path: Path) -> dict[str, Any]:
    """Read a JSON object from a file."""
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{path} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{path} must contain a JSON object")
    return data


def _append_documents(path: Path, documents: list[dict[str, Any]]) -> None:
    """Append documents as JSON lines."""
    with path.open("a", encoding="utf-8") as f:
        for document in documents:
            f.write(json.dumps(document, default=str) + "\n")


if __name__ == "__main__":
    app()
