"""
Table Sync Configuration System.

This module provides a type-safe configuration system using Pydantic.
Settings can be loaded from:
1. Environment variables (prefixed with TABLE_SYNC_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Example usage:
    from table_sync.config import Settings, ReplicationOptions

    # Load from environment
    settings = Settings()

    # Or with explicit values
    settings = Settings(
        remote={"url": "https://project.supabase.co", "api_key": "key"},
        replication=ReplicationOptions(table="humans"),
    )
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from table_sync.core.checkpoint import CheckpointFields


DEFAULT_LAST_MODIFIED_FIELD = "_modified"
DEFAULT_DELETED_FIELD = "_deleted"


class ReplicationOptions(BaseModel):
    """Options for replicating one remote table."""

    table: str = Field(
        default="",
        description="Remote table to replicate",
    )
    primary_key: str = Field(
        default="id",
        description="Primary key column (defaults to the collection's key)",
    )
    last_modified_field: str = Field(
        default=DEFAULT_LAST_MODIFIED_FIELD,
        min_length=1,
        description="Column the remote store sets to the last write time",
    )
    deleted_field: str = Field(
        default=DEFAULT_DELETED_FIELD,
        min_length=1,
        description="Soft-delete flag column",
    )
    live: bool = Field(
        default=True,
        description="Keep replicating after the initial pull",
    )
    realtime: bool = Field(
        default=True,
        description="Subscribe to realtime change notifications (live mode only)",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Rows fetched per pull",
    )
    identifier: str = Field(
        default="default",
        min_length=1,
        description="Replication identifier, used for channel and state keys",
    )

    @property
    def realtime_enabled(self) -> bool:
        """Realtime notifications only run in live mode."""
        return self.live and self.realtime

    def checkpoint_fields(self) -> CheckpointFields:
        """Column names the checkpoint model works with."""
        from table_sync.core.checkpoint import CheckpointFields

        return CheckpointFields(
            primary_key=self.primary_key,
            modified=self.last_modified_field,
            deleted=self.deleted_field,
        )


class RemoteConfig(BaseModel):
    """Connection settings for the remote PostgREST endpoint."""

    url: str = Field(
        default="",
        description="Base URL, e.g. https://<project>.supabase.co",
    )
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key sent as apikey and bearer token",
    )
    db_schema: str = Field(
        default="public",
        description="Database schema holding the table",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP read timeout",
    )
    heartbeat_interval_seconds: float = Field(
        default=25.0,
        gt=0,
        description="Realtime websocket heartbeat interval",
    )

    @field_validator("api_key", mode="before")
    @classmethod
    def validate_api_key(cls, v: Any) -> SecretStr:
        """Handle the key from various sources."""
        if isinstance(v, SecretStr):
            return v
        if isinstance(v, str):
            return SecretStr(v)
        return SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class Settings(BaseSettings):
    """
    Main settings class for Table Sync.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (TABLE_SYNC_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        # From environment
        export TABLE_SYNC_REMOTE__URL="https://project.supabase.co"
        export TABLE_SYNC_REPLICATION__TABLE="humans"
        settings = Settings()

        # From config file
        settings = Settings.from_file("config.toml")
    """

    model_config = SettingsConfigDict(
        env_prefix="TABLE_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    replication: ReplicationOptions = Field(default_factory=ReplicationOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    state_file: Path = Field(
        default=Path(".table-sync-state.json"),
        description="Where the CLI keeps pull checkpoints",
    )

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a TOML or JSON config file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".toml", ".tml"):
            import tomllib

            data = tomllib.loads(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save current settings to a config file."""
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)

        # Mask sensitive data
        if "api_key" in data.get("remote", {}):
            data["remote"]["api_key"] = "***REDACTED***"

        if path.suffix in (".toml", ".tml"):
            # Basic TOML serialization
            # Top-level keys must precede the first table
            lines = [
                f"{key} = {json.dumps(value)}"
                for key, value in data.items()
                if not isinstance(value, dict)
            ]
            for key, value in data.items():
                if isinstance(value, dict):
                    lines.append(f"\n[{key}]")
                    for k, v in value.items():
                        lines.append(f"{k} = {json.dumps(v)}")
            path.write_text("\n".join(lines))
        else:
            path.write_text(json.dumps(data, indent=2))

    def validate_credentials(self) -> list[str]:
        """Validate that required connection values are present. Returns list of errors."""
        errors = []
        if not self.remote.url:
            errors.append("remote.url is required")
        if not self.remote.api_key.get_secret_value():
            errors.append("remote.api_key is required")
        if not self.replication.table:
            errors.append("replication.table is required")
        return errors


def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and overrides.

    Args:
        config_file: Optional path to config file
        **overrides: Settings to override (highest priority)

    Returns:
        Configured Settings instance
    """
    if config_file:
        settings = Settings.from_file(config_file)
        if overrides:
            data = settings.model_dump()
            data.update(overrides)
            return Settings.model_validate(data)
        return settings
    return Settings(**overrides)
