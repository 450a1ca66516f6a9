"""Source configuration.

``SourceConfig`` describes one table to scan and is validated with Pydantic.
It can be built in Python or loaded from YAML, where ``${VAR}`` references
are expanded from the environment (and an optional .env file).

``EngineSettings`` holds process-wide defaults read from ``WINDOWING_*``
environment variables.

Example YAML (orders.yaml):
    source:
      connection_string: "postgresql+psycopg2://${DB_HOST}:5432/shop"
      user: "${DB_USER}"
      password: "${DB_PASSWORD}"
      schema_pattern: public
      table_name: orders
      timestamp_columns: updated_at, created_at
      read_delay: 30

Usage:
    from windowing.lib.config import load_source_config
    config = load_source_config("./orders.yaml")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from windowing.lib.catalog import parse_column_list
from windowing.lib.env import expand_options, load_env_file, unresolved_references
from windowing.lib.errors import ConfigurationError
from windowing.lib.validate import issues_from_pydantic

logger = logging.getLogger(__name__)

__all__ = [
    "EngineSettings",
    "SourceConfig",
    "load_source_config",
    "parse_source_config",
]

_CONNECTION_FIELDS = ("connection_string", "user", "password")


class SourceConfig(BaseModel):
    """One table to scan incrementally.

    Example:
        >>> config = SourceConfig(
        ...     connection_string="sqlite:///shop.db",
        ...     table_name="orders",
        ...     timestamp_columns="updated_at",
        ... )
        >>> config.timestamp_columns
        ['updated_at']
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    connection_string: str = Field(..., min_length=1, description="SQLAlchemy URL or jdbc:<vendor>: string")
    table_name: str = Field(..., min_length=1, description="Table to scan")
    user: Optional[str] = Field(default=None, description="Database user")
    password: Optional[str] = Field(default=None, description="Database password", repr=False)
    schema_pattern: Optional[str] = Field(default=None, description="Schema holding the table")
    incrementing_column: Optional[str] = Field(default=None, description="Auto-increment column override")
    timestamp_columns: List[str] = Field(
        default_factory=list,
        description="Timestamp columns, first non-null value per row wins",
    )
    read_delay: int = Field(default=0, ge=0, description="Seconds to stay behind the wall clock")
    full_load_interval: int = Field(default=0, ge=0, description="Minutes between full rescans, 0 disables")
    keep_types: bool = Field(default=True, description="Keep date/time values native instead of strings")
    connect_retries: int = Field(default=1, ge=1, le=10, description="Attempts when opening sessions")
    name: Optional[str] = Field(default=None, description="Engine registry key")

    @field_validator("timestamp_columns", mode="before")
    @classmethod
    def split_timestamp_columns(cls, v: Any) -> List[str]:
        """Accept a comma-separated string as well as a list."""
        return parse_column_list(v)

    @field_validator("incrementing_column", "schema_pattern", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("connection_string", "table_name")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @property
    def source_name(self) -> str:
        if self.name:
            return self.name
        if self.schema_pattern:
            return f"{self.schema_pattern}.{self.table_name}"
        return self.table_name


class EngineSettings(BaseSettings):
    """Environment-based engine settings using pydantic-settings.

    Automatically loads from environment variables with WINDOWING_ prefix.

    Example:
        >>> # WINDOWING_POOL_SIZE=10
        >>> # WINDOWING_IDLE_TIMEOUT=120
        >>> settings = EngineSettings()
        >>> settings.pool_size
        10
    """

    pool_size: int = Field(default=5, ge=1, le=100, description="Connections per source pool")
    pool_timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for a free connection")
    idle_timeout: int = Field(default=300, ge=1, description="Seconds before a pooled connection is recycled")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    state_dir: str = Field(default=".state", description="Directory for persisted watermarks")

    model_config = SettingsConfigDict(
        env_prefix="WINDOWING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()


def parse_source_config(properties: Dict[str, Any]) -> SourceConfig:
    """Build a SourceConfig from a plain property dict.

    Raises:
        ConfigurationError: With one issue per invalid field
    """
    for key in _CONNECTION_FIELDS:
        value = properties.get(key)
        missing = unresolved_references(value) if isinstance(value, str) else []
        if missing:
            logger.warning("Unresolved environment references in %s: %s", key, ", ".join(missing))

    try:
        return SourceConfig(**expand_options(properties))
    except PydanticValidationError as exc:
        issues = issues_from_pydantic(exc)
        raise ConfigurationError(
            "Invalid source properties",
            field=issues[0].field if issues else None,
            issues=issues,
        ) from exc


def load_source_config(
    path: Union[str, Path],
    *,
    env_file: Optional[Union[str, Path]] = None,
) -> SourceConfig:
    """Load a SourceConfig from a YAML file.

    The file may hold the properties at the top level or under ``source:``.

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    path = Path(path)
    if env_file is not None:
        load_env_file(env_file)

    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}", field="path", value=path)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}", field="path", value=path) from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping in {path}", field="path", value=path)

    properties = data.get("source", data)
    if not isinstance(properties, dict):
        raise ConfigurationError(f"'source' must be a mapping in {path}", field="source")

    logger.debug("Loaded source configuration from %s", path)
    return parse_source_config(properties)
