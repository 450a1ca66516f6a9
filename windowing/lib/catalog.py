"""Table catalog: reflected metadata and scan column resolution.

Metadata is loaded once through SQLAlchemy reflection when a source is
configured. The increment column and the timestamp columns are then chosen:
an explicit override wins, otherwise the first auto-increment column found
by the dialect is used. Timestamp columns are never guessed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.sql import column as column_clause
from sqlalchemy.sql.elements import ColumnClause
from sqlalchemy.types import TypeEngine

from windowing.lib.errors import ConfigurationError
from windowing.lib.planner import ScanMode
from windowing.lib.validate import ValidationIssue, ValidationSeverity

if TYPE_CHECKING:
    from windowing.lib.dialects.base import Dialect

logger = logging.getLogger(__name__)

__all__ = [
    "ColumnInfo",
    "SqlTypeCategory",
    "TableMetadata",
    "ValueGetter",
    "load_table_metadata",
    "parse_column_list",
    "resolve_columns",
]

ValueGetter = Callable[[Any], Any]


class SqlTypeCategory(Enum):
    """Closed set of column kinds with distinct value materialization."""

    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"
    BINARY = "binary"
    STRUCTURED = "structured"
    DEFAULT = "default"


@dataclass(frozen=True)
class ColumnInfo:
    """One reflected column."""

    name: str
    sql_type: TypeEngine
    category: SqlTypeCategory = SqlTypeCategory.DEFAULT
    is_increment_candidate: bool = False
    is_time_type: bool = False
    position: int = 0

    def clause(self) -> ColumnClause:
        """Typed column expression used to process result values."""
        return column_clause(self.name, self.sql_type)


@dataclass(frozen=True)
class TableMetadata:
    """Reflected table plus the columns chosen to drive the scan.

    ``value_getters`` holds one getter per column, in column order, built
    from the dialect's category table when the metadata is loaded.
    """

    name: str
    columns: Tuple[ColumnInfo, ...]
    schema: Optional[str] = None
    catalog: Optional[str] = None
    inc_column: Optional[ColumnInfo] = None
    time_columns: Tuple[ColumnInfo, ...] = ()
    value_getters: Tuple[ValueGetter, ...] = field(default=(), compare=False, repr=False)

    @property
    def full_name(self) -> str:
        if self.schema:
            return f"{self.schema}.{self.name}"
        return self.name

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def has_increment(self) -> bool:
        return self.inc_column is not None

    @property
    def has_time(self) -> bool:
        return bool(self.time_columns)

    def column(self, name: str) -> Optional[ColumnInfo]:
        """Case-insensitive column lookup."""
        wanted = name.strip().lower()
        for col in self.columns:
            if col.name.lower() == wanted:
                return col
        return None

    def scan_mode(self, full_load_interval: int = 0) -> ScanMode:
        return ScanMode.resolve(self.has_increment, self.has_time, full_load_interval)

    def result_columns(self) -> List[ColumnClause]:
        return [c.clause() for c in self.columns]

    def materialize(self, row: Sequence[Any]) -> List[Any]:
        """Turn a result row into output values through the getter table."""
        if not self.value_getters:
            return list(row)
        return [getter(value) for getter, value in zip(self.value_getters, row)]


def parse_column_list(value: Optional[Any]) -> List[str]:
    """Accept ``"a, b"`` or ``["a", "b"]`` and return clean names."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [str(item).strip() for item in items if str(item).strip()]


def _find_table(
    connection: Connection,
    dialect: "Dialect",
    table_name: str,
    schema: Optional[str],
) -> Optional[Tuple[str, Optional[str]]]:
    inspector = inspect(connection)
    candidates = []
    normalized = (
        dialect.to_upper_case_if_required(table_name),
        dialect.to_upper_case_if_required(schema) if schema else None,
    )
    candidates.append(normalized)
    if normalized != (table_name, schema):
        candidates.append((table_name, schema))

    for name, schema_name in candidates:
        if inspector.has_table(name, schema=schema_name):
            return name, schema_name
    return None


def load_table_metadata(
    connection: Connection,
    dialect: "Dialect",
    table_name: str,
    *,
    schema: Optional[str] = None,
    keep_types: bool = True,
) -> TableMetadata:
    """Reflect a table and classify its columns.

    Raises:
        ConfigurationError: If the table does not exist
    """
    found = _find_table(connection, dialect, table_name, schema)
    if found is None:
        raise ConfigurationError(
            f"Table not found: {table_name}",
            field="table_name",
            value=f"{schema}.{table_name}" if schema else table_name,
            suggestion="Check the table name and schema; some databases store unquoted names uppercased.",
        )
    name, schema_name = found

    inspector = inspect(connection)
    reflected = inspector.get_columns(name, schema=schema_name)
    pk = inspector.get_pk_constraint(name, schema=schema_name) or {}
    pk_columns = [c.lower() for c in pk.get("constrained_columns") or []]

    columns = []
    for position, row in enumerate(reflected):
        row = dict(row)
        row["primary_key"] = row["name"].lower() in pk_columns
        row["primary_key_size"] = len(pk_columns)
        sql_type = row["type"]
        columns.append(
            ColumnInfo(
                name=row["name"],
                sql_type=sql_type,
                category=dialect.categorize(sql_type),
                is_increment_candidate=dialect.is_auto_increment_column(row),
                is_time_type=dialect.is_time_type(sql_type),
                position=position,
            )
        )

    getter_table = dialect.value_getters(keep_types)
    metadata = TableMetadata(
        name=name,
        schema=schema_name,
        catalog=connection.engine.url.database,
        columns=tuple(columns),
        value_getters=tuple(getter_table[c.category] for c in columns),
    )
    logger.debug(
        "Loaded metadata for %s: %d columns (%s)",
        metadata.full_name,
        len(columns),
        ", ".join(c.name for c in columns),
    )
    return metadata


def resolve_columns(
    metadata: TableMetadata,
    *,
    incrementing_column: Optional[str] = None,
    timestamp_columns: Optional[Sequence[str]] = None,
    full_load: bool = False,
) -> Tuple[TableMetadata, List[ValidationIssue]]:
    """Choose the increment and timestamp columns of a table.

    Returns the metadata with the chosen columns set and the problems found.
    An override that does not fit is reported, never silently replaced.
    """
    issues: List[ValidationIssue] = []

    inc_column: Optional[ColumnInfo] = None
    if incrementing_column:
        inc_column = metadata.column(incrementing_column)
        if inc_column is None:
            issues.append(
                ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    field="incrementing_column",
                    message=f"Column '{incrementing_column}' does not exist in {metadata.full_name}",
                    suggestion=f"Use one of: {', '.join(metadata.column_names)}",
                )
            )
        elif not inc_column.is_increment_candidate:
            issues.append(
                ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    field="incrementing_column",
                    message=f"Column '{inc_column.name}' is not an auto-increment column",
                    suggestion="Pick an identity/serial column or leave the override empty",
                )
            )
            inc_column = None
    else:
        inc_column = next((c for c in metadata.columns if c.is_increment_candidate), None)
        if inc_column is not None:
            logger.info("Detected increment column %s on %s", inc_column.name, metadata.full_name)

    time_columns: List[ColumnInfo] = []
    requested = list(timestamp_columns or [])
    for name in requested:
        col = metadata.column(name)
        if col is None:
            issues.append(
                ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    field="timestamp_columns",
                    message=f"Timestamp column '{name}' does not exist in {metadata.full_name}",
                )
            )
        elif not col.is_time_type:
            issues.append(
                ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    field="timestamp_columns",
                    message=f"Column '{col.name}' is not a date or timestamp column",
                    suggestion="Only DATE and TIMESTAMP-like columns can bound a time window",
                )
            )
        else:
            time_columns.append(col)

    if requested and not time_columns and not any(
        i.field == "timestamp_columns" and i.severity == ValidationSeverity.ERROR for i in issues
    ):
        issues.append(
            ValidationIssue(
                severity=ValidationSeverity.ERROR,
                field="timestamp_columns",
                message="None of the provided timestamp columns exist",
                suggestion=f"Use some of: {', '.join(metadata.column_names)}",
            )
        )

    if not full_load and inc_column is None and not time_columns and not requested:
        issues.append(
            ValidationIssue(
                severity=ValidationSeverity.ERROR,
                field="timestamp_columns",
                message=(
                    f"{metadata.full_name} has no auto-increment column and no timestamp "
                    "columns were given"
                ),
                suggestion="Set timestamp_columns, incrementing_column or full_load_interval",
            )
        )

    resolved = replace(metadata, inc_column=inc_column, time_columns=tuple(time_columns))
    return resolved, issues
