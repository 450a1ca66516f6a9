"""Dialect capability set shared by every database vendor.

A Dialect is a value, not a base class. Each vendor module builds one
instance from plain functions (offset lookup, auto-increment detection) and
a few flags (identifier case, row-limit syntax, extra time types). The SQL
shapes are produced here from those capabilities, so every vendor gets the
same WHERE and ORDER BY discipline.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import ColumnClause, TextClause
from sqlalchemy.types import (
    ARRAY,
    BINARY,
    JSON,
    VARBINARY,
    BigInteger,
    Date,
    DateTime,
    LargeBinary,
    NullType,
    Time,
    TypeEngine,
)

from windowing.lib.catalog import SqlTypeCategory, TableMetadata, ValueGetter
from windowing.lib.planner import ScanMode
from windowing.lib.watermark import Watermark, to_db_local

logger = logging.getLogger(__name__)

__all__ = [
    "Dialect",
    "LimitStyle",
    "Query",
    "as_hex",
    "as_string",
    "native",
    "reported_autoincrement",
    "zone_offset_seconds",
]

KEY_TYPE = BigInteger()


class LimitStyle(Enum):
    """Where a vendor puts its row limit."""

    LIMIT = "limit"  # ... LIMIT n
    TOP = "top"  # SELECT TOP n ...
    ROWNUM = "rownum"  # ... WHERE ROWNUM <= n


@dataclass(frozen=True)
class Query:
    """A parameterized statement with its bound values.

    ``param_types`` tells SQLAlchemy how to bind each value so timestamps
    reach the database in the column's own format.
    """

    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    param_types: Dict[str, TypeEngine] = field(default_factory=dict, compare=False, repr=False)

    def statement(self, result_columns: Optional[List[ColumnClause]] = None) -> TextClause:
        stmt = text(self.sql)
        binds = [
            bindparam(name, value, type_=self.param_types.get(name))
            for name, value in self.params.items()
        ]
        if binds:
            stmt = stmt.bindparams(*binds)
        if result_columns:
            # Positional: SELECT * returns columns in reflection order
            return stmt.columns(*result_columns)  # type: ignore[return-value]
        return stmt


def native(value: Any) -> Any:
    return value


def as_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def as_hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "read"):
        value = value.read()
    return bytes(value).hex()


def reported_autoincrement(column: Mapping[str, Any]) -> bool:
    """Trust the driver's auto-increment flag."""
    return column.get("autoincrement") is True


def _no_offset(connection: Connection) -> int:
    return 0


_FIXED_OFFSET = re.compile(r"^([+-])(\d{1,2})(?::?(\d{2}))?$")


def zone_offset_seconds(zone_name: str, at: Optional[datetime] = None) -> Optional[int]:
    """Offset of a named zone (or ``+hh[:mm]``) from UTC, in seconds.

    Returns None when the name is not understood.
    """
    name = (zone_name or "").strip()
    if name.upper() in ("UTC", "GMT", "Z", "ZULU", "ETC/UTC"):
        return 0

    match = _FIXED_OFFSET.match(name)
    if match:
        sign, hours, minutes = match.groups()
        seconds = int(hours) * 3600 + int(minutes or 0) * 60
        return -seconds if sign == "-" else seconds

    try:
        zone = ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    moment = at or datetime.now(timezone.utc)
    offset = moment.astimezone(zone).utcoffset()
    return int(offset.total_seconds()) if offset is not None else 0


def _type_name(sql_type: TypeEngine) -> str:
    return str(getattr(sql_type, "__visit_name__", type(sql_type).__name__)).upper()


@dataclass(frozen=True, eq=False)
class Dialect:
    """Vendor-specific SQL and value semantics.

    Args:
        name: Vendor name used in logs
        utc_offset: Reads the server's offset from UTC (local minus UTC)
        auto_increment: Decides from a reflected column whether it is an
            auto-increment key
        uppercase_names: Unquoted identifiers are stored uppercased
        limit_style: Row-limit syntax
        extra_time_types: Vendor type names that count as timestamps
        getter_overrides: Category getters that replace the defaults
    """

    name: str
    utc_offset: Callable[[Connection], Any] = _no_offset
    auto_increment: Callable[[Mapping[str, Any]], bool] = reported_autoincrement
    uppercase_names: bool = False
    limit_style: LimitStyle = LimitStyle.LIMIT
    extra_time_types: FrozenSet[str] = frozenset()
    getter_overrides: Mapping[SqlTypeCategory, ValueGetter] = field(default_factory=dict)

    # Vendor facts

    def utc_offset_seconds(self, connection: Connection) -> int:
        offset = self.utc_offset(connection)
        return int(round(float(offset or 0)))

    def is_auto_increment_column(self, column: Mapping[str, Any]) -> bool:
        return bool(self.auto_increment(column))

    def requires_uppercase_names(self) -> bool:
        return self.uppercase_names

    def to_upper_case_if_required(self, identifier: str) -> str:
        return identifier.upper() if self.uppercase_names else identifier

    def is_time_type(self, sql_type: TypeEngine) -> bool:
        if isinstance(sql_type, (DateTime, Date)):
            return True
        return _type_name(sql_type) in self.extra_time_types

    def categorize(self, sql_type: TypeEngine) -> SqlTypeCategory:
        if isinstance(sql_type, DateTime) or _type_name(sql_type) in self.extra_time_types:
            return SqlTypeCategory.TIMESTAMP
        if isinstance(sql_type, Date):
            return SqlTypeCategory.DATE
        if isinstance(sql_type, Time):
            return SqlTypeCategory.TIME
        if isinstance(sql_type, (LargeBinary, BINARY, VARBINARY)):
            return SqlTypeCategory.BINARY
        if isinstance(sql_type, (ARRAY, JSON, NullType)):
            return SqlTypeCategory.STRUCTURED
        return SqlTypeCategory.DEFAULT

    def value_getters(self, keep_types: bool) -> Dict[SqlTypeCategory, ValueGetter]:
        """Getter per category. ``keep_types`` keeps date/time values native."""
        temporal = native if keep_types else as_string
        getters: Dict[SqlTypeCategory, ValueGetter] = {
            SqlTypeCategory.DATE: temporal,
            SqlTypeCategory.TIME: temporal,
            SqlTypeCategory.TIMESTAMP: temporal,
            SqlTypeCategory.BINARY: native,
            SqlTypeCategory.STRUCTURED: native,
            SqlTypeCategory.DEFAULT: native,
        }
        getters.update(self.getter_overrides)
        return getters

    # Row limits

    def top_limit(self, limit: Optional[int]) -> Optional[str]:
        if limit is None or self.limit_style is not LimitStyle.TOP:
            return None
        return f"TOP {int(limit)}"

    def rownum_condition(self, limit: Optional[int]) -> Optional[str]:
        if limit is None or self.limit_style is not LimitStyle.ROWNUM:
            return None
        return f"ROWNUM <= {int(limit)}"

    def end_limit(self, limit: Optional[int]) -> Optional[str]:
        if limit is None or self.limit_style is not LimitStyle.LIMIT:
            return None
        return f"LIMIT {int(limit)}"

    # Identifiers

    def table_expression(self, table: TableMetadata) -> str:
        name = self.to_upper_case_if_required(table.name)
        if table.schema:
            return f"{self.to_upper_case_if_required(table.schema)}.{name}"
        return name

    def inc_expression(self, table: TableMetadata) -> str:
        if table.inc_column is None:
            raise ValueError(f"{table.full_name} has no increment column")
        return self.to_upper_case_if_required(table.inc_column.name)

    def time_expression(self, table: TableMetadata) -> str:
        if not table.time_columns:
            raise ValueError(f"{table.full_name} has no timestamp columns")
        names = [self.to_upper_case_if_required(c.name) for c in table.time_columns]
        if len(names) == 1:
            return names[0]
        return f"COALESCE({', '.join(names)})"

    def _time_type(self, table: TableMetadata) -> TypeEngine:
        return table.time_columns[0].sql_type

    def _select(
        self,
        table: TableMetadata,
        where: Optional[str],
        order_by: Optional[str],
        limit: Optional[int],
    ) -> str:
        parts = ["SELECT"]
        top = self.top_limit(limit)
        if top:
            parts.append(top)
        parts.append(f"* FROM {self.table_expression(table)}")

        conditions = [where] if where else []
        rownum = self.rownum_condition(limit)
        if rownum and not order_by:
            conditions.append(rownum)
        if conditions:
            parts.append("WHERE " + " AND ".join(conditions))

        if order_by:
            parts.append(f"ORDER BY {order_by}")
        end = self.end_limit(limit)
        if end:
            parts.append(end)
        sql = " ".join(parts)

        if rownum and order_by:
            # ROWNUM is assigned before ORDER BY runs; limit the ordered rows instead
            sql = f"SELECT * FROM ({sql}) WHERE {rownum}"
        return sql

    # Data queries

    def query_by_inc(
        self, table: TableMetadata, watermark: Watermark, limit: Optional[int] = None
    ) -> Query:
        inc = self.inc_expression(table)
        sql = self._select(
            table,
            f"{inc} BETWEEN :inc_start AND :inc_end",
            f"{inc} ASC",
            limit,
        )
        return Query(
            sql,
            {"inc_start": watermark.inclusive_start, "inc_end": watermark.exclusive_end - 1},
            {"inc_start": KEY_TYPE, "inc_end": KEY_TYPE},
        )

    def query_by_time(
        self, table: TableMetadata, watermark: Watermark, limit: Optional[int] = None
    ) -> Query:
        ts = self.time_expression(table)
        sql = self._select(
            table,
            f"{ts} >= :start_time AND {ts} < :end_time",
            f"{ts} ASC",
            limit,
        )
        time_type = self._time_type(table)
        return Query(
            sql,
            {
                "start_time": to_db_local(watermark.start_time),  # type: ignore[arg-type]
                "end_time": to_db_local(watermark.end_time),  # type: ignore[arg-type]
            },
            {"start_time": time_type, "end_time": time_type},
        )

    def query_by_inc_and_time(
        self, table: TableMetadata, watermark: Watermark, limit: Optional[int] = None
    ) -> Query:
        ts = self.time_expression(table)
        inc = self.inc_expression(table)
        # Rows sharing the start timestamp are ordered by key
        where = (
            f"{ts} < :end_time AND "
            f"(({ts} = :start_time AND {inc} >= :inc_start) OR ({ts} > :start_time))"
        )
        sql = self._select(table, where, f"{ts}, {inc} ASC", limit)
        time_type = self._time_type(table)
        return Query(
            sql,
            {
                "end_time": to_db_local(watermark.end_time),  # type: ignore[arg-type]
                "start_time": to_db_local(watermark.start_time),  # type: ignore[arg-type]
                "inc_start": watermark.inclusive_start,
            },
            {"end_time": time_type, "start_time": time_type, "inc_start": KEY_TYPE},
        )

    def query_full_table(
        self, table: TableMetadata, watermark: Optional[Watermark] = None, limit: Optional[int] = None
    ) -> Query:
        return Query(self._select(table, None, None, limit))

    def query_data(
        self,
        table: TableMetadata,
        mode: ScanMode,
        watermark: Watermark,
        limit: Optional[int] = None,
    ) -> Query:
        """Data query for a scan mode."""
        if mode is ScanMode.INCREMENT_ONLY:
            return self.query_by_inc(table, watermark, limit)
        if mode is ScanMode.TIME_ONLY:
            return self.query_by_time(table, watermark, limit)
        if mode is ScanMode.INCREMENT_AND_TIME:
            return self.query_by_inc_and_time(table, watermark, limit)
        if mode is ScanMode.FULL_LOAD:
            return self.query_full_table(table, watermark, limit)
        raise ValueError(f"Unknown scan mode: {mode}")

    # Task info queries

    def task_info_by_inc(self, table: TableMetadata, start_from: int) -> Query:
        inc = self.inc_expression(table)
        sql = (
            f"SELECT MIN({inc}) AS min_value, MAX({inc}) AS max_value "
            f"FROM {self.table_expression(table)} WHERE {inc} >= :start_from"
        )
        return Query(sql, {"start_from": start_from}, {"start_from": KEY_TYPE})

    def task_info_by_time(
        self, table: TableMetadata, start_time: datetime, max_time: datetime
    ) -> Query:
        ts = self.time_expression(table)
        sql = (
            f"SELECT MAX({ts}) AS last_time FROM {self.table_expression(table)} "
            f"WHERE {ts} > :start_time AND {ts} < :max_time"
        )
        time_type = self._time_type(table)
        return Query(
            sql,
            {"start_time": to_db_local(start_time), "max_time": to_db_local(max_time)},
            {"start_time": time_type, "max_time": time_type},
        )

    def task_info_by_inc_and_time(
        self,
        table: TableMetadata,
        start_from: int,
        start_time: datetime,
        max_time: datetime,
    ) -> Query:
        ts = self.time_expression(table)
        inc = self.inc_expression(table)
        sql = (
            f"SELECT MIN({inc}) AS min_value, MAX({inc}) AS max_value, MAX({ts}) AS last_time "
            f"FROM {self.table_expression(table)} "
            f"WHERE {ts} < :max_time AND "
            f"(({ts} = :start_time AND {inc} >= :start_from) OR ({ts} > :start_time))"
        )
        time_type = self._time_type(table)
        return Query(
            sql,
            {
                "max_time": to_db_local(max_time),
                "start_time": to_db_local(start_time),
                "start_from": start_from,
            },
            {"max_time": time_type, "start_time": time_type, "start_from": KEY_TYPE},
        )

    def __repr__(self) -> str:
        return f"Dialect({self.name!r})"
