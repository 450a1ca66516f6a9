"""Oracle."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection

from windowing.lib.catalog import SqlTypeCategory
from windowing.lib.dialects.base import Dialect, LimitStyle, as_hex

__all__ = ["ORACLE"]


def oracle_utc_offset(connection: Connection) -> int:
    sql = (
        "SELECT extract(day from (SYSTIMESTAMP - sys_extract_utc(systimestamp)) * 24 * 60 * 60) "
        "FROM DUAL"
    )
    return connection.execute(text(sql)).scalar() or 0


def oracle_autoincrement(column: Mapping[str, Any]) -> bool:
    """Identity columns default to ``"SCHEMA"."ISEQ$$_123".nextval``."""
    default = str(column.get("default") or "").strip().upper()
    if default.endswith(".NEXTVAL") and "ISEQ$$" in default:
        return True
    return bool(column.get("identity"))


ORACLE = Dialect(
    name="oracle",
    utc_offset=oracle_utc_offset,
    auto_increment=oracle_autoincrement,
    uppercase_names=True,
    limit_style=LimitStyle.ROWNUM,
    extra_time_types=frozenset({"TIMESTAMP WITH TIME ZONE", "TIMESTAMP WITH LOCAL TIME ZONE"}),
    getter_overrides={SqlTypeCategory.BINARY: as_hex},
)
