"""PostgreSQL and Amazon Redshift."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection

from windowing.lib.catalog import SqlTypeCategory
from windowing.lib.dialects.base import Dialect, as_string, zone_offset_seconds

logger = logging.getLogger(__name__)

__all__ = ["POSTGRES", "REDSHIFT"]


def _session_zone(connection: Connection) -> str:
    return str(connection.execute(text("SELECT current_setting('TIMEZONE')")).scalar() or "UTC")


def postgres_utc_offset(connection: Connection) -> int:
    zone = _session_zone(connection)
    offset = zone_offset_seconds(zone)
    if offset is None:
        # POSIX-style settings; let the server do the arithmetic
        offset = connection.execute(text("SELECT EXTRACT(TIMEZONE FROM now())")).scalar() or 0
    return int(offset)


def redshift_utc_offset(connection: Connection) -> int:
    zone = _session_zone(connection)
    offset = zone_offset_seconds(zone)
    if offset is None:
        logger.warning("Unrecognized Redshift time zone %r, assuming UTC", zone)
        return 0
    return offset


def _default_text(column: Mapping[str, Any]) -> str:
    return str(column.get("default") or "").strip()


def postgres_autoincrement(column: Mapping[str, Any]) -> bool:
    return _default_text(column).startswith("nextval(") or bool(column.get("identity"))


def redshift_autoincrement(column: Mapping[str, Any]) -> bool:
    return _default_text(column).startswith('"identity"(')


# json, uuid, arrays and composite types have no portable native form
POSTGRES = Dialect(
    name="postgresql",
    utc_offset=postgres_utc_offset,
    auto_increment=postgres_autoincrement,
    extra_time_types=frozenset({"TIMESTAMPTZ"}),
    getter_overrides={SqlTypeCategory.STRUCTURED: as_string},
)

REDSHIFT = Dialect(
    name="redshift",
    utc_offset=redshift_utc_offset,
    auto_increment=redshift_autoincrement,
    extra_time_types=frozenset({"TIMESTAMPTZ"}),
    getter_overrides={SqlTypeCategory.STRUCTURED: as_string},
)
