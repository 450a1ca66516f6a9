"""Snowflake."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection

from windowing.lib.dialects.base import Dialect, reported_autoincrement, zone_offset_seconds

logger = logging.getLogger(__name__)

__all__ = ["SNOWFLAKE"]


def snowflake_utc_offset(connection: Connection) -> int:
    row = connection.execute(text("show parameters like 'TIMEZONE'")).mappings().first()
    if row is None:
        return 0
    zone = str(row.get("value") or "UTC")
    offset = zone_offset_seconds(zone)
    if offset is None:
        logger.warning("Unrecognized Snowflake time zone %r, assuming UTC", zone)
        return 0
    return offset


def snowflake_autoincrement(column: Mapping[str, Any]) -> bool:
    default = str(column.get("default") or "").upper()
    if "IDENTITY" in default or "AUTOINCREMENT" in default:
        return True
    return reported_autoincrement(column)


SNOWFLAKE = Dialect(
    name="snowflake",
    utc_offset=snowflake_utc_offset,
    auto_increment=snowflake_autoincrement,
    uppercase_names=True,
    extra_time_types=frozenset({"TIMESTAMP_LTZ", "TIMESTAMP_NTZ", "TIMESTAMP_TZ"}),
)
