"""MySQL and MariaDB."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from windowing.lib.catalog import SqlTypeCategory
from windowing.lib.dialects.base import Dialect, as_string

__all__ = ["MYSQL"]


def mysql_utc_offset(connection: Connection) -> int:
    return connection.execute(text("SELECT TIME_TO_SEC(TIMEDIFF(NOW(), UTC_TIMESTAMP()))")).scalar() or 0


# Drivers hand TIME back as a timedelta, which no serializer understands
MYSQL = Dialect(
    name="mysql",
    utc_offset=mysql_utc_offset,
    getter_overrides={SqlTypeCategory.TIME: as_string},
)
