"""Microsoft SQL Server (pyodbc)."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from windowing.lib.dialects.base import Dialect, LimitStyle

__all__ = ["SQLSERVER"]


def sqlserver_utc_offset(connection: Connection) -> int:
    # DATEDIFF(unit, start, end) is end - start
    return connection.execute(text("SELECT DATEDIFF(second, GETUTCDATE(), GETDATE())")).scalar() or 0


SQLSERVER = Dialect(
    name="sqlserver",
    utc_offset=sqlserver_utc_offset,
    limit_style=LimitStyle.TOP,
    extra_time_types=frozenset({"DATETIMEOFFSET", "DATETIME2", "SMALLDATETIME"}),
)
