"""SQLite."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.types import INTEGER

from windowing.lib.dialects.base import Dialect

__all__ = ["SQLITE"]


def sqlite_autoincrement(column: Mapping[str, Any]) -> bool:
    """An ``INTEGER PRIMARY KEY`` column aliases the rowid."""
    return (
        bool(column.get("primary_key"))
        and column.get("primary_key_size", 1) == 1
        and isinstance(column.get("type"), INTEGER)
    )


# CURRENT_TIMESTAMP is UTC, there is no session zone
SQLITE = Dialect(
    name="sqlite",
    auto_increment=sqlite_autoincrement,
)
