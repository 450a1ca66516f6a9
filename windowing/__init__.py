"""Incremental, resumable extraction of relational tables.

A table is read as a sequence of bounded windows. Each window reports a
completed watermark that the next run resumes from.

Usage:
    from windowing import TableSource, TimeRange

    with TableSource({"connection_string": "sqlite:///shop.db",
                      "table_name": "orders",
                      "timestamp_columns": "updated_at"}).configure() as source:
        ...
"""

from windowing.lib.source import TableSource, validate_source
from windowing.lib.watermark import TimeRange, Watermark

__version__ = "1.0.0"

__all__ = [
    "TableSource",
    "TimeRange",
    "Watermark",
    "validate_source",
]
