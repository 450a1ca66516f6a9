"""Bounded reading of one shared result cursor.

One query is executed over the union of a round's windows. Each window gets
a WindowReader that pulls rows from the shared BoundedCursor until it sees a
row beyond its upper bound; that row is pushed back so the next window's
reader starts with it. Readers must be consumed in window order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Iterator, List, Optional, Sequence

from sqlalchemy.engine import Connection, Result
from sqlalchemy.exc import SQLAlchemyError

from windowing.lib.catalog import TableMetadata
from windowing.lib.dialects.base import Query
from windowing.lib.errors import BoundaryViolationError, TransientIOError
from windowing.lib.planner import ScanMode
from windowing.lib.watermark import Watermark, to_utc

logger = logging.getLogger(__name__)

__all__ = ["BoundedCursor", "CursorState", "FetchedRow", "WindowReader"]

_TICK = timedelta(microseconds=1)


@dataclass(frozen=True)
class FetchedRow:
    """A fetched row with its boundary keys.

    ``inc_value`` and ``timestamp`` come from the typed result values, not
    from the materialized ``values``. ``timestamp`` is UTC.
    """

    values: tuple
    inc_value: Optional[int] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CursorState:
    """Lookahead state: at most one pushed-back row, and end of results."""

    buffered: Optional[FetchedRow] = None
    done: bool = False


class BoundedCursor:
    """Owns a connection and the streamed result of one scan query.

    Closing is idempotent and always returns the connection to its pool.
    """

    def __init__(
        self,
        connection: Connection,
        result: Result,
        table: TableMetadata,
        mode: ScanMode,
        utc_offset: int = 0,
    ) -> None:
        self._connection = connection
        self._result = result
        self.table = table
        self.mode = mode
        self.utc_offset = utc_offset
        self.state = CursorState()
        self._closed = False

        self._inc_position = table.inc_column.position if table.inc_column else None
        self._time_positions = [c.position for c in table.time_columns]

    @classmethod
    def open(
        cls,
        connection: Connection,
        query: Query,
        table: TableMetadata,
        mode: ScanMode,
        utc_offset: int = 0,
    ) -> "BoundedCursor":
        """Execute ``query`` on ``connection`` and wrap the result.

        The connection is closed if execution fails.

        Raises:
            TransientIOError: If the query fails
        """
        try:
            result = connection.execution_options(stream_results=True).execute(
                query.statement(table.result_columns())
            )
        except SQLAlchemyError as exc:
            connection.close()
            raise TransientIOError(
                f"Scan query failed on {table.full_name}",
                operation="scan",
                cause=exc,
                table=table.full_name,
                details={"sql": query.sql},
            ) from exc
        logger.debug("Opened scan cursor on %s: %s %s", table.full_name, query.sql, query.params)
        return cls(connection, result, table, mode, utc_offset)

    @property
    def closed(self) -> bool:
        return self._closed

    def next_row(self) -> Optional[FetchedRow]:
        """Serve the pushed-back row if any, else fetch the next one."""
        if self.state.buffered is not None:
            row = self.state.buffered
            self.state = replace(self.state, buffered=None)
            return row
        if self.state.done or self._closed:
            return None

        try:
            raw = self._result.fetchone()
        except SQLAlchemyError as exc:
            self.close()
            raise TransientIOError(
                f"Reading rows from {self.table.full_name} failed",
                operation="fetch",
                cause=exc,
                table=self.table.full_name,
            ) from exc

        if raw is None:
            self.state = replace(self.state, done=True)
            return None
        return self._extract(raw)

    def push_back(self, row: FetchedRow) -> None:
        """Un-read ``row`` so the next call to next_row() returns it."""
        if self.state.buffered is not None:
            raise RuntimeError("A row is already pushed back")
        self.state = replace(self.state, buffered=row)

    def _extract(self, raw: Sequence[Any]) -> FetchedRow:
        inc_value = None
        if self._inc_position is not None and self.mode.uses_increment:
            value = raw[self._inc_position]
            inc_value = int(value) if value is not None else None

        timestamp = None
        if self.mode.uses_time:
            value = next(
                (raw[pos] for pos in self._time_positions if raw[pos] is not None),
                None,
            )
            if value is None:
                raise BoundaryViolationError(
                    "Row has no value in any timestamp column",
                    columns=[c.name for c in self.table.time_columns],
                    table=self.table.full_name,
                    details={"inc_value": inc_value} if inc_value is not None else None,
                )
            timestamp = to_utc(value, self.utc_offset)

        return FetchedRow(tuple(self.table.materialize(raw)), inc_value, timestamp)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._result.close()
        except SQLAlchemyError as exc:
            logger.warning("Closing scan result on %s failed: %s", self.table.full_name, exc)
        finally:
            self._connection.close()
            logger.debug("Released scan connection for %s", self.table.full_name)

    def __enter__(self) -> "BoundedCursor":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class WindowReader:
    """Reads the rows of one window from a shared cursor.

    Args:
        cursor: Cursor shared by all windows of the round
        watermark: Planned watermark of this window
        is_last: Close the cursor once this window is exhausted
    """

    def __init__(self, cursor: BoundedCursor, watermark: Watermark, *, is_last: bool = False) -> None:
        self.cursor = cursor
        self.watermark = watermark
        self.is_last = is_last
        self.rows_read = 0
        self.finished = False
        self._last_inc: Optional[int] = None
        self._last_time: Optional[datetime] = None

    @property
    def mode(self) -> ScanMode:
        return self.cursor.mode

    def _exceeds(self, row: FetchedRow) -> bool:
        if self.mode.uses_time:
            return row.timestamp >= self.watermark.end_time  # type: ignore[operator]
        if self.mode is ScanMode.INCREMENT_ONLY:
            return row.inc_value is not None and row.inc_value >= self.watermark.exclusive_end
        return False

    def _precedes(self, row: FetchedRow) -> bool:
        if self.mode.uses_time:
            return row.timestamp < self.watermark.start_time  # type: ignore[operator]
        return False

    def _next_in_window(self) -> Optional[FetchedRow]:
        while True:
            row = self.cursor.next_row()
            if row is None:
                return None
            if self._exceeds(row):
                self.cursor.push_back(row)
                return None
            if self._precedes(row):
                logger.debug("Skipping row at %s before window start", row.timestamp)
                continue
            return row

    def rows(self) -> Iterator[List[Any]]:
        """Yield the materialized values of every row in the window."""
        try:
            while True:
                row = self._next_in_window()
                if row is None:
                    break
                self.rows_read += 1
                if row.inc_value is not None:
                    self._last_inc = row.inc_value
                if row.timestamp is not None:
                    self._last_time = row.timestamp
                yield list(row.values)
        except Exception:
            self.cursor.close()
            raise

        self.finished = True
        if self.is_last:
            self.cursor.close()

    def completed_watermark(self) -> Watermark:
        """Progress reached by this window.

        Equal to the planned watermark until a row has been read.
        """
        wm = self.watermark
        mode = self.mode

        if mode is ScanMode.FULL_LOAD:
            return wm

        if mode is ScanMode.INCREMENT_ONLY:
            if self.finished or self._last_inc is None:
                return wm
            end = max(self._last_inc + 1, wm.inclusive_start)
            return Watermark(wm.inclusive_start, end, wm.start_time, wm.end_time)

        if mode is ScanMode.TIME_ONLY:
            if self._last_time is None:
                return wm
            return Watermark(wm.inclusive_start, wm.exclusive_end, wm.start_time, self._last_time)

        if mode is ScanMode.INCREMENT_AND_TIME:
            if self._last_time is None:
                # Keys at the end instant were not seen; stop just short of it
                end_time = max(wm.end_time - _TICK, wm.start_time)  # type: ignore[operator]
                return Watermark(wm.inclusive_start, wm.exclusive_end, wm.start_time, end_time)
            exclusive_end = (self._last_inc + 1) if self._last_inc is not None else wm.exclusive_end
            return Watermark(
                min(wm.inclusive_start, exclusive_end),
                exclusive_end,
                wm.start_time,
                self._last_time,
            )

        raise ValueError(f"Unknown scan mode: {mode}")
