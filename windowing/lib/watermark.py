"""Watermark value types.

A Watermark is the only durable progress record of a table scan: a half-open
range ``[inclusive_start, exclusive_end)`` over the increment key plus a
half-open range ``[start_time, end_time)`` over the coalesced timestamp.
Completed watermarks are persisted by the caller and passed back in as the
previous watermark of the next run.

All instants are timezone-aware UTC datetimes. Naive datetimes passed in are
taken to be UTC already.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

__all__ = [
    "EPOCH",
    "MAX_INSTANT",
    "MIN_INSTANT",
    "TimeRange",
    "Watermark",
    "ensure_utc",
    "reshard",
    "shift_seconds",
    "to_db_local",
    "to_utc",
]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MIN_INSTANT = datetime.min.replace(tzinfo=timezone.utc)
MAX_INSTANT = datetime.max.replace(tzinfo=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clamp_to_epoch(value: Optional[datetime]) -> datetime:
    if value is None:
        return EPOCH
    value = ensure_utc(value)
    return EPOCH if value < EPOCH else value


def shift_seconds(value: datetime, seconds: float) -> datetime:
    """Add ``seconds`` to an instant, saturating at the representable bounds."""
    try:
        return value + timedelta(seconds=seconds)
    except OverflowError:
        bound = MAX_INSTANT if seconds > 0 else MIN_INSTANT
        if value.tzinfo is None:
            bound = bound.replace(tzinfo=None)
        logger.warning(
            "Shifting %s by %ss overflows; clamping to %s",
            value.isoformat(),
            seconds,
            bound.isoformat(),
        )
        return bound


def to_utc(value: Any, utc_offset_seconds: int = 0) -> datetime:
    """Convert a timestamp value read from the database to UTC.

    Naive values carry the database's local wall clock and are shifted by
    the server offset. Aware values are converted directly. Dates are taken
    at local midnight.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        local = value
    elif isinstance(value, date):
        local = datetime.combine(value, time.min)
    else:
        raise TypeError(f"Not a timestamp value: {value!r} ({type(value).__name__})")
    return shift_seconds(local.replace(tzinfo=timezone.utc), -utc_offset_seconds)


def to_db_local(value: datetime) -> datetime:
    """Drop the zone of an already offset-adjusted instant for binding."""
    return ensure_utc(value).replace(tzinfo=None)


@dataclass(frozen=True)
class TimeRange:
    """A half-open wall-clock range ``[start, end)`` for one output window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.end < self.start:
            raise ValueError(f"TimeRange end {self.end} is before start {self.start}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def split(self, step: timedelta) -> List["TimeRange"]:
        """Cut the range into consecutive windows of ``step``.

        The last window is truncated at ``end``.
        """
        if step <= timedelta(0):
            raise ValueError("step must be positive")
        ranges: List[TimeRange] = []
        cursor = self.start
        while cursor < self.end:
            upper = min(cursor + step, self.end)
            ranges.append(TimeRange(cursor, upper))
            cursor = upper
        return ranges

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


@dataclass(frozen=True)
class Watermark:
    """Progress boundary of a scan over an increment key and a timestamp.

    Key bounds are both zero when no increment column is configured.

    Example:
        >>> wm = Watermark(0, 100)
        >>> wm.items_per_task(4)
        25.0
    """

    inclusive_start: int = 0
    exclusive_end: int = 0
    start_time: Optional[datetime] = field(default=None)
    end_time: Optional[datetime] = field(default=None)

    def __post_init__(self) -> None:
        object.__setattr__(self, "inclusive_start", int(self.inclusive_start))
        object.__setattr__(self, "exclusive_end", int(self.exclusive_end))
        object.__setattr__(self, "start_time", _clamp_to_epoch(self.start_time))
        object.__setattr__(self, "end_time", _clamp_to_epoch(self.end_time))

        if self.exclusive_end < self.inclusive_start:
            raise ValueError(
                f"exclusive_end {self.exclusive_end} < inclusive_start {self.inclusive_start}"
            )
        if self.end_time < self.start_time:  # type: ignore[operator]
            raise ValueError(f"end_time {self.end_time} < start_time {self.start_time}")

    @classmethod
    def initial(cls) -> "Watermark":
        """The watermark of a table that has never been scanned."""
        return cls(0, 0, EPOCH, EPOCH)

    def item_count(self) -> int:
        return max(self.exclusive_end - self.inclusive_start, 0)

    def items_per_task(self, task_count: int) -> float:
        """Proportional split size of the key range over ``task_count`` tasks."""
        if task_count <= 0:
            return 0.0
        return self.item_count() / task_count

    def adjust_with_delay(self, seconds: float) -> "Watermark":
        """Shift both time bounds by ``seconds``.

        Saturates instead of raising when the shift leaves the representable
        range; the result is then clamped to the epoch like any other bound.
        """
        return Watermark(
            self.inclusive_start,
            self.exclusive_end,
            shift_seconds(self.start_time, seconds),  # type: ignore[arg-type]
            shift_seconds(self.end_time, seconds),  # type: ignore[arg-type]
        )

    def limit_by_previous(self, previous: Optional["Watermark"]) -> "Watermark":
        """Never start below what ``previous`` already completed."""
        if previous is None:
            return self
        inclusive_start = max(self.inclusive_start, previous.exclusive_end)
        start_time = max(self.start_time, previous.end_time)  # type: ignore[type-var]
        return Watermark(
            inclusive_start,
            max(self.exclusive_end, inclusive_start),
            start_time,
            max(self.end_time, start_time),  # type: ignore[type-var]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inclusive_start": self.inclusive_start,
            "exclusive_end": self.exclusive_end,
            "start_time": self.start_time.isoformat(),  # type: ignore[union-attr]
            "end_time": self.end_time.isoformat(),  # type: ignore[union-attr]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Watermark":
        def parse(value: Optional[str]) -> Optional[datetime]:
            if not value:
                return None
            return datetime.fromisoformat(value.replace("Z", "+00:00"))

        return cls(
            inclusive_start=int(data.get("inclusive_start", 0)),
            exclusive_end=int(data.get("exclusive_end", 0)),
            start_time=parse(data.get("start_time")),
            end_time=parse(data.get("end_time")),
        )

    def __str__(self) -> str:
        return (
            f"Watermark(keys=[{self.inclusive_start}, {self.exclusive_end}), "
            f"time=[{self.start_time.isoformat()}, {self.end_time.isoformat()}))"  # type: ignore[union-attr]
        )


def reshard(previous: Iterable[Watermark]) -> Watermark:
    """Starting watermark for a new shard layout.

    The most advanced point reached by any old shard becomes the new start.
    Rows may be read twice, never skipped.
    """
    previous = list(previous)
    if not previous:
        return Watermark.initial()

    max_end = max(wm.exclusive_end for wm in previous)
    max_time = max(wm.end_time for wm in previous)  # type: ignore[type-var]
    return Watermark(max_end, max_end, max_time, max_time)
