"""Task planning: split one scan range into per-window watermarks.

The planner never talks to the database. It takes the overall range
discovered for this run (see ``TableSource.get_task_info``) and the wanted
output windows, and decides what each window reads.

Planning by mode:
- FULL_LOAD: every window rescans the table; windows whose start is not on
  the full-load interval are no-ops.
- INCREMENT_ONLY: the key range is cut proportionally over all windows of
  the scheduling round, the last one absorbing the remainder.
- TIME_ONLY / INCREMENT_AND_TIME: each window reads its own wall-clock range
  shifted back by the read delay.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import List, Optional, Sequence

from windowing.lib.watermark import EPOCH, TimeRange, Watermark, shift_seconds

logger = logging.getLogger(__name__)

__all__ = ["PlannedWindow", "ScanMode", "TaskPlanner", "plan_tasks"]


class ScanMode(Enum):
    """Which columns drive a scan. Decided once when a source is configured."""

    INCREMENT_ONLY = "increment_only"
    TIME_ONLY = "time_only"
    INCREMENT_AND_TIME = "increment_and_time"
    FULL_LOAD = "full_load"

    @property
    def uses_time(self) -> bool:
        return self in (ScanMode.TIME_ONLY, ScanMode.INCREMENT_AND_TIME)

    @property
    def uses_increment(self) -> bool:
        return self in (ScanMode.INCREMENT_ONLY, ScanMode.INCREMENT_AND_TIME)

    @classmethod
    def resolve(
        cls,
        has_increment: bool,
        has_time: bool,
        full_load_interval: int = 0,
    ) -> "ScanMode":
        """Pick the mode for a set of resolved columns."""
        if full_load_interval > 0:
            return cls.FULL_LOAD
        if has_increment and has_time:
            return cls.INCREMENT_AND_TIME
        if has_time:
            return cls.TIME_ONLY
        if has_increment:
            return cls.INCREMENT_ONLY
        raise ValueError("A scan needs an increment column, timestamp columns or a full-load interval")


@dataclass(frozen=True)
class PlannedWindow:
    """One output window and the watermark it scans.

    A no-op window issues no query; its watermark is passed through as the
    completed watermark unchanged.
    """

    time_range: TimeRange
    watermark: Watermark
    noop: bool = False


class TaskPlanner:
    """Splits an overall watermark into per-window watermarks.

    Args:
        mode: Scan mode of the source
        read_delay: Seconds subtracted from window bounds so rows committed
            late are still picked up
        full_load_interval: Minutes between full rescans (FULL_LOAD only)
    """

    def __init__(
        self,
        mode: ScanMode,
        read_delay: int = 0,
        full_load_interval: int = 0,
    ) -> None:
        self.mode = mode
        self.read_delay = read_delay
        self.full_load_interval = full_load_interval

    def plan(
        self,
        overall: Watermark,
        wanted_ranges: Sequence[TimeRange],
        task_count: Optional[int] = None,
        previous: Optional[Watermark] = None,
    ) -> List[PlannedWindow]:
        """Plan the wanted windows of one scheduling round.

        Args:
            overall: Range available to scan this run
            wanted_ranges: Windows to produce, in time order
            task_count: Windows in the whole round, completed ones included.
                Defaults to ``len(wanted_ranges)``.
            previous: Last completed watermark; no window starts below it

        Returns:
            One PlannedWindow per wanted range, in the same order
        """
        wanted = list(wanted_ranges)
        if task_count is None:
            task_count = len(wanted)
        if task_count < len(wanted):
            raise ValueError(
                f"task_count {task_count} is smaller than the {len(wanted)} wanted windows"
            )
        if not wanted:
            return []

        if self.mode is ScanMode.FULL_LOAD:
            return self._plan_full_load(overall, wanted)
        if self.mode is ScanMode.INCREMENT_ONLY:
            planned = self._plan_by_increment(overall, wanted, task_count)
        elif self.mode in (ScanMode.TIME_ONLY, ScanMode.INCREMENT_AND_TIME):
            planned = self._plan_by_time(overall, wanted, task_count)
        else:
            raise ValueError(f"Unknown scan mode: {self.mode}")

        if previous is not None:
            planned = [
                PlannedWindow(p.time_range, p.watermark.limit_by_previous(previous), p.noop)
                for p in planned
            ]

        logger.debug(
            "Planned %d of %d windows (%s) over %s",
            len(planned),
            task_count,
            self.mode.value,
            overall,
        )
        return planned

    def is_full_load_boundary(self, time_range: TimeRange) -> bool:
        interval = timedelta(minutes=self.full_load_interval)
        if interval <= timedelta(0):
            return False
        return (time_range.start - EPOCH) % interval == timedelta(0)

    def _plan_full_load(
        self, overall: Watermark, wanted: List[TimeRange]
    ) -> List[PlannedWindow]:
        planned = []
        for time_range in wanted:
            if self.is_full_load_boundary(time_range):
                wm = Watermark(0, 0, time_range.start, time_range.end)
                planned.append(PlannedWindow(time_range, wm))
            else:
                planned.append(PlannedWindow(time_range, overall, noop=True))
        return planned

    def _plan_by_increment(
        self, overall: Watermark, wanted: List[TimeRange], task_count: int
    ) -> List[PlannedWindow]:
        items_per_task = overall.items_per_task(task_count)
        if items_per_task == 0:
            return [PlannedWindow(r, overall, noop=True) for r in wanted]

        # Tiles are cut over the whole round so boundaries do not move when
        # the wanted subset changes size between runs.
        first_wanted = task_count - len(wanted)
        planned = []
        for index in range(first_wanted, task_count):
            start = int(overall.inclusive_start + index * items_per_task)
            if index == task_count - 1:
                end = overall.exclusive_end
            else:
                end = int(overall.inclusive_start + (index + 1) * items_per_task)
            wm = Watermark(start, end, EPOCH, EPOCH)
            planned.append(PlannedWindow(wanted[index - first_wanted], wm))
        return planned

    def _plan_by_time(
        self, overall: Watermark, wanted: List[TimeRange], task_count: int
    ) -> List[PlannedWindow]:
        first_in_batch = task_count == len(wanted)
        planned = []
        for index, time_range in enumerate(wanted):
            if index == 0 and first_in_batch:
                # Continue exactly where the previous run stopped
                start_time = overall.start_time
            else:
                start_time = shift_seconds(time_range.start, -self.read_delay)
            end_time = max(shift_seconds(time_range.end, -self.read_delay), start_time)
            wm = Watermark(overall.inclusive_start, overall.exclusive_end, start_time, end_time)
            planned.append(PlannedWindow(time_range, wm))
        return planned


def plan_tasks(
    previous: Optional[Watermark],
    overall: Watermark,
    wanted_ranges: Sequence[TimeRange],
    *,
    mode: ScanMode,
    task_count: Optional[int] = None,
    read_delay: int = 0,
    full_load_interval: int = 0,
) -> List[Watermark]:
    """Functional form of TaskPlanner.plan returning only the watermarks."""
    planner = TaskPlanner(mode, read_delay=read_delay, full_load_interval=full_load_interval)
    return [p.watermark for p in planner.plan(overall, wanted_ranges, task_count, previous)]
