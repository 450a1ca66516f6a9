"""Tests for windowing/lib/planner.py - splitting a scan into windows."""

from datetime import datetime, timedelta, timezone

import pytest

from windowing.lib.planner import PlannedWindow, ScanMode, TaskPlanner, plan_tasks
from windowing.lib.watermark import EPOCH, TimeRange, Watermark

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def minutes(n: float) -> datetime:
    return BASE + timedelta(minutes=n)


def windows(start: int, end: int, step: int = 1):
    """Consecutive TimeRanges of ``step`` minutes between two minute offsets."""
    return TimeRange(minutes(start), minutes(end)).split(timedelta(minutes=step))


class TestScanMode:
    """Tests for deciding the scan mode."""

    def test_full_load_wins(self):
        assert ScanMode.resolve(True, True, full_load_interval=5) is ScanMode.FULL_LOAD

    def test_increment_and_time(self):
        assert ScanMode.resolve(True, True) is ScanMode.INCREMENT_AND_TIME

    def test_time_only(self):
        assert ScanMode.resolve(False, True) is ScanMode.TIME_ONLY

    def test_increment_only(self):
        assert ScanMode.resolve(True, False) is ScanMode.INCREMENT_ONLY

    def test_nothing_to_scan_by(self):
        with pytest.raises(ValueError):
            ScanMode.resolve(False, False)

    def test_flags(self):
        assert ScanMode.INCREMENT_AND_TIME.uses_time
        assert ScanMode.INCREMENT_AND_TIME.uses_increment
        assert not ScanMode.TIME_ONLY.uses_increment
        assert not ScanMode.INCREMENT_ONLY.uses_time
        assert not ScanMode.FULL_LOAD.uses_time


# ============================================
# Increment tiling
# ============================================


class TestIncrementPlanning:
    """Tests for INCREMENT_ONLY key tiling."""

    def test_even_tiles(self):
        """[0, 100) over 4 windows gives four tiles of 25."""
        planner = TaskPlanner(ScanMode.INCREMENT_ONLY)
        planned = planner.plan(Watermark(0, 100), windows(0, 4))
        assert [(p.watermark.inclusive_start, p.watermark.exclusive_end) for p in planned] == [
            (0, 25),
            (25, 50),
            (50, 75),
            (75, 100),
        ]
        assert not any(p.noop for p in planned)

    def test_last_tile_absorbs_remainder(self):
        """[0, 101) over 4 windows truncates boundaries and ends at 101."""
        planner = TaskPlanner(ScanMode.INCREMENT_ONLY)
        planned = planner.plan(Watermark(0, 101), windows(0, 4))
        assert [(p.watermark.inclusive_start, p.watermark.exclusive_end) for p in planned] == [
            (0, 25),
            (25, 50),
            (50, 75),
            (75, 101),
        ]

    def test_tiles_cover_range_without_overlap(self):
        planner = TaskPlanner(ScanMode.INCREMENT_ONLY)
        planned = planner.plan(Watermark(17, 1000), windows(0, 7))
        bounds = [(p.watermark.inclusive_start, p.watermark.exclusive_end) for p in planned]
        assert bounds[0][0] == 17
        assert bounds[-1][1] == 1000
        for (_, end), (start, _) in zip(bounds, bounds[1:]):
            assert end == start

    def test_only_trailing_tiles_for_partial_round(self):
        """With completed windows in the round, the last tiles are returned."""
        planner = TaskPlanner(ScanMode.INCREMENT_ONLY)
        planned = planner.plan(Watermark(0, 100), windows(2, 4), task_count=4)
        assert [(p.watermark.inclusive_start, p.watermark.exclusive_end) for p in planned] == [
            (50, 75),
            (75, 100),
        ]
        assert [p.time_range for p in planned] == windows(2, 4)

    def test_empty_range_is_noop(self):
        """No keys to read: every window passes the overall watermark through."""
        overall = Watermark(10, 10, EPOCH, EPOCH)
        planner = TaskPlanner(ScanMode.INCREMENT_ONLY)
        planned = planner.plan(overall, windows(0, 3))
        assert all(p.noop for p in planned)
        assert all(p.watermark == overall for p in planned)

    def test_time_bounds_stay_at_epoch(self):
        planner = TaskPlanner(ScanMode.INCREMENT_ONLY)
        planned = planner.plan(Watermark(0, 10, minutes(0), minutes(5)), windows(0, 2))
        assert all(p.watermark.start_time == EPOCH for p in planned)


# ============================================
# Time planning
# ============================================


class TestTimePlanning:
    """Tests for TIME_ONLY and INCREMENT_AND_TIME windows."""

    @pytest.mark.parametrize("mode", [ScanMode.TIME_ONLY, ScanMode.INCREMENT_AND_TIME])
    def test_windows_follow_wanted_ranges(self, mode):
        planner = TaskPlanner(mode)
        overall = Watermark(3, 9, minutes(2), minutes(9))
        planned = planner.plan(overall, windows(2, 9, step=2), task_count=5)
        assert [(p.watermark.start_time, p.watermark.end_time) for p in planned] == [
            (minutes(2), minutes(4)),
            (minutes(4), minutes(6)),
            (minutes(6), minutes(8)),
            (minutes(8), minutes(9)),
        ]
        assert all(
            (p.watermark.inclusive_start, p.watermark.exclusive_end) == (3, 9) for p in planned
        )

    def test_read_delay_shifts_windows_back(self):
        planner = TaskPlanner(ScanMode.TIME_ONLY, read_delay=30)
        planned = planner.plan(Watermark(0, 0, EPOCH, minutes(4)), windows(0, 4, step=2), task_count=3)
        assert planned[0].watermark.start_time == minutes(-0.5)
        assert planned[0].watermark.end_time == minutes(1.5)
        assert planned[1].watermark.start_time == minutes(1.5)

    def test_first_window_of_batch_resumes_from_previous_end(self):
        """The first window of a fresh round starts where the last run stopped."""
        overall = Watermark(0, 0, minutes(1), minutes(8))
        planner = TaskPlanner(ScanMode.TIME_ONLY, read_delay=30)
        planned = planner.plan(overall, windows(4, 8, step=2))
        assert planned[0].watermark.start_time == minutes(1)
        assert planned[1].watermark.start_time == minutes(5.5)

    def test_first_window_mid_batch_uses_its_own_start(self):
        """Once windows of the round completed, no window reaches back further."""
        overall = Watermark(0, 0, minutes(1), minutes(8))
        planner = TaskPlanner(ScanMode.TIME_ONLY, read_delay=30)
        planned = planner.plan(overall, windows(4, 8, step=2), task_count=3)
        assert planned[0].watermark.start_time == minutes(3.5)

    def test_end_raised_to_start(self):
        """A previous end past the window end yields an empty window, not an error."""
        overall = Watermark(0, 0, minutes(10), minutes(10))
        planner = TaskPlanner(ScanMode.TIME_ONLY)
        planned = planner.plan(overall, windows(0, 2, step=2))
        assert planned[0].watermark.start_time == minutes(10)
        assert planned[0].watermark.end_time == minutes(10)


# ============================================
# Full load
# ============================================


class TestFullLoadPlanning:
    """Tests for FULL_LOAD scheduling."""

    def test_only_aligned_windows_load(self):
        """With a 3 minute interval only every third one-minute window loads."""
        overall = Watermark(0, 0, minutes(0), minutes(6))
        planner = TaskPlanner(ScanMode.FULL_LOAD, full_load_interval=3)
        planned = planner.plan(overall, windows(0, 6))
        assert [p.noop for p in planned] == [False, True, True, False, True, True]
        assert planned[0].watermark == Watermark(0, 0, minutes(0), minutes(1))
        assert planned[3].watermark == Watermark(0, 0, minutes(3), minutes(4))
        assert planned[1].watermark == overall

    def test_boundary_check(self):
        planner = TaskPlanner(ScanMode.FULL_LOAD, full_load_interval=15)
        assert planner.is_full_load_boundary(TimeRange(minutes(30), minutes(31)))
        assert not planner.is_full_load_boundary(TimeRange(minutes(31), minutes(32)))

    def test_no_interval_is_never_a_boundary(self):
        planner = TaskPlanner(ScanMode.FULL_LOAD, full_load_interval=0)
        assert not planner.is_full_load_boundary(TimeRange(minutes(0), minutes(1)))


# ============================================
# Shared rules
# ============================================


class TestPlanRules:
    """Tests for rules that apply to every mode."""

    def test_no_wanted_ranges(self):
        assert TaskPlanner(ScanMode.TIME_ONLY).plan(Watermark.initial(), []) == []

    def test_task_count_below_wanted_rejected(self):
        with pytest.raises(ValueError, match="task_count"):
            TaskPlanner(ScanMode.TIME_ONLY).plan(Watermark.initial(), windows(0, 3), task_count=2)

    @pytest.mark.parametrize(
        "mode", [ScanMode.INCREMENT_ONLY, ScanMode.TIME_ONLY, ScanMode.INCREMENT_AND_TIME]
    )
    def test_never_below_previous(self, mode):
        """Every planned window starts at or after the previous completed watermark."""
        previous = Watermark(0, 40, minutes(0), minutes(3))
        overall = Watermark(10, 100, minutes(1), minutes(8))
        planned = TaskPlanner(mode).plan(overall, windows(0, 8, step=2), previous=previous)
        for p in planned:
            assert p.watermark.inclusive_start >= previous.exclusive_end
            assert p.watermark.start_time >= previous.end_time

    def test_windows_are_ordered(self):
        planned = TaskPlanner(ScanMode.INCREMENT_AND_TIME).plan(
            Watermark(0, 10, minutes(0), minutes(8)), windows(0, 8, step=2)
        )
        starts = [p.watermark.start_time for p in planned]
        assert starts == sorted(starts)

    def test_plan_tasks_returns_watermarks(self):
        result = plan_tasks(
            None,
            Watermark(0, 100),
            windows(0, 4),
            mode=ScanMode.INCREMENT_ONLY,
        )
        assert result == [
            Watermark(0, 25),
            Watermark(25, 50),
            Watermark(50, 75),
            Watermark(75, 100),
        ]

    def test_planned_window_defaults(self):
        window = PlannedWindow(TimeRange(minutes(0), minutes(1)), Watermark.initial())
        assert window.noop is False
