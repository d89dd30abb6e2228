"""Tests for the stage schedule and run clock."""

import pytest

from vuload.models import Stage
from vuload.schedule import RunClock, Schedule, round_half_up


def _payments_schedule():
    return Schedule([Stage(30, 2000), Stage(60, 2000), Stage(30, 0)])


class TestTarget:
    def test_ramp_up_midpoint(self):
        assert _payments_schedule().target(15) == 1000

    def test_hold_stage(self):
        schedule = _payments_schedule()
        assert schedule.target(30) == 2000
        assert schedule.target(60) == 2000
        assert schedule.target(89.9) == 2000

    def test_ramp_down(self):
        schedule = _payments_schedule()
        assert schedule.target(105) == 1000
        # 2000 * (1 - 29/30) = 66.67
        assert schedule.target(119) == 67
        assert schedule.target(119.5) == 33

    def test_zero_after_end(self):
        schedule = _payments_schedule()
        assert schedule.target(120) == 0
        assert schedule.target(500) == 0
        assert schedule.is_finished(120)
        assert not schedule.is_finished(119.99)

    def test_starts_from_zero(self):
        assert _payments_schedule().target(0) == 0

    def test_negative_time_counts_as_start(self):
        assert _payments_schedule().target(-5) == 0

    def test_start_target(self):
        schedule = Schedule([Stage(10, 20)], start_target=10)
        assert schedule.target(0) == 10
        assert schedule.target(5) == 15

    def test_zero_duration_is_hard_jump(self):
        schedule = Schedule([Stage(10, 5), Stage(0, 50), Stage(10, 50)])
        assert schedule.target(9.99) == 5
        assert schedule.target(10) == 50
        assert schedule.target(15) == 50

    def test_rounds_half_up(self):
        schedule = Schedule([Stage(4, 2)])
        # 0.5 rounds up, unlike round()'s banker's rounding
        assert schedule.target(1) == 1
        assert round_half_up(2.5) == 3

    def test_bounded_by_max_target(self):
        schedule = Schedule([Stage(7, 13), Stage(3, 100), Stage(11, 4), Stage(0, 60), Stage(5, 0)])
        t = 0.0
        while t < schedule.total_duration + 1:
            assert 0 <= schedule.target(t) <= schedule.max_target
            t += 0.05

    def test_continuous_within_ramp(self):
        schedule = Schedule([Stage(10, 1000)])
        prev = schedule.target(0)
        for i in range(1, 10000):
            cur = schedule.target(i * 0.001)
            assert abs(cur - prev) <= 1
            prev = cur


class TestScheduleProperties:
    def test_total_duration(self):
        assert _payments_schedule().total_duration == 120

    def test_max_target(self):
        assert _payments_schedule().max_target == 2000

    def test_stage_at(self):
        schedule = _payments_schedule()
        assert schedule.stage_at(0) == 0
        assert schedule.stage_at(45) == 1
        assert schedule.stage_at(119) == 2
        assert schedule.stage_at(120) is None

    def test_timeline(self):
        points = Schedule([Stage(2, 10)]).timeline(step=1)
        assert points == [(0, 0), (1, 5), (2, 0)]

    def test_timeline_includes_end(self):
        points = Schedule([Stage(2.5, 10)]).timeline(step=1)
        assert points[-1] == (2.5, 0)

    def test_timeline_rejects_bad_step(self):
        with pytest.raises(ValueError):
            _payments_schedule().timeline(step=0)


class TestRunClock:
    def test_elapsed_uses_injected_clock(self):
        now = [100.0]
        clock = RunClock(lambda: now[0])
        assert clock.elapsed() == 0.0
        clock.start()
        now[0] = 112.5
        assert clock.started
        assert clock.elapsed() == 12.5
