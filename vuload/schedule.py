"""Stage schedule: maps elapsed run time to a target VU count."""

import math
import time
from typing import Callable, List, Optional, Sequence, Tuple

from vuload.models import Stage


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class Schedule:
    """An ordered sequence of stages ramping or holding concurrency.

    Each stage moves linearly from the previous stage's target (or
    ``start_target`` for the first stage) to its own target over its
    duration. A zero-duration stage is a hard jump.
    """

    def __init__(self, stages: Sequence[Stage], start_target: int = 0):
        self.stages = tuple(stages)
        self.start_target = start_target

    @property
    def total_duration(self) -> float:
        return sum(s.duration_seconds for s in self.stages)

    @property
    def max_target(self) -> int:
        return max([self.start_target] + [s.target for s in self.stages])

    def is_finished(self, t: float) -> bool:
        return t >= self.total_duration

    def stage_at(self, t: float) -> Optional[int]:
        """Return the index of the stage active at ``t``, or None once finished."""
        start = 0.0
        for i, stage in enumerate(self.stages):
            end = start + stage.duration_seconds
            if max(t, 0.0) < end:
                return i
            start = end
        return None

    def target(self, t: float) -> int:
        """Return the target VU count at ``t`` seconds into the run.

        Args:
            t: Elapsed seconds since run start. Negative values count as 0.

        Returns:
            The interpolated target, rounded half-up and clamped to the
            bounds of the active ramp. 0 once the schedule has finished.
        """
        t = max(t, 0.0)
        previous = self.start_target
        start = 0.0
        for stage in self.stages:
            end = start + stage.duration_seconds
            if t < end:
                if previous == stage.target:
                    return stage.target
                progress = (t - start) / stage.duration_seconds
                value = round_half_up(previous + (stage.target - previous) * progress)
                return min(max(value, 0), max(previous, stage.target))
            previous = stage.target
            start = end
        return 0

    def timeline(self, step: float = 1.0) -> List[Tuple[float, int]]:
        """Sample the target every ``step`` seconds, including the end point."""
        if step <= 0:
            raise ValueError("step must be positive")
        points = []
        total = self.total_duration
        n = int(math.floor(total / step))
        for i in range(n + 1):
            t = round(i * step, 6)
            points.append((t, self.target(t)))
        if not points or points[-1][0] < total:
            points.append((total, self.target(total)))
        return points


class RunClock:
    """Monotonic elapsed time since ``start()``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started_at: Optional[float] = None

    def start(self) -> None:
        self._started_at = self._clock()

    @property
    def started(self) -> bool:
        return self._started_at is not None

    def now(self) -> float:
        """Current reading of the underlying clock."""
        return self._clock()

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at
