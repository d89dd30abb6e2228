"""VU scheduler: reconciles the live VU population with the stage schedule."""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence

from vuload.aggregator import MetricsAggregator
from vuload.models import RunResult, ThinkTime, ThresholdRule, VUState
from vuload.scenario import Scenario
from vuload.schedule import RunClock, Schedule
from vuload.thresholds import evaluate_all, required_percentiles
from vuload.worker import VUWorker

logger = logging.getLogger(__name__)


class VUScheduler:
    """Drive a run: start and stop VU workers on a fixed reconciliation tick.

    Args:
        schedule: Stage schedule giving the target VU count over time.
        scenario: Scenario every VU iterates.
        sender: HTTP collaborator with a blocking ``send(request)``.
        aggregator: Shared metrics aggregator.
        think_time: Pause between a VU's iterations.
        thresholds: Rules evaluated at run end, and every
            ``threshold_interval`` seconds when that is set.
        tick_interval: Seconds between reconciliation ticks.
        graceful_stop: Seconds to wait for in-flight iterations at run end.
        max_scenario_failures: Consecutive scenario failures a VU tolerates.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        schedule: Schedule,
        scenario: Scenario,
        sender,
        aggregator: MetricsAggregator,
        think_time: Optional[ThinkTime] = None,
        thresholds: Sequence[ThresholdRule] = (),
        tick_interval: float = 0.5,
        threshold_interval: Optional[float] = None,
        graceful_stop: float = 30.0,
        max_scenario_failures: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.schedule = schedule
        self.scenario = scenario
        self.sender = sender
        self.aggregator = aggregator
        self.think_time = think_time
        self.thresholds = tuple(thresholds)
        self.tick_interval = tick_interval
        self.threshold_interval = threshold_interval
        self.graceful_stop = graceful_stop
        self.max_scenario_failures = max_scenario_failures

        self.clock = RunClock(clock)
        self._workers: Dict[int, VUWorker] = {}
        self._next_id = 1
        self._cancel = threading.Event()
        self._fatal_error: Optional[str] = None
        self._aborted_by_threshold = False
        self._current_stage: Optional[int] = None
        self._percentiles = required_percentiles(self.thresholds)

    @property
    def live_count(self) -> int:
        """VUs in STARTING or RUNNING."""
        return sum(1 for w in self._workers.values() if w.active)

    @property
    def workers(self) -> List[VUWorker]:
        return list(self._workers.values())

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Stop the run; VUs finish their current iteration first."""
        if not self._cancel.is_set():
            logger.info("run cancelled: %s", reason)
        self._cancel.set()

    def reconcile(self, elapsed: float) -> int:
        """Run one reconciliation tick at ``elapsed`` seconds.

        Returns:
            The desired VU count for this tick.
        """
        self._reap()

        stage = self.schedule.stage_at(elapsed)
        if stage != self._current_stage:
            if stage is not None:
                logger.info("stage %d/%d started at %.1fs", stage + 1, len(self.schedule.stages), elapsed)
            self._current_stage = stage

        desired = self.schedule.target(elapsed)
        active = sorted((w for w in self._workers.values() if w.active), key=lambda w: w.id)
        live = len(active)
        if desired > live:
            for _ in range(desired - live):
                self._spawn()
            logger.debug("scaled up %d -> %d VUs at %.1fs", live, desired, elapsed)
        elif desired < live:
            for worker in active[desired:]:
                worker.stop()
            logger.debug("scaled down %d -> %d VUs at %.1fs", live, desired, elapsed)
        return desired

    def run(self) -> RunResult:
        """Execute the schedule to completion or cancellation."""
        total = self.schedule.total_duration
        logger.info(
            "starting run: %d stage(s), %.1fs, up to %d VUs",
            len(self.schedule.stages), total, self.schedule.max_target,
        )
        self.clock.start()
        next_evaluation = self.threshold_interval

        while not self._cancel.is_set():
            elapsed = self.clock.elapsed()
            if elapsed >= total:
                break
            self.reconcile(elapsed)
            if next_evaluation is not None and elapsed >= next_evaluation:
                self._evaluate_periodically(elapsed)
                next_evaluation += self.threshold_interval
            self._cancel.wait(min(self.tick_interval, max(total - elapsed, 0.0)))

        interrupted = self._stop_all()
        elapsed = self.clock.elapsed()
        snapshot = self.aggregator.snapshot(self._percentiles, elapsed_seconds=elapsed)
        verdicts = evaluate_all(self.thresholds, snapshot)
        for verdict in verdicts:
            if not verdict.passed:
                logger.warning(
                    "threshold failed: %s (observed %s)", verdict.threshold_name, verdict.observed_value
                )

        result = RunResult(
            snapshot=snapshot,
            verdicts=verdicts,
            fatal_error=self._fatal_error,
            cancelled=self._cancel.is_set(),
            aborted_by_threshold=self._aborted_by_threshold,
            interrupted_vus=interrupted,
            duration_seconds=elapsed,
        )
        logger.info("run finished after %.1fs: %d requests, passed=%s", elapsed, snapshot.total, result.passed)
        return result

    def _spawn(self) -> VUWorker:
        worker = VUWorker(
            vu_id=self._next_id,
            scenario=self.scenario,
            sender=self.sender,
            aggregator=self.aggregator,
            think_time=self.think_time,
            max_scenario_failures=self.max_scenario_failures,
            on_exit=self._on_worker_exit,
        )
        self._next_id += 1
        self._workers[worker.id] = worker
        worker.start()
        return worker

    def _on_worker_exit(self, worker: VUWorker) -> None:
        # Runs on the worker thread; only touches the cancel event.
        if worker.fatal:
            self._cancel.set()

    def _reap(self) -> None:
        for vu_id, worker in list(self._workers.items()):
            if worker.state is not VUState.STOPPED:
                continue
            del self._workers[vu_id]
            if worker.crashed:
                self.aggregator.record_worker_error()
                logger.error("vu %d stopped on error: %s", vu_id, worker.error)
                if worker.fatal and self._fatal_error is None:
                    self._fatal_error = f"vu {vu_id}: {worker.error}"

    def _stop_all(self) -> int:
        workers = list(self._workers.values())
        for worker in workers:
            worker.stop()
        deadline = self.clock.now() + self.graceful_stop
        interrupted = 0
        for worker in workers:
            if not worker.join(max(deadline - self.clock.now(), 0.0)):
                interrupted += 1
        if interrupted:
            logger.warning("%d VU(s) still in flight after %.1fs graceful stop", interrupted, self.graceful_stop)
        self._reap()
        return interrupted

    def _evaluate_periodically(self, elapsed: float) -> None:
        snapshot = self.aggregator.snapshot(self._percentiles, elapsed_seconds=elapsed)
        for rule, verdict in zip(self.thresholds, evaluate_all(self.thresholds, snapshot)):
            if verdict.passed:
                continue
            logger.warning("threshold failing at %.1fs: %s", elapsed, verdict.threshold_name)
            if rule.abort_on_fail:
                self._aborted_by_threshold = True
                self.cancel(f"threshold {verdict.threshold_name} failed")
