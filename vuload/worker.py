"""Virtual-user worker: runs scenario iterations until told to stop."""

import logging
import random
import threading
from typing import Callable, Optional, Union

from vuload.aggregator import AggregatorError, MetricsAggregator
from vuload.models import ClassifiedOutcome, OutcomeKind, Response, ThinkTime, VUState
from vuload.scenario import Scenario, ScenarioError
from vuload.transport import TransportError

logger = logging.getLogger(__name__)


def classify(result: Union[Response, TransportError], scenario: Optional[Scenario] = None) -> ClassifiedOutcome:
    """Classify one iteration's response or transport error.

    2xx/3xx responses succeed unless one of the scenario's checks fails;
    4xx and 5xx map to client and server errors tagged ``status-<code>``.
    """
    if isinstance(result, TransportError):
        return ClassifiedOutcome(
            kind=OutcomeKind.TRANSPORT_ERROR,
            tag=f"transport-{result.cause}",
            cause=result.cause,
        )

    status = result.status
    if 400 <= status < 500:
        return ClassifiedOutcome(kind=OutcomeKind.CLIENT_ERROR, status=status, tag=f"status-{status}")
    if status >= 500:
        return ClassifiedOutcome(kind=OutcomeKind.SERVER_ERROR, status=status, tag=f"status-{status}")
    if status < 200:
        # informational responses are never a final answer
        return ClassifiedOutcome(kind=OutcomeKind.CHECK_FAILED, status=status, tag=f"status-{status}")

    for check in scenario.checks if scenario else ():
        if not check(result):
            return ClassifiedOutcome(
                kind=OutcomeKind.CHECK_FAILED,
                status=status,
                tag=f"check-{check.name}",
                cause=check.name,
            )
    return ClassifiedOutcome(kind=OutcomeKind.SUCCESS, status=status)


def think_duration(think_time: Optional[ThinkTime], rng: random.Random) -> float:
    if think_time is None:
        return 0.0
    if think_time.fixed:
        return think_time.min_seconds
    return rng.uniform(think_time.min_seconds, think_time.max_seconds)


class VUWorker:
    """One virtual user, backed by a daemon thread.

    The worker starts in STARTING, moves to RUNNING once its thread begins
    iterating, to STOPPING when ``stop()`` is called, and to STOPPED after
    its current iteration has been recorded. ``crashed`` is set when the
    thread exits on an unexpected error; ``fatal`` additionally when that
    error should end the whole run.
    """

    def __init__(
        self,
        vu_id: int,
        scenario: Scenario,
        sender,
        aggregator: MetricsAggregator,
        think_time: Optional[ThinkTime] = None,
        max_scenario_failures: int = 10,
        on_exit: Optional[Callable[["VUWorker"], None]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.id = vu_id
        self.scenario = scenario
        self.sender = sender
        self.aggregator = aggregator
        self.think_time = think_time
        self.max_scenario_failures = max_scenario_failures
        self.on_exit = on_exit
        self.rng = rng or random.Random()

        self.state = VUState.STARTING
        self.iterations = 0
        self.error: Optional[BaseException] = None
        self.crashed = False
        self.fatal = False

        self._stop = threading.Event()
        self._state_lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name=f"vu-{vu_id}", daemon=True)

    def __repr__(self) -> str:
        return f"VUWorker(id={self.id}, state={self.state.value})"

    @property
    def active(self) -> bool:
        return self.state in (VUState.STARTING, VUState.RUNNING)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        """Ask the worker to exit after its current iteration."""
        with self._state_lock:
            if self.state in (VUState.STARTING, VUState.RUNNING):
                self.state = VUState.STOPPING
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the thread to exit. Returns False if it is still alive."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _set_running(self) -> bool:
        with self._state_lock:
            if self.state is VUState.STARTING:
                self.state = VUState.RUNNING
            return self.state is VUState.RUNNING

    def _run(self) -> None:
        try:
            if self._set_running():
                self._loop()
        except AggregatorError as exc:
            self.error = exc
            self.crashed = True
            self.fatal = True
            logger.error("vu %d: aggregator failure: %s", self.id, exc)
        except Exception as exc:
            self.error = exc
            self.crashed = True
            logger.exception("vu %d crashed", self.id)
        finally:
            with self._state_lock:
                self.state = VUState.STOPPED
            if self.on_exit is not None:
                self.on_exit(self)

    def _loop(self) -> None:
        consecutive_failures = 0
        while not self._stop.is_set():
            try:
                request = self.scenario.next_request()
            except Exception as exc:
                consecutive_failures += 1
                self.iterations += 1
                self.aggregator.record(
                    ClassifiedOutcome(kind=OutcomeKind.SCENARIO_ERROR, tag="scenario-error", cause=str(exc))
                )
                logger.warning("vu %d: scenario failed (%d in a row): %s", self.id, consecutive_failures, exc)
                if consecutive_failures > self.max_scenario_failures:
                    raise ScenarioError(
                        f"scenario failed {consecutive_failures} times in a row"
                    ) from exc
                self._pause()
                continue
            consecutive_failures = 0

            try:
                result = self.sender.send(request)
                latency_ms = result.latency_ms
            except TransportError as exc:
                result = exc
                latency_ms = exc.latency_ms

            self.aggregator.record(classify(result, self.scenario), latency_ms)
            self.iterations += 1
            self._pause()

    def _pause(self) -> None:
        delay = think_duration(self.think_time, self.rng)
        if delay > 0:
            self._stop.wait(delay)
