"""Thread-safe accumulation of outcomes and latency samples."""

import itertools
import math
import threading
from collections import Counter
from typing import Iterable, List, Optional, Sequence

from vuload.models import ClassifiedOutcome, MetricsSnapshot, OutcomeKind

DEFAULT_PERCENTILES = (50, 90, 95, 99)


class AggregatorError(Exception):
    """Raised when the aggregator cannot record a sample. Fatal to the run."""


def percentile(sorted_values: Sequence[float], pct: float) -> Optional[float]:
    """Return the ``pct`` percentile of pre-sorted values.

    Uses linear interpolation between closest ranks, so the result is exact
    for the recorded samples. Returns None for an empty sequence.
    """
    if not sorted_values:
        return None
    if not 0 <= pct <= 100:
        raise ValueError(f"percentile must be within [0, 100], got {pct}")
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    rank = (len(sorted_values) - 1) * pct / 100.0
    lo = int(math.floor(rank))
    hi = min(lo + 1, len(sorted_values) - 1)
    frac = rank - lo
    return sorted_values[lo] + (sorted_values[hi] - sorted_values[lo]) * frac


class _Shard:
    __slots__ = ("lock", "total", "successes", "failures", "by_tag", "by_class", "latencies")

    def __init__(self):
        self.lock = threading.Lock()
        self.total = 0
        self.successes = 0
        self.failures = 0
        self.by_tag = Counter()
        self.by_class = Counter()
        self.latencies: List[float] = []


class MetricsAggregator:
    """Counters and latency samples split across independently locked shards.

    Each recording thread is pinned to one shard the first time it calls
    ``record``, so VUs rarely contend on the same lock. A snapshot walks the
    shards one at a time; every counter reflects a prefix of the events
    recorded into its shard.
    """

    def __init__(self, shards: int = 16, clock=None):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards = [_Shard() for _ in range(shards)]
        self._next_shard = itertools.count()
        self._local = threading.local()
        self._worker_errors = 0
        self._worker_errors_lock = threading.Lock()
        self._clock = clock
        self._started_at = clock() if clock else None

    def _shard(self) -> _Shard:
        shard = getattr(self._local, "shard", None)
        if shard is None:
            shard = self._shards[next(self._next_shard) % len(self._shards)]
            self._local.shard = shard
        return shard

    def record(self, outcome: ClassifiedOutcome, latency_ms: Optional[float] = None) -> None:
        """Record one iteration's outcome and, if a request was sent, its latency.

        Raises:
            AggregatorError: If ``latency_ms`` is negative or not a finite number.
        """
        if latency_ms is not None:
            try:
                latency_ms = float(latency_ms)
            except (TypeError, ValueError) as exc:
                raise AggregatorError(f"invalid latency sample: {latency_ms!r}") from exc
            if math.isnan(latency_ms) or math.isinf(latency_ms) or latency_ms < 0:
                raise AggregatorError(f"invalid latency sample: {latency_ms!r}")

        shard = self._shard()
        with shard.lock:
            shard.total += 1
            if outcome.kind is OutcomeKind.SUCCESS:
                shard.successes += 1
            else:
                shard.failures += 1
                if outcome.tag:
                    shard.by_tag[outcome.tag] += 1
            shard.by_class[outcome.status_class] += 1
            if latency_ms is not None:
                shard.latencies.append(latency_ms)

    def record_worker_error(self) -> None:
        with self._worker_errors_lock:
            self._worker_errors += 1

    def snapshot(
        self,
        percentiles: Iterable[float] = DEFAULT_PERCENTILES,
        elapsed_seconds: Optional[float] = None,
    ) -> MetricsSnapshot:
        """Return an immutable copy of the current counters.

        Args:
            percentiles: Latency percentiles to compute, e.g. ``(50, 95, 99)``.
            elapsed_seconds: Run time used for rates. Defaults to the time
                since construction when the aggregator was given a clock.
        """
        total = successes = failures = 0
        by_tag: Counter = Counter()
        by_class: Counter = Counter()
        samples: List[float] = []
        for shard in self._shards:
            with shard.lock:
                total += shard.total
                successes += shard.successes
                failures += shard.failures
                by_tag.update(shard.by_tag)
                by_class.update(shard.by_class)
                samples.extend(shard.latencies)

        samples.sort()
        wanted = sorted(set(DEFAULT_PERCENTILES) | set(percentiles))
        pcts = {p: percentile(samples, p) for p in wanted} if samples else {}

        if elapsed_seconds is None and self._clock is not None:
            elapsed_seconds = self._clock() - self._started_at

        with self._worker_errors_lock:
            worker_errors = self._worker_errors

        return MetricsSnapshot(
            total=total,
            successes=successes,
            failures=failures,
            failures_by_tag=dict(by_tag),
            status_classes=dict(by_class),
            latency_percentiles=pcts,
            latency_count=len(samples),
            latency_min_ms=samples[0] if samples else None,
            latency_max_ms=samples[-1] if samples else None,
            latency_avg_ms=sum(samples) / len(samples) if samples else None,
            worker_errors=worker_errors,
            elapsed_seconds=elapsed_seconds or 0.0,
        )
