"""Evaluate threshold rules against a metrics snapshot."""

import operator
import re
from typing import Callable, Dict, List, Optional, Sequence, Set

from vuload.models import MetricsSnapshot, ThresholdRule, Verdict


COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_PERCENTILE_RE = re.compile(r"^p\(?(\d+(?:\.\d+)?)\)?_?latency$|^p\((\d+(?:\.\d+)?)\)$")

_SCALAR_METRICS: Dict[str, Callable[[MetricsSnapshot], Optional[float]]] = {
    "avg_latency": lambda s: s.latency_avg_ms,
    "min_latency": lambda s: s.latency_min_ms,
    "max_latency": lambda s: s.latency_max_ms,
    "failure_rate": lambda s: s.failure_rate,
    "success_rate": lambda s: s.success_rate,
    "total": lambda s: s.total,
    "successes": lambda s: s.successes,
    "failures": lambda s: s.failures,
    "requests_per_second": lambda s: s.requests_per_second,
}


class UnknownMetricError(ValueError):
    """Raised when a threshold names a metric no selector understands."""


def parse_percentile(metric: str) -> Optional[float]:
    """Return N for ``pN_latency``, ``pNlatency`` or ``p(N)``, else None."""
    match = _PERCENTILE_RE.match(metric.strip().lower())
    if not match:
        return None
    return float(match.group(1) or match.group(2))


def validate_metric(metric: str) -> None:
    pct = parse_percentile(metric)
    if pct is not None:
        if not 0 <= pct <= 100:
            raise UnknownMetricError(f"percentile out of range in {metric!r}")
        return
    if metric.startswith("failures:") and len(metric) > len("failures:"):
        return
    if metric not in _SCALAR_METRICS:
        raise UnknownMetricError(f"unknown metric: {metric!r}")


def required_percentiles(rules: Sequence[ThresholdRule]) -> Set[float]:
    """Percentiles the rules need the aggregator to compute."""
    wanted = set()
    for rule in rules:
        pct = parse_percentile(rule.metric)
        if pct is not None:
            wanted.add(pct)
    return wanted


def select(metric: str, snapshot: MetricsSnapshot) -> Optional[float]:
    """Read ``metric`` from ``snapshot``. None means no data yet."""
    pct = parse_percentile(metric)
    if pct is not None:
        return snapshot.latency_percentiles.get(pct)
    if metric.startswith("failures:"):
        return snapshot.failures_by_tag.get(metric[len("failures:"):], 0)
    try:
        getter = _SCALAR_METRICS[metric]
    except KeyError:
        raise UnknownMetricError(f"unknown metric: {metric!r}") from None
    return getter(snapshot)


def evaluate(rule: ThresholdRule, snapshot: MetricsSnapshot) -> Verdict:
    """Compare one rule's metric against its limit.

    A metric with no data (latency percentiles before any sample was
    recorded) yields a skipped verdict that counts as passed.
    """
    try:
        compare = COMPARATORS[rule.comparator]
    except KeyError:
        raise ValueError(f"unknown comparator: {rule.comparator!r}") from None

    observed = select(rule.metric, snapshot)
    if observed is None:
        return Verdict(
            threshold_name=rule.label,
            passed=True,
            observed_value=None,
            limit=rule.limit,
            comparator=rule.comparator,
            skipped=True,
        )
    return Verdict(
        threshold_name=rule.label,
        passed=compare(observed, rule.limit),
        observed_value=float(observed),
        limit=rule.limit,
        comparator=rule.comparator,
    )


def evaluate_all(rules: Sequence[ThresholdRule], snapshot: MetricsSnapshot) -> List[Verdict]:
    """Evaluate every rule independently; no short-circuiting."""
    return [evaluate(rule, snapshot) for rule in rules]


def all_passed(verdicts: Sequence[Verdict]) -> bool:
    return all(v.passed for v in verdicts)
