"""Tests for threshold evaluation."""

import pytest

from vuload.models import MetricsSnapshot, ThresholdRule
from vuload.thresholds import (
    UnknownMetricError,
    all_passed,
    evaluate,
    evaluate_all,
    parse_percentile,
    required_percentiles,
    select,
    validate_metric,
)


def _snapshot(**overrides):
    values = dict(
        total=1000,
        successes=990,
        failures=10,
        failures_by_tag={"status-404": 4, "status-503": 6},
        latency_percentiles={50: 120.0, 90: 400.0, 95: 600.0, 99: 900.0},
        latency_count=1000,
        latency_min_ms=10.0,
        latency_max_ms=1500.0,
        latency_avg_ms=200.0,
        elapsed_seconds=100.0,
    )
    values.update(overrides)
    return MetricsSnapshot(**values)


class TestParsePercentile:
    @pytest.mark.parametrize("metric, expected", [
        ("p95latency", 95.0),
        ("p95_latency", 95.0),
        ("p(95)", 95.0),
        ("p(99.9)", 99.9),
        ("P50_LATENCY", 50.0),
        ("failure_rate", None),
        ("p95", None),
    ])
    def test_selectors(self, metric, expected):
        assert parse_percentile(metric) == expected

    def test_required_percentiles(self):
        rules = [
            ThresholdRule("p(97.5)", "<", 1),
            ThresholdRule("p95_latency", "<", 1),
            ThresholdRule("failure_rate", "<", 1),
        ]
        assert required_percentiles(rules) == {97.5, 95.0}


class TestValidateMetric:
    @pytest.mark.parametrize("metric", [
        "p95latency", "avg_latency", "failure_rate", "total", "failures:status-404",
        "requests_per_second",
    ])
    def test_known(self, metric):
        validate_metric(metric)

    @pytest.mark.parametrize("metric", ["latency", "failures:", "p(101)"])
    def test_unknown(self, metric):
        with pytest.raises(UnknownMetricError):
            validate_metric(metric)


class TestEvaluate:
    def test_p95_over_limit_fails(self):
        verdict = evaluate(ThresholdRule("p95latency", "<", 500), _snapshot())
        assert verdict.passed is False
        assert verdict.observed_value == 600.0
        assert verdict.limit == 500
        assert verdict.threshold_name == "p95latency < 500"

    def test_p95_under_limit_passes(self):
        verdict = evaluate(ThresholdRule("p95latency", "<", 500), _snapshot(latency_percentiles={95: 350.0}))
        assert verdict.passed is True

    def test_failure_rate(self):
        assert evaluate(ThresholdRule("failure_rate", "<", 0.02), _snapshot()).passed
        assert not evaluate(ThresholdRule("failure_rate", "<", 0.01), _snapshot()).passed
        assert evaluate(ThresholdRule("failure_rate", "<=", 0.01), _snapshot()).passed

    def test_greater_comparators(self):
        assert evaluate(ThresholdRule("requests_per_second", ">=", 10), _snapshot()).passed
        assert not evaluate(ThresholdRule("success_rate", ">", 0.99), _snapshot()).passed

    def test_tag_counter(self):
        assert evaluate(ThresholdRule("failures:status-503", "<", 10), _snapshot()).observed_value == 6
        assert evaluate(ThresholdRule("failures:status-500", "<", 1), _snapshot()).observed_value == 0

    def test_no_latency_samples_is_skipped(self):
        verdict = evaluate(ThresholdRule("p95latency", "<", 500), MetricsSnapshot())
        assert verdict.skipped is True
        assert verdict.passed is True
        assert verdict.observed_value is None

    def test_named_rule(self):
        verdict = evaluate(ThresholdRule("total", ">", 0, name="traffic flowed"), _snapshot())
        assert verdict.threshold_name == "traffic flowed"

    def test_unknown_comparator(self):
        with pytest.raises(ValueError, match="comparator"):
            evaluate(ThresholdRule("total", "==", 1), _snapshot())

    def test_unknown_metric(self):
        with pytest.raises(UnknownMetricError):
            select("nonsense", _snapshot())


class TestEvaluateAll:
    def test_no_short_circuit(self):
        rules = [
            ThresholdRule("p95latency", "<", 500),
            ThresholdRule("failure_rate", "<", 0.01),
            ThresholdRule("p50_latency", "<", 200),
        ]
        verdicts = evaluate_all(rules, _snapshot())
        assert [v.passed for v in verdicts] == [False, False, True]
        assert not all_passed(verdicts)

    def test_no_rules_means_unconstrained(self):
        everything_failed = _snapshot(successes=0, failures=1000)
        assert evaluate_all([], everything_failed) == []
        assert all_passed([])
