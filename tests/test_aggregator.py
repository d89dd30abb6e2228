"""Tests for the metrics aggregator."""

import math
import threading

import pytest

from vuload.aggregator import AggregatorError, MetricsAggregator, percentile
from vuload.models import ClassifiedOutcome, OutcomeKind

OK = ClassifiedOutcome(kind=OutcomeKind.SUCCESS, status=200)
NOT_FOUND = ClassifiedOutcome(kind=OutcomeKind.CLIENT_ERROR, status=404, tag="status-404")
TIMEOUT = ClassifiedOutcome(kind=OutcomeKind.TRANSPORT_ERROR, tag="transport-timeout", cause="timeout")


class TestPercentile:
    def test_empty(self):
        assert percentile([], 95) is None

    def test_single_value(self):
        assert percentile([7.0], 99) == 7.0

    def test_interpolates(self):
        values = [float(v) for v in range(1, 101)]
        assert percentile(values, 50) == pytest.approx(50.5)
        assert percentile(values, 95) == pytest.approx(95.05)
        assert percentile(values, 0) == 1.0
        assert percentile(values, 100) == 100.0

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            percentile([1.0], 101)


class TestRecord:
    def test_counts_by_outcome(self):
        agg = MetricsAggregator()
        agg.record(OK, 10)
        agg.record(OK, 20)
        agg.record(NOT_FOUND, 5)
        agg.record(TIMEOUT, 1000)
        snap = agg.snapshot()
        assert snap.total == 4
        assert snap.successes == 2
        assert snap.failures == 2
        assert snap.failures_by_tag == {"status-404": 1, "transport-timeout": 1}
        assert snap.status_classes == {"2xx": 2, "4xx": 1, "transport": 1}
        assert snap.failure_rate == 0.5

    def test_latency_statistics(self):
        agg = MetricsAggregator()
        for v in (10, 20, 30, 40):
            agg.record(OK, v)
        snap = agg.snapshot()
        assert snap.latency_count == 4
        assert snap.latency_min_ms == 10
        assert snap.latency_max_ms == 40
        assert snap.latency_avg_ms == 25
        assert snap.latency_percentiles[50] == pytest.approx(25)

    def test_outcome_without_latency(self):
        agg = MetricsAggregator()
        agg.record(ClassifiedOutcome(kind=OutcomeKind.SCENARIO_ERROR, tag="scenario-error"))
        snap = agg.snapshot()
        assert snap.total == 1
        assert snap.latency_count == 0
        assert snap.latency_percentiles == {}
        assert snap.latency_avg_ms is None

    def test_extra_percentiles(self):
        agg = MetricsAggregator()
        for v in range(1, 101):
            agg.record(OK, v)
        snap = agg.snapshot(percentiles=(97.5,))
        assert set(snap.latency_percentiles) == {50, 90, 95, 97.5, 99}

    @pytest.mark.parametrize("bad", [-1.0, math.nan, math.inf, "fast"])
    def test_invalid_latency_is_fatal(self, bad):
        agg = MetricsAggregator()
        with pytest.raises(AggregatorError):
            agg.record(OK, bad)
        assert agg.snapshot().total == 0

    def test_worker_errors(self):
        agg = MetricsAggregator()
        agg.record_worker_error()
        agg.record_worker_error()
        assert agg.snapshot().worker_errors == 2

    def test_rates_use_clock(self):
        now = [0.0]
        agg = MetricsAggregator(clock=lambda: now[0])
        for _ in range(50):
            agg.record(OK, 1)
        now[0] = 10.0
        assert agg.snapshot().requests_per_second == 5.0

    def test_rejects_zero_shards(self):
        with pytest.raises(ValueError):
            MetricsAggregator(shards=0)


class TestConcurrency:
    def test_no_lost_updates(self):
        agg = MetricsAggregator(shards=4)
        n_threads, per_thread = 32, 500
        barrier = threading.Barrier(n_threads)

        def hammer(i):
            barrier.wait()
            for j in range(per_thread):
                agg.record(OK if j % 2 else NOT_FOUND, float(i))

        threads = [threading.Thread(target=hammer, args=(i,)) for i in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = agg.snapshot()
        assert snap.total == n_threads * per_thread
        assert snap.successes + snap.failures == snap.total
        assert snap.failures_by_tag["status-404"] == n_threads * per_thread // 2
        assert snap.latency_count == n_threads * per_thread

    def test_snapshot_while_recording(self):
        agg = MetricsAggregator()
        stop = threading.Event()

        def writer():
            while not stop.is_set():
                agg.record(OK, 1.0)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        try:
            previous = 0
            for _ in range(20):
                snap = agg.snapshot()
                assert snap.total >= previous
                assert snap.successes == snap.total
                previous = snap.total
        finally:
            stop.set()
            for t in threads:
                t.join()
