"""Run reports and the append-only JSONL run log."""

import json
import os
from datetime import datetime, timezone
from typing import Iterable, List

from vuload.models import EvidenceEvent, MetricsSnapshot, RunResult, Verdict


class ReportParseError(Exception):
    """Raised when a saved report cannot be read back."""


def _fmt_ms(value) -> str:
    return "n/a" if value is None else f"{value:.1f} ms"


def _pct_key(pct: float) -> str:
    return f"p{pct:g}"


def snapshot_to_dict(snapshot: MetricsSnapshot) -> dict:
    return {
        "total": snapshot.total,
        "successes": snapshot.successes,
        "failures": snapshot.failures,
        "failure_rate": snapshot.failure_rate,
        "requests_per_second": snapshot.requests_per_second,
        "elapsed_seconds": snapshot.elapsed_seconds,
        "failures_by_tag": dict(sorted(snapshot.failures_by_tag.items())),
        "status_classes": dict(sorted(snapshot.status_classes.items())),
        "latency_ms": {
            "count": snapshot.latency_count,
            "min": snapshot.latency_min_ms,
            "max": snapshot.latency_max_ms,
            "avg": snapshot.latency_avg_ms,
            "percentiles": {
                _pct_key(p): v for p, v in sorted(snapshot.latency_percentiles.items())
            },
        },
        "worker_errors": snapshot.worker_errors,
    }


def verdict_to_dict(verdict: Verdict) -> dict:
    return {
        "name": verdict.threshold_name,
        "passed": verdict.passed,
        "observed": verdict.observed_value,
        "comparator": verdict.comparator,
        "limit": verdict.limit,
        "skipped": verdict.skipped,
    }


def result_to_dict(result: RunResult, exit_code: int) -> dict:
    return {
        "passed": result.passed,
        "exit_code": exit_code,
        "fatal_error": result.fatal_error,
        "cancelled": result.cancelled,
        "aborted_by_threshold": result.aborted_by_threshold,
        "interrupted_vus": result.interrupted_vus,
        "duration_seconds": result.duration_seconds,
        "metrics": snapshot_to_dict(result.snapshot),
        "thresholds": [verdict_to_dict(v) for v in result.verdicts],
    }


def load_snapshot(path: str, percentiles: Iterable[float] = ()) -> MetricsSnapshot:
    """Read the ``metrics`` section of a saved JSON report.

    ``percentiles`` lists the latency percentiles the caller needs. A report
    with latency samples that did not record one of them is rejected, since
    the percentile cannot be recomputed from the report.

    Raises:
        ReportParseError: If the file is missing, not a report, or lacks a
            required percentile.
    """
    if not os.path.isfile(path):
        raise ReportParseError(f"report file not found: {path}")
    try:
        with open(path, "r") as f:
            raw = json.load(f)
    except json.JSONDecodeError as exc:
        raise ReportParseError(f"failed to parse JSON: {exc}") from exc

    metrics = raw.get("metrics", raw) if isinstance(raw, dict) else None
    if not isinstance(metrics, dict) or "total" not in metrics:
        raise ReportParseError("report must be an object with a 'metrics' section")

    latency = metrics.get("latency_ms") or {}
    recorded = {}
    for key, value in (latency.get("percentiles") or {}).items():
        try:
            recorded[float(key.lstrip("p"))] = None if value is None else float(value)
        except ValueError:
            continue

    try:
        snapshot = MetricsSnapshot(
            total=int(metrics.get("total", 0)),
            successes=int(metrics.get("successes", 0)),
            failures=int(metrics.get("failures", 0)),
            failures_by_tag={k: int(v) for k, v in (metrics.get("failures_by_tag") or {}).items()},
            status_classes={k: int(v) for k, v in (metrics.get("status_classes") or {}).items()},
            latency_percentiles=recorded,
            latency_count=int(latency.get("count", 0)),
            latency_min_ms=latency.get("min"),
            latency_max_ms=latency.get("max"),
            latency_avg_ms=latency.get("avg"),
            worker_errors=int(metrics.get("worker_errors", 0)),
            elapsed_seconds=float(metrics.get("elapsed_seconds", 0.0)),
        )
    except (TypeError, ValueError) as exc:
        raise ReportParseError(f"malformed metrics section: {exc}") from exc

    if snapshot.latency_count:
        missing = sorted(p for p in set(percentiles) if recorded.get(float(p)) is None)
        if missing:
            raise ReportParseError(
                "report has no recorded latency percentile(s): "
                + ", ".join(_pct_key(p) for p in missing)
            )
    return snapshot


def render_report(result: RunResult) -> str:
    """Build a human-readable summary of a run."""
    snap = result.snapshot
    lines = []
    if result.fatal_error:
        lines.append(f"RUN FAILED: {result.fatal_error}")
    elif result.passed:
        lines.append("All thresholds passed." if result.verdicts else "Run complete (no thresholds).")
    else:
        failed = [v for v in result.verdicts if not v.passed]
        lines.append(f"THRESHOLD VIOLATION: {len(failed)} threshold(s) failed.")

    lines.append(
        f"Requests: {snap.total} total, {snap.successes} ok, {snap.failures} failed "
        f"({snap.failure_rate * 100:.2f}%) over {result.duration_seconds:.1f}s "
        f"({snap.requests_per_second:.1f} req/s)"
    )
    if snap.latency_count:
        pcts = ", ".join(
            f"{_pct_key(p)}={_fmt_ms(v)}" for p, v in sorted(snap.latency_percentiles.items())
        )
        lines.append(
            f"Latency: avg={_fmt_ms(snap.latency_avg_ms)}, min={_fmt_ms(snap.latency_min_ms)}, "
            f"max={_fmt_ms(snap.latency_max_ms)}, {pcts}"
        )
    if snap.failures_by_tag:
        lines.append("Failures:")
        for tag, count in sorted(snap.failures_by_tag.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"  - {tag}: {count}")
    if result.worker_errors:
        lines.append(f"Worker errors: {result.worker_errors}")
    if result.aborted_by_threshold:
        lines.append("Run aborted early by a threshold.")
    if result.interrupted_vus:
        lines.append(f"VUs still in flight at shutdown: {result.interrupted_vus}")

    if result.verdicts:
        lines.append("Thresholds:")
        for v in result.verdicts:
            status = "SKIP" if v.skipped else ("PASS" if v.passed else "FAIL")
            observed = "n/a" if v.observed_value is None else f"{v.observed_value:g}"
            lines.append(f"  [{status}] {v.threshold_name} (observed: {observed})")

    return "\n".join(lines)


def create_event(result: RunResult, config_path: str, exit_code: int) -> EvidenceEvent:
    """Build an EvidenceEvent for a finished run with the current UTC timestamp."""
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return EvidenceEvent(
        ts=ts,
        config=config_path,
        total=result.snapshot.total,
        failures=result.snapshot.failures,
        p95_ms=result.snapshot.latency_percentiles.get(95),
        passed=result.passed,
        exit_code=exit_code,
        verdicts=[
            {"name": v.threshold_name, "passed": v.passed, "observed": v.observed_value, "limit": v.limit}
            for v in result.verdicts
        ],
    )


def append_event(event: EvidenceEvent, log_path: str) -> None:
    """Append a single run event as a JSONL line.

    Creates the file (and parent directories) if it does not exist.
    Never overwrites existing entries.

    Args:
        event: The event to log.
        log_path: Filesystem path to the JSONL run log.
    """
    parent = os.path.dirname(log_path)
    if parent and not os.path.isdir(parent):
        os.makedirs(parent, exist_ok=True)

    line = json.dumps({
        "ts": event.ts,
        "config": event.config,
        "total": event.total,
        "failures": event.failures,
        "p95_ms": event.p95_ms,
        "passed": event.passed,
        "exit_code": event.exit_code,
        "verdicts": event.verdicts,
    })

    with open(log_path, "a") as f:
        f.write(line + "\n")


def read_events(log_path: str) -> List[EvidenceEvent]:
    """Read all events from a JSONL run log. Malformed lines are skipped."""
    if not os.path.isfile(log_path):
        return []

    events = []
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
                events.append(EvidenceEvent(
                    ts=raw.get("ts", ""),
                    config=raw.get("config", ""),
                    total=raw.get("total", 0),
                    failures=raw.get("failures", 0),
                    p95_ms=raw.get("p95_ms"),
                    passed=raw.get("passed", False),
                    exit_code=raw.get("exit_code", 0),
                    verdicts=raw.get("verdicts", []),
                ))
            except (json.JSONDecodeError, AttributeError):
                continue
    return events
