"""Load and validate run configuration files (YAML or JSON)."""

import json
import os
import re
from typing import Any, List, Optional, Tuple

import yaml

from vuload.models import RunConfig, ScenarioSpec, Stage, ThinkTime, ThresholdRule
from vuload.thresholds import COMPARATORS, UnknownMetricError, parse_percentile, validate_metric


class ConfigurationError(Exception):
    """Raised when a run configuration is missing, unreadable, or invalid."""


_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# k6-style "p(95) < 500" expressions, keyed by the k6 metric they apply to
_EXPRESSION_RE = re.compile(
    r"^\s*(p\(\d+(?:\.\d+)?\)|avg|min|max|med|rate|count)\s*(<=|>=|<|>)\s*(\S+)\s*$"
)
_K6_METRICS = {
    "http_req_duration": {"avg": "avg_latency", "min": "min_latency", "max": "max_latency", "med": "p50_latency"},
    "http_req_failed": {"rate": "failure_rate"},
    "checks": {"rate": "success_rate"},
    "errors": {"count": "failures"},
    "http_reqs": {"count": "total", "rate": "requests_per_second"},
}


def parse_duration(value: Any) -> float:
    """Parse ``30``, ``"500ms"``, ``"30s"``, ``"1m30s"`` or ``"1h"`` into seconds.

    Raises:
        ValueError: If the value is negative or not a recognised duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART_RE.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ValueError(f"invalid duration: {value!r}") from None
            seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    else:
        raise ValueError(f"invalid duration: {value!r}")
    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


def _is_latency_metric(metric: str) -> bool:
    return parse_percentile(metric) is not None or metric in ("avg_latency", "min_latency", "max_latency")


def _parse_limit(metric: str, raw: Any) -> float:
    """Latency limits are milliseconds; duration strings are converted."""
    if isinstance(raw, bool):
        raise ValueError(f"invalid limit: {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            if _is_latency_metric(metric):
                return parse_duration(raw) * 1000.0
    raise ValueError(f"invalid limit: {raw!r}")


def load_config(path: str) -> RunConfig:
    """Load a run configuration from a YAML or JSON file.

    Args:
        path: Path to the configuration file.

    Returns:
        A validated RunConfig instance.

    Raises:
        ConfigurationError: If the file is missing, unreadable, or invalid.
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"config file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    try:
        with open(path, "r", encoding="utf-8") as f:
            if ext in (".yaml", ".yml"):
                raw = yaml.safe_load(f)
            elif ext == ".json":
                raw = json.load(f)
            else:
                raise ConfigurationError(
                    f"unsupported file extension: {ext} (expected .yaml, .yml, or .json)"
                )
    except (yaml.YAMLError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"failed to parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"failed to read {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError("config must be a mapping/object at the top level")

    return build_config(raw)


def build_config(raw: dict) -> RunConfig:
    """Construct and validate a RunConfig from a raw dict."""
    errors: List[str] = []

    stages = _parse_stages(raw.get("stages"), errors)
    thresholds = _parse_thresholds(raw.get("thresholds"), errors)
    think_time = _parse_think_time(raw.get("think_time"), errors)
    scenario = _parse_scenario(raw.get("scenario"), errors)

    start_target = raw.get("start_target", 0)
    if isinstance(start_target, bool) or not isinstance(start_target, int) or start_target < 0:
        errors.append("'start_target' must be a non-negative integer")
        start_target = 0

    tick_interval = _parse_seconds(raw, "tick_interval", 0.5, errors)
    if tick_interval is not None and not 0.01 <= tick_interval <= 5.0:
        errors.append("'tick_interval' must be between 10ms and 5s")

    threshold_interval = _parse_seconds(raw, "threshold_interval", None, errors)
    if threshold_interval is not None and threshold_interval <= 0:
        errors.append("'threshold_interval' must be positive")

    graceful_stop = _parse_seconds(raw, "graceful_stop", 30.0, errors)

    request_timeout = _parse_seconds(raw, "request_timeout", 60.0, errors)
    if request_timeout is not None and request_timeout <= 0:
        errors.append("'request_timeout' must be positive")

    max_failures = raw.get("max_scenario_failures", 10)
    if isinstance(max_failures, bool) or not isinstance(max_failures, int) or max_failures < 0:
        errors.append("'max_scenario_failures' must be a non-negative integer")
        max_failures = 10

    if errors:
        raise ConfigurationError(
            "config validation failed:\n  - " + "\n  - ".join(errors)
        )

    return RunConfig(
        stages=stages,
        thresholds=thresholds,
        think_time=think_time,
        scenario=scenario,
        start_target=start_target,
        tick_interval=tick_interval,
        threshold_interval=threshold_interval,
        graceful_stop=graceful_stop,
        max_scenario_failures=max_failures,
        request_timeout=request_timeout,
    )


def _parse_seconds(raw: dict, key: str, default: Optional[float], errors: List[str]) -> Optional[float]:
    if raw.get(key) is None:
        return default
    try:
        return parse_duration(raw[key])
    except ValueError as exc:
        errors.append(f"'{key}': {exc}")
        return default


def _parse_stages(raw: Any, errors: List[str]) -> Tuple[Stage, ...]:
    if not isinstance(raw, list) or not raw:
        errors.append("'stages' is required and must be a non-empty list")
        return ()
    stages = []
    for i, st in enumerate(raw):
        if not isinstance(st, dict):
            errors.append(f"stages[{i}] must be a mapping")
            continue
        try:
            duration = parse_duration(st.get("duration"))
        except ValueError as exc:
            errors.append(f"stages[{i}].duration: {exc}")
            continue
        target = st.get("target")
        if isinstance(target, bool) or not isinstance(target, int) or target < 0:
            errors.append(f"stages[{i}].target is required and must be a non-negative integer")
            continue
        stages.append(Stage(duration_seconds=duration, target=target))
    return tuple(stages)


def _parse_thresholds(raw: Any, errors: List[str]) -> Tuple[ThresholdRule, ...]:
    if raw is None:
        return ()
    if isinstance(raw, dict):
        return _parse_k6_thresholds(raw, errors)
    if not isinstance(raw, list):
        errors.append("'thresholds' must be a list or a mapping")
        return ()

    rules = []
    for i, th in enumerate(raw):
        if not isinstance(th, dict):
            errors.append(f"thresholds[{i}] must be a mapping")
            continue
        metric = th.get("metric")
        comparator = th.get("comparator")
        if not metric or not isinstance(metric, str):
            errors.append(f"thresholds[{i}].metric is required")
            continue
        try:
            validate_metric(metric)
        except UnknownMetricError as exc:
            errors.append(f"thresholds[{i}]: {exc}")
            continue
        if comparator not in COMPARATORS:
            errors.append(f"thresholds[{i}].comparator must be one of <, <=, >, >=")
            continue
        try:
            limit = _parse_limit(metric, th.get("limit"))
        except ValueError as exc:
            errors.append(f"thresholds[{i}].limit: {exc}")
            continue
        rules.append(ThresholdRule(
            metric=metric,
            comparator=comparator,
            limit=limit,
            abort_on_fail=bool(th.get("abort_on_fail", False)),
            name=str(th.get("name", "")),
        ))
    return tuple(rules)


def _parse_k6_thresholds(raw: dict, errors: List[str]) -> Tuple[ThresholdRule, ...]:
    rules = []
    for k6_metric, expressions in raw.items():
        aggregations = _K6_METRICS.get(k6_metric)
        if aggregations is None:
            errors.append(f"thresholds.{k6_metric}: unsupported metric")
            continue
        if isinstance(expressions, (str, dict)):
            expressions = [expressions]
        if not isinstance(expressions, list):
            errors.append(f"thresholds.{k6_metric} must be a list of expressions")
            continue
        for expr in expressions:
            abort = False
            if isinstance(expr, dict):
                abort = bool(expr.get("abortOnFail", expr.get("abort_on_fail", False)))
                expr = expr.get("threshold")
            match = _EXPRESSION_RE.match(expr) if isinstance(expr, str) else None
            if not match:
                errors.append(f"thresholds.{k6_metric}: invalid expression {expr!r}")
                continue
            aggregation, comparator, limit_raw = match.groups()
            if aggregation.startswith("p(") and k6_metric == "http_req_duration":
                metric = aggregation
            elif aggregation in aggregations:
                metric = aggregations[aggregation]
            else:
                errors.append(f"thresholds.{k6_metric}: '{aggregation}' not supported")
                continue
            try:
                validate_metric(metric)
            except UnknownMetricError as exc:
                errors.append(f"thresholds.{k6_metric}: {exc}")
                continue
            try:
                limit = _parse_limit(metric, limit_raw)
            except ValueError as exc:
                errors.append(f"thresholds.{k6_metric}: {exc}")
                continue
            rules.append(ThresholdRule(
                metric=metric,
                comparator=comparator,
                limit=limit,
                abort_on_fail=abort,
                name=f"{k6_metric}: {expr.strip()}",
            ))
    return tuple(rules)


def _parse_think_time(raw: Any, errors: List[str]) -> ThinkTime:
    if raw is None:
        return ThinkTime()
    try:
        if isinstance(raw, dict):
            lo = parse_duration(raw.get("min", 0))
            hi = parse_duration(raw.get("max", lo))
        else:
            lo = hi = parse_duration(raw)
    except ValueError as exc:
        errors.append(f"'think_time': {exc}")
        return ThinkTime()
    if lo > hi:
        errors.append("'think_time.min' must not exceed 'think_time.max'")
        return ThinkTime()
    return ThinkTime(min_seconds=lo, max_seconds=hi)


def _parse_scenario(raw: Any, errors: List[str]) -> Optional[ScenarioSpec]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        errors.append("'scenario' must be a mapping")
        return None

    kind = raw.get("type", "payment")
    url = raw.get("url")
    if not url or not isinstance(url, str):
        errors.append("'scenario.url' is required and must be a string")
        return None

    expect = raw.get("expect_status", [200, 202])
    if isinstance(expect, int) and not isinstance(expect, bool):
        expect = [expect]
    if not isinstance(expect, list) or not all(isinstance(s, int) for s in expect):
        errors.append("'scenario.expect_status' must be a list of status codes")
        expect = [200, 202]

    if kind == "payment":
        amount = raw.get("amount_cents", 1000)
        if isinstance(amount, bool) or not isinstance(amount, int):
            errors.append("'scenario.amount_cents' must be an integer")
            amount = 1000
        return ScenarioSpec(type="payment", url=url, amount_cents=amount, expect_status=tuple(expect))

    if kind == "request":
        headers = raw.get("headers") or {}
        if not isinstance(headers, dict):
            errors.append("'scenario.headers' must be a mapping")
            headers = {}
        headers = {str(k): str(v) for k, v in headers.items()}
        body = None
        if raw.get("json") is not None:
            body = json.dumps(raw["json"]).encode("utf-8")
            headers.setdefault("Content-Type", "application/json")
        elif raw.get("body") is not None:
            body = str(raw["body"]).encode("utf-8")
        return ScenarioSpec(
            type="request",
            url=url,
            method=str(raw.get("method", "GET")).upper(),
            headers=tuple(headers.items()),
            body=body,
            expect_status=tuple(expect),
        )

    errors.append(f"'scenario.type' must be 'payment' or 'request', got {kind!r}")
    return None
