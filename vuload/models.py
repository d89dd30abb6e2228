"""Data models for stages, requests, outcomes, snapshots, and verdicts."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Stage:
    duration_seconds: float
    target: int


@dataclass(frozen=True)
class ThinkTime:
    min_seconds: float = 0.5
    max_seconds: float = 1.5

    @property
    def fixed(self) -> bool:
        return self.min_seconds == self.max_seconds


@dataclass(frozen=True)
class Request:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass(frozen=True)
class Response:
    status: int
    latency_ms: float
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)


class VUState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class OutcomeKind(Enum):
    SUCCESS = "success"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"
    CHECK_FAILED = "check_failed"
    SCENARIO_ERROR = "scenario_error"


@dataclass(frozen=True)
class ClassifiedOutcome:
    kind: OutcomeKind
    status: Optional[int] = None
    tag: Optional[str] = None  # e.g. "status-404", "transport-timeout"
    cause: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.kind is not OutcomeKind.SUCCESS

    @property
    def status_class(self) -> str:
        if self.status is not None:
            return f"{self.status // 100}xx"
        if self.kind is OutcomeKind.TRANSPORT_ERROR:
            return "transport"
        return "none"


@dataclass(frozen=True)
class MetricsSnapshot:
    total: int = 0
    successes: int = 0
    failures: int = 0
    failures_by_tag: Dict[str, int] = field(default_factory=dict)
    status_classes: Dict[str, int] = field(default_factory=dict)
    latency_percentiles: Dict[float, float] = field(default_factory=dict)  # ms
    latency_count: int = 0
    latency_min_ms: Optional[float] = None
    latency_max_ms: Optional[float] = None
    latency_avg_ms: Optional[float] = None
    worker_errors: int = 0
    elapsed_seconds: float = 0.0

    @property
    def failure_rate(self) -> float:
        return self.failures / self.total if self.total else 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.total if self.total else 0.0

    @property
    def requests_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total / self.elapsed_seconds


@dataclass(frozen=True)
class ThresholdRule:
    metric: str
    comparator: str  # "<", "<=", ">", ">="
    limit: float
    abort_on_fail: bool = False
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or f"{self.metric} {self.comparator} {self.limit:g}"


@dataclass(frozen=True)
class Verdict:
    threshold_name: str
    passed: bool
    observed_value: Optional[float]
    limit: float
    comparator: str
    skipped: bool = False


@dataclass(frozen=True)
class ScenarioSpec:
    type: str  # "payment", "request"
    url: str
    method: str = "POST"
    headers: Tuple[Tuple[str, str], ...] = ()
    body: Optional[bytes] = None
    amount_cents: int = 1000
    expect_status: Tuple[int, ...] = (200, 202)


@dataclass(frozen=True)
class RunConfig:
    stages: Tuple[Stage, ...]
    thresholds: Tuple[ThresholdRule, ...] = ()
    think_time: ThinkTime = ThinkTime()
    scenario: Optional[ScenarioSpec] = None
    start_target: int = 0
    tick_interval: float = 0.5
    threshold_interval: Optional[float] = None
    graceful_stop: float = 30.0
    max_scenario_failures: int = 10
    request_timeout: float = 60.0


@dataclass
class RunResult:
    snapshot: MetricsSnapshot
    verdicts: List[Verdict] = field(default_factory=list)
    fatal_error: Optional[str] = None
    cancelled: bool = False
    aborted_by_threshold: bool = False
    interrupted_vus: int = 0
    duration_seconds: float = 0.0

    @property
    def worker_errors(self) -> int:
        return self.snapshot.worker_errors

    @property
    def passed(self) -> bool:
        return self.fatal_error is None and all(v.passed for v in self.verdicts)


@dataclass
class EvidenceEvent:
    ts: str
    config: str
    total: int
    failures: int
    p95_ms: Optional[float] = None
    passed: bool = False
    exit_code: int = 0
    verdicts: List[dict] = field(default_factory=list)  # each: {name, passed, observed, limit}
