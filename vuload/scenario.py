"""Scenarios: the per-iteration request callbacks VUs execute.

A scenario's ``next_request`` is called once per iteration by every VU, so it
runs concurrently from many threads. The built-in scenarios only read
configuration captured at construction time and never mutate themselves.
Callers supplying their own callback must synchronize any shared state.
"""

import json
import random
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Tuple

from vuload.models import Request, Response, ScenarioSpec


class ScenarioError(Exception):
    """Raised when a scenario fails to produce a request."""


@dataclass(frozen=True)
class Check:
    name: str
    predicate: Callable[[Response], bool]

    def __call__(self, response: Response) -> bool:
        return bool(self.predicate(response))


def status_in(name: str, statuses: Iterable[int]) -> Check:
    allowed = frozenset(statuses)
    return Check(name=name, predicate=lambda r: r.status in allowed)


def generate_uuid_v4(rng: Optional[random.Random] = None) -> str:
    """Format 128 random bits as an RFC 4122 version-4 UUID string.

    Not for security use: draws from ``random``, not ``secrets``.
    """
    bits = (rng or random).getrandbits(128)
    bits &= ~(0xF000 << 64)
    bits |= 0x4000 << 64  # version 4
    bits &= ~(0xC000 << 48)
    bits |= 0x8000 << 48  # variant 10xx
    h = f"{bits:032x}"
    return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"


class Scenario:
    """Base class for scenarios.

    Subclasses implement ``next_request``. ``checks`` are evaluated against
    every 2xx/3xx response; the first failing check marks the iteration
    as failed.
    """

    name = "scenario"

    def __init__(self, checks: Sequence[Check] = ()):
        self.checks: Tuple[Check, ...] = tuple(checks)

    def next_request(self) -> Request:
        raise NotImplementedError


class CallbackScenario(Scenario):
    """Wrap a plain ``() -> Request`` callable."""

    def __init__(
        self,
        callback: Callable[[], Request],
        checks: Sequence[Check] = (),
        name: str = "callback",
    ):
        super().__init__(checks)
        self._callback = callback
        self.name = name

    def next_request(self) -> Request:
        request = self._callback()
        if not isinstance(request, Request):
            raise ScenarioError(
                f"scenario {self.name!r} returned {type(request).__name__}, expected Request"
            )
        return request


class StaticRequestScenario(Scenario):
    """Send the same request every iteration."""

    name = "request"

    def __init__(self, request: Request, expect_status: Iterable[int] = (200, 202)):
        expect_status = tuple(expect_status)
        label = " or ".join(str(s) for s in expect_status)
        super().__init__([status_in(f"is status {label}", expect_status)])
        self._request = request

    def next_request(self) -> Request:
        return self._request


class PaymentScenario(Scenario):
    """POST a JSON payment with a fresh UUIDv4 id each iteration."""

    name = "payment"

    def __init__(self, url: str, amount_cents: int = 1000, expect_status: Iterable[int] = (200, 202)):
        expect_status = tuple(expect_status)
        label = " or ".join(str(s) for s in expect_status)
        super().__init__([status_in(f"is status {label}", expect_status)])
        self.url = url
        self.amount_cents = amount_cents

    def next_request(self) -> Request:
        payload = json.dumps({"id": generate_uuid_v4(), "amount_cents": self.amount_cents})
        return Request(
            method="POST",
            url=self.url,
            headers={"Content-Type": "application/json"},
            body=payload.encode("utf-8"),
        )


def build_scenario(spec: ScenarioSpec) -> Scenario:
    """Construct a scenario from its configuration."""
    if spec.type == "payment":
        return PaymentScenario(spec.url, spec.amount_cents, spec.expect_status)
    if spec.type == "request":
        request = Request(
            method=spec.method,
            url=spec.url,
            headers=dict(spec.headers),
            body=spec.body,
        )
        return StaticRequestScenario(request, spec.expect_status)
    raise ValueError(f"unknown scenario type: {spec.type}")
