"""Shared test doubles."""

import threading
import time

import pytest

from vuload.models import Request, Response
from vuload.scenario import CallbackScenario, status_in
from vuload.transport import TransportError


class FakeSender:
    """Thread-safe sender that answers with a fixed status, optionally slowly."""

    def __init__(self, status=202, latency_ms=5.0, delay=0.0, error=None):
        self.status = status
        self.latency_ms = latency_ms
        self.delay = delay
        self.error = error
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def send(self, request):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise TransportError(self.error, latency_ms=self.latency_ms)
            return Response(status=self.status, latency_ms=self.latency_ms)
        finally:
            with self._lock:
                self.in_flight -= 1


def make_scenario(url="http://test/payments"):
    return CallbackScenario(
        lambda: Request(method="POST", url=url, body=b"{}"),
        checks=[status_in("is status 200 or 202", (200, 202))],
        name="test",
    )


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def scenario():
    return make_scenario()
