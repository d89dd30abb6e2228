"""HTTP collaborator: sends one request and times it."""

import logging
import time
from typing import Optional

import httpx

from vuload.models import Request, Response

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a request gets no HTTP response at all.

    ``cause`` is a short machine-friendly label such as ``timeout``,
    ``connect``, ``protocol`` or ``decoding``.
    """

    def __init__(self, cause: str, message: str = "", latency_ms: Optional[float] = None):
        super().__init__(message or cause)
        self.cause = cause
        self.latency_ms = latency_ms


def _cause_of(exc: httpx.RequestError) -> str:
    if isinstance(exc, httpx.DecodingError):
        return "decoding"
    if isinstance(exc, httpx.TooManyRedirects):
        return "redirects"
    if not isinstance(exc, httpx.TransportError):
        return "request"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.ConnectError):
        return "connect"
    if isinstance(exc, httpx.ProtocolError):
        return "protocol"
    if isinstance(exc, httpx.NetworkError):
        return "network"
    if isinstance(exc, httpx.ProxyError):
        return "proxy"
    return "transport"


class HttpxSender:
    """Blocking sender backed by a shared ``httpx.Client``.

    ``httpx.Client`` is safe to share between threads; the pool is sized so
    every VU can hold a connection. Pass ``client`` to inject a preconfigured
    client (custom transport, test client).
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = 60.0,
        max_connections: int = 100,
    ):
        self._owns_client = client is None
        if client is None:
            client = httpx.Client(
                timeout=timeout,
                limits=httpx.Limits(
                    max_connections=max_connections,
                    max_keepalive_connections=max_connections,
                ),
            )
        self._client = client

    def send(self, request: Request) -> Response:
        """Send ``request`` and return its response.

        Raises:
            TransportError: On timeouts, connection failures, undecodable
                bodies, redirect loops, and other errors where no usable
                response was received.
        """
        started = time.perf_counter()
        try:
            resp = self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.RequestError as exc:
            latency_ms = (time.perf_counter() - started) * 1000.0
            logger.debug("%s %s failed: %s", request.method, request.url, exc)
            raise TransportError(_cause_of(exc), str(exc), latency_ms) from exc
        latency_ms = (time.perf_counter() - started) * 1000.0
        return Response(
            status=resp.status_code,
            latency_ms=latency_ms,
            body=resp.content,
            headers=dict(resp.headers),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
