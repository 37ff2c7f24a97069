"""
HTTP transport for virtual users.

The engine needs exactly one primitive from the outside world::

    request(method, path, body, headers, timeout) -> Response

:class:`HttpTransport` implements it on top of a ``requests.Session``
(connection pooling per process; under gevent monkey patching every
socket wait yields to other virtual users).  Network failures never
raise out of ``request``: like k6, they surface as ``status == 0`` with
the error text attached, so scenarios treat them as ordinary failed
responses.

:class:`InstrumentedClient` wraps any transport and records the
built-in ``http_reqs``, ``http_req_duration`` and ``http_req_failed``
metrics for every call a scenario makes.

Key Concepts Demonstrated:
- A narrow transport protocol that tests can replace with an in-process
  fake
- Timeout / connection errors mapped to structured responses rather
  than exceptions
- Latency measured around the call with a monotonic clock
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Container, Mapping, Protocol
from urllib.parse import urljoin

import requests

from loadrig.metrics import MetricRegistry

logger = logging.getLogger(__name__)

HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"

# k6 treats 2xx and 3xx as expected by default
DEFAULT_EXPECTED_STATUSES = range(200, 400)


@dataclass(frozen=True)
class Response:
    """
    Outcome of a single HTTP call.

    Attributes:
        status: HTTP status code, or ``0`` if no response was received.
        body: Raw response body.
        latency: Wall-clock seconds spent on the call.
        error: Transport error description when ``status`` is ``0``.
        headers: Response headers.
    """

    status: int
    body: bytes = b""
    latency: float = 0.0
    error: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in DEFAULT_EXPECTED_STATUSES

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self, default: Any = None) -> Any:
        """
        Return the decoded JSON body, or ``default`` if it cannot be parsed.

        Error pages and gateway timeouts often carry non-JSON bodies;
        returning a default keeps that from aborting the scenario.
        """
        if not self.body:
            return default
        try:
            return json.loads(self.body)
        except ValueError:
            return default


class Transport(Protocol):
    """Synchronous request primitive used by scenarios and fixtures."""

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Response: ...


class HttpTransport:
    """
    ``requests``-backed transport rooted at a base URL.

    Args:
        base_url: Prefix for every request path, e.g.
            ``"http://localhost:80/api/v1"``.
        timeout: Default per-request timeout in seconds.
        session: Optional pre-built session (for instance a Locust
            ``HttpSession``, which subclasses ``requests.Session``).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def url_for(self, path: str) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Response:
        """
        Send one request and measure it.

        ``bytes`` bodies are sent verbatim; anything else that is not
        ``None`` is JSON-encoded (so a bare string becomes a JSON string
        literal, which is what status-toggle endpoints expect).
        """
        kwargs: dict[str, Any] = {
            "method": method.upper(),
            "url": self.url_for(path),
            "headers": dict(headers or {}),
            "timeout": self.timeout if timeout is None else timeout,
            "allow_redirects": False,
        }
        if isinstance(body, bytes):
            kwargs["data"] = body
        elif body is not None:
            kwargs["json"] = body

        started = time.perf_counter()
        try:
            response = self.session.request(**kwargs)
        except requests.Timeout:
            latency = time.perf_counter() - started
            logger.debug("%s %s timed out after %.3fs", kwargs["method"], kwargs["url"], latency)
            return Response(status=0, latency=latency, error="Request timed out")
        except requests.RequestException as exc:
            # Connection refused, DNS failure and the like
            latency = time.perf_counter() - started
            logger.debug("%s %s failed: %s", kwargs["method"], kwargs["url"], exc)
            return Response(status=0, latency=latency, error=str(exc) or type(exc).__name__)

        latency = time.perf_counter() - started
        return Response(
            status=response.status_code,
            body=response.content,
            latency=latency,
            headers=dict(response.headers),
        )

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class InstrumentedClient:
    """
    Transport wrapper recording the built-in HTTP metrics.

    Every call adds one to ``http_reqs``, the latency in milliseconds to
    ``http_req_duration`` and ``True`` to ``http_req_failed`` when the
    status is not among the expected ones.
    """

    def __init__(
        self,
        transport: Transport,
        metrics: MetricRegistry,
        expected_statuses: Container[int] = DEFAULT_EXPECTED_STATUSES,
    ) -> None:
        self.transport = transport
        self.metrics = metrics
        self.expected_statuses = expected_statuses

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        expected: Container[int] | None = None,
    ) -> Response:
        response = self.transport.request(method, path, body, headers, timeout)

        expected = self.expected_statuses if expected is None else expected
        self.metrics.counter(HTTP_REQS).add(1)
        self.metrics.trend(HTTP_REQ_DURATION).add(response.latency * 1000.0)
        self.metrics.rate(HTTP_REQ_FAILED).add(response.status not in expected)
        return response

    def get(self, path: str, **kwargs: Any) -> Response:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, body: Any = None, **kwargs: Any) -> Response:
        return self.request("POST", path, body, **kwargs)

    def put(self, path: str, body: Any = None, **kwargs: Any) -> Response:
        return self.request("PUT", path, body, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Response:
        return self.request("DELETE", path, **kwargs)
