"""
Unit tests for the HTTP transport and the metric-recording client.

``requests.Session.request`` is monkeypatched, so no socket is opened.

Key Concepts Demonstrated:
- Network errors mapped to status 0 instead of exceptions
- Body encoding rules (bytes verbatim, everything else as JSON)
- Built-in HTTP metrics recorded per call
"""

import pytest
import requests

from loadrig.transport import (
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    HttpTransport,
    InstrumentedClient,
    Response,
)

pytestmark = pytest.mark.unit


class FakeResponse:
    def __init__(self, status_code=200, content=b"{}"):
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": "application/json"}


@pytest.fixture
def sent(monkeypatch):
    """Capture the keyword arguments of every Session.request call."""
    calls = []

    def fake_request(self, **kwargs):
        calls.append(kwargs)
        return FakeResponse()

    monkeypatch.setattr(requests.Session, "request", fake_request)
    return calls


def test_url_joins_base_and_path():
    transport = HttpTransport("http://localhost:80/api/v1")

    assert transport.url_for("/stations/3") == "http://localhost:80/api/v1/stations/3"
    assert transport.url_for("stations") == "http://localhost:80/api/v1/stations"


def test_json_body_is_encoded(sent):
    HttpTransport("http://target").request("PUT", "/chargers/1/availability", "AVAILABLE")

    assert sent[0]["json"] == "AVAILABLE"
    assert "data" not in sent[0]
    assert sent[0]["method"] == "PUT"


def test_bytes_body_is_sent_verbatim(sent):
    HttpTransport("http://target").request("POST", "/raw", b"\x00\x01")

    assert sent[0]["data"] == b"\x00\x01"
    assert "json" not in sent[0]


def test_timeout_defaults_and_overrides(sent):
    transport = HttpTransport("http://target", timeout=3.0)

    transport.request("GET", "/a")
    transport.request("GET", "/b", timeout=0.5)

    assert [call["timeout"] for call in sent] == [3.0, 0.5]


def test_response_fields_are_copied(sent):
    response = HttpTransport("http://target").request("GET", "/stations")

    assert response.status == 200
    assert response.json() == {}
    assert response.latency >= 0


@pytest.mark.parametrize(
    "exc, message",
    [
        (requests.Timeout("slow"), "Request timed out"),
        (requests.ConnectionError("refused"), "refused"),
    ],
)
def test_network_errors_become_status_zero(monkeypatch, exc, message):
    # Arrange
    def boom(self, **kwargs):
        raise exc

    monkeypatch.setattr(requests.Session, "request", boom)

    # Act
    response = HttpTransport("http://target").request("GET", "/stations")

    # Assert
    assert response.status == 0
    assert response.error == message
    assert not response.ok


def test_json_falls_back_to_default_for_non_json_bodies():
    assert Response(status=502, body=b"<html>Bad Gateway</html>").json(default=[]) == []
    assert Response(status=204).json() is None


class TestInstrumentedClient:
    """Tests for built-in HTTP metrics."""

    def test_records_count_latency_and_failure(self, metrics, ok_transport):
        # Arrange
        ok_transport.statuses[("GET", "/broken")] = 500
        client = InstrumentedClient(ok_transport, metrics)

        # Act
        client.get("/stations")
        client.get("/broken")
        snap = metrics.snapshot()

        # Assert
        assert snap[HTTP_REQS].count == 2
        assert snap[HTTP_REQ_DURATION].count == 2
        assert snap[HTTP_REQ_DURATION].max == pytest.approx(1.0)
        assert snap[HTTP_REQ_FAILED].passes == 1
        assert snap[HTTP_REQ_FAILED].total == 2

    def test_expected_statuses_can_be_overridden_per_call(self, metrics, ok_transport):
        ok_transport.default_status = 401
        client = InstrumentedClient(ok_transport, metrics)

        client.post("/auth/login", {"username": "x"}, expected=(200, 401))

        assert metrics.snapshot()[HTTP_REQ_FAILED].passes == 0
