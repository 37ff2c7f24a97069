"""
In-process fake of the EV charging-station API.

The suites and the engine are exercised against a small Flask app that
keeps stations, chargers and users in memory.  :class:`FlaskTransport`
drives it through Flask's test client, so no server or socket is
involved and tests stay fast and deterministic.

Faults are injected per ``(method, path)``::

    target.fail("POST", "/stations", status=500)

Key Concepts Demonstrated:
- Test doubles that honour the real wire contract (status codes, JSON
  bodies) instead of mocking internals
- Fault injection for setup-failure and teardown paths
- Call recording for assertions on traffic shape
"""

from __future__ import annotations

import itertools
import time
from typing import Any, Mapping

from faker import Faker
from flask import Flask, abort, jsonify, request

from loadrig.transport import Response

fake = Faker()

API_PREFIX = "/api/v1"
STATUSES = ("AVAILABLE", "BEING_USED", "UNDER_MAINTENANCE")


class ChargingStore:
    """In-memory state behind the fake API."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.stations: dict[int, dict[str, Any]] = {}
        self.chargers: dict[int, dict[str, Any]] = {}
        self.users: dict[str, str] = {}
        self.deleted_stations: list[int] = []

    def next_id(self) -> int:
        return next(self._ids)


def create_fake_target() -> Flask:
    """
    Build the fake API application.

    Returns:
        A Flask app whose ``store`` attribute holds the in-memory state
        and whose ``faults`` attribute maps ``(METHOD, path)`` to the
        status code to answer with.
    """
    app = Flask(__name__)
    app.config["TESTING"] = True
    store = ChargingStore()
    faults: dict[tuple[str, str], int] = {}
    app.store = store
    app.faults = faults

    @app.before_request
    def _inject_faults():
        path = request.path[len(API_PREFIX):] if request.path.startswith(API_PREFIX) else request.path
        status = faults.get((request.method, path))
        if status is not None:
            return jsonify({"error": "injected fault"}), status
        return None

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def _register(user_type: str, id_field: str):
        payload = request.get_json(silent=True) or {}
        user = payload.get("user") or {}
        if not user.get("username") or not user.get("password"):
            return jsonify({"error": "username and password required"}), 400
        if user["username"] in store.users:
            return jsonify({"error": "username taken"}), 409
        store.users[user["username"]] = user["password"]
        return jsonify(
            {
                "token": fake.sha256(),
                "username": user["username"],
                "userType": user_type,
                id_field: store.next_id(),
            }
        )

    @app.post(f"{API_PREFIX}/auth/register/driver")
    def register_driver():
        return _register("EV_DRIVER", "driverId")

    @app.post(f"{API_PREFIX}/auth/register/operator")
    def register_operator():
        return _register("STATION_OPERATOR", "operatorId")

    @app.post(f"{API_PREFIX}/auth/login")
    def login():
        payload = request.get_json(silent=True) or {}
        username = payload.get("username")
        if not username or not payload.get("password"):
            return jsonify({"error": "credentials required"}), 400
        if store.users.get(username) != payload["password"]:
            return jsonify({"error": "invalid credentials"}), 401
        return jsonify({"token": fake.sha256(), "username": username, "userType": "EV_DRIVER"})

    # ------------------------------------------------------------------
    # Stations
    # ------------------------------------------------------------------

    def _station(station_id: int) -> dict[str, Any]:
        station = store.stations.get(station_id)
        if station is None:
            abort(404)
        return station

    @app.get(f"{API_PREFIX}/stations")
    def list_stations():
        return jsonify(list(store.stations.values()))

    @app.post(f"{API_PREFIX}/stations")
    def create_station():
        payload = request.get_json(silent=True) or {}
        if not payload.get("name") or not payload.get("address"):
            return jsonify({"error": "name and address required"}), 400
        station = {
            "id": store.next_id(),
            "name": payload["name"],
            "address": payload["address"],
            "latitude": payload.get("latitude"),
            "longitude": payload.get("longitude"),
        }
        store.stations[station["id"]] = station
        return jsonify(station), 201

    @app.get(f"{API_PREFIX}/stations/<int:station_id>")
    def get_station(station_id: int):
        return jsonify(_station(station_id))

    @app.put(f"{API_PREFIX}/stations/<int:station_id>")
    def update_station(station_id: int):
        station = _station(station_id)
        payload = request.get_json(silent=True) or {}
        for key in ("name", "address", "latitude", "longitude"):
            if key in payload:
                station[key] = payload[key]
        return jsonify(station)

    @app.delete(f"{API_PREFIX}/stations/<int:station_id>")
    def delete_station(station_id: int):
        _station(station_id)
        del store.stations[station_id]
        for charger_id in [c["id"] for c in store.chargers.values() if c["stationId"] == station_id]:
            del store.chargers[charger_id]
        store.deleted_stations.append(station_id)
        return "", 204

    @app.get(f"{API_PREFIX}/stations/<int:station_id>/chargers")
    def list_station_chargers(station_id: int):
        _station(station_id)
        return jsonify([c for c in store.chargers.values() if c["stationId"] == station_id])

    @app.post(f"{API_PREFIX}/stations/<int:station_id>/chargers")
    def create_charger(station_id: int):
        _station(station_id)
        payload = request.get_json(silent=True) or {}
        if not payload.get("model"):
            return jsonify({"error": "model required"}), 400
        charger = {
            "id": store.next_id(),
            "stationId": station_id,
            "model": payload["model"],
            "powerOutput": payload.get("powerOutput"),
            "status": payload.get("status", "AVAILABLE"),
        }
        store.chargers[charger["id"]] = charger
        return jsonify(charger), 201

    # ------------------------------------------------------------------
    # Chargers
    # ------------------------------------------------------------------

    def _charger(charger_id: int) -> dict[str, Any]:
        charger = store.chargers.get(charger_id)
        if charger is None:
            abort(404)
        return charger

    @app.put(f"{API_PREFIX}/chargers/<int:charger_id>")
    def update_charger(charger_id: int):
        charger = _charger(charger_id)
        payload = request.get_json(silent=True) or {}
        for key in ("model", "powerOutput", "status"):
            if key in payload:
                charger[key] = payload[key]
        return jsonify(charger)

    @app.get(f"{API_PREFIX}/chargers/<int:charger_id>/availability")
    def get_availability(charger_id: int):
        return jsonify(_charger(charger_id)["status"])

    @app.put(f"{API_PREFIX}/chargers/<int:charger_id>/availability")
    def set_availability(charger_id: int):
        charger = _charger(charger_id)
        status = request.get_json(silent=True)
        if status not in STATUSES:
            return jsonify({"error": "unknown status"}), 400
        charger["status"] = status
        return jsonify(charger)

    @app.get(f"{API_PREFIX}/chargers/availability/<status>")
    def chargers_by_status(status: str):
        if status not in STATUSES:
            return jsonify({"error": "unknown status"}), 400
        return jsonify([c for c in store.chargers.values() if c["status"] == status])

    return app


class FlaskTransport:
    """
    :class:`~loadrig.transport.Transport` backed by a Flask test client.

    Attributes:
        calls: Every ``(METHOD, path)`` issued, in order.
    """

    def __init__(self, app: Flask, prefix: str = API_PREFIX) -> None:
        self.app = app
        self.client = app.test_client()
        self.prefix = prefix
        self.calls: list[tuple[str, str]] = []

    @property
    def store(self) -> ChargingStore:
        return self.app.store

    def fail(self, method: str, path: str, status: int = 500) -> None:
        self.app.faults[(method.upper(), path)] = status

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Response:
        self.calls.append((method.upper(), path))
        kwargs: dict[str, Any] = {"headers": dict(headers or {})}
        if isinstance(body, bytes):
            kwargs["data"] = body
        elif body is not None:
            kwargs["json"] = body

        started = time.perf_counter()
        response = self.client.open(self.prefix + path, method=method.upper(), **kwargs)
        return Response(
            status=response.status_code,
            body=response.get_data(),
            latency=time.perf_counter() - started,
            headers=dict(response.headers),
        )


class ScriptedTransport:
    """
    Transport answering every call with a fixed status, unless scripted.

    Args:
        default_status: Status for calls with no scripted answer.
        statuses: ``{(METHOD, path): status}`` overrides.
        body: Body returned with every response.
    """

    def __init__(
        self,
        default_status: int = 200,
        statuses: Mapping[tuple[str, str], int] | None = None,
        body: bytes = b"{}",
    ) -> None:
        self.default_status = default_status
        self.statuses = dict(statuses or {})
        self.body = body
        self.calls: list[tuple[str, str, Any]] = []

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Response:
        self.calls.append((method.upper(), path, body))
        status = self.statuses.get((method.upper(), path), self.default_status)
        return Response(status=status, body=self.body, latency=0.001)
