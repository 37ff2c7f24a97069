"""
Station CRUD suite.

Each virtual user cycles through five scenarios in order, keyed by its
own iteration counter: list stations, fetch one station, create a
station, list a station's chargers, add a charger to a station.

Setup creates three stations the read scenarios work against.  Stations
created during the run are handed to teardown, which deletes them along
with the setup stations.
"""

from __future__ import annotations

from loadrig.dispatch import RoundRobinTable, Scenario, between
from loadrig.engine import IterationContext
from loadrig.fixtures import ResourceRef, SetupSession, SetupStep
from loadrig.scenarios.base import Suite, register_suite, stages_of
from loadrig.scenarios.helpers import (
    STATION_TEMPLATES,
    charger_payload,
    json_object,
    pick,
    station_payload,
)
from loadrig.steps import StepOutcome
from loadrig.transport import Response

SETUP_STATIONS = 3


def _create_stations(session: SetupSession) -> None:
    for template in STATION_TEMPLATES[:SETUP_STATIONS]:
        session.create("station", "/stations", station_payload(template=template))


def _outcome(passed: bool, response: Response, label: str) -> StepOutcome:
    if passed:
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"{label} returned {response.status}", response.latency)


def get_all_stations(ctx: IterationContext) -> StepOutcome:
    response = ctx.http.get("/stations")
    passed = ctx.check(
        response,
        {
            "get all stations status is 200": lambda r: r.status == 200,
            "get all stations returns a list": lambda r: isinstance(r.json(), list),
        },
    )
    return _outcome(passed, response, "GET /stations")


def get_station_by_id(ctx: IterationContext) -> StepOutcome:
    station_id = pick(ctx.rng, ctx.fixtures.ids("station"))
    if station_id is None:
        return StepOutcome.failed("no setup station available")

    response = ctx.http.get(f"/stations/{station_id}")
    station = json_object(response)
    passed = ctx.check(
        response,
        {
            "get station status is 200": lambda r: r.status == 200,
            "get station has required fields": lambda r: bool(
                station.get("id") and station.get("name") and station.get("address")
            ),
        },
    )
    return _outcome(passed, response, f"GET /stations/{station_id}")


def create_station(ctx: IterationContext) -> StepOutcome:
    template = pick(ctx.rng, STATION_TEMPLATES)
    payload = station_payload(ctx.rng, template=template)
    response = ctx.http.post("/stations", payload)
    station = json_object(response)
    passed = ctx.check(
        response,
        {
            "create station status is 201": lambda r: r.status == 201,
            "create station returns the station": lambda r: bool(station.get("id"))
            and station.get("name") == payload["name"],
        },
    )
    if not passed:
        return _outcome(False, response, "POST /stations")
    return StepOutcome.ok(response.latency, created=(ResourceRef("station", station["id"]),))


def get_station_chargers(ctx: IterationContext) -> StepOutcome:
    station_id = pick(ctx.rng, ctx.fixtures.ids("station"))
    if station_id is None:
        return StepOutcome.failed("no setup station available")

    response = ctx.http.get(f"/stations/{station_id}/chargers")
    passed = ctx.check(
        response,
        {
            "get station chargers status is 200": lambda r: r.status == 200,
            "get station chargers returns a list": lambda r: isinstance(r.json(), list),
        },
    )
    return _outcome(passed, response, f"GET /stations/{station_id}/chargers")


def create_charger(ctx: IterationContext) -> StepOutcome:
    station_id = pick(ctx.rng, ctx.fixtures.ids("station"))
    if station_id is None:
        return StepOutcome.failed("no setup station available")

    payload = charger_payload(ctx.rng)
    response = ctx.http.post(f"/stations/{station_id}/chargers", payload)
    charger = json_object(response)
    passed = ctx.check(
        response,
        {
            "create charger status is 201": lambda r: r.status == 201,
            "create charger returns the charger": lambda r: bool(charger.get("id"))
            and charger.get("model") == payload["model"],
        },
    )
    return _outcome(passed, response, f"POST /stations/{station_id}/chargers")


SUITE = register_suite(
    Suite(
        name="stations",
        description="Station CRUD cycled per iteration",
        table=RoundRobinTable(
            "stations",
            (
                Scenario("get_all_stations", get_all_stations),
                Scenario("get_station_by_id", get_station_by_id),
                Scenario("create_station", create_station),
                Scenario("get_station_chargers", get_station_chargers),
                Scenario("create_charger", create_charger),
            ),
        ),
        setup_steps=(SetupStep("create stations", _create_stations),),
        deleters={"station": "/stations/{id}"},
        think_time=between(0.5, 1.5),
        stages=stages_of(
            ("1m", 50), ("1m", 100), ("2m", 150), ("10m", 150), ("2m", 100), ("1m", 0)
        ),
        default_thresholds={
            "http_req_duration": ["p(95)<800"],
            "http_req_failed": ["rate<0.08"],
            "scenario_success": ["fail_rate<0.08"],
        },
    )
)

