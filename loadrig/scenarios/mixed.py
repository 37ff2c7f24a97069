"""
Mixed production-like workflow.

Simulates the three kinds of users a charging network sees:

- 60 % EV drivers: find stations, open one, look for a free charger,
  start and finish a charging session
- 25 % station admins, split 40 / 30 / 30 between charger maintenance,
  opening a new station and editing a station
- 15 % monitoring: sweep the listing, status and detail endpoints

Setup builds five stations with two to five chargers each.  Every
workflow that reaches its end adds one to ``completed_workflows``.
"""

from __future__ import annotations

import random

from loadrig.dispatch import Scenario, WeightTable, between
from loadrig.engine import IterationContext
from loadrig.fixtures import ResourceRef, SetupSession, SetupStep
from loadrig.scenarios.base import Suite, register_suite, stages_of
from loadrig.scenarios.helpers import (
    CHARGER_STATUSES,
    STATION_TEMPLATES,
    json_list,
    json_object,
    pick,
    station_payload,
)
from loadrig.steps import StepChain, StepOutcome, StepResult

COMPLETED_WORKFLOWS = "completed_workflows"
WORKFLOW_STEPS = "workflow_steps"


def _build_network(session: SetupSession) -> None:
    for template in STATION_TEMPLATES:
        station = session.create("station", "/stations", station_payload(template=template))
        for index in range(random.randint(2, 5)):
            session.create(
                "charger",
                f"/stations/{station['id']}/chargers",
                {
                    "model": f"Model-{index + 1}",
                    "powerOutput": random.choice([75, 100, 150, 200]),
                    "status": "AVAILABLE",
                },
            )


def _completed(ctx: IterationContext) -> None:
    ctx.metrics.counter(COMPLETED_WORKFLOWS).add(1)


# ---------------------------------------------------------------------
# EV driver
# ---------------------------------------------------------------------


def _find_stations(ctx: IterationContext, _carry) -> StepResult:
    ctx.metrics.counter(WORKFLOW_STEPS).add(1)
    response = ctx.http.get("/stations")
    if response.status != 200:
        return StepResult.failure(f"GET /stations returned {response.status}", latency=response.latency)

    stations = json_list(response)
    if not stations:
        return StepResult.halt(latency=response.latency, detail="no stations listed")
    return StepResult.success(pick(ctx.rng, stations), latency=response.latency)


def _open_station(ctx: IterationContext, station) -> StepResult:
    ctx.pause(0.5)
    response = ctx.http.get(f"/stations/{station['id']}")
    return StepResult.from_response(response, value=station)


def _find_free_charger(ctx: IterationContext, station) -> StepResult:
    ctx.pause(0.3)
    response = ctx.http.get(f"/stations/{station['id']}/chargers")
    if response.status != 200:
        return StepResult.failure(
            f"GET /stations/{station['id']}/chargers returned {response.status}",
            latency=response.latency,
        )

    free = [c for c in json_list(response) if c.get("status") == "AVAILABLE"]
    if not free:
        return StepResult.halt(latency=response.latency, detail="no free charger")
    return StepResult.success(free[0], latency=response.latency)


def _start_charging(ctx: IterationContext, charger) -> StepResult:
    ctx.pause(0.5)
    response = ctx.http.put(f"/chargers/{charger['id']}/availability", "BEING_USED")
    return StepResult.from_response(response, value=charger)


def _finish_charging(ctx: IterationContext, charger) -> StepResult:
    ctx.pause(1.0)
    response = ctx.http.put(f"/chargers/{charger['id']}/availability", "AVAILABLE")
    ctx.check(response, {"finish charging is 200": lambda r: r.status == 200})
    _completed(ctx)
    return StepResult.success(latency=response.latency)


EV_DRIVER = (
    StepChain("ev_driver")
    .step("find stations", _find_stations)
    .step("open station", _open_station)
    .step("find free charger", _find_free_charger)
    .step("start charging", _start_charging)
    .step("finish charging", _finish_charging)
)


# ---------------------------------------------------------------------
# Station admin
# ---------------------------------------------------------------------


def charger_maintenance(ctx: IterationContext) -> StepOutcome:
    ctx.metrics.counter(WORKFLOW_STEPS).add(1)
    charger_id = pick(ctx.rng, ctx.fixtures.ids("charger"))
    if charger_id is None:
        return StepOutcome.ok(detail="no charger to maintain")

    response = ctx.http.put(f"/chargers/{charger_id}/availability", "UNDER_MAINTENANCE")
    if not ctx.check(response, {"mark maintenance is 200": lambda r: r.status == 200}):
        return StepOutcome.failed(f"mark maintenance returned {response.status}", response.latency)

    ctx.pause(1.5)
    back = ctx.http.put(f"/chargers/{charger_id}/availability", "AVAILABLE")
    ctx.check(back, {"return to service is 200": lambda r: r.status == 200})
    _completed(ctx)
    return StepOutcome.ok(response.latency + back.latency)


def open_station(ctx: IterationContext) -> StepOutcome:
    ctx.metrics.counter(WORKFLOW_STEPS).add(1)
    response = ctx.http.post("/stations", station_payload(ctx.rng))
    station = json_object(response)
    if not ctx.check(response, {"create station is 201": lambda r: r.status == 201}):
        return StepOutcome.failed(f"create station returned {response.status}", response.latency)

    _completed(ctx)
    created = (ResourceRef("station", station["id"]),) if station.get("id") is not None else ()
    return StepOutcome.ok(response.latency, created=created)


def edit_station(ctx: IterationContext) -> StepOutcome:
    ctx.metrics.counter(WORKFLOW_STEPS).add(1)
    station_id = pick(ctx.rng, ctx.fixtures.ids("station"))
    if station_id is None:
        return StepOutcome.ok(detail="no station to edit")

    response = ctx.http.put(f"/stations/{station_id}", station_payload(ctx.rng))
    if not ctx.check(response, {"update station is 200": lambda r: r.status == 200}):
        return StepOutcome.failed(f"update station returned {response.status}", response.latency)

    _completed(ctx)
    return StepOutcome.ok(response.latency)


ADMIN_TABLE = WeightTable.of(
    "station_admin",
    ("charger_maintenance", 0.4, Scenario("charger_maintenance", charger_maintenance)),
    ("open_station", 0.3, Scenario("open_station", open_station)),
    ("edit_station", 0.3, Scenario("edit_station", edit_station)),
)


# ---------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------


def monitoring_sweep(ctx: IterationContext) -> StepOutcome:
    ctx.metrics.counter(WORKFLOW_STEPS).add(1)
    paths = ["/stations"]
    paths.extend(f"/chargers/availability/{status}" for status in CHARGER_STATUSES)

    station_ids = list(ctx.fixtures.ids("station"))
    for station_id in ctx.rng.sample(station_ids, min(3, len(station_ids))):
        paths.extend([f"/stations/{station_id}", f"/stations/{station_id}/chargers"])

    latency = 0.0
    failed = []
    for path in paths:
        response = ctx.http.get(path)
        latency += response.latency
        if not ctx.check(response, {"monitoring request is 200": lambda r: r.status == 200}):
            failed.append(path)

    if failed:
        return StepOutcome.failed(f"{len(failed)} monitoring call(s) failed: {failed[0]}", latency)
    _completed(ctx)
    return StepOutcome.ok(latency)


SUITE = register_suite(
    Suite(
        name="mixed",
        description="Drivers, station admins and monitoring in production proportions",
        table=WeightTable.of(
            "mixed",
            ("ev_driver", 0.6, Scenario("ev_driver", EV_DRIVER)),
            ("station_admin", 0.25, ADMIN_TABLE),
            ("monitoring", 0.15, Scenario("monitoring", monitoring_sweep)),
        ),
        setup_steps=(SetupStep("build charging network", _build_network),),
        deleters={"station": "/stations/{id}"},
        think_time=between(0.5, 2.0),
        stages=stages_of(("1m", 80), ("1m", 120), ("10m", 120), ("1m", 60), ("1m", 0)),
        default_thresholds={
            "http_req_duration": ["p(95)<1000"],
            "http_req_failed": ["rate<0.02"],
            "scenario_success": ["fail_rate<0.05"],
            COMPLETED_WORKFLOWS: ["count>50"],
        },
    )
)
