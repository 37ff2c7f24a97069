"""
Extreme concurrent load across a larger charging network.

Four traffic shapes hit the API at once:

- 40 % read sweeps: three reads drawn from listings, station details
  and the availability filters
- 30 % write batches: one to three writes, each drawn 40 / 30 / 30
  between opening a station, adding a charger and flipping a charger's
  availability
- 20 % bursts: three to seven quick reads, 60 / 20 / 20 between the
  station listing, a charger's availability and a station's chargers
- 10 % stress: five to twelve reads against random endpoints, where a
  404 still counts as responsive

Setup opens ten stations with five to ten chargers each.  Stations
opened by write batches are handed to teardown through the outcome's
``created`` refs, so the run leaves nothing behind.
"""

from __future__ import annotations

import random
from typing import Sequence

from loadrig.dispatch import Scenario, WeightTable, between
from loadrig.engine import IterationContext
from loadrig.fixtures import ResourceRef, SetupSession, SetupStep
from loadrig.scenarios.base import Suite, register_suite, stages_of
from loadrig.scenarios.helpers import (
    CHARGER_STATUSES,
    charger_payload,
    json_object,
    pick,
    station_payload,
)
from loadrig.steps import StepOutcome
from loadrig.transport import Response

EXTREME_OPERATIONS = "extreme_operations"

BASE_STATIONS = 10
POWER_OUTPUTS = (75, 100, 150, 200, 350)


def _build_network(session: SetupSession) -> None:
    for index in range(BASE_STATIONS):
        station = session.create(
            "station",
            "/stations",
            station_payload(
                template={
                    "name": f"Atlantic Hub {index + 1}",
                    "address": f"{1000 + index} Atlantic Ave",
                    "latitude": round(40.7 + (random.random() - 0.5) * 0.2, 6),
                    "longitude": round(-74.0 + (random.random() - 0.5) * 0.2, 6),
                }
            ),
        )
        for slot in range(random.randint(5, 10)):
            session.create(
                "charger",
                f"/stations/{station['id']}/chargers",
                {
                    "model": f"Atlantic-{index}-{slot}",
                    "powerOutput": random.choice(POWER_OUTPUTS),
                    "status": "AVAILABLE",
                },
            )


def _operation(
    ctx: IterationContext, response: Response, label: str, expected: Sequence[int] = (200,)
) -> StepOutcome:
    ctx.metrics.counter(EXTREME_OPERATIONS).add(1)
    passed = ctx.check(response, {label: lambda r: r.status in expected})
    if passed:
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"{label}: got {response.status}", response.latency)


def _combine(outcomes: list[StepOutcome]) -> StepOutcome:
    """Fold the outcomes of one batch into the iteration's outcome."""
    latency = sum(o.latency for o in outcomes)
    created = tuple(ref for o in outcomes for ref in o.created)
    failures = [o for o in outcomes if not o.success]
    if failures:
        return StepOutcome.failed(
            f"{len(failures)} of {len(outcomes)} operation(s) failed: {failures[0].detail}",
            latency,
            created=created,
        )
    return StepOutcome.ok(latency, created=created)


def _random_station(ctx: IterationContext):
    return pick(ctx.rng, ctx.fixtures.ids("station"))


def _random_charger(ctx: IterationContext):
    return pick(ctx.rng, ctx.fixtures.ids("charger"))


# ---------------------------------------------------------------------
# Read sweeps
# ---------------------------------------------------------------------


def _read_paths(ctx: IterationContext) -> list[str]:
    paths = ["/stations"]
    station_id = _random_station(ctx)
    if station_id is not None:
        paths.append(f"/stations/{station_id}")
    paths.extend(f"/chargers/availability/{status}" for status in CHARGER_STATUSES)
    return paths


def read_sweep(ctx: IterationContext) -> StepOutcome:
    outcomes = []
    for _ in range(3):
        path = pick(ctx.rng, _read_paths(ctx))
        outcomes.append(_operation(ctx, ctx.http.get(path), "read sweep is 200"))
    return _combine(outcomes)


# ---------------------------------------------------------------------
# Write batches
# ---------------------------------------------------------------------


def _open_station(ctx: IterationContext) -> StepOutcome:
    response = ctx.http.post("/stations", station_payload(ctx.rng))
    outcome = _operation(ctx, response, "open station is 201", expected=(201,))
    station_id = json_object(response).get("id")
    if outcome.success and station_id is not None:
        return StepOutcome.ok(outcome.latency, created=(ResourceRef("station", station_id),))
    return outcome


def _add_charger(ctx: IterationContext) -> StepOutcome:
    station_id = _random_station(ctx)
    if station_id is None:
        return StepOutcome.ok(detail="no station to extend")
    body = {**charger_payload(ctx.rng), "powerOutput": ctx.rng.randint(50, 349)}
    response = ctx.http.post(f"/stations/{station_id}/chargers", body)
    return _operation(ctx, response, "add charger is 201", expected=(201,))


def _flip_availability(ctx: IterationContext) -> StepOutcome:
    charger_id = _random_charger(ctx)
    if charger_id is None:
        return StepOutcome.ok(detail="no charger to update")
    status = pick(ctx.rng, CHARGER_STATUSES)
    response = ctx.http.put(f"/chargers/{charger_id}/availability", status)
    return _operation(ctx, response, "flip availability is 200")


WRITE_OPERATIONS = WeightTable.of(
    "write_operation",
    ("open_station", 0.4, Scenario("open_station", _open_station)),
    ("add_charger", 0.3, Scenario("add_charger", _add_charger)),
    ("flip_availability", 0.3, Scenario("flip_availability", _flip_availability)),
)


def write_batch(ctx: IterationContext) -> StepOutcome:
    outcomes = []
    for _ in range(ctx.rng.randint(1, 3)):
        operation = ctx.dispatch(WRITE_OPERATIONS)
        outcomes.append(operation(ctx))
    return _combine(outcomes)


# ---------------------------------------------------------------------
# Bursts
# ---------------------------------------------------------------------


def _list_stations(ctx: IterationContext) -> StepOutcome:
    return _operation(ctx, ctx.http.get("/stations"), "burst read is 200")


def _charger_availability(ctx: IterationContext) -> StepOutcome:
    charger_id = _random_charger(ctx)
    if charger_id is None:
        return _list_stations(ctx)
    return _operation(ctx, ctx.http.get(f"/chargers/{charger_id}/availability"), "burst read is 200")


def _station_chargers(ctx: IterationContext) -> StepOutcome:
    station_id = _random_station(ctx)
    if station_id is None:
        return _list_stations(ctx)
    return _operation(ctx, ctx.http.get(f"/stations/{station_id}/chargers"), "burst read is 200")


BURST_OPERATIONS = WeightTable.of(
    "burst_operation",
    ("list_stations", 0.6, Scenario("list_stations", _list_stations)),
    ("charger_availability", 0.2, Scenario("charger_availability", _charger_availability)),
    ("station_chargers", 0.2, Scenario("station_chargers", _station_chargers)),
)


def burst(ctx: IterationContext) -> StepOutcome:
    outcomes = []
    for _ in range(ctx.rng.randint(3, 7)):
        operation = ctx.dispatch(BURST_OPERATIONS)
        outcomes.append(operation(ctx))
        ctx.pause(0.05)
    return _combine(outcomes)


# ---------------------------------------------------------------------
# Stress
# ---------------------------------------------------------------------


def stress(ctx: IterationContext) -> StepOutcome:
    outcomes = []
    for _ in range(ctx.rng.randint(5, 12)):
        paths = ["/stations", "/chargers/availability/AVAILABLE", "/chargers/availability/BEING_USED"]
        station_id = _random_station(ctx)
        if station_id is not None:
            paths.extend([f"/stations/{station_id}", f"/stations/{station_id}/chargers"])
        response = ctx.http.get(pick(ctx.rng, paths), expected=(200, 404))
        outcomes.append(_operation(ctx, response, "stress endpoint responsive", expected=(200, 404)))
    return _combine(outcomes)


SUITE = register_suite(
    Suite(
        name="extreme",
        description="Reads, write batches, bursts and stress across a ten-station network",
        table=WeightTable.of(
            "extreme",
            ("read_sweep", 0.4, Scenario("read_sweep", read_sweep)),
            ("write_batch", 0.3, Scenario("write_batch", write_batch)),
            ("burst", 0.2, Scenario("burst", burst)),
            ("stress", 0.1, Scenario("stress", stress)),
        ),
        setup_steps=(SetupStep("build charging network", _build_network),),
        deleters={"station": "/stations/{id}"},
        think_time=between(0.1, 0.6),
        stages=stages_of(("1m", 200), ("1m", 300), ("10m", 300), ("1m", 150), ("1m", 0)),
        default_thresholds={
            "http_req_duration": ["p(95)<2000"],
            "http_req_failed": ["rate<0.15"],
            "scenario_success": ["fail_rate<0.15"],
            EXTREME_OPERATIONS: ["count>3000"],
        },
    )
)
