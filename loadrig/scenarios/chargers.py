"""
Charger availability suite.

Setup creates one station with five chargers of different models; the
virtual users then mix reads and status changes on those chargers:

- 30 % read a charger's availability
- 20 % move a charger to a status allowed from its current one
- 20 % list chargers by status
- 15 % update a charger's details
- 15 % poll one charger's availability three times in a row

Deleting the station removes its chargers.
"""

from __future__ import annotations

from loadrig.dispatch import Scenario, WeightTable, between
from loadrig.engine import IterationContext
from loadrig.fixtures import SetupSession, SetupStep
from loadrig.scenarios.base import Suite, register_suite, stages_of
from loadrig.scenarios.helpers import (
    CHARGER_MODELS,
    CHARGER_STATUSES,
    STATUS_TRANSITIONS,
    availability,
    json_list,
    json_object,
    pick,
    random_suffix,
    station_payload,
)
from loadrig.steps import StepChain, StepOutcome, StepResult


def _create_station_with_chargers(session: SetupSession) -> None:
    station = session.create(
        "station",
        "/stations",
        station_payload(
            template={
                "name": "Charlotte Main Station",
                "address": "1247 Innovation Drive",
                "latitude": 40.7128,
                "longitude": -74.006,
            }
        ),
    )
    for model, power in CHARGER_MODELS:
        session.create(
            "charger",
            f"/stations/{station['id']}/chargers",
            {"model": model, "powerOutput": power, "status": "AVAILABLE"},
        )


def _charger(ctx: IterationContext):
    return pick(ctx.rng, ctx.fixtures.ids("charger"))


def get_availability(ctx: IterationContext) -> StepOutcome:
    charger_id = _charger(ctx)
    if charger_id is None:
        return StepOutcome.failed("no charger available")

    response = ctx.http.get(f"/chargers/{charger_id}/availability")
    passed = ctx.check(
        response,
        {
            "get availability status is 200": lambda r: r.status == 200,
            "get availability returns a known status": lambda r: availability(r)
            in CHARGER_STATUSES,
        },
    )
    if passed:
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"availability returned {response.status}", response.latency)


def _read_status(ctx: IterationContext, charger_id) -> StepResult:
    response = ctx.http.get(f"/chargers/{charger_id}/availability")
    return StepResult.from_response(response, value=(charger_id, availability(response)))


def _apply_transition(ctx: IterationContext, carry) -> StepResult:
    charger_id, current = carry
    new_status = pick(ctx.rng, STATUS_TRANSITIONS.get(current, ()))
    if new_status is None:
        return StepResult.halt(detail=f"no transition from {current}")

    # The endpoint takes the bare status as a JSON string
    response = ctx.http.put(f"/chargers/{charger_id}/availability", new_status)
    charger = json_object(response)
    passed = ctx.check(
        response,
        {
            "update status is 200": lambda r: r.status == 200,
            "update status applied": lambda r: charger.get("status") == new_status,
        },
    )
    if passed:
        return StepResult.success(new_status, latency=response.latency)
    return StepResult.failure(f"status update returned {response.status}", latency=response.latency)


STATUS_TRANSITION_CHAIN = (
    StepChain("status_transition")
    .step("read current status", _read_status)
    .step("apply transition", _apply_transition)
)


def update_status(ctx: IterationContext) -> StepOutcome:
    charger_id = _charger(ctx)
    if charger_id is None:
        return StepOutcome.failed("no charger available")
    return STATUS_TRANSITION_CHAIN.run(ctx, carry=charger_id)


def get_by_status(ctx: IterationContext) -> StepOutcome:
    status = pick(ctx.rng, CHARGER_STATUSES)
    response = ctx.http.get(f"/chargers/availability/{status}")
    chargers = json_list(response)
    passed = ctx.check(
        response,
        {
            "get by status is 200": lambda r: r.status == 200,
            "get by status returns a list": lambda r: isinstance(r.json(), list),
            "get by status filters correctly": lambda r: all(
                charger.get("status") == status for charger in chargers
            ),
        },
    )
    if passed:
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"GET by status {status} returned {response.status}", response.latency)


def update_details(ctx: IterationContext) -> StepOutcome:
    charger_id = _charger(ctx)
    if charger_id is None:
        return StepOutcome.failed("no charger available")

    payload = {
        "model": f"Updated {random_suffix(ctx.rng)}",
        "powerOutput": ctx.rng.randint(50, 349),
        "status": "AVAILABLE",
    }
    response = ctx.http.put(f"/chargers/{charger_id}", payload)
    charger = json_object(response)
    passed = ctx.check(
        response,
        {
            "update details is 200": lambda r: r.status == 200,
            "update details applied": lambda r: charger.get("model") == payload["model"]
            and charger.get("powerOutput") == payload["powerOutput"],
        },
    )
    if passed:
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"update details returned {response.status}", response.latency)


def repeated_checks(ctx: IterationContext) -> StepOutcome:
    charger_id = _charger(ctx)
    if charger_id is None:
        return StepOutcome.failed("no charger available")

    latency = 0.0
    all_passed = True
    for _ in range(3):
        response = ctx.http.get(f"/chargers/{charger_id}/availability")
        latency += response.latency
        passed = ctx.check(response, {"repeated check is 200": lambda r: r.status == 200})
        all_passed = all_passed and passed
    if all_passed:
        return StepOutcome.ok(latency)
    return StepOutcome.failed("repeated availability check failed", latency)


SUITE = register_suite(
    Suite(
        name="chargers",
        description="Charger availability reads and status transitions",
        table=WeightTable.of(
            "chargers",
            ("get_availability", 0.3, Scenario("get_availability", get_availability)),
            ("update_status", 0.2, Scenario("update_status", update_status)),
            ("get_by_status", 0.2, Scenario("get_by_status", get_by_status)),
            ("update_details", 0.15, Scenario("update_details", update_details)),
            ("repeated_checks", 0.15, Scenario("repeated_checks", repeated_checks)),
        ),
        setup_steps=(SetupStep("create station with chargers", _create_station_with_chargers),),
        deleters={"station": "/stations/{id}"},
        think_time=between(0.3, 1.1),
        stages=stages_of(("1m", 60), ("1m", 120), ("10m", 120), ("1m", 60), ("1m", 0)),
        default_thresholds={
            "http_req_duration": ["p(95)<600"],
            "http_req_failed": ["rate<0.06"],
            "scenario_success": ["fail_rate<0.06"],
        },
    )
)
