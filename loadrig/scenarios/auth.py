"""
Authentication storm.

Hammers the registration and login endpoints:

- 40 % driver registrations
- 30 % operator registrations
- 30 % logins, of which 30 % use a real account and 70 % use made-up
  credentials (a 400/401 answer is the expected outcome there)

Setup registers one driver account so valid logins have something to
log in with.  Accounts cannot be deleted through the API, so nothing is
torn down.
"""

from __future__ import annotations

import logging

from loadrig.dispatch import Scenario, WeightTable, between
from loadrig.engine import IterationContext
from loadrig.fixtures import SetupSession, SetupStep
from loadrig.scenarios.base import Suite, register_suite, stages_of
from loadrig.scenarios.helpers import (
    driver_registration_payload,
    json_object,
    operator_registration_payload,
    pick,
    random_suffix,
)
from loadrig.steps import StepOutcome

logger = logging.getLogger(__name__)

REGISTER_DRIVER = "/auth/register/driver"
REGISTER_OPERATOR = "/auth/register/operator"
LOGIN = "/auth/login"

# Invalid credentials are answered with one of these
LOGIN_STATUSES = (200, 400, 401)


def _create_login_account(session: SetupSession) -> None:
    payload = driver_registration_payload()
    session.request("POST", REGISTER_DRIVER, payload, expected=(200, 201))
    session.put(
        "accounts",
        [{"username": payload["user"]["username"], "password": payload["user"]["password"]}],
    )


def register_driver(ctx: IterationContext) -> StepOutcome:
    response = ctx.http.post(REGISTER_DRIVER, driver_registration_payload(ctx.rng))
    body = json_object(response)
    passed = ctx.check(
        response,
        {
            "driver registration status is 200": lambda r: r.status == 200,
            "driver registration returns auth data": lambda r: bool(
                body.get("token") and body.get("driverId") and body.get("userType") == "EV_DRIVER"
            ),
        },
    )
    if passed:
        ctx.metrics.counter("successful_registrations").add(1)
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"driver registration returned {response.status}", response.latency)


def register_operator(ctx: IterationContext) -> StepOutcome:
    response = ctx.http.post(REGISTER_OPERATOR, operator_registration_payload(ctx.rng))
    body = json_object(response)
    passed = ctx.check(
        response,
        {
            "operator registration status is 200": lambda r: r.status == 200,
            "operator registration returns auth data": lambda r: bool(
                body.get("token")
                and body.get("operatorId")
                and body.get("userType") == "STATION_OPERATOR"
            ),
        },
    )
    if passed:
        ctx.metrics.counter("successful_registrations").add(1)
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"operator registration returned {response.status}", response.latency)


def _login(ctx: IterationContext, username: str, password: str) -> StepOutcome:
    response = ctx.http.post(
        LOGIN, {"username": username, "password": password}, expected=LOGIN_STATUSES
    )
    body = json_object(response)
    passed = ctx.check(
        response,
        {
            "login response received": lambda r: r.status in LOGIN_STATUSES,
            "login response format": lambda r: r.status != 200
            or bool(body.get("token") and body.get("userType")),
        },
    )
    if response.status == 200:
        ctx.metrics.counter("successful_logins").add(1)
    if passed:
        return StepOutcome.ok(response.latency)
    return StepOutcome.failed(f"login returned {response.status}", response.latency)


def login_existing(ctx: IterationContext) -> StepOutcome:
    account = pick(ctx.rng, ctx.fixtures.get("accounts", ()))
    if account is None:
        return StepOutcome.failed("no account available for login")
    return _login(ctx, account["username"], account["password"])


def login_invalid(ctx: IterationContext) -> StepOutcome:
    return _login(ctx, f"nonexistent_{random_suffix(ctx.rng)}", "wrongpassword")


LOGIN_TABLE = WeightTable.of(
    "login",
    ("login_existing", 0.3, Scenario("login_existing", login_existing)),
    ("login_invalid", 0.7, Scenario("login_invalid", login_invalid)),
)

SUITE = register_suite(
    Suite(
        name="auth",
        description="Registration and login storm",
        table=WeightTable.of(
            "auth",
            ("register_driver", 0.4, Scenario("register_driver", register_driver)),
            ("register_operator", 0.3, Scenario("register_operator", register_operator)),
            ("login", 0.3, LOGIN_TABLE),
        ),
        setup_steps=(SetupStep("create login account", _create_login_account),),
        think_time=between(0.5, 2.0),
        stages=stages_of(("30s", 20), ("1m", 50), ("5m", 80), ("30s", 0)),
        default_thresholds={
            "http_req_duration": ["p(95)<1000"],
            "http_req_failed": ["rate<0.10"],
            "scenario_success": ["fail_rate<0.10"],
        },
    )
)
