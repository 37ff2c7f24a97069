# ruff: noqa: E402
"""
loadrig: synthetic load generation for HTTP services.

A run drives a target with a time-varying population of virtual users,
each executing weighted, possibly multi-step scenarios, then turns the
collected metrics into a PASS/FAIL verdict.

Typical use::

    from loadrig import LoadRun, load_plan

    result = LoadRun.from_plan(load_plan("plans/mixed.yml")).run()
    raise SystemExit(result.exit_code)
"""

# Patch the standard library before anything imports sockets, so blocking
# calls in requests yield to other virtual users
from gevent import monkey

monkey.patch_all()

import logging

from loadrig.config import get_config

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_config().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

from loadrig.dispatch import (
    Dispatcher,
    RoundRobinTable,
    Scenario,
    ThinkTime,
    WeightTable,
    between,
    constant,
)
from loadrig.engine import ExecutionEngine, IterationContext
from loadrig.errors import (
    LoadrigError,
    PlanError,
    ScenarioError,
    SetupError,
    TeardownError,
)
from loadrig.fixtures import FixtureManager, ResourceRef, SetupStep, SharedContext
from loadrig.metrics import MetricRegistry
from loadrig.plan import RunPlan, load_plan
from loadrig.runner import LoadRun, RunResult, RunState
from loadrig.stages import Stage, StageSchedule
from loadrig.steps import StepChain, StepOutcome, StepResult, check
from loadrig.thresholds import evaluate, parse_threshold
from loadrig.transport import HttpTransport, InstrumentedClient, Response

__version__ = "0.1.0"

__all__ = [
    "Dispatcher",
    "ExecutionEngine",
    "FixtureManager",
    "HttpTransport",
    "InstrumentedClient",
    "IterationContext",
    "LoadRun",
    "LoadrigError",
    "MetricRegistry",
    "PlanError",
    "ResourceRef",
    "Response",
    "RoundRobinTable",
    "RunPlan",
    "RunResult",
    "RunState",
    "Scenario",
    "ScenarioError",
    "SetupError",
    "SetupStep",
    "SharedContext",
    "Stage",
    "StageSchedule",
    "StepChain",
    "StepOutcome",
    "StepResult",
    "TeardownError",
    "ThinkTime",
    "WeightTable",
    "between",
    "check",
    "constant",
    "evaluate",
    "load_plan",
    "parse_threshold",
]
