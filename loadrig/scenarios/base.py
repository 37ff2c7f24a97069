"""
Suite definition shared by every scenario module.

A :class:`Suite` bundles everything a run needs besides the target URL:
the scenario table, the fixture setup steps, how to delete what they
create, the default think time, and the stage table and thresholds to
use when a plan does not override them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from loadrig.dispatch import ScenarioTable, ThinkTime, weight_table_from_mapping
from loadrig.errors import PlanError
from loadrig.fixtures import SetupStep
from loadrig.stages import Stage, parse_duration
from loadrig.thresholds import Threshold, thresholds_from_mapping


def stages_of(*pairs: tuple[str, int]) -> tuple[Stage, ...]:
    """``stages_of(("1m", 50), ("30s", 0))`` -> stage tuple."""
    return tuple(Stage(parse_duration(duration), target) for duration, target in pairs)


@dataclass(frozen=True)
class Suite:
    name: str
    description: str
    table: ScenarioTable
    setup_steps: tuple[SetupStep, ...] = ()
    deleters: Mapping[str, str] = field(default_factory=dict)
    think_time: ThinkTime | None = None
    stages: tuple[Stage, ...] = ()
    default_thresholds: Mapping[str, Any] = field(default_factory=dict)

    def thresholds(self) -> list[Threshold]:
        return thresholds_from_mapping(self.default_thresholds)

    def table_for(self, weights: Mapping[str, Any] | None) -> ScenarioTable:
        """
        The suite's table, or one rebuilt from plan ``weights``.

        Weight overrides may only name scenarios the suite defines.

        Raises:
            PlanError: On unknown scenario names or invalid weights.
        """
        if weights is None:
            return self.table
        registry = {scenario.name: scenario for scenario in self.table.scenarios()}
        return weight_table_from_mapping(self.name, dict(weights), registry)


_SUITES: dict[str, Suite] = {}


def register_suite(suite: Suite) -> Suite:
    if suite.name in _SUITES:
        raise PlanError(f"Suite {suite.name!r} is already registered")
    _SUITES[suite.name] = suite
    return suite


def get_suite(name: str) -> Suite:
    try:
        return _SUITES[name]
    except KeyError:
        available = ", ".join(sorted(_SUITES)) or "none"
        raise PlanError(f"Unknown suite {name!r} (available: {available})") from None


def suite_names() -> list[str]:
    return sorted(_SUITES)
