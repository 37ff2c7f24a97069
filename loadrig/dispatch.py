"""
Scenario registry and weighted dispatch.

A suite's traffic mix is declared as a tree of :class:`WeightTable`
objects.  Each entry carries a probability in ``(0, 1]`` and either a
:class:`Scenario` or another table, so a multi-level decision such as
"60 % driver journey, 25 % admin (of which 40 % maintenance ...)" is
plain data rather than nested ``if`` statements.

Weights at one decision point may sum to less than 1.0.  The remainder
is an explicit *idle* branch: :meth:`Dispatcher.select` returns ``None``
and the engine counts the iteration as idle, neither success nor
failure.

:class:`RoundRobinTable` covers suites that cycle through scenarios by
the worker's iteration counter instead of drawing at random.

Key Concepts Demonstrated:
- Declarative decision trees that can be tested without any HTTP
- Independent draws per nesting level
- Seedable randomness for reproducible dispatch tests
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Union

from loadrig.errors import PlanError

if TYPE_CHECKING:
    from loadrig.engine import IterationContext
    from loadrig.steps import StepOutcome

# Tolerance for float sums such as 0.6 + 0.25 + 0.15
WEIGHT_TOLERANCE = 1e-9


class ThinkTime:
    """Pause between iterations, drawn per iteration."""

    def __init__(self, low: float, high: float | None = None) -> None:
        high = low if high is None else high
        if low < 0 or high < low:
            raise PlanError(f"Invalid think time range: {low}..{high}")
        self.low = low
        self.high = high

    def draw(self, rng: random.Random) -> float:
        if self.low == self.high:
            return self.low
        return rng.uniform(self.low, self.high)

    def __repr__(self) -> str:
        return f"ThinkTime({self.low}, {self.high})"


def between(low: float, high: float) -> ThinkTime:
    """Uniform think time in ``[low, high]`` seconds, like ``locust.between``."""
    return ThinkTime(low, high)


def constant(seconds: float) -> ThinkTime:
    return ThinkTime(seconds)


@dataclass(frozen=True)
class Scenario:
    """
    A named unit of work executed once per iteration.

    Attributes:
        name: Label used in logs and per-scenario metrics.
        func: Callable receiving the iteration context and returning a
            :class:`~loadrig.steps.StepOutcome`.
        think_time: Optional pause after this scenario; overrides the
            suite default.
    """

    name: str
    func: Callable[["IterationContext"], "StepOutcome"]
    think_time: ThinkTime | None = None

    def __call__(self, ctx: "IterationContext") -> "StepOutcome":
        return self.func(ctx)


Action = Union[Scenario, "WeightTable"]


@dataclass(frozen=True)
class ScenarioWeight:
    """One branch of a decision point."""

    name: str
    weight: float
    action: Action

    def __post_init__(self) -> None:
        if not 0.0 < self.weight <= 1.0:
            raise PlanError(f"Weight for {self.name!r} must be in (0, 1], got {self.weight}")


@dataclass(frozen=True)
class WeightTable:
    """Ordered branches whose weights sum to at most 1.0."""

    name: str
    entries: tuple[ScenarioWeight, ...]

    def __post_init__(self) -> None:
        if not self.entries:
            raise PlanError(f"Weight table {self.name!r} has no entries")
        total = sum(entry.weight for entry in self.entries)
        if total > 1.0 + WEIGHT_TOLERANCE:
            raise PlanError(f"Weights in {self.name!r} sum to {total:.6f}, which exceeds 1.0")

    @classmethod
    def of(cls, name: str, *branches: tuple[str, float, Action]) -> "WeightTable":
        """Shorthand: ``WeightTable.of("auth", ("login", 0.3, login), ...)``."""
        return cls(name, tuple(ScenarioWeight(n, w, a) for n, w, a in branches))

    @property
    def total_weight(self) -> float:
        return sum(entry.weight for entry in self.entries)

    @property
    def idle_weight(self) -> float:
        return max(0.0, 1.0 - self.total_weight)

    def scenarios(self) -> list[Scenario]:
        """Every scenario reachable from this table, depth first."""
        found: list[Scenario] = []
        for entry in self.entries:
            if isinstance(entry.action, WeightTable):
                found.extend(entry.action.scenarios())
            else:
                found.append(entry.action)
        return found


@dataclass(frozen=True)
class RoundRobinTable:
    """Cycle through scenarios by iteration number (k6 ``__ITER``)."""

    name: str
    entries: tuple[Scenario, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.entries:
            raise PlanError(f"Round-robin table {self.name!r} has no scenarios")

    def scenarios(self) -> list[Scenario]:
        return list(self.entries)


ScenarioTable = Union[WeightTable, RoundRobinTable]


@dataclass(frozen=True)
class Selection:
    """Result of resolving a table: the branch path and the scenario, if any."""

    path: tuple[str, ...]
    scenario: Scenario | None

    @property
    def idle(self) -> bool:
        return self.scenario is None


class Dispatcher:
    """
    Draws scenarios from weight tables.

    Args:
        rng: Random source; pass a seeded ``random.Random`` for
            deterministic selection.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng if rng is not None else random.Random()

    def draw(self, table: WeightTable) -> ScenarioWeight | None:
        """Pick one entry of ``table`` (no nesting), or ``None`` on the gap."""
        r = self.rng.random()
        cumulative = 0.0
        for entry in table.entries:
            cumulative += entry.weight
            if r < cumulative:
                return entry
        return None

    def select(self, table: WeightTable) -> Scenario | None:
        """Resolve ``table`` down to a scenario, drawing once per level."""
        return self.resolve(table).scenario

    def round_robin(self, table: RoundRobinTable, iteration: int) -> Scenario:
        return table.entries[iteration % len(table.entries)]

    def resolve(self, table: ScenarioTable, iteration: int = 0) -> Selection:
        if isinstance(table, RoundRobinTable):
            scenario = self.round_robin(table, iteration)
            return Selection(path=(table.name, scenario.name), scenario=scenario)

        path = [table.name]
        current: WeightTable = table
        while True:
            entry = self.draw(current)
            if entry is None:
                return Selection(path=tuple(path), scenario=None)
            path.append(entry.name)
            if isinstance(entry.action, WeightTable):
                current = entry.action
                continue
            return Selection(path=tuple(path), scenario=entry.action)


def weight_table_from_mapping(
    name: str, weights: dict[str, Any], registry: dict[str, Action]
) -> WeightTable:
    """
    Build a table from plan data such as ``{"login": 0.3, "register": 0.4}``.

    Nested mappings become nested tables.  Names are looked up in
    ``registry``; an unknown name is a :class:`PlanError`.
    """
    entries = []
    for branch, value in weights.items():
        if isinstance(value, dict):
            try:
                weight = float(value["weight"])
                children = value["branches"]
            except (KeyError, TypeError, ValueError) as exc:
                raise PlanError(
                    f"Nested branch {branch!r} needs numeric 'weight' and 'branches'"
                ) from exc
            action: Action = weight_table_from_mapping(branch, children, registry)
        else:
            if branch not in registry:
                raise PlanError(f"Unknown scenario {branch!r} in table {name!r}")
            try:
                weight = float(value)
            except (TypeError, ValueError) as exc:
                raise PlanError(f"Weight for {branch!r} must be numeric") from exc
            action = registry[branch]
        entries.append(ScenarioWeight(branch, weight, action))
    return WeightTable(name, tuple(entries))

