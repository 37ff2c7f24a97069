"""
Result-bearing multi-step scenarios.

A user journey ("list stations, open one, pick a free charger, start
charging") is a chain of steps where each step's success gates the
next.  Instead of returning early from deep inside a function, each
step returns a :class:`StepResult` and :class:`StepChain` stops at the
first failure, reporting which step broke the journey.

Key Concepts Demonstrated:
- Explicit success/failure values instead of exception-driven flow
- Carrying data (e.g. a chosen station) from one step to the next
- k6-style ``check`` bookkeeping on a shared ``checks`` rate
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from loadrig.fixtures import ResourceRef

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from loadrig.engine import IterationContext
    from loadrig.metrics import MetricRegistry
    from loadrig.transport import Response

CHECKS_METRIC = "checks"


@dataclass(frozen=True)
class StepOutcome:
    """
    What one scenario iteration produced.

    Attributes:
        success: Whether the iteration met all of its expectations.
        latency: Total time spent waiting on the target, in seconds.
        created: Resources created during the iteration; the engine
            appends them to the shared accumulator for teardown.
        think_time: Pause requested after this iteration, overriding the
            scenario and suite defaults.
        failed_step: Label of the step that failed, if any.
        detail: Free-form diagnostic text.
    """

    success: bool
    latency: float = 0.0
    created: tuple[ResourceRef, ...] = ()
    think_time: float | None = None
    failed_step: str | None = None
    detail: str = ""

    @classmethod
    def ok(cls, latency: float = 0.0, **kwargs: Any) -> "StepOutcome":
        return cls(success=True, latency=latency, **kwargs)

    @classmethod
    def failed(cls, detail: str = "", latency: float = 0.0, **kwargs: Any) -> "StepOutcome":
        return cls(success=False, latency=latency, detail=detail, **kwargs)

    @classmethod
    def from_response(
        cls, response: "Response", expected: Iterable[int] = (200,), **kwargs: Any
    ) -> "StepOutcome":
        """Success iff the response status is one of ``expected``."""
        expected = tuple(expected)
        if response.status in expected:
            return cls(success=True, latency=response.latency, **kwargs)
        return cls(
            success=False,
            latency=response.latency,
            detail=f"Expected {'/'.join(map(str, expected))}, got {response.status}",
            **kwargs,
        )


@dataclass(frozen=True)
class StepResult:
    """Return value of a single step inside a :class:`StepChain`."""

    ok: bool
    value: Any = None
    latency: float = 0.0
    created: tuple[ResourceRef, ...] = ()
    stop: bool = False
    detail: str = ""

    @classmethod
    def success(cls, value: Any = None, *, latency: float = 0.0, created: Iterable[ResourceRef] = ()) -> "StepResult":
        return cls(ok=True, value=value, latency=latency, created=tuple(created))

    @classmethod
    def failure(cls, detail: str, *, latency: float = 0.0) -> "StepResult":
        return cls(ok=False, latency=latency, detail=detail)

    @classmethod
    def halt(cls, *, latency: float = 0.0, detail: str = "") -> "StepResult":
        """End the journey early without counting it as a failure."""
        return cls(ok=True, latency=latency, stop=True, detail=detail)

    @classmethod
    def from_response(
        cls, response: "Response", expected: Iterable[int] = (200,), value: Any = None
    ) -> "StepResult":
        expected = tuple(expected)
        if response.status in expected:
            return cls(ok=True, value=value, latency=response.latency)
        return cls(
            ok=False,
            latency=response.latency,
            detail=f"Expected {'/'.join(map(str, expected))}, got {response.status}",
        )


StepFunc = Callable[["IterationContext", Any], StepResult]


@dataclass
class StepChain:
    """
    Ordered steps executed until one fails or halts.

    Usage::

        journey = (
            StepChain("ev_driver")
            .step("find stations", find_stations)
            .step("open station", open_station)
        )
        outcome = journey.run(ctx)

    Each step receives the iteration context and the ``value`` returned
    by the previous step (``None`` for the first).
    """

    name: str
    steps: list[tuple[str, StepFunc]] = field(default_factory=list)

    def step(self, label: str, func: StepFunc) -> "StepChain":
        self.steps.append((label, func))
        return self

    def run(self, ctx: "IterationContext", carry: Any = None) -> StepOutcome:
        latency = 0.0
        created: list[ResourceRef] = []

        for label, func in self.steps:
            result = func(ctx, carry)
            latency += result.latency
            created.extend(result.created)

            if not result.ok:
                return StepOutcome(
                    success=False,
                    latency=latency,
                    created=tuple(created),
                    failed_step=label,
                    detail=result.detail,
                )
            if result.stop:
                break
            carry = result.value

        return StepOutcome(success=True, latency=latency, created=tuple(created))

    def __call__(self, ctx: "IterationContext") -> StepOutcome:
        return self.run(ctx)


def check(
    metrics: "MetricRegistry",
    subject: Any,
    predicates: Mapping[str, Callable[[Any], bool]],
) -> bool:
    """
    Evaluate every predicate against ``subject`` and record each result.

    Mirrors k6's ``check``: all predicates run (no short circuit), each
    outcome is added to the ``checks`` rate, and the return value is
    ``True`` only if all of them passed.  A predicate that raises counts
    as failed.
    """
    rate = metrics.rate(CHECKS_METRIC)
    all_passed = True
    for description, predicate in predicates.items():
        try:
            passed = bool(predicate(subject))
        except Exception:  # a predicate that blows up is a failed check
            passed = False
        if not passed:
            logger.debug("Check failed: %s", description)
        rate.add(passed)
        all_passed = all_passed and passed
    return all_passed
