"""
Stage-based concurrency ramp.

A run's load profile is declared as an ordered list of stages, each a
``(duration, target)`` pair.  The cumulative durations partition the run
timeline; within a stage the desired number of virtual users moves
linearly from the previous stage's target to this stage's target.

:class:`StageSchedule` is a pure function of elapsed time.  It knows
nothing about which workers exist; the engine asks it how many *should*
exist and reconciles the difference.

Key Concepts Demonstrated:
- Declarative ramp profiles mirroring k6 ``options.stages``
- Deterministic, unit-testable scheduling decoupled from the worker pool
- Step functions via zero-duration stages
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from loadrig.errors import PlanError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> float:
    """
    Convert a duration value into seconds.

    Accepts bare numbers (already seconds) or Go-style strings such as
    ``"30s"``, ``"1m"``, ``"1m30s"``, ``"500ms"`` and ``"2h"``, which is
    the notation the k6 stage tables use.

    Args:
        value: An ``int``/``float`` number of seconds or a duration string.

    Returns:
        The duration in seconds as a float.

    Raises:
        PlanError: If the value is negative or cannot be parsed.
    """
    if isinstance(value, bool):
        raise PlanError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        if not text:
            raise PlanError("Duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise PlanError(f"Invalid duration: {value!r}") from None
            seconds = sum(float(number) * _UNIT_SECONDS[unit] for number, unit in parts)

    if seconds < 0 or math.isnan(seconds):
        raise PlanError(f"Duration must be non-negative: {value!r}")
    return seconds


@dataclass(frozen=True)
class Stage:
    """One ramp segment: reach ``target`` users over ``duration`` seconds."""

    duration: float
    target: int

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise PlanError(f"Stage duration must be non-negative, got {self.duration}")
        if self.target < 0:
            raise PlanError(f"Stage target must be non-negative, got {self.target}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Stage":
        """Build a stage from a ``{"duration": "1m", "target": 50}`` mapping."""
        try:
            duration = parse_duration(data["duration"])
            target = data["target"]
        except (KeyError, TypeError) as exc:
            raise PlanError(f"Stage needs 'duration' and 'target': {data!r}") from exc

        if isinstance(target, bool) or not isinstance(target, int):
            raise PlanError(f"Stage target must be an integer: {target!r}")
        return cls(duration=duration, target=target)


class StageSchedule:
    """
    Desired concurrency as a function of elapsed run time.

    Args:
        stages: Ordered stages; the list is fixed for the whole run.
        start_concurrency: Value the first stage ramps from (k6
            ``startVUs``).  Defaults to zero.
    """

    def __init__(self, stages: Iterable[Stage], start_concurrency: int = 0) -> None:
        if start_concurrency < 0:
            raise PlanError("start_concurrency must be non-negative")

        self._stages = tuple(stages)
        self._start_concurrency = start_concurrency

        # (start, end, from_target, to_target) per stage
        bounds = []
        elapsed = 0.0
        previous = start_concurrency
        for stage in self._stages:
            bounds.append((elapsed, elapsed + stage.duration, previous, stage.target))
            elapsed += stage.duration
            previous = stage.target
        self._bounds = tuple(bounds)
        self._total = elapsed

    @classmethod
    def from_config(
        cls, stages: Iterable[Mapping[str, Any]], start_concurrency: int = 0
    ) -> "StageSchedule":
        return cls((Stage.from_mapping(item) for item in stages), start_concurrency)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def total_duration(self) -> float:
        """Sum of all stage durations, i.e. the run's global deadline."""
        return self._total

    @property
    def max_target(self) -> int:
        return max([self._start_concurrency, *(s.target for s in self._stages)])

    def is_complete(self, elapsed: float) -> bool:
        return elapsed >= self._total

    def desired_concurrency(self, elapsed: float) -> int:
        """
        Return how many workers should be running ``elapsed`` seconds in.

        Within a stage the value is linearly interpolated from the
        previous stage's target and floored.  At the exact start of a
        stage the value equals the previous stage's target, and once the
        total duration has elapsed it is 0.
        """
        if elapsed < 0:
            elapsed = 0.0
        if self.is_complete(elapsed):
            return 0

        for start, end, from_target, to_target in self._bounds:
            if start <= elapsed < end:
                progress = (elapsed - start) / (end - start)
                value = from_target + (to_target - from_target) * progress
                # Guard float noise just below an integer boundary
                return int(math.floor(value + 1e-9))

        # Float rounding at the final boundary
        return self._bounds[-1][3]

    def tick(self, elapsed: float) -> int | None:
        """Like :meth:`desired_concurrency` but ``None`` once the run is over."""
        if self.is_complete(elapsed):
            return None
        return self.desired_concurrency(elapsed)

    def __repr__(self) -> str:
        return f"StageSchedule(stages={list(self._stages)!r}, total={self._total}s)"
