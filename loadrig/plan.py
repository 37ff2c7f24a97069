"""
Declarative run plans.

A plan is a small YAML document naming the suite to run and, where the
suite defaults are not wanted, the stage table, thresholds and traffic
mix::

    suite: mixed
    base_url: http://localhost:80/api/v1
    seed: 42
    think_time: [0.5, 2.0]
    stages:
      - {duration: 1m, target: 80}
      - {duration: 10m, target: 120}
      - {duration: 1m, target: 0}
    thresholds:
      http_req_duration: ["p(95)<1000"]
      http_req_failed: ["rate<0.02"]

Everything is validated while loading, so a typo in a threshold fails
before any request is sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from loadrig.dispatch import ThinkTime
from loadrig.errors import PlanError
from loadrig.stages import Stage, parse_duration
from loadrig.thresholds import Threshold, thresholds_from_mapping

logger = logging.getLogger(__name__)

KNOWN_KEYS = {
    "name",
    "suite",
    "base_url",
    "stages",
    "start_concurrency",
    "thresholds",
    "weights",
    "think_time",
    "iterations",
    "sample_buffer",
    "seed",
}


@dataclass
class RunPlan:
    """
    Parsed run plan.

    ``None`` for ``stages``, ``thresholds`` or ``think_time`` means "use
    the suite's default".
    """

    suite: str
    name: str | None = None
    base_url: str | None = None
    stages: list[Stage] | None = None
    start_concurrency: int = 0
    thresholds: list[Threshold] | None = None
    weights: dict[str, Any] | None = None
    think_time: ThinkTime | None = None
    iterations: int | None = None
    sample_buffer: int | None = None
    seed: int | None = None


def _think_time(value: Any) -> ThinkTime | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        if len(value) != 2:
            raise PlanError(f"think_time range needs two values, got {value!r}")
        return ThinkTime(parse_duration(value[0]), parse_duration(value[1]))
    return ThinkTime(parse_duration(value))


def _optional_int(data: Mapping[str, Any], key: str, minimum: int) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise PlanError(f"'{key}' must be an integer >= {minimum}, got {value!r}")
    return value


def plan_from_mapping(data: Mapping[str, Any]) -> RunPlan:
    """
    Validate raw plan data and build a :class:`RunPlan`.

    Raises:
        PlanError: On unknown keys, a missing suite, malformed stages,
            thresholds or think time.
    """
    if not isinstance(data, Mapping):
        raise PlanError("Plan must be a mapping")

    unknown = set(data) - KNOWN_KEYS
    if unknown:
        raise PlanError(f"Unknown plan key(s): {', '.join(sorted(unknown))}")

    suite = data.get("suite")
    if not isinstance(suite, str) or not suite:
        raise PlanError("Plan needs a 'suite' name")

    stages = None
    if data.get("stages") is not None:
        if not isinstance(data["stages"], list):
            raise PlanError("'stages' must be a list")
        stages = [Stage.from_mapping(item) for item in data["stages"]]

    thresholds = None
    if data.get("thresholds") is not None:
        if not isinstance(data["thresholds"], Mapping):
            raise PlanError("'thresholds' must map metric names to expressions")
        thresholds = thresholds_from_mapping(data["thresholds"])

    weights = data.get("weights")
    if weights is not None and not isinstance(weights, Mapping):
        raise PlanError("'weights' must map scenario names to weights")

    return RunPlan(
        suite=suite,
        name=data.get("name"),
        base_url=data.get("base_url"),
        stages=stages,
        start_concurrency=_optional_int(data, "start_concurrency", 0) or 0,
        thresholds=thresholds,
        weights=dict(weights) if weights is not None else None,
        think_time=_think_time(data.get("think_time")),
        iterations=_optional_int(data, "iterations", 0),
        sample_buffer=_optional_int(data, "sample_buffer", 1),
        seed=_optional_int(data, "seed", 0),
    )


def load_plan(path: str | Path) -> RunPlan:
    """
    Load and validate a YAML plan file.

    Raises:
        PlanError: If the file cannot be read or parsed, or is invalid.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise PlanError(f"Cannot read plan {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise PlanError(f"Invalid YAML in {path}: {exc}") from exc

    plan = plan_from_mapping(data)
    logger.info("Loaded plan %s (suite %s)", plan.name or path.name, plan.suite)
    return plan
