"""
Threshold parsing and evaluation.

Thresholds use the k6 expression syntax, keyed by metric name::

    thresholds:
      http_req_duration: ["p(95)<1000"]
      http_req_failed: ["rate<0.02"]
      completed_workflows: ["count>50"]
      scenario_success:
        - threshold: "fail_rate<0.05"
          abortOnFail: true

Evaluation never short-circuits: every threshold is checked and
reported with the value it observed, and the overall verdict is PASS
only if all of them pass.  A threshold whose metric never received a
sample fails with an observed value of ``None``.

Key Concepts Demonstrated:
- Small expression grammar parsed once into predicates
- Order-independent verdicts
- Diagnostics that name the metric, the predicate and the observed value
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from loadrig.errors import PlanError
from loadrig.metrics import MetricSnapshot, RegistrySnapshot

_EXPRESSION = re.compile(
    r"^\s*(?P<agg>avg|min|max|med|count|rate|fail_rate|passes|fails|p\(\s*\d+(?:\.\d+)?\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<limit>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


@dataclass(frozen=True)
class Threshold:
    """
    A pass/fail predicate over one metric's snapshot.

    Attributes:
        metric_name: Metric the predicate receives.
        predicate: Returns ``True`` when the threshold is met.
        description: Human-readable form, e.g. ``"p(95)<1000"``.
        observe: Extracts the diagnostic value shown in reports; defaults
            to no value.
        abort_on_fail: Stop the run as soon as a periodic check fails.
        limit: Numeric right-hand side for parsed expressions.
    """

    metric_name: str
    predicate: Callable[[MetricSnapshot], bool]
    description: str
    observe: Callable[[MetricSnapshot], Any] | None = None
    abort_on_fail: bool = False
    limit: float | None = None


@dataclass(frozen=True)
class ThresholdResult:
    metric_name: str
    description: str
    passed: bool
    observed: Any
    limit: float | None = None
    error: str | None = None

    def describe(self) -> str:
        if self.observed is None:
            observed = "n/a"
        elif isinstance(self.observed, float):
            observed = f"{self.observed:g}"
        else:
            observed = str(self.observed)

        status = "PASS" if self.passed else "FAIL"
        message = f"{status} {self.metric_name} {self.description} (observed {observed})"
        if self.error:
            message += f": {self.error}"
        return message


@dataclass(frozen=True)
class EvaluationReport:
    results: tuple[ThresholdResult, ...]

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def verdict(self) -> str:
        return "PASS" if self.passed else "FAIL"

    @property
    def failures(self) -> list[ThresholdResult]:
        return [result for result in self.results if not result.passed]


def parse_threshold(metric_name: str, expression: str, abort_on_fail: bool = False) -> Threshold:
    """
    Parse one k6-style expression such as ``"p(95)<800"``.

    Raises:
        PlanError: If the expression does not match the grammar.
    """
    match = _EXPRESSION.match(expression)
    if match is None:
        raise PlanError(f"Invalid threshold for {metric_name!r}: {expression!r}")

    aggregation = re.sub(r"\s+", "", match.group("agg"))
    compare = _OPERATORS[match.group("op")]
    limit = float(match.group("limit"))

    def observe(snapshot: MetricSnapshot) -> float:
        return snapshot.value(aggregation)

    def predicate(snapshot: MetricSnapshot) -> bool:
        return compare(observe(snapshot), limit)

    return Threshold(
        metric_name=metric_name,
        predicate=predicate,
        description=f"{aggregation}{match.group('op')}{match.group('limit')}",
        observe=observe,
        abort_on_fail=abort_on_fail,
        limit=limit,
    )


def thresholds_from_mapping(data: Mapping[str, Any] | None) -> list[Threshold]:
    """
    Build thresholds from plan data.

    Each metric maps to a single expression, a list of expressions, or
    a list of ``{"threshold": expr, "abortOnFail": bool}`` objects.
    """
    thresholds: list[Threshold] = []
    for metric_name, specs in (data or {}).items():
        if isinstance(specs, (str, Mapping)):
            specs = [specs]
        if not isinstance(specs, list):
            raise PlanError(f"Thresholds for {metric_name!r} must be a list")

        for spec in specs:
            if isinstance(spec, str):
                thresholds.append(parse_threshold(metric_name, spec))
            elif isinstance(spec, Mapping) and "threshold" in spec:
                abort = spec.get("abortOnFail", spec.get("abort_on_fail", False))
                thresholds.append(
                    parse_threshold(metric_name, str(spec["threshold"]), bool(abort))
                )
            else:
                raise PlanError(f"Invalid threshold entry for {metric_name!r}: {spec!r}")
    return thresholds


def evaluate_one(threshold: Threshold, snapshot: RegistrySnapshot) -> ThresholdResult:
    metric = snapshot.get(threshold.metric_name)
    if metric is None:
        return ThresholdResult(
            metric_name=threshold.metric_name,
            description=threshold.description,
            passed=False,
            observed=None,
            limit=threshold.limit,
            error="metric has no samples",
        )

    try:
        observed = threshold.observe(metric) if threshold.observe else None
        passed = bool(threshold.predicate(metric))
    except Exception as exc:
        return ThresholdResult(
            metric_name=threshold.metric_name,
            description=threshold.description,
            passed=False,
            observed=None,
            limit=threshold.limit,
            error=f"{type(exc).__name__}: {exc}",
        )

    return ThresholdResult(
        metric_name=threshold.metric_name,
        description=threshold.description,
        passed=passed,
        observed=observed,
        limit=threshold.limit,
    )


def evaluate(thresholds: Iterable[Threshold], snapshot: RegistrySnapshot) -> EvaluationReport:
    """Evaluate every threshold against ``snapshot``; never short-circuits."""
    return EvaluationReport(results=tuple(evaluate_one(t, snapshot) for t in thresholds))
