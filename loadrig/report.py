"""
Console summary for finished runs.

Prints the headline metrics of a run followed by one row per threshold,
in the same fixed-width layout CI logs already show for Locust gates::

    Threshold Check
    ------------------------------------------------------------
    Metric                      Actual         Limit      Status
    ------------------------------------------------------------
    http_req_duration p(95)     412.07       1000.00        PASS
    ------------------------------------------------------------
    Overall: PASS

Exit codes follow a three-state convention so that CI can tell "test
failed" from "script crashed".
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, TextIO

from loadrig.metrics import CounterSnapshot, RateSnapshot, RegistrySnapshot, TrendSnapshot
from loadrig.thresholds import EvaluationReport

if TYPE_CHECKING:
    from loadrig.runner import RunResult

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2

RULE = "-" * 60
_AGGREGATION = re.compile(r"[a-z_]+(?:\([\d.]+\))?")


def _fmt(value: Any) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def _aggregation(description: str) -> str:
    match = _AGGREGATION.match(description)
    return match.group(0) if match else description


def _metric_line(name: str, snapshot: Any) -> str:
    if isinstance(snapshot, TrendSnapshot):
        if snapshot.count == 0:
            return f"{name:<28} no samples"
        p90 = snapshot.percentile(90)
        p95 = snapshot.percentile(95)
        return (
            f"{name:<28} avg={snapshot.mean:.2f} min={snapshot.min:.2f} "
            f"med={snapshot.med:.2f} max={snapshot.max:.2f} p(90)={p90:.2f} p(95)={p95:.2f}"
        )
    if isinstance(snapshot, RateSnapshot):
        return f"{name:<28} {snapshot.rate * 100:.2f}% ({snapshot.passes} of {snapshot.total})"
    if isinstance(snapshot, CounterSnapshot):
        return f"{name:<28} {snapshot.count} ({snapshot.rate:.2f}/s)"
    return f"{name:<28} {snapshot!r}"


def print_metrics(snapshot: RegistrySnapshot, out: TextIO | None = None) -> None:
    """Print every metric in the snapshot, sorted by name."""
    for name in sorted(snapshot):
        print(_metric_line(name, snapshot[name]), file=out)


def print_thresholds(report: EvaluationReport, out: TextIO | None = None) -> None:
    """Print the threshold table and the overall verdict."""
    print("Threshold Check", file=out)
    print(RULE, file=out)
    print(f"{'Metric':<28}{'Actual':>10}{'Limit':>12}{'Status':>10}", file=out)
    print(RULE, file=out)
    for result in report.results:
        label = f"{result.metric_name} {_aggregation(result.description)}"
        status = "PASS" if result.passed else "FAIL"
        print(
            f"{label[:27]:<28}{_fmt(result.observed):>10}{_fmt(result.limit):>12}{status:>10}",
            file=out,
        )
    print(RULE, file=out)
    print(f"Overall: {report.verdict}", file=out)


def print_summary(result: "RunResult", out: TextIO | None = None) -> None:
    """Print the full human-readable summary of a run."""
    print("Load Run Summary", file=out)
    print(RULE, file=out)
    print(f"State: {result.state.name}", file=out)

    if result.setup_error is not None:
        error = result.setup_error
        print(f"Setup failed at step '{error.step}': {error.reason}", file=out)
        if error.completed_steps:
            print(f"Completed steps: {', '.join(error.completed_steps)}", file=out)
        print(RULE, file=out)
        print("Overall: FAIL", file=out)
        return

    if result.engine is not None:
        engine = result.engine
        print(
            f"Stopped by {engine.stop_reason} after {engine.duration:.1f}s, "
            f"{engine.workers_started} worker(s) started, peak {engine.peak_workers}",
            file=out,
        )
    print(RULE, file=out)
    print_metrics(result.snapshot, out)
    print(RULE, file=out)

    if result.teardown is not None and not result.teardown.ok:
        print(f"Teardown: {len(result.teardown.errors)} resource(s) could not be deleted", file=out)
        for error in result.teardown.errors:
            print(f"  {error}", file=out)
        print(RULE, file=out)

    if result.report is not None:
        print_thresholds(result.report, out)
