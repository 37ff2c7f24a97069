"""
Locust integration.

loadrig suites can also run under Locust's own runner (web UI,
distributed workers, CSV output).  This module provides the three
pieces that takes:

1. :class:`StageLoadShape` turns a :class:`~loadrig.stages.StageSchedule`
   into Locust ``(user_count, spawn_rate)`` ticks, so a k6-style stage
   table drives Locust exactly as it drives the built-in engine.
2. :class:`SuiteUser` runs one suite iteration per Locust task, sharing
   the suite's fixture context created on ``test_start``.
3. :func:`load_locust_stats` reads the ``Aggregated`` row of a Locust
   ``*_stats.csv`` into a :class:`~loadrig.metrics.RegistrySnapshot`,
   so the same threshold expressions gate Locust runs in CI.

Key Concepts Demonstrated:
- ``LoadTestShape.tick`` delegating to a pure schedule function
- Reusing Locust's ``HttpSession`` (a ``requests.Session``) as the
  transport so Locust records every call in its own statistics
- CSV parsing tolerant of Locust version differences
"""

from __future__ import annotations

import csv
import logging
import random
import time
from pathlib import Path
from types import MappingProxyType
from typing import Any, TextIO

from gevent.event import Event
from locust import HttpUser, LoadTestShape, task

from loadrig.dispatch import Dispatcher
from loadrig.engine import (
    ITERATIONS_IDLE,
    ITERATIONS_INTERRUPTED,
    IterationContext,
    record_outcome,
    run_scenario,
)
from loadrig.errors import IterationCancelled, SetupError
from loadrig.fixtures import FixtureManager, SharedContext
from loadrig.metrics import (
    CounterSnapshot,
    MetricRegistry,
    RateSnapshot,
    RegistrySnapshot,
    TrendSnapshot,
)
from loadrig.report import print_metrics, print_thresholds
from loadrig.stages import StageSchedule
from loadrig.thresholds import EvaluationReport, evaluate
from loadrig.transport import (
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    HttpTransport,
    InstrumentedClient,
)

logger = logging.getLogger(__name__)

# Locust percentile columns, keyed by the percentile they hold
PERCENTILE_COLUMNS = {
    50.0: "50%",
    66.0: "66%",
    75.0: "75%",
    80.0: "80%",
    90.0: "90%",
    95.0: "95%",
    98.0: "98%",
    99.0: "99%",
    99.9: "99.9%",
    99.99: "99.99%",
    100.0: "100%",
}

# Headers older Locust releases used for the 95th percentile
P95_ALIASES = ("95%ile", "95th percentile", "p95")


# =====================================================================
# Load shape
# =====================================================================


class StageLoadShape(LoadTestShape):
    """
    Locust load shape driven by a stage table.

    Subclass and set ``schedule``, or assign it before the run starts.
    ``spawn_rate`` bounds how many users Locust starts per second while
    catching up with the schedule.
    """

    abstract = True
    schedule: StageSchedule | None = None
    spawn_rate: float = 10.0

    def tick(self) -> tuple[int, float] | None:
        """Return (user_count, spawn_rate) for the current time, or None to stop."""
        if self.schedule is None:
            return None
        desired = self.schedule.tick(self.get_run_time())
        if desired is None:
            return None
        return desired, self.spawn_rate


# =====================================================================
# Suite user
# =====================================================================


class SuiteUser(HttpUser):
    """
    Locust user executing iterations of a loadrig suite.

    Concrete subclasses set ``suite``.  Fixtures are shared by every
    user of the process: :meth:`start_fixtures` runs on ``test_start``
    and :meth:`stop_fixtures` on ``test_stop``.

    Scenario outcomes go to the class-level ``metrics`` registry, the
    same built-in metrics the engine records.  Locust's own statistics
    keep one row per HTTP call, so ``loadrig check`` on its CSV still
    measures requests only; :meth:`stop_fixtures` reports the scenario
    side and evaluates the suite's thresholds against it.
    """

    abstract = True
    suite: Any = None

    metrics = MetricRegistry()
    fixtures: SharedContext | None = None
    fixture_manager: FixtureManager | None = None

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.rng = random.Random()
        self.dispatcher = Dispatcher(self.rng)
        self.iteration = 0
        # Locust stops users by killing their greenlet, so this stays unset
        self._cancel = Event()
        self.http = InstrumentedClient(
            HttpTransport(self.host, session=self.client), self.metrics
        )

    def wait_time(self) -> float:
        if self.suite is None or self.suite.think_time is None:
            return 0.0
        return self.suite.think_time.draw(self.rng)

    @classmethod
    def start_fixtures(cls, host: str) -> bool:
        """Run the suite's setup once; ``False`` if it failed."""
        cls.metrics.reset()
        cls.fixture_manager = FixtureManager(
            HttpTransport(host), cls.suite.setup_steps, cls.suite.deleters
        )
        try:
            cls.fixtures = cls.fixture_manager.setup()
        except SetupError as exc:
            logger.error("Locust run cannot start: %s", exc)
            cls.fixtures = None
            return False
        return True

    @classmethod
    def stop_fixtures(cls, out: TextIO | None = None) -> EvaluationReport | None:
        """
        Tear the fixtures down, then report the run.

        Returns:
            The suite's threshold report, or ``None`` when setup never
            succeeded.
        """
        if cls.fixture_manager is None or cls.fixtures is None:
            return None

        cls.fixture_manager.teardown(cls.fixtures)
        cls.fixtures = None

        snapshot = cls.metrics.snapshot()
        report = evaluate(cls.suite.thresholds(), snapshot)
        print_metrics(snapshot, out)
        print_thresholds(report, out)
        return report

    @task
    def iterate(self) -> None:
        if self.fixtures is None:
            return

        ctx = IterationContext(
            worker_id=id(self),
            iteration=self.iteration,
            fixtures=self.fixtures,
            http=self.http,
            metrics=self.metrics,
            dispatcher=self.dispatcher,
            cancel=self._cancel,
        )
        self.iteration += 1

        scenario = self.dispatcher.resolve(self.suite.table, ctx.iteration).scenario
        if scenario is None:
            self.metrics.counter(ITERATIONS_IDLE).add(1)
            return

        started = time.perf_counter()
        try:
            outcome = run_scenario(scenario, ctx)
        except IterationCancelled:
            self.metrics.counter(ITERATIONS_INTERRUPTED).add(1)
            return

        record_outcome(self.metrics, scenario, outcome, time.perf_counter() - started)
        if outcome.created:
            self.fixtures.register(*outcome.created)


# =====================================================================
# Stats CSV
# =====================================================================


def _load_aggregated_row(stats_path: Path) -> dict[str, str]:
    """
    Find and return the ``Aggregated`` summary row from a Locust stats CSV.

    Locust writes one row per endpoint plus a final ``Aggregated`` row;
    depending on the version the marker sits in ``Name`` or ``Type``.

    Raises:
        ValueError: If no ``Aggregated`` row is found.
    """
    with stats_path.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    for row in rows:
        if row.get("Name") == "Aggregated" or row.get("Type") == "Aggregated":
            return row

    raise ValueError("Could not find 'Aggregated' row in stats CSV")


def _parse_float(value: Any, field_name: str) -> float:
    """
    Coerce *value* to ``float``, stripping ``%`` suffixes if present.

    Raises:
        ValueError: If the value is missing, empty, or non-numeric.
    """
    if value is None:
        raise ValueError(f"Missing field: {field_name}")

    text = str(value).strip().replace("%", "")
    if text == "" or text.upper() == "N/A":
        raise ValueError(f"Empty value for field: {field_name}")

    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"Non-numeric value for {field_name}: {value}") from exc


def _known_percentiles(row: dict[str, str]) -> dict[float, float]:
    found: dict[float, float] = {}
    for pct, column in PERCENTILE_COLUMNS.items():
        value = row.get(column)
        if value not in (None, "", "N/A"):
            found[pct] = _parse_float(value, column)
    if 95.0 not in found:
        for column in P95_ALIASES:
            value = row.get(column)
            if value not in (None, "", "N/A"):
                found[95.0] = _parse_float(value, column)
                break
    return found


def load_locust_stats(stats_path: str | Path) -> RegistrySnapshot:
    """
    Convert a Locust ``*_stats.csv`` into a registry snapshot.

    The aggregated row becomes ``http_reqs`` (counter),
    ``http_req_failed`` (rate of failed requests) and
    ``http_req_duration`` (trend answering the percentiles Locust
    wrote, in milliseconds).

    Raises:
        ValueError: If the row is missing or a required column is
            absent or non-numeric, or there were no requests.
    """
    row = _load_aggregated_row(Path(stats_path))

    request_count = int(_parse_float(row.get("Request Count"), "Request Count"))
    failure_count = int(_parse_float(row.get("Failure Count"), "Failure Count"))
    if request_count <= 0:
        raise ValueError("Request Count must be > 0 for threshold checks")

    average = _parse_float(row.get("Average Response Time"), "Average Response Time")
    percentiles = _known_percentiles(row)
    if 95.0 not in percentiles:
        raise ValueError("Could not find p95 column in stats CSV")

    # Locust reports throughput rather than run time; recover the latter
    elapsed = 0.0
    if row.get("Requests/s") not in (None, ""):
        per_second = _parse_float(row["Requests/s"], "Requests/s")
        if per_second > 0:
            elapsed = request_count / per_second

    metrics = {
        HTTP_REQS: CounterSnapshot(HTTP_REQS, request_count, elapsed),
        HTTP_REQ_FAILED: RateSnapshot(HTTP_REQ_FAILED, failure_count, request_count),
        HTTP_REQ_DURATION: TrendSnapshot(
            HTTP_REQ_DURATION,
            count=request_count,
            total=average * request_count,
            min=_parse_float(row.get("Min Response Time"), "Min Response Time"),
            max=_parse_float(row.get("Max Response Time"), "Max Response Time"),
            known_percentiles=MappingProxyType(percentiles),
        ),
    }
    return RegistrySnapshot(metrics=MappingProxyType(metrics), elapsed=elapsed)
