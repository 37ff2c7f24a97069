"""
Execution engine: the pool of virtual-user loops.

Every ``tick_interval`` seconds the engine asks the
:class:`~loadrig.stages.StageSchedule` how many workers should be
running and reconciles: missing workers are spawned as gevent
greenlets, surplus workers are asked to retire once their current
iteration is over.  Nothing is ever killed mid-iteration while the run
is on schedule.

A worker loop repeatedly claims an iteration, resolves a scenario from
the suite's table, runs it, records the outcome and then sleeps for the
think time.  Sleeping waits on the run's cancel event, so when the
deadline passes (or a threshold aborts the run) sleeping workers wake
immediately and exit.  A worker blocked in an HTTP call finishes that
call; its next request or pause then observes the cancellation.

Key Concepts Demonstrated:
- Cooperative concurrency: thousands of greenlets on one OS thread
- Graceful shrink versus cooperative cancellation
- Scenario failures isolated from the worker loop
- Periodic ``abortOnFail`` threshold checks
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

import gevent
from gevent.event import Event
from gevent.pool import Group

from loadrig.dispatch import Dispatcher, Scenario, ScenarioTable, Selection, ThinkTime
from loadrig.errors import IterationCancelled, ScenarioError
from loadrig.fixtures import ResourceRef, SharedContext
from loadrig.metrics import MetricRegistry
from loadrig.stages import StageSchedule
from loadrig.steps import StepOutcome, check
from loadrig.thresholds import Threshold, evaluate
from loadrig.transport import InstrumentedClient, Response, Transport

logger = logging.getLogger(__name__)

ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
ITERATIONS_IDLE = "iterations_idle"
ITERATIONS_INTERRUPTED = "iterations_interrupted"
SCENARIO_SUCCESS = "scenario_success"
VUS = "vus"


def scenario_metric(name: str) -> str:
    """Per-scenario success rate name, e.g. ``scenario_success{scenario:login}``."""
    return f"{SCENARIO_SUCCESS}{{scenario:{name}}}"


def run_scenario(scenario: Scenario, ctx: "IterationContext") -> StepOutcome:
    """
    Call ``scenario`` and turn anything it raises into a failed outcome.

    Only :class:`~loadrig.errors.IterationCancelled` propagates, so the
    caller can count the iteration as interrupted.
    """
    try:
        outcome = scenario(ctx)
    except IterationCancelled:
        raise
    except ScenarioError as exc:
        logger.warning("Scenario %s failed: %s", scenario.name, exc)
        return StepOutcome.failed(str(exc), failed_step=exc.step)
    except Exception as exc:
        logger.warning("Scenario %s raised %s: %s", scenario.name, type(exc).__name__, exc)
        return StepOutcome.failed(f"{type(exc).__name__}: {exc}")

    if not isinstance(outcome, StepOutcome):
        return StepOutcome.failed(f"Scenario {scenario.name} returned {outcome!r}")
    return outcome


def record_outcome(
    metrics: MetricRegistry, scenario: Scenario, outcome: StepOutcome, duration: float
) -> None:
    """Record one finished iteration on the built-in iteration metrics."""
    metrics.counter(ITERATIONS).add(1)
    metrics.trend(ITERATION_DURATION).add(duration * 1000.0)
    metrics.rate(SCENARIO_SUCCESS).add(outcome.success)
    metrics.rate(scenario_metric(scenario.name)).add(outcome.success)
    if not outcome.success:
        logger.debug(
            "Scenario %s failed at %s: %s",
            scenario.name,
            outcome.failed_step or "-",
            outcome.detail,
        )


class IterationBudget:
    """Shared cap on the number of iterations across all workers."""

    def __init__(self, total: int | None = None) -> None:
        if total is not None and total < 0:
            raise ValueError("iteration budget must be non-negative")
        self.total = total
        self._claimed = 0
        self._lock = threading.Lock()

    def claim(self) -> bool:
        if self.total is None:
            return True
        with self._lock:
            if self._claimed >= self.total:
                return False
            self._claimed += 1
            return True

    @property
    def claimed(self) -> int:
        return self._claimed

    @property
    def exhausted(self) -> bool:
        return self.total is not None and self._claimed >= self.total


class _CancellableClient(InstrumentedClient):
    """Refuses to start new requests once the run has been cancelled."""

    def __init__(self, transport: Transport, metrics: MetricRegistry, cancel: Event) -> None:
        super().__init__(transport, metrics)
        self._cancel = cancel

    def request(self, method: str, path: str, *args: Any, **kwargs: Any) -> Response:
        if self._cancel.is_set():
            raise IterationCancelled(f"Run cancelled before {method} {path}")
        return super().request(method, path, *args, **kwargs)


class IterationContext:
    """
    Everything a scenario can touch during one iteration.

    Attributes:
        worker_id: Stable id of the virtual user running the iteration.
        iteration: Zero-based iteration counter of this worker.
        fixtures: Shared fixture context (read-only snapshot plus
            accumulator).
        http: Instrumented client for calls against the target.
        metrics: Run metric registry for custom metrics.
    """

    def __init__(
        self,
        *,
        worker_id: int,
        iteration: int,
        fixtures: SharedContext,
        http: InstrumentedClient,
        metrics: MetricRegistry,
        dispatcher: Dispatcher,
        cancel: Event,
    ) -> None:
        self.worker_id = worker_id
        self.iteration = iteration
        self.fixtures = fixtures
        self.http = http
        self.metrics = metrics
        self._dispatcher = dispatcher
        self._cancel = cancel

    @property
    def rng(self) -> random.Random:
        return self._dispatcher.rng

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def dispatch(self, table: ScenarioTable) -> Scenario | None:
        """Nested decision made from inside a scenario; ``None`` means idle."""
        return self._dispatcher.resolve(table, self.iteration).scenario

    def pause(self, seconds: float) -> None:
        """
        Sleep between steps without blocking other workers.

        Raises:
            IterationCancelled: If the run is cancelled while sleeping.
        """
        if self._cancel.wait(max(0.0, seconds)):
            raise IterationCancelled("Run cancelled during pause")

    def check(self, subject: Any, predicates: Mapping[str, Callable[[Any], bool]]) -> bool:
        return check(self.metrics, subject, predicates)

    def register(self, *refs: ResourceRef) -> None:
        """Hand resources to teardown immediately, before the iteration ends."""
        self.fixtures.register(*refs)


class Worker:
    """Book-keeping for one virtual user."""

    def __init__(self, worker_id: int, rng: random.Random) -> None:
        self.worker_id = worker_id
        self.dispatcher = Dispatcher(rng)
        self.iterations = 0
        self.retiring = False
        self.greenlet: gevent.Greenlet | None = None

    @property
    def alive(self) -> bool:
        return self.greenlet is not None and not self.greenlet.dead

    def retire(self) -> None:
        self.retiring = True


@dataclass(frozen=True)
class EngineSummary:
    stop_reason: str
    duration: float
    workers_started: int
    peak_workers: int
    iterations: int
    idle_iterations: int
    interrupted_iterations: int


class ExecutionEngine:
    """
    Drives worker loops according to a stage schedule.

    Args:
        schedule: Desired concurrency over time; its total duration is
            the run's global deadline.
        table: Weight or round-robin table the workers draw from.
        metrics: Registry every worker writes to.
        transport: Raw transport; each worker wraps it in an
            instrumented client.
        think_time: Default pause after each iteration.
        iterations: Optional total iteration budget shared by all
            workers; the run ends early once it is used up.
        tick_interval: Seconds between reconciliations.
        graceful_stop: Seconds to wait for in-flight calls after
            cancellation before killing stragglers.
        thresholds: Thresholds; those with ``abort_on_fail`` are checked
            every ``threshold_check_interval`` seconds.
        seed: Base seed for per-worker random sources.
    """

    def __init__(
        self,
        schedule: StageSchedule,
        table: ScenarioTable,
        metrics: MetricRegistry,
        transport: Transport,
        *,
        think_time: ThinkTime | None = None,
        iterations: int | None = None,
        tick_interval: float = 0.1,
        graceful_stop: float = 30.0,
        thresholds: Sequence[Threshold] = (),
        threshold_check_interval: float = 2.0,
        seed: int | None = None,
    ) -> None:
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        self.schedule = schedule
        self.table = table
        self.metrics = metrics
        self.transport = transport
        self.think_time = think_time
        self.budget = IterationBudget(iterations)
        self.tick_interval = tick_interval
        self.graceful_stop = graceful_stop
        self.abort_thresholds = [t for t in thresholds if t.abort_on_fail]
        self.threshold_check_interval = threshold_check_interval
        self.seed = seed

        self._cancel = Event()
        self._group = Group()
        self._workers: list[Worker] = []
        self._next_worker_id = 0
        self._peak_workers = 0
        self._stop_reason: str | None = None

    # -----------------------------------------------------------------
    # Pool management
    # -----------------------------------------------------------------

    @property
    def active_workers(self) -> int:
        """Workers that are alive and not retiring."""
        return sum(1 for w in self._workers if w.alive and not w.retiring)

    @property
    def workers_started(self) -> int:
        return self._next_worker_id

    def _new_rng(self, worker_id: int) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(self.seed * 100003 + worker_id)

    def _spawn(self, fixtures: SharedContext) -> None:
        worker = Worker(self._next_worker_id, self._new_rng(self._next_worker_id))
        self._next_worker_id += 1
        worker.greenlet = self._group.spawn(self._worker_loop, worker, fixtures)
        self._workers.append(worker)

    def _reconcile(self, desired: int, fixtures: SharedContext) -> None:
        self._workers = [w for w in self._workers if w.alive]
        live = [w for w in self._workers if not w.retiring]

        if len(live) < desired:
            for _ in range(desired - len(live)):
                self._spawn(fixtures)
        elif len(live) > desired:
            # Newest workers retire first
            for worker in live[desired:]:
                worker.retire()

        self._peak_workers = max(self._peak_workers, self.active_workers)

    def abort(self, reason: str = "aborted") -> None:
        """Cancel the run from outside, e.g. on SIGINT."""
        if self._stop_reason is None:
            self._stop_reason = reason
        self._cancel.set()

    # -----------------------------------------------------------------
    # Main loop
    # -----------------------------------------------------------------

    def run(self, fixtures: SharedContext) -> EngineSummary:
        """Run until the deadline, the iteration budget or an abort."""
        logger.info(
            "Starting run: %d stage(s), %.1fs, up to %d virtual users",
            len(self.schedule.stages),
            self.schedule.total_duration,
            self.schedule.max_target,
        )
        self.metrics.start()
        started = time.monotonic()
        next_threshold_check = started + self.threshold_check_interval

        try:
            while not self._cancel.is_set():
                now = time.monotonic()
                desired = self.schedule.tick(now - started)
                if desired is None:
                    self._stop_reason = "deadline"
                    break

                if self.budget.exhausted:
                    if not any(w.alive for w in self._workers):
                        self._stop_reason = "iterations"
                        break
                else:
                    self._reconcile(desired, fixtures)

                self.metrics.trend(VUS).add(self.active_workers)

                if self.abort_thresholds and now >= next_threshold_check:
                    next_threshold_check = now + self.threshold_check_interval
                    self._check_abort_thresholds()

                self._cancel.wait(self.tick_interval)
        finally:
            self._shutdown()

        duration = time.monotonic() - started
        snapshot = self.metrics.snapshot()
        summary = EngineSummary(
            stop_reason=self._stop_reason or "aborted",
            duration=duration,
            workers_started=self.workers_started,
            peak_workers=self._peak_workers,
            iterations=_count(snapshot.get(ITERATIONS)),
            idle_iterations=_count(snapshot.get(ITERATIONS_IDLE)),
            interrupted_iterations=_count(snapshot.get(ITERATIONS_INTERRUPTED)),
        )
        logger.info(
            "Run stopped (%s) after %.1fs: %d iteration(s), %d idle, %d interrupted, peak %d VUs",
            summary.stop_reason,
            summary.duration,
            summary.iterations,
            summary.idle_iterations,
            summary.interrupted_iterations,
            summary.peak_workers,
        )
        return summary

    def _check_abort_thresholds(self) -> None:
        snapshot = self.metrics.snapshot()
        # A metric without samples yet cannot fail early
        present = [t for t in self.abort_thresholds if t.metric_name in snapshot]
        report = evaluate(present, snapshot)
        if not report.passed:
            for failure in report.failures:
                logger.error("Aborting run: %s", failure.describe())
            self.abort("threshold")

    def _shutdown(self) -> None:
        self._cancel.set()
        if len(self._group):
            logger.info("Waiting up to %.1fs for %d worker(s) to finish", self.graceful_stop, len(self._group))
            self._group.join(timeout=self.graceful_stop)
        if len(self._group):
            logger.warning("Killing %d worker(s) still running after graceful stop", len(self._group))
            self._group.kill(block=True)

    # -----------------------------------------------------------------
    # Worker loop
    # -----------------------------------------------------------------

    def _worker_loop(self, worker: Worker, fixtures: SharedContext) -> None:
        http = _CancellableClient(self.transport, self.metrics, self._cancel)

        while not worker.retiring and not self._cancel.is_set():
            if not self.budget.claim():
                break

            ctx = IterationContext(
                worker_id=worker.worker_id,
                iteration=worker.iterations,
                fixtures=fixtures,
                http=http,
                metrics=self.metrics,
                dispatcher=worker.dispatcher,
                cancel=self._cancel,
            )
            worker.iterations += 1

            selection = worker.dispatcher.resolve(self.table, ctx.iteration)
            try:
                think = self._run_iteration(selection, ctx)
            except IterationCancelled:
                self.metrics.counter(ITERATIONS_INTERRUPTED).add(1)
                break

            # Yield even when there is no think time so one busy worker
            # cannot starve the scheduler
            gevent.sleep(0)
            if think > 0 and self._cancel.wait(think):
                break

    def _run_iteration(self, selection: Selection, ctx: IterationContext) -> float:
        """Execute one selection and return the think time to apply after it."""
        scenario = selection.scenario
        if scenario is None:
            self.metrics.counter(ITERATIONS_IDLE).add(1)
            return self._draw_think(None, None, ctx.rng)

        started = time.perf_counter()
        outcome = run_scenario(scenario, ctx)
        duration = time.perf_counter() - started

        record_outcome(self.metrics, scenario, outcome, duration)
        if outcome.created:
            ctx.fixtures.register(*outcome.created)
        return self._draw_think(outcome, scenario, ctx.rng)

    def _draw_think(
        self, outcome: StepOutcome | None, scenario: Scenario | None, rng: random.Random
    ) -> float:
        if outcome is not None and outcome.think_time is not None:
            return outcome.think_time
        if scenario is not None and scenario.think_time is not None:
            return scenario.think_time.draw(rng)
        if self.think_time is not None:
            return self.think_time.draw(rng)
        return 0.0


def _count(snapshot: Any) -> int:
    return int(snapshot.count) if snapshot is not None else 0

