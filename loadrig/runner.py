"""
Run orchestration: setup, active load, evaluation and teardown.

A :class:`LoadRun` walks through a fixed lifecycle::

    INIT -> SETUP -> ACTIVE -> TEARDOWN -> DONE
               \\
                -> SETUP_FAILED

No state is ever revisited.  When setup fails the engine is never
built, so no worker starts and no latency sample is recorded; the
fixture manager has already removed whatever setup created before the
failure.

Key Concepts Demonstrated:
- Explicit state machine with validated transitions
- Teardown guaranteed once setup has succeeded, even if the engine
  raises
- Results bundled into one value object that maps to an exit code
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Sequence

from loadrig.config import Config, get_config
from loadrig.dispatch import ScenarioTable, ThinkTime
from loadrig.engine import EngineSummary, ExecutionEngine
from loadrig.errors import InvalidTransition, SetupError
from loadrig.fixtures import FixtureManager, SetupStep, SharedContext, TeardownReport
from loadrig.metrics import MetricRegistry, RegistrySnapshot
from loadrig.report import EXIT_PASS, EXIT_SCRIPT_ERROR, EXIT_THRESHOLD_BREACH
from loadrig.stages import StageSchedule
from loadrig.thresholds import EvaluationReport, Threshold, evaluate
from loadrig.transport import HttpTransport, Transport

if TYPE_CHECKING:
    from loadrig.plan import RunPlan

logger = logging.getLogger(__name__)


class RunState(Enum):
    INIT = "init"
    SETUP = "setup"
    ACTIVE = "active"
    TEARDOWN = "teardown"
    DONE = "done"
    SETUP_FAILED = "setup_failed"


VALID_TRANSITIONS = {
    RunState.INIT: (RunState.SETUP,),
    RunState.SETUP: (RunState.ACTIVE, RunState.SETUP_FAILED),
    RunState.ACTIVE: (RunState.TEARDOWN,),
    RunState.TEARDOWN: (RunState.DONE,),
    RunState.DONE: (),
    RunState.SETUP_FAILED: (),
}


class RunLifecycle:
    """Current run state plus the ordered history of states visited."""

    def __init__(self) -> None:
        self._state = RunState.INIT
        self.history: list[RunState] = [RunState.INIT]

    @property
    def state(self) -> RunState:
        return self._state

    def transition(self, target: RunState) -> None:
        if target not in VALID_TRANSITIONS[self._state]:
            raise InvalidTransition(f"{self._state.name} -> {target.name}")
        logger.debug("Run state %s -> %s", self._state.name, target.name)
        self._state = target
        self.history.append(target)


@dataclass
class RunResult:
    """Everything a finished (or failed) run produced."""

    state: RunState
    history: list[RunState]
    snapshot: RegistrySnapshot
    report: EvaluationReport | None = None
    engine: EngineSummary | None = None
    teardown: TeardownReport | None = None
    setup_error: SetupError | None = None
    thresholds: Sequence[Threshold] = field(default_factory=tuple)

    @property
    def passed(self) -> bool:
        return self.state is RunState.DONE and self.report is not None and self.report.passed

    @property
    def workers_started(self) -> int:
        return self.engine.workers_started if self.engine else 0

    @property
    def exit_code(self) -> int:
        if self.state is not RunState.DONE or self.report is None:
            return EXIT_SCRIPT_ERROR
        return EXIT_PASS if self.report.passed else EXIT_THRESHOLD_BREACH


class LoadRun:
    """
    One complete load run against a target.

    Args:
        schedule: Stage table driving concurrency.
        table: Scenario table the workers draw from.
        transport: Raw transport to the target.  Setup and teardown use
            it directly; workers wrap it with metric instrumentation.
        setup_steps: Fixture steps executed before any worker starts.
        deleters: Teardown path template per resource kind.
        thresholds: Evaluated against the final snapshot.
        think_time: Default pause between iterations.
        iterations: Optional total iteration budget.
        seed: Base seed for dispatch randomness.
        settings: Configuration class; defaults to :func:`get_config`.
    """

    def __init__(
        self,
        schedule: StageSchedule,
        table: ScenarioTable,
        transport: Transport,
        *,
        setup_steps: Sequence[SetupStep] = (),
        deleters: Mapping[str, str] | None = None,
        thresholds: Sequence[Threshold] = (),
        think_time: ThinkTime | None = None,
        iterations: int | None = None,
        seed: int | None = None,
        sample_buffer: int | None = None,
        settings: type[Config] | None = None,
    ) -> None:
        self.settings = settings or get_config()
        self.schedule = schedule
        self.table = table
        self.transport = transport
        self.thresholds = tuple(thresholds)
        self.think_time = think_time
        self.iterations = iterations
        self.seed = seed
        self.metrics = MetricRegistry(sample_buffer or self.settings.SAMPLE_BUFFER)
        self.fixtures = FixtureManager(
            transport,
            setup_steps,
            deleters,
            concurrency=self.settings.SETUP_CONCURRENCY,
        )
        self.lifecycle = RunLifecycle()
        self.engine: ExecutionEngine | None = None

    @classmethod
    def from_plan(
        cls,
        plan: "RunPlan",
        transport: Transport | None = None,
        settings: type[Config] | None = None,
    ) -> "LoadRun":
        """Build a run for a plan, resolving its suite by name."""
        from loadrig.scenarios import get_suite

        settings = settings or get_config()
        suite = get_suite(plan.suite)
        if transport is None:
            transport = HttpTransport(
                plan.base_url or settings.BASE_URL,
                timeout=settings.REQUEST_TIMEOUT,
            )

        return cls(
            schedule=StageSchedule(
                plan.stages if plan.stages is not None else suite.stages,
                start_concurrency=plan.start_concurrency,
            ),
            table=suite.table_for(plan.weights),
            transport=transport,
            setup_steps=suite.setup_steps,
            deleters=suite.deleters,
            thresholds=plan.thresholds if plan.thresholds is not None else suite.thresholds(),
            think_time=plan.think_time or suite.think_time,
            iterations=plan.iterations,
            seed=plan.seed,
            sample_buffer=plan.sample_buffer,
            settings=settings,
        )

    @property
    def state(self) -> RunState:
        return self.lifecycle.state

    def abort(self, reason: str = "interrupted") -> None:
        """Cancel an active run; teardown still runs."""
        if self.engine is not None:
            self.engine.abort(reason)

    def run(self) -> RunResult:
        """
        Execute the full lifecycle.

        Returns:
            A :class:`RunResult`.  Setup failures are reported through
            ``state == SETUP_FAILED`` and ``setup_error`` rather than
            raised.
        """
        self.lifecycle.transition(RunState.SETUP)
        try:
            shared = self.fixtures.setup()
        except SetupError as exc:
            self.lifecycle.transition(RunState.SETUP_FAILED)
            logger.error("Run aborted before any virtual user started: %s", exc)
            return RunResult(
                state=self.state,
                history=list(self.lifecycle.history),
                snapshot=self.metrics.snapshot(),
                setup_error=exc,
                thresholds=self.thresholds,
            )

        self.lifecycle.transition(RunState.ACTIVE)
        summary: EngineSummary | None = None
        try:
            summary = self._run_engine(shared)
        finally:
            self.lifecycle.transition(RunState.TEARDOWN)
            teardown = self.fixtures.teardown(shared)
            self.lifecycle.transition(RunState.DONE)

        snapshot = self.metrics.snapshot()
        report = evaluate(self.thresholds, snapshot)
        logger.info("Threshold verdict: %s", report.verdict)
        for failure in report.failures:
            logger.warning("%s", failure.describe())

        return RunResult(
            state=self.state,
            history=list(self.lifecycle.history),
            snapshot=snapshot,
            report=report,
            engine=summary,
            teardown=teardown,
            thresholds=self.thresholds,
        )

    def _run_engine(self, shared: SharedContext) -> EngineSummary:
        self.engine = ExecutionEngine(
            self.schedule,
            self.table,
            self.metrics,
            self.transport,
            think_time=self.think_time,
            iterations=self.iterations,
            tick_interval=self.settings.TICK_INTERVAL,
            graceful_stop=self.settings.GRACEFUL_STOP,
            thresholds=self.thresholds,
            threshold_check_interval=self.settings.THRESHOLD_CHECK_INTERVAL,
            seed=self.seed,
        )
        return self.engine.run(shared)
