"""
Exception taxonomy for load runs.

Only :class:`SetupError` is allowed to abort a run.  Everything raised
while virtual users are active is captured by the engine and surfaced
through metrics, and teardown failures are collected into the teardown
report instead of propagating.
"""

from __future__ import annotations

from typing import Sequence


class LoadrigError(Exception):
    """Base class for all loadrig errors."""


class PlanError(LoadrigError, ValueError):
    """Raised when a run plan, stage table or threshold expression is invalid."""


class InvalidTransition(LoadrigError):
    """Raised when a run is moved to a state its current state cannot reach."""


class MetricTypeError(LoadrigError, TypeError):
    """Raised when a metric name is reused with a different metric kind."""


class SetupError(LoadrigError):
    """
    Fatal failure while building the shared fixture context.

    Attributes:
        step: Label of the setup step that failed.
        status: HTTP status observed for the failing call (``0`` when the
            target could not be reached), or ``None`` if the step raised.
        completed_steps: Labels of the steps that finished before the
            failure, in completion order.
    """

    def __init__(
        self,
        step: str,
        message: str,
        *,
        status: int | None = None,
        completed_steps: Sequence[str] = (),
    ) -> None:
        self.step = step
        self.reason = message
        self.status = status
        self.completed_steps = tuple(completed_steps)
        super().__init__(f"Setup step '{step}' failed: {message}")


class ScenarioError(LoadrigError):
    """
    Non-fatal scenario failure.

    Scenario authors may raise this to fail the current iteration with a
    message; the engine records it on the ``scenario_success`` rate and
    the worker carries on with its next iteration.
    """

    def __init__(self, message: str, *, step: str | None = None) -> None:
        self.step = step
        super().__init__(message)


class TeardownError(LoadrigError):
    """A single resource that could not be deleted during teardown."""

    def __init__(self, kind: str, resource_id: object, reason: str) -> None:
        self.kind = kind
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(f"Could not delete {kind} {resource_id}: {reason}")


class IterationCancelled(LoadrigError):
    """Raised inside a worker when the run is cancelled during a pause."""
