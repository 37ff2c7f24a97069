"""
Shared fixture lifecycle: setup before the run, teardown after it.

Setup runs once, before any virtual user starts.  Its steps create the
baseline resources every scenario relies on (for example a pool of
stations with chargers) and the resulting :class:`SharedContext` is
handed to all workers read-only.  Resources created *during* the run
are appended to the context's :class:`ResourceAccumulator`, the only
mutable part, so teardown can remove them too.

Setup is strict: any unexpected status aborts the run with a
:class:`~loadrig.errors.SetupError` naming the step, after the
resources created so far have been cleaned up.  Teardown is
best-effort: failures are logged and reported, never retried and never
raised, and deleting something that is already gone counts as success.

Key Concepts Demonstrated:
- Immutable snapshot plus append-only accumulator instead of globals
- Partial cleanup when setup fails halfway
- Idempotent, best-effort deletion during teardown
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Sequence

from gevent.pool import Pool

from loadrig.errors import SetupError, TeardownError
from loadrig.transport import Response, Transport

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}

# A DELETE answered with one of these means the resource is already gone
MISSING_STATUSES = (404, 410)


@dataclass(frozen=True)
class ResourceRef:
    """Identifies one resource on the target service, e.g. ``("station", 42)``."""

    kind: str
    id: Any


class ResourceAccumulator:
    """
    Append-only, lock-protected collection of run-time resources.

    Many workers append concurrently; duplicates are allowed because
    teardown deduplicates and treats a repeated delete as a no-op.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[ResourceRef] = []

    def append(self, ref: ResourceRef) -> None:
        with self._lock:
            self._items.append(ref)

    def extend(self, refs: Iterable[ResourceRef]) -> None:
        refs = list(refs)
        if not refs:
            return
        with self._lock:
            self._items.extend(refs)

    def snapshot(self) -> tuple[ResourceRef, ...]:
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(item) for item in value)
    return value


class SharedContext:
    """
    Read-only fixture data plus the run-time accumulator.

    Attributes:
        data: Frozen mapping of arbitrary values stored by setup steps.
        resources: Resources created during setup, in creation order.
        accumulator: Handle workers use to register resources they
            create while the run is active.
    """

    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        resources: Iterable[ResourceRef] = (),
        accumulator: ResourceAccumulator | None = None,
    ) -> None:
        self.data: Mapping[str, Any] = _freeze(dict(data or {}))
        self.resources: tuple[ResourceRef, ...] = tuple(resources)
        self.accumulator = accumulator if accumulator is not None else ResourceAccumulator()

    def ids(self, kind: str) -> tuple[Any, ...]:
        """Identifiers of the setup resources of one kind."""
        return tuple(ref.id for ref in self.resources if ref.kind == kind)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def register(self, *refs: ResourceRef) -> None:
        self.accumulator.extend(refs)

    def all_resources(self) -> tuple[ResourceRef, ...]:
        return self.resources + self.accumulator.snapshot()


class SetupSession:
    """Per-step helper that issues bootstrap calls and records what they create."""

    def __init__(self, transport: Transport, step: str) -> None:
        self.transport = transport
        self.step = step
        self.created: list[ResourceRef] = []
        self.data: dict[str, Any] = {}

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        expected: Sequence[int] = (200,),
    ) -> Response:
        """Issue a call and raise :class:`SetupError` unless the status is expected."""
        response = self.transport.request(method, path, body, JSON_HEADERS)
        if response.status not in expected:
            reason = response.error or f"{method.upper()} {path} returned {response.status}"
            raise SetupError(self.step, reason, status=response.status)
        return response

    def create(
        self,
        kind: str,
        path: str,
        body: Any,
        *,
        expected: Sequence[int] = (201,),
        id_field: str = "id",
    ) -> dict[str, Any]:
        """
        POST a new resource and register it for teardown.

        Returns:
            The decoded response body.

        Raises:
            SetupError: On an unexpected status or a body without an id.
        """
        response = self.request("POST", path, body, expected=expected)
        payload = response.json(default={})
        if not isinstance(payload, dict) or payload.get(id_field) is None:
            raise SetupError(
                self.step,
                f"POST {path} response has no '{id_field}'",
                status=response.status,
            )
        self.created.append(ResourceRef(kind, payload[id_field]))
        return payload

    def put(self, key: str, value: Any) -> None:
        """Store a value in the shared snapshot under ``key``."""
        self.data[key] = value


@dataclass(frozen=True)
class SetupStep:
    """A named bootstrap action; ``func`` receives a :class:`SetupSession`."""

    name: str
    func: Callable[[SetupSession], None]


@dataclass
class TeardownReport:
    """What teardown managed to delete."""

    deleted: list[ResourceRef] = field(default_factory=list)
    missing: list[ResourceRef] = field(default_factory=list)
    skipped: list[ResourceRef] = field(default_factory=list)
    errors: list[TeardownError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class FixtureManager:
    """
    Owns creation and destruction of the shared fixture context.

    Args:
        transport: Raw (uninstrumented) transport; fixture traffic must
            not pollute run metrics.
        steps: Setup steps in declaration order.
        deleters: Path template per resource kind used by teardown, e.g.
            ``{"station": "/stations/{id}"}``.  Kinds without a template
            are left in place.
        concurrency: Number of setup steps run in parallel.
    """

    def __init__(
        self,
        transport: Transport,
        steps: Sequence[SetupStep] = (),
        deleters: Mapping[str, str] | None = None,
        concurrency: int = 1,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.transport = transport
        self.steps = tuple(steps)
        self.deleters = dict(deleters or {})
        self.concurrency = concurrency

    # -----------------------------------------------------------------
    # Setup
    # -----------------------------------------------------------------

    def _run_step(self, step: SetupStep) -> tuple[SetupSession, SetupError | None]:
        session = SetupSession(self.transport, step.name)
        try:
            step.func(session)
        except SetupError as exc:
            return session, exc
        except Exception as exc:
            return session, SetupError(step.name, f"{type(exc).__name__}: {exc}")
        return session, None

    def setup(self) -> SharedContext:
        """
        Run every setup step and build the shared context.

        Raises:
            SetupError: The first failure, carrying the names of the
                steps that completed.  Resources created before the
                failure have already been deleted.
        """
        logger.info("Running %d setup step(s)", len(self.steps))

        sessions: list[SetupSession] = []
        completed: list[str] = []
        failure: SetupError | None = None

        if self.concurrency == 1:
            for step in self.steps:
                session, error = self._run_step(step)
                sessions.append(session)
                if error is not None:
                    failure = error
                    break
                completed.append(step.name)
        else:
            pool = Pool(self.concurrency)
            for session, error in pool.imap_unordered(self._run_step, self.steps):
                sessions.append(session)
                if error is None:
                    completed.append(session.step)
                elif failure is None:
                    failure = error

        created = [ref for session in sessions for ref in session.created]

        if failure is not None:
            logger.error("%s (completed: %s)", failure, ", ".join(completed) or "none")
            if created:
                logger.info("Cleaning up %d resource(s) from partial setup", len(created))
                self._delete_all(created)
            raise SetupError(
                failure.step,
                failure.reason,
                status=failure.status,
                completed_steps=completed,
            ) from failure

        data: dict[str, Any] = {}
        for session in sessions:
            data.update(session.data)

        logger.info("Setup complete: %d resource(s) created", len(created))
        return SharedContext(data=data, resources=created)

    # -----------------------------------------------------------------
    # Teardown
    # -----------------------------------------------------------------

    def delete(self, ref: ResourceRef) -> Response | None:
        """
        Delete one resource.

        Returns:
            The response, or ``None`` if the kind has no deleter.

        Raises:
            TeardownError: If the target refused the delete.  A missing
                resource (404/410) is not an error.
        """
        template = self.deleters.get(ref.kind)
        if template is None:
            return None

        path = template.format(id=ref.id)
        try:
            response = self.transport.request("DELETE", path, None, JSON_HEADERS)
        except Exception as exc:
            raise TeardownError(ref.kind, ref.id, f"{type(exc).__name__}: {exc}") from exc

        if 200 <= response.status < 300 or response.status in MISSING_STATUSES:
            return response
        reason = response.error or f"DELETE {path} returned {response.status}"
        raise TeardownError(ref.kind, ref.id, reason)

    def _delete_all(self, refs: Iterable[ResourceRef]) -> TeardownReport:
        report = TeardownReport()
        unique: list[ResourceRef] = []
        seen: set[ResourceRef] = set()
        for ref in refs:
            if ref not in seen:
                seen.add(ref)
                unique.append(ref)

        # Children were created after their parents; remove them first
        for ref in reversed(unique):
            try:
                response = self.delete(ref)
            except TeardownError as exc:
                logger.warning("%s", exc)
                report.errors.append(exc)
                continue

            if response is None:
                report.skipped.append(ref)
            elif response.status in MISSING_STATUSES:
                report.missing.append(ref)
            else:
                report.deleted.append(ref)
        return report

    def teardown(self, ctx: SharedContext) -> TeardownReport:
        """Best-effort removal of setup and run-time resources."""
        refs = ctx.all_resources()
        logger.info(
            "Tearing down %d resource(s) (%d from setup, %d created during the run)",
            len(refs),
            len(ctx.resources),
            len(refs) - len(ctx.resources),
        )
        report = self._delete_all(refs)
        logger.info(
            "Teardown finished: %d deleted, %d already gone, %d kept, %d failed",
            len(report.deleted),
            len(report.missing),
            len(report.skipped),
            len(report.errors),
        )
        return report
