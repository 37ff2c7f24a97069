"""
Unit tests for step chains and checks.

Key Concepts Demonstrated:
- Short-circuit on the first failed step
- Halting a journey without failing it
- Recording every check outcome on the shared rate
"""

import pytest

from loadrig.fixtures import ResourceRef
from loadrig.steps import CHECKS_METRIC, StepChain, StepOutcome, StepResult, check
from loadrig.transport import Response

pytestmark = pytest.mark.unit


def recorder(calls, label, result):
    def _step(ctx, carry):
        calls.append((label, carry))
        return result

    return _step


def test_chain_passes_values_between_steps():
    # Arrange
    calls = []
    chain = (
        StepChain("journey")
        .step("one", recorder(calls, "one", StepResult.success("station-1", latency=0.1)))
        .step("two", recorder(calls, "two", StepResult.success("charger-9", latency=0.2)))
        .step("three", recorder(calls, "three", StepResult.success()))
    )

    # Act
    outcome = chain.run(ctx=None)

    # Assert
    assert outcome.success
    assert outcome.latency == pytest.approx(0.3)
    assert calls == [("one", None), ("two", "station-1"), ("three", "charger-9")]


def test_chain_stops_at_first_failure():
    calls = []
    chain = (
        StepChain("journey")
        .step("one", recorder(calls, "one", StepResult.success(created=[ResourceRef("station", 1)])))
        .step("two", recorder(calls, "two", StepResult.failure("no chargers", latency=0.5)))
        .step("three", recorder(calls, "three", StepResult.success()))
    )

    outcome = chain.run(ctx=None)

    assert not outcome.success
    assert outcome.failed_step == "two"
    assert outcome.detail == "no chargers"
    assert outcome.created == (ResourceRef("station", 1),)
    assert [label for label, _ in calls] == ["one", "two"]


def test_halt_ends_the_journey_successfully():
    calls = []
    chain = (
        StepChain("journey")
        .step("one", recorder(calls, "one", StepResult.halt(detail="nothing free")))
        .step("two", recorder(calls, "two", StepResult.success()))
    )

    outcome = chain(ctx=None)

    assert outcome.success
    assert len(calls) == 1


@pytest.mark.parametrize(
    "status, expected, success",
    [(200, (200,), True), (201, (200, 201), True), (500, (200,), False), (0, (200,), False)],
)
def test_outcome_from_response(status, expected, success):
    outcome = StepOutcome.from_response(Response(status=status, latency=0.25), expected)

    assert outcome.success is success
    assert outcome.latency == 0.25
    if not success:
        assert str(status) in outcome.detail


def test_check_runs_every_predicate(metrics):
    """
    Arrange: Three predicates, one failing and one raising
    Act: Run the check
    Assert: All three are recorded and the overall result is False
    """
    # Arrange
    response = Response(status=200, body=b'{"id": 3}')
    predicates = {
        "status is 200": lambda r: r.status == 200,
        "has name": lambda r: "name" in r.json(),
        "name is long": lambda r: len(r.json()["name"]) > 3,
    }

    # Act
    passed = check(metrics, response, predicates)

    # Assert
    rate = metrics.snapshot()[CHECKS_METRIC]
    assert passed is False
    assert rate.total == 3
    assert rate.passes == 1


def test_check_passes_when_all_predicates_hold(metrics):
    assert check(metrics, 5, {"positive": lambda n: n > 0, "small": lambda n: n < 10})
    assert metrics.snapshot()[CHECKS_METRIC].rate == 1.0
