"""
Unit tests for the stage ramp scheduler.

Key Concepts Demonstrated:
- Boundary testing at stage edges
- Parametrized tests for duration parsing
- Property-style checks over many sample points
"""

import pytest

from loadrig.errors import PlanError
from loadrig.stages import Stage, StageSchedule, parse_duration

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "value, expected",
    [
        ("30s", 30.0),
        ("1m", 60.0),
        ("1m30s", 90.0),
        ("500ms", 0.5),
        ("2h", 7200.0),
        (45, 45.0),
        (1.5, 1.5),
        ("10", 10.0),
    ],
)
def test_parse_duration_accepts_k6_notation(value, expected):
    assert parse_duration(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["", "abc", "10x", "-5s", -1, True, "1m-30s"])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(PlanError):
        parse_duration(value)


def test_negative_stage_values_are_rejected():
    with pytest.raises(PlanError):
        Stage(-1.0, 10)
    with pytest.raises(PlanError):
        Stage(10.0, -1)


def test_stage_from_mapping_parses_duration():
    stage = Stage.from_mapping({"duration": "1m", "target": 50})

    assert stage == Stage(60.0, 50)


def test_stage_from_mapping_requires_integer_target():
    with pytest.raises(PlanError):
        Stage.from_mapping({"duration": "1m", "target": "fifty"})


class TestDesiredConcurrency:
    """Tests for StageSchedule.desired_concurrency."""

    def test_linear_ramp_within_first_stage(self):
        """
        Arrange: One 10s stage ramping 0 -> 100
        Act: Sample at several points
        Assert: Values follow the line and are floored
        """
        # Arrange
        schedule = StageSchedule([Stage(10, 100)])

        # Act / Assert
        assert schedule.desired_concurrency(0) == 0
        assert schedule.desired_concurrency(2.5) == 25
        assert schedule.desired_concurrency(9.99) == 99

    def test_ramp_between_stages(self):
        schedule = StageSchedule([Stage(10, 20), Stage(10, 40), Stage(10, 0)])

        assert schedule.desired_concurrency(10) == 20
        assert schedule.desired_concurrency(15) == 30
        assert schedule.desired_concurrency(25) == 20

    def test_value_at_stage_start_equals_previous_target(self):
        schedule = StageSchedule([Stage(5, 10), Stage(5, 50)])

        assert schedule.desired_concurrency(5) == 10

    def test_zero_after_total_duration(self):
        schedule = StageSchedule([Stage(5, 10), Stage(5, 10)])

        assert schedule.desired_concurrency(10) == 0
        assert schedule.desired_concurrency(1000) == 0

    def test_zero_duration_stage_is_a_step(self):
        """A zero-length stage jumps straight to its target."""
        # Arrange
        schedule = StageSchedule([Stage(0, 50), Stage(10, 50)])

        # Act / Assert
        assert schedule.desired_concurrency(0) == 50
        assert schedule.desired_concurrency(5) == 50

    def test_start_concurrency_is_the_first_ramp_origin(self):
        schedule = StageSchedule([Stage(10, 0)], start_concurrency=20)

        assert schedule.desired_concurrency(0) == 20
        assert schedule.desired_concurrency(5) == 10

    def test_negative_elapsed_is_clamped(self):
        schedule = StageSchedule([Stage(10, 100)], start_concurrency=4)

        assert schedule.desired_concurrency(-3) == 4

    def test_empty_schedule_stops_immediately(self):
        schedule = StageSchedule([])

        assert schedule.total_duration == 0
        assert schedule.desired_concurrency(0) == 0
        assert schedule.tick(0) is None

    def test_values_never_jump_more_than_slope_allows(self):
        """
        Continuity: between close samples the value moves by at most
        the stage slope (plus one for flooring).
        """
        # Arrange
        schedule = StageSchedule([Stage(30, 80), Stage(60, 120), Stage(30, 0)])
        step = 0.05

        # Act
        values = [schedule.desired_concurrency(i * step) for i in range(int(120 / step))]

        # Assert
        max_slope = 120 / 30
        for previous, current in zip(values, values[1:]):
            assert abs(current - previous) <= max_slope * step + 1


def test_tick_returns_none_once_complete():
    schedule = StageSchedule([Stage(1, 5)])

    assert schedule.tick(0.5) == 2
    assert schedule.tick(1.0) is None
    assert schedule.is_complete(1.0)


def test_total_duration_and_max_target():
    schedule = StageSchedule.from_config(
        [{"duration": "30s", "target": 20}, {"duration": "1m", "target": 50}]
    )

    assert schedule.total_duration == 90
    assert schedule.max_target == 50
