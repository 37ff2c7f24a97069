"""
Unit tests for weighted dispatch.

Key Concepts Demonstrated:
- Statistical checks over many seeded draws
- Nested decision trees resolved one level at a time
- Validation of weight tables built in code and from plan data
"""

import random
from collections import Counter

import pytest

from loadrig.dispatch import (
    Dispatcher,
    RoundRobinTable,
    Scenario,
    ThinkTime,
    WeightTable,
    between,
    weight_table_from_mapping,
)
from loadrig.errors import PlanError

pytestmark = pytest.mark.unit

DRAWS = 100_000


def named(name):
    return Scenario(name, lambda ctx: None)


A, B, C, D = named("a"), named("b"), named("c"), named("d")


def draw_many(table, seed=7):
    dispatcher = Dispatcher(random.Random(seed))
    return Counter(
        (selection.scenario.name if selection.scenario else "idle")
        for selection in (dispatcher.resolve(table) for _ in range(DRAWS))
    )


def test_weights_below_one_leave_an_idle_gap():
    """
    Arrange: Two branches of 0.3 each
    Act: Draw 100,000 times
    Assert: Each branch lands near 30 % and the idle gap near 40 %
    """
    # Arrange
    table = WeightTable.of("root", ("a", 0.3, A), ("b", 0.3, B))

    # Act
    counts = draw_many(table)

    # Assert
    assert counts["a"] / DRAWS == pytest.approx(0.3, abs=0.01)
    assert counts["b"] / DRAWS == pytest.approx(0.3, abs=0.01)
    assert counts["idle"] / DRAWS == pytest.approx(0.4, abs=0.01)
    assert table.idle_weight == pytest.approx(0.4)


def test_nested_tables_multiply_probabilities():
    # Arrange
    admin = WeightTable.of("admin", ("c", 0.4, C), ("d", 0.6, D))
    table = WeightTable.of("root", ("a", 0.5, A), ("admin", 0.5, admin))

    # Act
    counts = draw_many(table)

    # Assert
    assert counts["a"] / DRAWS == pytest.approx(0.5, abs=0.01)
    assert counts["c"] / DRAWS == pytest.approx(0.2, abs=0.01)
    assert counts["d"] / DRAWS == pytest.approx(0.3, abs=0.01)
    assert counts["idle"] == 0


def test_selection_path_names_every_level():
    admin = WeightTable.of("admin", ("c", 1.0, C))
    table = WeightTable.of("root", ("admin", 1.0, admin))

    selection = Dispatcher(random.Random(1)).resolve(table)

    assert selection.path == ("root", "admin", "c")
    assert not selection.idle


def test_same_seed_gives_same_sequence():
    table = WeightTable.of("root", ("a", 0.3, A), ("b", 0.3, B), ("c", 0.3, C))

    left = Dispatcher(random.Random(42))
    right = Dispatcher(random.Random(42))

    assert [left.select(table) for _ in range(50)] == [right.select(table) for _ in range(50)]


def test_round_robin_cycles_by_iteration():
    table = RoundRobinTable("stations", (A, B, C))
    dispatcher = Dispatcher()

    names = [dispatcher.resolve(table, iteration).scenario.name for iteration in range(7)]

    assert names == ["a", "b", "c", "a", "b", "c", "a"]


@pytest.mark.parametrize("weight", [0.0, -0.1, 1.5])
def test_branch_weight_must_be_in_unit_interval(weight):
    with pytest.raises(PlanError):
        WeightTable.of("root", ("a", weight, A))


def test_weights_summing_over_one_are_rejected():
    with pytest.raises(PlanError, match="exceeds 1.0"):
        WeightTable.of("root", ("a", 0.6, A), ("b", 0.5, B))


def test_float_rounding_does_not_trip_validation():
    table = WeightTable.of("root", ("a", 0.6, A), ("b", 0.25, B), ("c", 0.15, C))

    assert table.idle_weight == pytest.approx(0.0)


def test_empty_tables_are_rejected():
    with pytest.raises(PlanError):
        WeightTable("root", ())
    with pytest.raises(PlanError):
        RoundRobinTable("root", ())


def test_table_from_mapping_builds_nested_branches():
    # Arrange
    registry = {"a": A, "c": C, "d": D}
    data = {"a": 0.5, "admin": {"weight": 0.4, "branches": {"c": 0.5, "d": 0.5}}}

    # Act
    table = weight_table_from_mapping("root", data, registry)

    # Assert
    assert table.total_weight == pytest.approx(0.9)
    assert [s.name for s in table.scenarios()] == ["a", "c", "d"]


@pytest.mark.parametrize(
    "data",
    [
        {"missing": 0.5},
        {"a": "lots"},
        {"admin": {"branches": {"a": 1.0}}},
    ],
)
def test_table_from_mapping_rejects_bad_data(data):
    with pytest.raises(PlanError):
        weight_table_from_mapping("root", data, {"a": A})


def test_think_time_draws_within_range():
    rng = random.Random(3)
    think = between(0.5, 2.0)

    draws = [think.draw(rng) for _ in range(1000)]

    assert min(draws) >= 0.5
    assert max(draws) <= 2.0
    assert ThinkTime(1.0).draw(rng) == 1.0


def test_think_time_rejects_inverted_range():
    with pytest.raises(PlanError):
        ThinkTime(2.0, 1.0)
