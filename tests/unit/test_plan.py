"""
Unit tests for YAML run plans.

Key Concepts Demonstrated:
- Loading real files from pytest's ``tmp_path``
- Early validation of every plan section
"""

from pathlib import Path

import pytest

from loadrig.errors import PlanError
from loadrig.plan import load_plan, plan_from_mapping
from loadrig.scenarios import suite_names
from loadrig.stages import Stage

pytestmark = pytest.mark.unit

PLAN = """
name: nightly-mixed
suite: mixed
base_url: http://localhost:80/api/v1
seed: 42
iterations: 500
think_time: [0.5, 2s]
stages:
  - {duration: 1m, target: 80}
  - {duration: 30s, target: 0}
thresholds:
  http_req_duration: ["p(95)<1000"]
  scenario_success:
    - threshold: "fail_rate<0.05"
      abortOnFail: true
"""


def test_load_plan_reads_every_section(tmp_path):
    # Arrange
    path = tmp_path / "mixed.yml"
    path.write_text(PLAN, encoding="utf-8")

    # Act
    plan = load_plan(path)

    # Assert
    assert plan.name == "nightly-mixed"
    assert plan.suite == "mixed"
    assert plan.seed == 42
    assert plan.iterations == 500
    assert plan.stages == [Stage(60.0, 80), Stage(30.0, 0)]
    assert (plan.think_time.low, plan.think_time.high) == (0.5, 2.0)
    assert [t.description for t in plan.thresholds] == ["p(95)<1000", "fail_rate<0.05"]
    assert plan.thresholds[1].abort_on_fail


def test_minimal_plan_leaves_suite_defaults():
    plan = plan_from_mapping({"suite": "auth"})

    assert plan.stages is None
    assert plan.thresholds is None
    assert plan.think_time is None
    assert plan.start_concurrency == 0


def test_single_think_time_is_constant():
    plan = plan_from_mapping({"suite": "auth", "think_time": "500ms"})

    assert (plan.think_time.low, plan.think_time.high) == (0.5, 0.5)


@pytest.mark.parametrize(
    "data, message",
    [
        ({"suite": "auth", "stagez": []}, "Unknown plan key"),
        ({}, "needs a 'suite'"),
        ({"suite": "auth", "stages": {"duration": "1m"}}, "must be a list"),
        ({"suite": "auth", "thresholds": ["p(95)<1"]}, "must map metric names"),
        ({"suite": "auth", "weights": [0.5]}, "must map scenario names"),
        ({"suite": "auth", "iterations": -1}, "'iterations'"),
        ({"suite": "auth", "seed": "abc"}, "'seed'"),
        ({"suite": "auth", "think_time": [1, 2, 3]}, "two values"),
    ],
)
def test_invalid_plans_are_rejected(data, message):
    with pytest.raises(PlanError, match=message):
        plan_from_mapping(data)


def test_missing_file_is_a_plan_error(tmp_path):
    with pytest.raises(PlanError, match="Cannot read plan"):
        load_plan(tmp_path / "absent.yml")


def test_broken_yaml_is_a_plan_error(tmp_path):
    path = tmp_path / "broken.yml"
    path.write_text("suite: [unclosed", encoding="utf-8")

    with pytest.raises(PlanError, match="Invalid YAML"):
        load_plan(path)


@pytest.mark.parametrize(
    "path",
    sorted((Path(__file__).resolve().parents[2] / "plans").glob("*.yml")),
    ids=lambda path: path.stem,
)
def test_bundled_plans_are_valid(path):
    plan = load_plan(path)

    assert plan.suite in suite_names()
    assert plan.stages
    assert plan.thresholds
