"""
Unit tests for threshold parsing and evaluation.

Key Concepts Demonstrated:
- Parametrized grammar checks
- Custom predicates alongside parsed expressions
- Verdicts that do not depend on evaluation order
"""

import pytest

from loadrig.errors import PlanError
from loadrig.thresholds import Threshold, evaluate, parse_threshold, thresholds_from_mapping

pytestmark = pytest.mark.unit


@pytest.fixture
def populated(metrics):
    """Registry with one trend, one rate and one counter."""
    for value in range(1, 101):
        metrics.trend("http_req_duration").add(value * 10)
    for i in range(100):
        metrics.rate("http_req_failed").add(i < 3)
    metrics.counter("completed_workflows").add(60)
    return metrics


@pytest.mark.parametrize(
    "expression, description",
    [
        ("p(95)<1000", "p(95)<1000"),
        ("p( 99.9 ) <= 2000", "p(99.9)<=2000"),
        ("rate<0.02", "rate<0.02"),
        ("count>50", "count>50"),
        ("avg>=1.5e2", "avg>=1.5e2"),
    ],
)
def test_parse_threshold_accepts_k6_expressions(expression, description):
    threshold = parse_threshold("metric", expression)

    assert threshold.description == description
    assert threshold.abort_on_fail is False


@pytest.mark.parametrize("expression", ["p95<1000", "rate", "<5", "rate<fast", "stddev<3"])
def test_parse_threshold_rejects_bad_expressions(expression):
    with pytest.raises(PlanError):
        parse_threshold("metric", expression)


def test_thresholds_from_mapping_handles_every_entry_form():
    # Arrange
    data = {
        "http_req_duration": ["p(95)<1000", "p(99)<1500"],
        "http_req_failed": "rate<0.02",
        "scenario_success": [{"threshold": "fail_rate<0.05", "abortOnFail": True}],
    }

    # Act
    thresholds = thresholds_from_mapping(data)

    # Assert
    assert [t.metric_name for t in thresholds] == [
        "http_req_duration",
        "http_req_duration",
        "http_req_failed",
        "scenario_success",
    ]
    assert thresholds[-1].abort_on_fail is True


def test_thresholds_from_mapping_rejects_malformed_entries():
    with pytest.raises(PlanError):
        thresholds_from_mapping({"http_req_failed": 0.02})
    with pytest.raises(PlanError):
        thresholds_from_mapping({"http_req_failed": [{"abortOnFail": True}]})


def test_evaluate_reports_observed_values(populated):
    # Arrange
    thresholds = thresholds_from_mapping(
        {
            "http_req_duration": ["p(95)<1000", "max<900"],
            "http_req_failed": ["rate<0.05"],
            "completed_workflows": ["count>50"],
        }
    )

    # Act
    report = evaluate(thresholds, populated.snapshot())

    # Assert
    verdicts = {(r.metric_name, r.description): r for r in report.results}
    assert verdicts[("http_req_duration", "p(95)<1000")].passed
    assert verdicts[("http_req_duration", "p(95)<1000")].observed == pytest.approx(950.5)
    assert not verdicts[("http_req_duration", "max<900")].passed
    assert verdicts[("http_req_failed", "rate<0.05")].observed == pytest.approx(0.03)
    assert verdicts[("completed_workflows", "count>50")].passed
    assert report.verdict == "FAIL"
    assert len(report.failures) == 1


def test_missing_metric_fails_with_no_observation(metrics):
    report = evaluate([parse_threshold("never_recorded", "count>0")], metrics.snapshot())

    result = report.results[0]
    assert not result.passed
    assert result.observed is None
    assert "n/a" in result.describe()


def test_bad_aggregation_for_metric_kind_fails_instead_of_raising(populated):
    report = evaluate([parse_threshold("completed_workflows", "p(95)<10")], populated.snapshot())

    assert not report.passed
    assert report.results[0].error


def test_verdict_is_independent_of_threshold_order(populated):
    thresholds = thresholds_from_mapping(
        {
            "http_req_duration": ["p(95)<1000", "max<900"],
            "http_req_failed": ["rate<0.05"],
        }
    )
    snapshot = populated.snapshot()

    forward = evaluate(thresholds, snapshot)
    backward = evaluate(list(reversed(thresholds)), snapshot)

    assert forward.passed == backward.passed
    assert sorted(r.description for r in forward.failures) == sorted(
        r.description for r in backward.failures
    )


def test_custom_predicate_threshold(populated):
    """A hand-written predicate works without the expression grammar."""
    # Arrange
    threshold = Threshold(
        metric_name="http_req_duration",
        predicate=lambda snap: snap.min >= 10,
        description="min latency at least 10ms",
    )

    # Act
    report = evaluate([threshold], populated.snapshot())

    # Assert
    assert report.passed
    assert report.results[0].observed is None


def test_raising_predicate_fails_without_hiding_the_others(populated):
    """
    Arrange: A hand-written predicate using an attribute counters lack
    Act: Evaluate it before a grammar threshold
    Assert: Both are reported; the broken one fails with the error named
    """
    # Arrange
    thresholds = [
        Threshold("completed_workflows", lambda snap: snap.percentile(95) < 10, "p(95)<10"),
        parse_threshold("http_req_failed", "rate<0.5"),
    ]

    # Act
    report = evaluate(thresholds, populated.snapshot())

    # Assert
    assert len(report.results) == 2
    broken, healthy = report.results
    assert not broken.passed
    assert broken.observed is None
    assert broken.error.startswith("AttributeError:")
    assert healthy.passed
    assert report.verdict == "FAIL"


def test_raising_observer_is_reported_as_failure(populated):
    def observe(snap):
        raise RuntimeError("observer broke")

    threshold = Threshold("http_req_duration", lambda snap: True, "always", observe=observe)

    result = evaluate([threshold], populated.snapshot()).results[0]

    assert not result.passed
    assert result.error == "RuntimeError: observer broke"
