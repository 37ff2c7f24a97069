"""
Shared pytest fixtures for the loadrig test suite.

Fixtures provide fresh state per test: an empty metric registry, a new
in-memory fake target and the transports that reach it.

Key Concepts Demonstrated:
- Fixture dependencies (transport -> target app)
- Test configuration selected through the environment
- Factories for short, fast stage tables
"""

import os

import pytest
from faker import Faker

# Select the fast testing configuration before importing the package
os.environ["LOADRIG_ENV"] = "testing"

from loadrig.config import TestingConfig
from loadrig.fixtures import SharedContext
from loadrig.metrics import MetricRegistry
from loadrig.stages import Stage, StageSchedule
from tests.fake_target import FlaskTransport, ScriptedTransport, create_fake_target


# Initialize Faker for generating test data
fake = Faker()


# -----------------------------------------------------------------------------
# Core Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def settings():
    """Testing configuration with short tick and grace intervals."""
    return TestingConfig


@pytest.fixture
def metrics() -> MetricRegistry:
    """A fresh, empty metric registry."""
    return MetricRegistry()


@pytest.fixture
def shared_context() -> SharedContext:
    """An empty shared fixture context."""
    return SharedContext()


# -----------------------------------------------------------------------------
# Target Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def target_app():
    """
    Create a fresh fake charging-station API for each test.

    Yields:
        Flask application with empty in-memory state.
    """
    yield create_fake_target()


@pytest.fixture
def transport(target_app) -> FlaskTransport:
    """Transport that drives the fake target through Flask's test client."""
    return FlaskTransport(target_app)


@pytest.fixture
def ok_transport() -> ScriptedTransport:
    """Transport that answers every call with 200."""
    return ScriptedTransport()


# -----------------------------------------------------------------------------
# Schedule Factories
# -----------------------------------------------------------------------------

@pytest.fixture
def schedule_factory():
    """
    Factory for stage schedules.

    Example:
        def test_something(schedule_factory):
            schedule = schedule_factory((0.5, 5), (0.5, 0))
    """

    def _create(*pairs: tuple[float, int], start: int = 0) -> StageSchedule:
        return StageSchedule([Stage(duration, target) for duration, target in pairs], start)

    return _create


@pytest.fixture
def station_payload() -> dict:
    """Valid station-create payload with randomised values."""
    return {
        "name": f"{fake.last_name()} Station",
        "address": fake.street_address(),
        "latitude": float(fake.latitude()),
        "longitude": float(fake.longitude()),
    }
