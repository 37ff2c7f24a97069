"""
Runtime configuration module.

This module defines configuration classes for the environments a load
run is launched from (a developer laptop, the unit-test suite, CI).
Values are loaded from environment variables with sensible defaults;
anything a run plan sets explicitly takes precedence over these.
"""

import os


class Config:
    """Base configuration with default settings."""

    BASE_URL: str = os.environ.get("LOADRIG_BASE_URL", "http://localhost:80/api/v1")

    # Seconds a single HTTP call may take before it is reported as status 0
    REQUEST_TIMEOUT: float = float(os.environ.get("LOADRIG_REQUEST_TIMEOUT", "10"))

    # How often the engine reconciles running workers with the stage table
    TICK_INTERVAL: float = float(os.environ.get("LOADRIG_TICK_INTERVAL", "0.1"))

    # Grace period for in-flight calls after the deadline
    GRACEFUL_STOP: float = float(os.environ.get("LOADRIG_GRACEFUL_STOP", "30"))

    SAMPLE_BUFFER: int = int(os.environ.get("LOADRIG_SAMPLE_BUFFER", "10000"))
    THRESHOLD_CHECK_INTERVAL: float = float(
        os.environ.get("LOADRIG_THRESHOLD_CHECK_INTERVAL", "2")
    )
    SETUP_CONCURRENCY: int = int(os.environ.get("LOADRIG_SETUP_CONCURRENCY", "1"))
    LOG_LEVEL: str = os.environ.get("LOADRIG_LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    LOG_LEVEL: str = os.environ.get("LOADRIG_LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    """Testing environment configuration."""

    BASE_URL: str = os.environ.get("TEST_LOADRIG_BASE_URL", "http://target.test/api/v1")

    # Short intervals keep engine tests fast
    TICK_INTERVAL: float = 0.01
    GRACEFUL_STOP: float = 1.0
    THRESHOLD_CHECK_INTERVAL: float = 0.05
    REQUEST_TIMEOUT: float = 1.0


class CIConfig(Config):
    """CI pipeline configuration."""

    GRACEFUL_STOP: float = float(os.environ.get("LOADRIG_GRACEFUL_STOP", "10"))
    LOG_LEVEL: str = os.environ.get("LOADRIG_LOG_LEVEL", "WARNING")


# Configuration mapping for easy access
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "ci": CIConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Get the configuration class for the specified environment.

    Args:
        env: Environment name (development, testing, ci).
             If None, uses the LOADRIG_ENV environment variable.

    Returns:
        Configuration class for the specified environment.
    """
    if env is None:
        env = os.environ.get("LOADRIG_ENV", "development")
    return config.get(env, config["default"])
