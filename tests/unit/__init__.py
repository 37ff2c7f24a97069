"""Unit tests: schedules, metrics, dispatch, thresholds and friends."""
