"""
Test suite for loadrig.

This package contains:
- unit/: pure component tests (schedules, metrics, dispatch, thresholds,
  fixtures, transport, plans, Locust helpers)
- integration/: engine and full-run tests against an in-process fake
  charging-station API
"""
