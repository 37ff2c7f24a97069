# ruff: noqa: E402
"""
Locust entrypoint for the bundled suites.

Runs one loadrig suite under Locust's own runner.  ``LOADRIG_PLAN``
names a run plan whose suite and stages are used; otherwise the suite
is picked with ``LOADRIG_SUITE`` (default ``mixed``) and runs with its
own stage table.  The stages drive the user count through
:class:`~loadrig.locust_support.StageLoadShape`.

Usage examples::

    # Mixed workflow with the web UI
    locust -f locustfile.py --host http://localhost:80/api/v1

    # Headless charger run with CSV output, gated afterwards
    LOADRIG_SUITE=chargers locust -f locustfile.py --headless \\
        --host http://localhost:80/api/v1 --csv results
    loadrig check --stats results_stats.csv --thresholds plans/chargers.yml

    # Suite and stages taken from a plan file
    LOADRIG_PLAN=plans/smoke.yml locust -f locustfile.py --headless \\
        --host http://localhost:80/api/v1

Key Concepts Demonstrated:
- ``events.test_start`` / ``events.test_stop`` hooks for one-time
  fixture setup and teardown
- Quitting the runner when setup fails instead of loading a broken
  target
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from locust import events

# Locust may be invoked from any directory; make the package importable
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from loadrig.locust_support import StageLoadShape, SuiteUser
from loadrig.plan import load_plan
from loadrig.scenarios import get_suite
from loadrig.stages import StageSchedule

if os.environ.get("LOADRIG_PLAN"):
    PLAN = load_plan(os.environ["LOADRIG_PLAN"])
    SUITE = get_suite(PLAN.suite)
    STAGES = PLAN.stages if PLAN.stages is not None else SUITE.stages
else:
    SUITE = get_suite(os.environ.get("LOADRIG_SUITE", "mixed"))
    STAGES = SUITE.stages


class LoadrigSuiteUser(SuiteUser):
    suite = SUITE


class SuiteStages(StageLoadShape):
    schedule = StageSchedule(STAGES)


@events.test_start.add_listener
def _setup_fixtures(environment, **_kwargs):
    """Create the suite's shared fixtures once per test run."""
    if not LoadrigSuiteUser.start_fixtures(environment.host):
        environment.process_exit_code = 2
        if environment.runner is not None:
            environment.runner.quit()


@events.test_stop.add_listener
def _teardown_fixtures(environment, **_kwargs):
    """Delete the fixtures and gate the run on the suite thresholds."""
    report = LoadrigSuiteUser.stop_fixtures()
    if report is not None and not report.passed and not environment.process_exit_code:
        environment.process_exit_code = 1
