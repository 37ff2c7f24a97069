"""
Command line entry point.

Usage examples::

    # Run a plan file against the base URL it names
    loadrig run --plan plans/mixed.yml

    # Run a bundled suite with its own stages and thresholds
    loadrig run --suite chargers --base-url http://localhost:80/api/v1

    # Gate a finished Locust run on k6-style thresholds
    loadrig check --stats results_stats.csv --thresholds plans/mixed.yml

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "script crashed":

- ``0``: all thresholds passed
- ``1``: at least one threshold was breached
- ``2``: the run could not be carried out (bad plan, setup failure,
  unreadable stats file)
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Sequence

import gevent
import yaml

from loadrig.config import get_config
from loadrig.errors import LoadrigError
from loadrig.locust_support import load_locust_stats
from loadrig.plan import RunPlan, load_plan
from loadrig.report import (
    EXIT_PASS,
    EXIT_SCRIPT_ERROR,
    EXIT_THRESHOLD_BREACH,
    print_summary,
    print_thresholds,
)
from loadrig.runner import LoadRun
from loadrig.scenarios import get_suite, suite_names
from loadrig.thresholds import evaluate, thresholds_from_mapping

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loadrig",
        description="Drive an HTTP service with virtual users and gate on thresholds.",
    )
    parser.add_argument(
        "--env",
        choices=("development", "testing", "ci"),
        default=None,
        help="Configuration environment (defaults to LOADRIG_ENV)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Execute a load run")
    source = run.add_mutually_exclusive_group(required=True)
    source.add_argument("--plan", type=Path, help="Path to a YAML run plan")
    source.add_argument("--suite", choices=suite_names(), help="Run a bundled suite as-is")
    run.add_argument("--base-url", help="Override the target base URL")
    run.add_argument("--iterations", type=int, help="Stop after this many iterations")
    run.add_argument("--seed", type=int, help="Seed for scenario selection")

    check = commands.add_parser("check", help="Check a Locust stats CSV against thresholds")
    check.add_argument("--stats", required=True, type=Path, help="Path to Locust *_stats.csv file")
    check.add_argument(
        "--thresholds",
        required=True,
        type=Path,
        help="YAML with a 'thresholds' mapping (a run plan works too)",
    )

    commands.add_parser("suites", help="List bundled suites")
    return parser


def _plan_from_args(args: argparse.Namespace) -> RunPlan:
    plan = load_plan(args.plan) if args.plan else RunPlan(suite=args.suite)
    if args.base_url:
        plan.base_url = args.base_url
    if args.iterations is not None:
        plan.iterations = args.iterations
    if args.seed is not None:
        plan.seed = args.seed
    return plan


def cmd_run(args: argparse.Namespace) -> int:
    settings = get_config(args.env)
    run = LoadRun.from_plan(_plan_from_args(args), settings=settings)

    # Ctrl-C stops the virtual users but still tears fixtures down
    gevent.signal_handler(signal.SIGINT, run.abort)

    result = run.run()
    print_summary(result)
    return result.exit_code


def _load_threshold_mapping(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise LoadrigError(f"{path} must contain a mapping")
    return data.get("thresholds", data)


def cmd_check(args: argparse.Namespace) -> int:
    thresholds = thresholds_from_mapping(_load_threshold_mapping(args.thresholds))
    report = evaluate(thresholds, load_locust_stats(args.stats))
    print_thresholds(report)
    return EXIT_PASS if report.passed else EXIT_THRESHOLD_BREACH


def cmd_suites(_args: argparse.Namespace) -> int:
    for name in suite_names():
        suite = get_suite(name)
        print(f"{name:<12}{suite.description}")
    return EXIT_PASS


COMMANDS = {
    "run": cmd_run,
    "check": cmd_check,
    "suites": cmd_suites,
}


def main(argv: Sequence[str] | None = None) -> int:
    """
    Entry point for the ``loadrig`` console script.

    Returns:
        ``EXIT_PASS`` (0), ``EXIT_THRESHOLD_BREACH`` (1) or
        ``EXIT_SCRIPT_ERROR`` (2).
    """
    args = build_parser().parse_args(argv)

    try:
        return COMMANDS[args.command](args)
    except (LoadrigError, OSError, ValueError, yaml.YAMLError) as exc:
        print(f"loadrig {args.command} failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
