"""
Reference suites for the EV charging-station API.

Importing this package registers every bundled suite:

- ``auth``: registration and login storm
- ``stations``: station CRUD, cycled per iteration
- ``chargers``: charger availability reads and status transitions
- ``extreme``: concurrent reads, writes, bursts and stress on a larger network
- ``mixed``: drivers, admins and monitoring in production proportions
"""

from loadrig.scenarios import auth, chargers, extreme, mixed, stations
from loadrig.scenarios.base import Suite, get_suite, register_suite, suite_names

__all__ = [
    "Suite",
    "auth",
    "chargers",
    "extreme",
    "get_suite",
    "mixed",
    "register_suite",
    "stations",
    "suite_names",
]
