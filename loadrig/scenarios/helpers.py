"""
Payload and response helpers shared by the charging-station suites.

Key Concepts Demonstrated:
- Collision-free identity generation using timestamp + random suffix
- Randomised payloads (Faker) to defeat server-side caching
- Tolerant JSON decoding so error pages fail a check instead of
  raising inside a scenario
"""

from __future__ import annotations

import random
import string
import time
from typing import Any, Sequence, TypeVar

from faker import Faker

from loadrig.transport import Response

T = TypeVar("T")

fake = Faker()

CHARGER_STATUSES = ("AVAILABLE", "BEING_USED", "UNDER_MAINTENANCE")

# Which availability a charger may move to from its current one
STATUS_TRANSITIONS = {
    "AVAILABLE": ("BEING_USED", "UNDER_MAINTENANCE"),
    "BEING_USED": ("AVAILABLE",),
    "UNDER_MAINTENANCE": ("AVAILABLE",),
}

STATION_TEMPLATES = (
    {
        "name": "Madison Square Charging",
        "address": "100 Madison Avenue",
        "latitude": 40.7589,
        "longitude": -73.9851,
    },
    {
        "name": "Brooklyn Heights Station",
        "address": "500 Furman Street",
        "latitude": 40.6892,
        "longitude": -74.0445,
    },
    {
        "name": "JFK Terminal Hub",
        "address": "200 Airport Boulevard",
        "latitude": 40.6413,
        "longitude": -73.7781,
    },
    {
        "name": "Manhattan Plaza",
        "address": "300 West 42nd Street",
        "latitude": 40.7505,
        "longitude": -73.9934,
    },
    {
        "name": "Central Park South",
        "address": "400 Central Park South",
        "latitude": 40.7282,
        "longitude": -74.0776,
    },
)

CHARGER_MODELS = (
    ("Tesla Supercharger V4", 250),
    ("Electrify America 350kW", 350),
    ("ChargePoint Express 250", 62.5),
    ("EVgo Fast 100kW", 100),
    ("Blink DC Fast 50kW", 50),
)


def random_suffix(rng: random.Random | None = None, k: int = 6) -> str:
    rng = rng or random
    return "".join(rng.choices(string.ascii_lowercase + string.digits, k=k))


def pick(rng: random.Random, items: Sequence[T]) -> T | None:
    """Random element of ``items``, or ``None`` when there is nothing to pick."""
    if not items:
        return None
    return items[rng.randrange(len(items))]


def json_list(response: Response) -> list[Any]:
    """Return the decoded body if it is a JSON array, otherwise ``[]``."""
    data = response.json(default=None)
    return data if isinstance(data, list) else []


def json_object(response: Response) -> dict[str, Any]:
    """Return the decoded body if it is a JSON object, otherwise ``{}``."""
    data = response.json(default=None)
    return data if isinstance(data, dict) else {}


def availability(response: Response) -> str:
    """Charger availability from a body such as ``"AVAILABLE"`` (a JSON string)."""
    data = response.json(default=None)
    if isinstance(data, str):
        return data
    return response.text.strip().strip('"')


def unique_user_identity(prefix: str, rng: random.Random | None = None) -> tuple[str, str, str]:
    """
    Generate unique credentials to avoid collisions across runs.

    Returns:
        A ``(username, email, password)`` tuple.
    """
    ts = int(time.time() * 1000)
    username = f"{prefix}_{random_suffix(rng)}_{ts}"
    return username, f"{username}@loadtest.com", "loadtest123"


def driver_registration_payload(rng: random.Random | None = None) -> dict[str, Any]:
    username, email, password = unique_user_identity("driver", rng)
    return {
        "user": {
            "username": username,
            "email": email,
            "password": password,
            "firstName": fake.first_name(),
            "lastName": fake.last_name(),
        },
        "driver": {"driverLicense": f"DL{random_suffix(rng, 8).upper()}"},
    }


def operator_registration_payload(rng: random.Random | None = None) -> dict[str, Any]:
    rng = rng or random.Random()
    username, email, password = unique_user_identity("operator", rng)
    return {
        "user": {
            "username": username,
            "email": email,
            "password": password,
            "firstName": fake.first_name(),
            "lastName": fake.last_name(),
        },
        "operator": {
            "companyName": fake.company(),
            "contactNumber": f"555-{rng.randrange(10000):04d}",
        },
        "stationId": None,
    }


def station_payload(
    rng: random.Random | None = None, template: dict[str, Any] | None = None
) -> dict[str, Any]:
    """
    Build a station-create payload.

    With a template the name gets a unique suffix; without one a
    Faker street address near Manhattan is used.
    """
    rng = rng or random.Random()
    if template is not None:
        return {**template, "name": f"{template['name']} {random_suffix(rng)}"}
    return {
        "name": f"{fake.last_name()} Charging {random_suffix(rng, 4)}",
        "address": fake.street_address(),
        "latitude": round(40.7 + (rng.random() - 0.5) * 0.1, 6),
        "longitude": round(-74.0 + (rng.random() - 0.5) * 0.1, 6),
    }


def charger_payload(rng: random.Random | None = None, model: str | None = None) -> dict[str, Any]:
    rng = rng or random.Random()
    default_model, power = CHARGER_MODELS[rng.randrange(len(CHARGER_MODELS))]
    return {
        "model": model or default_model,
        "powerOutput": power,
        "status": "AVAILABLE",
    }
