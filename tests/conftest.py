"""Shared pytest fixtures for fleet snapshot tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeAlias

import httpx
import pytest

from fleet_snapshot.models import TenantConfig, UpstreamConfig

BASE_URL = "https://dispatch.example.com"
INVENTORY_URL = f"{BASE_URL}/vehicle/v1/vehicles"
STATUS_URL = f"{BASE_URL}/vehicle/v1/vehiclestatuses"
GPS_URL = f"{BASE_URL}/vehicle/v1/vehiclegpsposition"
SHIFTS_URL = f"{BASE_URL}/driver/v1/driverliveshifts"
DRIVERS_URL = f"{BASE_URL}/driver/v1/drivers"


@pytest.fixture
def upstream() -> UpstreamConfig:
    """Upstream config pointing at the test host with fast retries."""
    return UpstreamConfig(
        base_url=BASE_URL,
        timeout_seconds=2,
        retry={"max_attempts": 2, "backoff_base": 0.1, "backoff_max": 1.0},
    )


@pytest.fixture
def tenants() -> list[TenantConfig]:
    """Three tenants, as in a typical multi-company fleet."""
    return [
        TenantConfig(id="1", name="Canterbury"),
        TenantConfig(id="2", name="Ashford"),
        TenantConfig(id="4", name="Whitstable"),
    ]


def vehicle_payload(
    vehicle_id: int,
    callsign: str | int,
    **overrides: Any,
) -> dict[str, Any]:
    """Build a vehicle inventory item as the upstream API returns it."""
    payload: dict[str, Any] = {
        "id": vehicle_id,
        "callsign": callsign,
        "make": "Toyota",
        "model": "Prius",
        "registration": f"AB{vehicle_id:02d} CDE",
        "isActive": True,
        "isSuspended": False,
    }
    payload.update(overrides)
    return payload


def status_payload(vehicle_id: int, status_type: str = "Clear", **overrides: Any) -> dict[str, Any]:
    """Build a vehicle status item."""
    payload: dict[str, Any] = {
        "vehicleId": vehicle_id,
        "vehicleStatusType": status_type,
        "atPickup": False,
        "dispatchInProgress": False,
        "hasPrebookings": False,
        "inDestinationMode": False,
        "penalty": None,
        "isSoonToClear": False,
        "destinationModeTimeRemaining": None,
        "queuePosition": None,
        "zoneId": None,
    }
    payload.update(overrides)
    return payload


def gps_payload(
    vehicle_id: int,
    latitude: float = 51.2802,
    longitude: float = 1.0789,
    is_empty: bool = False,
) -> dict[str, Any]:
    """Build a GPS item with the nested location object."""
    return {
        "id": vehicle_id,
        "location": {"latitude": latitude, "longitude": longitude, "isEmpty": is_empty},
    }


def shift_payload(
    vehicle_callsign: str,
    driver_callsign: str | None = "900",
    full_name: str | None = "Test Driver",
    started: str = "2026-10-16T06:00:00Z",
    **overrides: Any,
) -> dict[str, Any]:
    """Build a live shift item."""
    payload: dict[str, Any] = {
        "id": 5000 + len(vehicle_callsign),
        "driverCallsign": driver_callsign,
        "driver": {"id": 7000, "fullName": full_name},
        "vehicleCallsign": vehicle_callsign,
        "started": started,
        "cashBookings": 3,
        "accountBookings": 2,
        "rankJobs": 1,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def sample_fleet_yaml() -> str:
    """Return sample fleet.yaml content."""
    return f"""
upstream:
  base_url: {BASE_URL}
  timeout_seconds: 5
  retry:
    max_attempts: 3
    backoff_base: 0.5
    backoff_max: 2.0

tenants:
  - id: "1"
    name: Canterbury
  - id: "2"
  - id: "4"

classifier:
  meter_off_at_pickup: red

constraints:
  mapping_path: constraint-mapping.json
  lookup_timeout_seconds: 2
  overrides:
    driver:
      "207": "180"

roster:
  path: roster.csv
  companies:
    - Canterbury
  strict: true

snapshot:
  pass_deadline_seconds: 15
  excluded_callsigns: ["226", "404"]
"""


@pytest.fixture
def sample_fleet_file(tmp_path: Path, sample_fleet_yaml: str) -> Path:
    """Create a temporary fleet.yaml file."""
    fleet_file = tmp_path / "fleet.yaml"
    fleet_file.write_text(sample_fleet_yaml)
    return fleet_file


@pytest.fixture
def roster_csv(tmp_path: Path) -> Path:
    """Create a roster export with a BOM, quoted cells and a duplicate vehicle."""
    content = (
        "\ufeffDriver Callsign,Driver Name,Company,Vehicle Callsign,Last Log On\n"
        '"900","Alice Driver","Canterbury","301","14/10/2026, 08:15"\n'
        '"901","Bob Driver","Canterbury","08","16/10/2026, 06:30"\n'
        '"902","Carol Driver","Canterbury","55","01/10/2026, 10:00"\n'
        '"903","Dan Driver","Canterbury","55","02/10/2026, 10:00"\n'
        '"904","Eve Driver","Elsewhere Cars","77","16/10/2026, 07:00"\n'
    )
    path = tmp_path / "roster.csv"
    path.write_text(content, encoding="utf-8")
    return path


TenantOutcome: TypeAlias = list[dict[str, Any]] | int | Exception


def per_tenant(outcomes: dict[str, TenantOutcome]) -> Callable[[httpx.Request], httpx.Response]:
    """Build a respx side effect answering by the companyId header.

    A list is returned as a 200 JSON body, an int as an empty response with
    that status, and an exception is raised. Unlisted tenants get 404.
    """

    def side_effect(request: httpx.Request) -> httpx.Response:
        outcome = outcomes.get(request.headers.get("companyId", ""), 404)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome)
        return httpx.Response(200, json=outcome)

    return side_effect
