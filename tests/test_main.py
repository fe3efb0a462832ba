"""Tests for service wiring in the main module."""

from datetime import UTC, datetime
from pathlib import Path

import httpx
import respx

from fleet_snapshot.__main__ import build_engine
from fleet_snapshot.config import load_fleet_file, resolve_relative_paths
from fleet_snapshot.fetcher import MultiTenantFetcher
from fleet_snapshot.roster import RosterMode

from .conftest import (
    GPS_URL,
    INVENTORY_URL,
    SHIFTS_URL,
    STATUS_URL,
    gps_payload,
    per_tenant,
    shift_payload,
    status_payload,
    vehicle_payload,
)


class TestBuildEngine:
    """Tests for build_engine."""

    async def test_wires_shared_stores(self, sample_fleet_file: Path) -> None:
        """The engine and reloader share one roster store and one resolver."""
        config = load_fleet_file(sample_fleet_file)

        async with httpx.AsyncClient() as client:
            fetcher = MultiTenantFetcher(client, config.upstream, config.tenants)
            engine, reloader = build_engine(config, fetcher)

        assert engine.roster is reloader.roster
        assert engine.resolver is reloader.resolver
        assert engine.resolver.fetcher is fetcher
        assert engine.roster.mode == RosterMode.PERMISSIVE

    @respx.mock
    async def test_end_to_end_pass(
        self,
        sample_fleet_file: Path,
        roster_csv: Path,
    ) -> None:
        """Load config and roster from disk, then run one pass across three tenants."""
        config = resolve_relative_paths(
            load_fleet_file(sample_fleet_file),
            sample_fleet_file.parent,
        )

        respx.get(INVENTORY_URL).mock(
            side_effect=per_tenant(
                {
                    # 301 is published by two tenants; tenant 2 holds the larger ID
                    "1": [vehicle_payload(10, "301"), vehicle_payload(11, "226")],
                    "2": [vehicle_payload(42, "301"), vehicle_payload(8, 8)],
                    "4": [vehicle_payload(99, "77")],
                }
            )
        )
        respx.get(STATUS_URL).mock(
            side_effect=per_tenant(
                {
                    "1": [status_payload(10, "Clear")],
                    "2": [
                        status_payload(42, "BusyMeterOnFromMeterOffCash"),
                        status_payload(8, "BusyMeterOff", atPickup=True),
                    ],
                    "4": [],
                }
            )
        )
        respx.get(GPS_URL).mock(
            side_effect=per_tenant({"1": [], "2": [gps_payload(42), gps_payload(8, 0, 0)], "4": []})
        )
        respx.get(SHIFTS_URL).mock(
            side_effect=per_tenant(
                {
                    "1": [shift_payload("226"), shift_payload("77")],
                    "2": [shift_payload("301", "900"), shift_payload("8", "901")],
                    "4": [],
                }
            )
        )

        async with httpx.AsyncClient() as client:
            fetcher = MultiTenantFetcher(client, config.upstream, config.tenants)
            engine, reloader = build_engine(config, fetcher)
            outcome = reloader.reload_all()
            result = await engine.run_pass(now=datetime(2026, 10, 16, 12, 0, tzinfo=UTC))

        # The mapping artifact does not exist in the temp directory
        assert outcome == {"roster": "ok", "constraints": "FileNotFoundError"}
        assert engine.roster.mode == RosterMode.STRICT

        assert result.success is True
        by_callsign = {v.callsign: v for v in result.vehicles}
        # 226 is excluded and 77 belongs to a company outside the allow-list
        assert list(by_callsign) == ["8", "301"]

        busy = by_callsign["301"]
        assert busy.internal_id == 42
        assert busy.status_color.value == "red"
        assert busy.coordinates is not None
        assert busy.company == "Canterbury"
        # Roster logon 14/10 08:15 is more than a day before the pass
        assert busy.driver_recently_logged_on is False
        assert by_callsign["8"].driver_recently_logged_on is True
        assert busy.shift_duration_hours == 6.0

        # Configured to treat meter-off at pickup as busy
        pickup = by_callsign["8"]
        assert pickup.status_color.value == "red"
        assert pickup.readable_status == "Going to Client"
        assert pickup.coordinates is None
