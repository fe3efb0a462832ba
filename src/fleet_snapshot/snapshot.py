"""Assembly of the canonical fleet snapshot.

``assemble_snapshot`` is a pure transformation over already-fetched
records. ``SnapshotEngine`` runs one complete pass: fan-out fetch,
driver-ID resolution, then assembly.
"""

import time
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from fleet_snapshot.classifier import classify_status, describe_status
from fleet_snapshot.fetcher import FetchBundle, MultiTenantFetcher
from fleet_snapshot.geo import extract_coordinates
from fleet_snapshot.identity import GpsIndex, StatusIndex, deduplicate_inventory, index_shifts
from fleet_snapshot.logging import get_logger, pass_context
from fleet_snapshot.metrics import record_pass
from fleet_snapshot.models import (
    SNAPSHOT_KINDS,
    ClassifierConfig,
    ConstraintKind,
    FleetFileConfig,
    GeoBounds,
    ResourceKind,
    StatusColor,
)
from fleet_snapshot.records import (
    CanonicalVehicle,
    GpsRecord,
    ShiftRecord,
    ShiftStats,
    StatusRecord,
    VehicleInventoryRecord,
)
from fleet_snapshot.resolver import ConstraintResolver, ResolvedIdentity
from fleet_snapshot.roster import RosterStore

logger = get_logger(__name__)

NO_INVENTORY = "no_inventory"


@dataclass
class SnapshotResult:
    """Outcome of one aggregation pass."""

    success: bool
    vehicles: list[CanonicalVehicle] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    error: str | None = None
    tenants: dict[str, dict[str, list[str]]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Serialize for JSON responses (camelCase keys)."""
        return {
            "success": self.success,
            "error": self.error,
            "generatedAt": self.generated_at.isoformat(),
            "count": len(self.vehicles),
            "tenants": self.tenants,
            "vehicles": [v.model_dump(mode="json", by_alias=True) for v in self.vehicles],
        }


def _as_utc(value: datetime) -> datetime:
    # Upstream timestamps without an offset are UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def shift_duration_hours(started: datetime | None, now: datetime) -> float | None:
    """Hours since the shift started, rounded to one decimal."""
    if started is None:
        return None
    elapsed = _as_utc(now) - _as_utc(started)
    return round(max(elapsed.total_seconds(), 0.0) / 3600, 1)


def _vehicle_name(vehicle: VehicleInventoryRecord) -> str:
    name = f"{vehicle.make or ''} {vehicle.model or ''}".strip()
    return name or f"Vehicle {vehicle.callsign}"


def assemble_snapshot(
    inventory: list[VehicleInventoryRecord],
    statuses: list[StatusRecord],
    positions: list[GpsRecord],
    shifts: list[ShiftRecord],
    roster: RosterStore,
    now: datetime,
    bounds: GeoBounds | None = None,
    classifier: ClassifierConfig | None = None,
    excluded_callsigns: frozenset[str] = frozenset(),
    drivers: Mapping[int, ResolvedIdentity] | None = None,
) -> list[CanonicalVehicle]:
    """Merge fetched records into canonical vehicles.

    A vehicle is reported only if it survives de-duplication, is not
    excluded, has a live shift and passes the roster policy.

    Args:
        inventory: Inventory records from every tenant.
        statuses: Status records from every tenant.
        positions: GPS records from every tenant.
        shifts: Live shift records from every tenant.
        roster: Current roster and its filtering mode.
        now: Reference time for shift durations.
        bounds: Envelope for valid GPS fixes.
        classifier: Status colour configuration.
        excluded_callsigns: Vehicles never reported.
        drivers: Pre-resolved driver constraint IDs for shifts without a callsign.

    Returns:
        Canonical vehicles sorted by callsign.
    """
    bounds = bounds or GeoBounds()
    classifier = classifier or ClassifierConfig()
    drivers = drivers or {}

    merged = deduplicate_inventory(inventory)
    status_index = StatusIndex.build(statuses)
    gps_index = GpsIndex.build(positions)
    shift_index = index_shifts(shifts)

    vehicles: list[CanonicalVehicle] = []
    skipped: Counter[str] = Counter()

    for callsign, vehicle in merged.items():
        if callsign in excluded_callsigns:
            skipped["excluded"] += 1
            continue

        shift = shift_index.get(callsign)
        if shift is None:
            skipped["no_shift"] += 1
            continue

        match = roster.authorize(callsign)
        if not match.authorized:
            skipped["not_authorized"] += 1
            continue

        status = status_index.find(vehicle)
        driver_callsign = shift.driver_callsign or ""
        driver_name = shift.driver_name or ""
        if not driver_callsign and shift.driver_internal_id is not None:
            resolved = drivers.get(shift.driver_internal_id)
            if resolved is not None:
                driver_callsign = resolved.callsign
                driver_name = driver_name or resolved.full_name or ""
        if match.entry is not None and not driver_name:
            if not driver_callsign or driver_callsign == match.entry.driver_callsign:
                driver_name = match.entry.driver_name

        vehicles.append(
            CanonicalVehicle(
                callsign=callsign,
                internal_id=vehicle.id,
                tenant_id=vehicle.tenant_id,
                make=vehicle.make,
                model=vehicle.model,
                registration=vehicle.registration,
                vehicle_name=_vehicle_name(vehicle),
                status_color=classify_status(status, classifier),
                status_type=status.vehicle_status_type if status else None,
                readable_status=describe_status(status),
                at_pickup=status.at_pickup if status else False,
                dispatch_in_progress=status.dispatch_in_progress if status else False,
                has_prebookings=status.has_prebookings if status else False,
                coordinates=extract_coordinates(gps_index.find(vehicle), bounds),
                driver_name=driver_name,
                driver_callsign=driver_callsign,
                company=match.entry.company if match.entry else None,
                driver_recently_logged_on=(
                    match.entry.logged_on_since(now) if match.entry else None
                ),
                queue_position=status.queue_position if status else None,
                zone_id=status.zone_id if status else None,
                zone_name=status.zone_name if status else None,
                time_entered_zone=status.time_entered_zone if status else None,
                shift_id=shift.id,
                shift_started=shift.started,
                shift_stats=ShiftStats(
                    cash_bookings=shift.cash_bookings,
                    account_bookings=shift.account_bookings,
                    rank_jobs=shift.rank_jobs,
                ),
                shift_duration_hours=shift_duration_hours(shift.started, now),
            )
        )

    vehicles.sort(key=lambda v: (len(v.callsign), v.callsign))
    logger.info(
        "snapshot_assembled",
        candidates=len(merged),
        vehicles=len(vehicles),
        roster_mode=roster.mode.value,
        **{f"skipped_{reason}": count for reason, count in skipped.items()},
    )
    return vehicles


def count_colors(vehicles: list[CanonicalVehicle]) -> dict[str, int]:
    counts = {color.value: 0 for color in StatusColor}
    for vehicle in vehicles:
        counts[vehicle.status_color.value] += 1
    return counts


class SnapshotEngine:
    """Runs aggregation passes over every configured tenant."""

    def __init__(
        self,
        config: FleetFileConfig,
        fetcher: MultiTenantFetcher,
        resolver: ConstraintResolver,
        roster: RosterStore,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Parsed fleet configuration.
            fetcher: Fan-out fetcher for the configured tenants.
            resolver: Constraint resolver for driver IDs.
            roster: Roster store consulted for authorization.
        """
        self.config = config
        self.fetcher = fetcher
        self.resolver = resolver
        self.roster = roster

    async def _resolve_shift_drivers(
        self,
        shifts: list[ShiftRecord],
        timeout: float | None,
    ) -> dict[int, ResolvedIdentity]:
        driver_ids = [
            shift.driver_internal_id
            for shift in shifts
            if not shift.driver_callsign and shift.driver_internal_id is not None
        ]
        if not driver_ids:
            return {}
        return await self.resolver.resolve_many(
            ConstraintKind.DRIVER,
            driver_ids,
            timeout=timeout,
        )

    async def run_pass(
        self,
        trigger: str = "manual",
        now: datetime | None = None,
    ) -> SnapshotResult:
        """Run one aggregation pass.

        Args:
            trigger: What started the pass, for logs.
            now: Reference time (defaults to the current time).

        Returns:
            A successful SnapshotResult, or a failed one with no vehicles
            when no tenant returned inventory.
        """
        with pass_context(trigger):
            start = time.monotonic()
            bundle = await self.fetcher.fetch_all(
                SNAPSHOT_KINDS,
                deadline=self.config.snapshot.pass_deadline_seconds,
            )
            tenants = self._tenant_outcomes(bundle)

            if not bundle.tenants_succeeded(ResourceKind.INVENTORY):
                record_pass(False, time.monotonic() - start)
                logger.error(
                    "pass_failed",
                    reason=NO_INVENTORY,
                    failed_tenants=sorted(bundle.failed.get(ResourceKind.INVENTORY, {})),
                )
                return SnapshotResult(success=False, error=NO_INVENTORY, tenants=tenants)

            shifts = bundle.get(ResourceKind.SHIFTS)
            # Driver lookups share whatever remains of the pass deadline
            remaining = self.config.snapshot.pass_deadline_seconds - (time.monotonic() - start)
            drivers = await self._resolve_shift_drivers(shifts, timeout=max(remaining, 0.0))

            now = now or datetime.now(UTC)
            vehicles = assemble_snapshot(
                inventory=bundle.get(ResourceKind.INVENTORY),
                statuses=bundle.get(ResourceKind.STATUS),
                positions=bundle.get(ResourceKind.GPS),
                shifts=shifts,
                roster=self.roster,
                now=now,
                bounds=self.config.geo_bounds,
                classifier=self.config.classifier,
                excluded_callsigns=self.config.snapshot.excluded_callsigns,
                drivers=drivers,
            )

            duration = time.monotonic() - start
            colors = count_colors(vehicles)
            record_pass(True, duration, colors)
            logger.info(
                "pass_completed",
                vehicles=len(vehicles),
                duration_seconds=round(duration, 3),
                **colors,
            )
            return SnapshotResult(
                success=True,
                vehicles=vehicles,
                generated_at=now,
                tenants=tenants,
            )

    def _tenant_outcomes(self, bundle: FetchBundle) -> dict[str, dict[str, list[str]]]:
        return {
            kind.value: {
                "succeeded": list(bundle.tenants_succeeded(kind)),
                "failed": sorted(bundle.failed.get(kind, {})),
            }
            for kind in SNAPSHOT_KINDS
        }
