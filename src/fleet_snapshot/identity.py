"""Cross-tenant identity correlation and de-duplication.

Internal vehicle IDs are tenant-scoped and collide across tenants, so the
external callsign is the correlation key for the merged inventory. Status
and GPS records are attached to an inventory record by (tenant, internal
ID) first and by callsign second.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TypeAlias

from fleet_snapshot.logging import get_logger
from fleet_snapshot.records import GpsRecord, ShiftRecord, StatusRecord, VehicleInventoryRecord

logger = get_logger(__name__)


def is_eligible(record: VehicleInventoryRecord) -> bool:
    """Check whether an inventory record may appear in a snapshot."""
    return bool(record.callsign) and record.is_active and not record.is_suspended


def deduplicate_inventory(
    records: Iterable[VehicleInventoryRecord],
) -> dict[str, VehicleInventoryRecord]:
    """Merge inventory from all tenants into one record per callsign.

    Inactive, suspended and callsign-less records are dropped. When two
    records share a callsign the one with the larger internal ID is kept,
    so the result does not depend on input order.

    Args:
        records: Concatenated inventory records from every tenant.

    Returns:
        Mapping of callsign to the retained inventory record.
    """
    merged: dict[str, VehicleInventoryRecord] = {}
    total = 0
    collisions = 0

    for record in records:
        total += 1
        if not is_eligible(record):
            continue

        callsign = record.callsign or ""
        current = merged.get(callsign)
        if current is None:
            merged[callsign] = record
            continue

        collisions += 1
        if record.id > current.id:
            merged[callsign] = record

    logger.debug(
        "inventory_deduplicated",
        total=total,
        unique=len(merged),
        collisions=collisions,
    )
    return merged


VehicleKey: TypeAlias = tuple[str | None, int]


@dataclass(frozen=True)
class StatusIndex:
    """Lookup of status records by (tenant, vehicle ID) and by callsign."""

    by_vehicle: dict[VehicleKey, StatusRecord] = field(default_factory=dict)
    by_callsign: dict[str, StatusRecord] = field(default_factory=dict)

    @classmethod
    def build(cls, statuses: Iterable[StatusRecord]) -> "StatusIndex":
        by_vehicle: dict[VehicleKey, StatusRecord] = {}
        by_callsign: dict[str, StatusRecord] = {}
        for status in statuses:
            if status.internal_id is not None:
                by_vehicle.setdefault((status.tenant_id, status.internal_id), status)
            if status.callsign:
                by_callsign.setdefault(status.callsign, status)
        return cls(by_vehicle=by_vehicle, by_callsign=by_callsign)

    def find(self, vehicle: VehicleInventoryRecord) -> StatusRecord | None:
        """Find the status record for an inventory record."""
        status = self.by_vehicle.get((vehicle.tenant_id, vehicle.id))
        if status is None and vehicle.callsign:
            status = self.by_callsign.get(vehicle.callsign)
        return status


@dataclass(frozen=True)
class GpsIndex:
    """Lookup of GPS records by (tenant, vehicle ID)."""

    by_vehicle: dict[VehicleKey, GpsRecord] = field(default_factory=dict)

    @classmethod
    def build(cls, positions: Iterable[GpsRecord]) -> "GpsIndex":
        by_vehicle: dict[VehicleKey, GpsRecord] = {}
        for gps in positions:
            if gps.internal_id is not None:
                by_vehicle.setdefault((gps.tenant_id, gps.internal_id), gps)
        return cls(by_vehicle=by_vehicle)

    def find(self, vehicle: VehicleInventoryRecord) -> GpsRecord | None:
        return self.by_vehicle.get((vehicle.tenant_id, vehicle.id))


def index_shifts(shifts: Iterable[ShiftRecord]) -> dict[str, ShiftRecord]:
    """Index live shifts by vehicle callsign.

    When several shifts claim the same vehicle, the most recently started
    one is kept; shifts without a start time lose to those with one.
    """
    index: dict[str, ShiftRecord] = {}
    for shift in shifts:
        callsign = shift.vehicle_callsign
        if not callsign:
            continue
        current = index.get(callsign)
        if current is None:
            index[callsign] = shift
            continue

        kept, dropped = (
            (shift, current) if _started_key(shift) > _started_key(current) else (current, shift)
        )
        logger.info(
            "shift_duplicate_vehicle",
            vehicle_callsign=callsign,
            kept_driver=kept.driver_callsign,
            dropped_driver=dropped.driver_callsign,
        )
        index[callsign] = kept
    return index


def _started_key(shift: ShiftRecord) -> float:
    return shift.started.timestamp() if shift.started is not None else float("-inf")
