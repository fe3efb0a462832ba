"""Resolution of opaque constraint IDs to callsigns and names.

Lookup order:

1. The reverse-mapping table, loaded from a JSON artifact produced
   out-of-band (see scripts/build_constraint_mapping.py).
2. Hand-confirmed overrides from configuration.
3. The live drivers/vehicles list of each tenant in turn, stopping at the
   first tenant that knows the ID.

A miss everywhere yields None ("unresolved"); callers must render a
placeholder rather than guess.
"""

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fleet_snapshot.fetcher import MultiTenantFetcher
from fleet_snapshot.logging import get_logger
from fleet_snapshot.metrics import record_constraint_resolution, set_constraint_table_entries
from fleet_snapshot.models import ConstraintConfig, ConstraintKind, ResourceKind, RetryConfig
from fleet_snapshot.records import DriverListEntry, VehicleInventoryRecord

logger = get_logger(__name__)

# Live fallback makes a single attempt per tenant
_LIVE_LOOKUP_RETRY = RetryConfig(max_attempts=1)


class _MappingModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DriverMapping(_MappingModel):
    constraint_id: int | None = None
    callsign: str
    full_name: str | None = None
    active: bool = True


class VehicleMapping(_MappingModel):
    constraint_id: int | None = None
    callsign: str
    registration: str | None = None
    active: bool = True


class ConstraintMappingFile(_MappingModel):
    """On-disk format of the reverse-mapping artifact."""

    generated: datetime | None = None
    drivers: dict[int, DriverMapping] = Field(default_factory=dict)
    vehicles: dict[int, VehicleMapping] = Field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedIdentity:
    """Externally visible identity behind a constraint ID."""

    kind: ConstraintKind
    constraint_id: int
    callsign: str
    full_name: str | None = None
    registration: str | None = None
    source: str = "table"


@dataclass(frozen=True)
class ConstraintTable:
    """Immutable generation of the reverse-mapping table."""

    drivers: Mapping[int, ResolvedIdentity]
    vehicles: Mapping[int, ResolvedIdentity]
    generated: datetime | None = None

    @classmethod
    def empty(cls) -> "ConstraintTable":
        return cls(drivers=MappingProxyType({}), vehicles=MappingProxyType({}))

    @classmethod
    def from_file_model(cls, data: ConstraintMappingFile) -> "ConstraintTable":
        drivers = {
            cid: ResolvedIdentity(
                kind=ConstraintKind.DRIVER,
                constraint_id=cid,
                callsign=entry.callsign,
                full_name=entry.full_name,
            )
            for cid, entry in data.drivers.items()
        }
        vehicles = {
            cid: ResolvedIdentity(
                kind=ConstraintKind.VEHICLE,
                constraint_id=cid,
                callsign=entry.callsign,
                registration=entry.registration,
            )
            for cid, entry in data.vehicles.items()
        }
        return cls(
            drivers=MappingProxyType(drivers),
            vehicles=MappingProxyType(vehicles),
            generated=data.generated,
        )

    def lookup(self, kind: ConstraintKind, constraint_id: int) -> ResolvedIdentity | None:
        table = self.drivers if kind is ConstraintKind.DRIVER else self.vehicles
        return table.get(constraint_id)

    def __len__(self) -> int:
        return len(self.drivers) + len(self.vehicles)


def load_constraint_table(path: Path) -> ConstraintTable:
    """Load the reverse-mapping artifact.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If the file is not a valid mapping.
    """
    data = ConstraintMappingFile.model_validate_json(path.read_text(encoding="utf-8"))
    return ConstraintTable.from_file_model(data)


def build_mapping_file(
    drivers: Iterable[DriverListEntry],
    vehicles: Iterable[VehicleInventoryRecord],
    generated: datetime | None = None,
) -> ConstraintMappingFile:
    """Build the reverse-mapping artifact from full tenant dumps.

    Inactive drivers and entries without a callsign are omitted. When an
    ID appears in several tenants the first occurrence is kept.
    """
    driver_map: dict[int, DriverMapping] = {}
    for driver in drivers:
        if not driver.callsign or not driver.active or driver.id in driver_map:
            continue
        driver_map[driver.id] = DriverMapping(
            constraint_id=driver.id,
            callsign=driver.callsign,
            full_name=driver.full_name,
            active=driver.active,
        )

    vehicle_map: dict[int, VehicleMapping] = {}
    for vehicle in vehicles:
        if not vehicle.callsign or vehicle.id in vehicle_map:
            continue
        vehicle_map[vehicle.id] = VehicleMapping(
            constraint_id=vehicle.id,
            callsign=vehicle.callsign,
            registration=vehicle.registration,
            active=vehicle.is_active,
        )

    return ConstraintMappingFile(
        generated=generated or datetime.now(UTC),
        drivers=driver_map,
        vehicles=vehicle_map,
    )


def write_mapping_file(data: ConstraintMappingFile, path: Path) -> None:
    """Write the artifact via a temporary file so readers never see a partial file."""
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(data.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    tmp_path.replace(path)


class ConstraintResolver:
    """Resolves constraint IDs using the cached table, overrides and live lists."""

    def __init__(
        self,
        config: ConstraintConfig,
        fetcher: MultiTenantFetcher | None = None,
        table: ConstraintTable | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            config: Mapping path, overrides and live lookup timeout.
            fetcher: Fetcher used for the live fallback (None disables it).
            table: Initial table generation (defaults to empty).
        """
        self.config = config
        self.fetcher = fetcher
        self._table = table or ConstraintTable.empty()

    @property
    def table(self) -> ConstraintTable:
        """The current table generation."""
        return self._table

    def swap(self, table: ConstraintTable) -> None:
        """Publish a new table generation."""
        self._table = table
        set_constraint_table_entries(len(table.drivers), len(table.vehicles))

    def reload(self) -> ConstraintTable:
        """Reload the table from the configured path and publish it.

        The previous generation stays in place if loading fails.

        Raises:
            FileNotFoundError: If the artifact is missing.
            pydantic.ValidationError: If the artifact is invalid.
        """
        if not self.config.mapping_path:
            return self._table
        table = load_constraint_table(Path(self.config.mapping_path))
        self.swap(table)
        logger.info(
            "constraint_table_loaded",
            path=self.config.mapping_path,
            drivers=len(table.drivers),
            vehicles=len(table.vehicles),
            generated=table.generated.isoformat() if table.generated else None,
        )
        return table

    def resolve_cached(
        self,
        kind: ConstraintKind,
        constraint_id: int,
    ) -> ResolvedIdentity | None:
        """Resolve without network access (table, then overrides)."""
        # Bind once so the whole lookup sees a single generation
        table = self._table
        identity = table.lookup(kind, constraint_id)
        if identity is not None:
            record_constraint_resolution(kind.value, "table")
            return identity

        override = self.config.overrides.get(kind, constraint_id)
        if override is not None:
            record_constraint_resolution(kind.value, "override")
            # Overrides carry no name; borrow it from the table if the callsign is known
            full_name = None
            if kind is ConstraintKind.DRIVER:
                full_name = next(
                    (d.full_name for d in table.drivers.values() if d.callsign == override),
                    None,
                )
            return ResolvedIdentity(
                kind=kind,
                constraint_id=constraint_id,
                callsign=override,
                full_name=full_name,
                source="override",
            )
        return None

    async def resolve(
        self,
        kind: ConstraintKind,
        constraint_id: int,
        timeout: float | None = None,
    ) -> ResolvedIdentity | None:
        """Resolve a constraint ID, falling back to the live tenant lists.

        Args:
            kind: Whether the ID names a driver or a vehicle.
            constraint_id: The opaque upstream identifier.
            timeout: Seconds allowed for the live fallback (None is unbounded).

        Returns:
            The resolved identity, or None when unresolved.
        """
        resolved = await self.resolve_many(kind, [constraint_id], timeout=timeout)
        return resolved.get(constraint_id)

    async def resolve_many(
        self,
        kind: ConstraintKind,
        constraint_ids: Iterable[int],
        timeout: float | None = None,
    ) -> dict[int, ResolvedIdentity]:
        """Resolve a batch of constraint IDs of one kind.

        Cached misses share one live pass over the tenants: each tenant's
        list is downloaded at most once, and the walk stops as soon as
        every pending ID is found. When ``timeout`` expires the IDs found
        so far are kept and the rest are unresolved.

        Args:
            kind: Whether the IDs name drivers or vehicles.
            constraint_ids: Opaque upstream identifiers (duplicates allowed).
            timeout: Seconds allowed for the live fallback (None is unbounded).

        Returns:
            Mapping of constraint ID to identity; unresolved IDs are absent.
        """
        resolved: dict[int, ResolvedIdentity] = {}
        misses: list[int] = []
        for constraint_id in dict.fromkeys(constraint_ids):
            identity = self.resolve_cached(kind, constraint_id)
            if identity is not None:
                resolved[constraint_id] = identity
            else:
                misses.append(constraint_id)

        if not misses:
            return resolved

        found: dict[int, ResolvedIdentity] = {}
        if self.fetcher is not None:
            try:
                async with asyncio.timeout(timeout):
                    await self._live_lookup(kind, set(misses), found)
            except TimeoutError:
                logger.warning(
                    "constraint_live_lookup_timeout",
                    kind=kind.value,
                    timeout_seconds=timeout,
                    pending=len(misses) - len(found),
                )

        for constraint_id in misses:
            identity = found.get(constraint_id)
            if identity is not None:
                record_constraint_resolution(kind.value, "live")
                resolved[constraint_id] = identity
                continue
            record_constraint_resolution(kind.value, "unresolved")
            logger.info(
                "constraint_unresolved",
                kind=kind.value,
                constraint_id=constraint_id,
            )
        return resolved

    async def _live_lookup(
        self,
        kind: ConstraintKind,
        pending: set[int],
        found: dict[int, ResolvedIdentity],
    ) -> None:
        # Fills ``found`` in place so a timeout keeps partial results
        resource = ResourceKind.DRIVERS if kind is ConstraintKind.DRIVER else ResourceKind.INVENTORY
        for tenant in self.fetcher.tenants:
            if not pending:
                return
            records = await self.fetcher.fetch_one(
                tenant,
                resource,
                timeout=self.config.lookup_timeout_seconds,
                retry=_LIVE_LOOKUP_RETRY,
            )
            for record in records or []:
                if record.id not in pending or not record.callsign:
                    continue
                pending.discard(record.id)
                found[record.id] = _live_identity(kind, record)
                logger.info(
                    "constraint_resolved_live",
                    kind=kind.value,
                    constraint_id=record.id,
                    tenant_id=tenant.id,
                    callsign=record.callsign,
                )


def _live_identity(
    kind: ConstraintKind,
    record: DriverListEntry | VehicleInventoryRecord,
) -> ResolvedIdentity:
    if isinstance(record, DriverListEntry):
        return ResolvedIdentity(
            kind=kind,
            constraint_id=record.id,
            callsign=record.callsign,
            full_name=record.full_name,
            source="live",
        )
    return ResolvedIdentity(
        kind=kind,
        constraint_id=record.id,
        callsign=record.callsign,
        registration=record.registration,
        source="live",
    )
