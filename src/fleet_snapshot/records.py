"""Pydantic models for upstream payloads and the canonical snapshot output.

Upstream payloads use camelCase keys; fields are mapped to snake_case via
aliases. Unknown fields are ignored so that platform additions never break
parsing.
"""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from fleet_snapshot.models import StatusColor


def _coerce_callsign(value: Any) -> Any:
    """Callsigns arrive as either numbers or strings; normalize to stripped str."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return str(int(value))
    if isinstance(value, str):
        return value.strip() or None
    return value


class UpstreamRecord(BaseModel):
    """Base class for records read from the dispatch platform."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        frozen=True,
    )

    # Set by the fetcher, not present in upstream payloads
    tenant_id: str | None = Field(default=None, exclude=True)


class VehicleInventoryRecord(UpstreamRecord):
    """Vehicle identity as published by one tenant."""

    id: int
    callsign: str | None = None
    make: str | None = None
    model: str | None = None
    registration: str | None = None
    is_active: bool = Field(default=True, validation_alias=AliasChoices("isActive", "active"))
    is_suspended: bool = False

    normalize_callsign = field_validator("callsign", mode="before")(_coerce_callsign)


class StatusRecord(UpstreamRecord):
    """Per-vehicle operational signals."""

    vehicle_id: int | None = None
    id: int | None = None
    callsign: str | None = None
    vehicle_status_type: str | None = None
    status_text: str | None = None
    at_pickup: bool = False
    dispatch_in_progress: bool = False
    has_prebookings: bool = False
    in_destination_mode: bool = False
    penalty: Any = None
    is_soon_to_clear: bool = False
    destination_mode_time_remaining: Any = None
    queue_position: int | None = None
    zone_id: int | None = None
    zone_name: str | None = None
    time_entered_zone: datetime | None = None
    driver_id: int | None = None

    normalize_callsign = field_validator("callsign", mode="before")(_coerce_callsign)

    @field_validator(
        "at_pickup",
        "dispatch_in_progress",
        "has_prebookings",
        "in_destination_mode",
        "is_soon_to_clear",
        mode="before",
    )
    @classmethod
    def null_flag_is_false(cls, value: Any) -> Any:
        """Upstream sends null for unset flags."""
        return False if value is None else value

    @property
    def internal_id(self) -> int | None:
        """Vehicle internal ID (vehicleId, falling back to id)."""
        return self.vehicle_id if self.vehicle_id is not None else self.id


class GpsRecord(UpstreamRecord):
    """GPS fix for one vehicle.

    Accepts both the nested ``location`` object and flat latitude/longitude.
    """

    id: int | None = None
    vehicle_id: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_empty: bool = False

    @model_validator(mode="before")
    @classmethod
    def flatten_location(cls, data: Any) -> Any:
        """Lift nested location fields to the top level."""
        if isinstance(data, dict) and isinstance(data.get("location"), dict):
            location = data["location"]
            data = {**data}
            for key in ("latitude", "longitude", "isEmpty"):
                if key in location and data.get(key) is None:
                    data[key] = location[key]
        return data

    @field_validator("is_empty", mode="before")
    @classmethod
    def null_is_not_empty(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def internal_id(self) -> int | None:
        """Vehicle internal ID (id, falling back to vehicleId)."""
        return self.id if self.id is not None else self.vehicle_id


class ShiftDriver(UpstreamRecord):
    """Driver details nested in a live shift."""

    id: int | None = None
    full_name: str | None = None


class ShiftRecord(UpstreamRecord):
    """Currently-active driver/vehicle pairing."""

    id: int | None = Field(default=None, validation_alias=AliasChoices("id", "shiftId"))
    driver_callsign: str | None = None
    driver_id: int | None = None
    driver: ShiftDriver | None = None
    vehicle_callsign: str | None = None
    started: datetime | None = None
    cash_bookings: int = 0
    account_bookings: int = 0
    rank_jobs: int = 0

    normalize_callsigns = field_validator(
        "driver_callsign", "vehicle_callsign", mode="before"
    )(_coerce_callsign)

    @field_validator("cash_bookings", "account_bookings", "rank_jobs", mode="before")
    @classmethod
    def null_counter_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def driver_name(self) -> str | None:
        return self.driver.full_name if self.driver else None

    @property
    def driver_internal_id(self) -> int | None:
        if self.driver_id is not None:
            return self.driver_id
        return self.driver.id if self.driver else None


class DriverListEntry(UpstreamRecord):
    """Entry of the per-tenant drivers list."""

    id: int
    callsign: str | None = None
    full_name: str | None = None
    active: bool = True

    normalize_callsign = field_validator("callsign", mode="before")(_coerce_callsign)


class Coordinates(BaseModel):
    """A validated GPS position."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class ShiftStats(BaseModel):
    """Running job counters for the current shift."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cash_bookings: int = 0
    account_bookings: int = 0
    rank_jobs: int = 0


class CanonicalVehicle(BaseModel):
    """Unified per-callsign record for one snapshot."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    callsign: str
    internal_id: int
    tenant_id: str | None = None
    make: str | None = None
    model: str | None = None
    registration: str | None = None
    vehicle_name: str

    status_color: StatusColor
    status_type: str | None = None
    readable_status: str
    at_pickup: bool = False
    dispatch_in_progress: bool = False
    has_prebookings: bool = False

    coordinates: Coordinates | None = None

    driver_name: str = ""
    driver_callsign: str = ""
    company: str | None = None
    # None when the vehicle has no roster entry
    driver_recently_logged_on: bool | None = None

    queue_position: int | None = None
    zone_id: int | None = None
    zone_name: str | None = None
    time_entered_zone: datetime | None = None

    shift_id: int | None = None
    shift_started: datetime | None = None
    shift_stats: ShiftStats | None = None
    shift_duration_hours: float | None = None

    @property
    def latitude(self) -> float | None:
        return self.coordinates.lat if self.coordinates else None

    @property
    def longitude(self) -> float | None:
        return self.coordinates.lng if self.coordinates else None
