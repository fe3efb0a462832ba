"""Pydantic models for fleet snapshot configuration."""

from enum import Enum
from typing import Annotated, Self

from pydantic import BaseModel, Field, HttpUrl, model_validator


class ResourceKind(str, Enum):
    """Upstream resources fetched per tenant."""

    INVENTORY = "inventory"
    STATUS = "status"
    GPS = "gps"
    SHIFTS = "shifts"
    DRIVERS = "drivers"


# Resources fetched on every aggregation pass
SNAPSHOT_KINDS = (
    ResourceKind.INVENTORY,
    ResourceKind.STATUS,
    ResourceKind.GPS,
    ResourceKind.SHIFTS,
)


class StatusColor(str, Enum):
    """Canonical operational state of a vehicle."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    GRAY = "gray"


class ConstraintKind(str, Enum):
    """Kind of entity an opaque constraint ID refers to."""

    DRIVER = "driver"
    VEHICLE = "vehicle"


class RetryConfig(BaseModel):
    """Configuration for retry behavior on transient failures."""

    max_attempts: int = Field(default=2, ge=1, le=10)
    backoff_base: float = Field(default=0.5, ge=0.1, le=10.0)
    backoff_max: float = Field(default=5.0, ge=1.0, le=60.0)


class EndpointPaths(BaseModel):
    """Upstream endpoint path per resource kind."""

    inventory: str = "/vehicle/v1/vehicles"
    status: str = "/vehicle/v1/vehiclestatuses"
    gps: str = "/vehicle/v1/vehiclegpsposition"
    shifts: str = "/driver/v1/driverliveshifts"
    drivers: str = "/driver/v1/drivers"

    def get_path(self, kind: ResourceKind) -> str:
        """Get the endpoint path for a resource kind."""
        path: str = getattr(self, kind.value)
        return path


class UpstreamConfig(BaseModel):
    """Connection settings for the dispatch platform API."""

    base_url: HttpUrl = Field(
        default="https://autocab-api.azure-api.net",
        validate_default=True,
    )
    tenant_header: str = "companyId"
    api_key_header: str = "Ocp-Apim-Subscription-Key"
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    endpoints: EndpointPaths = Field(default_factory=EndpointPaths)

    def url_for(self, kind: ResourceKind) -> str:
        """Build the absolute URL for a resource kind."""
        return str(self.base_url).rstrip("/") + self.endpoints.get_path(kind)


class TenantConfig(BaseModel):
    """An upstream account partition ("company")."""

    id: Annotated[str, Field(min_length=1)]
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.id


class GeoBounds(BaseModel):
    """Geographic envelope for valid GPS fixes (defaults to the UK)."""

    min_latitude: float = Field(default=49.5, ge=-90, le=90)
    max_latitude: float = Field(default=61.0, ge=-90, le=90)
    min_longitude: float = Field(default=-8.5, ge=-180, le=180)
    max_longitude: float = Field(default=2.0, ge=-180, le=180)

    @model_validator(mode="after")
    def validate_ranges(self) -> Self:
        """Ensure each minimum is below its maximum."""
        if self.min_latitude >= self.max_latitude:
            raise ValueError("min_latitude must be less than max_latitude")
        if self.min_longitude >= self.max_longitude:
            raise ValueError("min_longitude must be less than max_longitude")
        return self

    def contains(self, latitude: float, longitude: float) -> bool:
        """Check whether a point lies inside the envelope (inclusive)."""
        return (
            self.min_latitude <= latitude <= self.max_latitude
            and self.min_longitude <= longitude <= self.max_longitude
        )


class ClassifierConfig(BaseModel):
    """Status-type tags driving the status colour ladder."""

    meter_on_tags: frozenset[str] = frozenset(
        {
            "BusyMeterOnFromMeterOffCash",
            "BusyMeterOnFromMeterOffAccount",
            "BusyMeterOnFromMeterOffOnlineAndCash",
            "Busy",
            "BusyMeterOn",
        }
    )
    dispatched_tags: frozenset[str] = frozenset(
        {
            "BusyMeterOffAccount",
            "BusyMeterOff",
            "BusyMeterOffCash",
            "Dispatched",
            "JobOffered",
        }
    )
    # Subset of dispatched tags where the meter is off; used for the
    # meter-off + at-pickup combination
    meter_off_tags: frozenset[str] = frozenset(
        {"BusyMeterOff", "BusyMeterOffAccount", "BusyMeterOffCash"}
    )
    meter_off_at_pickup: StatusColor = StatusColor.YELLOW

    @model_validator(mode="after")
    def validate_meter_off_colour(self) -> Self:
        """Check the meter-off colour and that the tag sets are consistent."""
        if self.meter_off_at_pickup not in (StatusColor.RED, StatusColor.YELLOW):
            raise ValueError("meter_off_at_pickup must be 'red' or 'yellow'")
        if self.meter_on_tags & self.dispatched_tags:
            raise ValueError("meter_on_tags and dispatched_tags must not overlap")
        if self.meter_off_tags & self.meter_on_tags:
            raise ValueError("meter_off_tags and meter_on_tags must not overlap")
        if not self.meter_off_tags <= self.dispatched_tags:
            raise ValueError("meter_off_tags must be a subset of dispatched_tags")
        return self


class ConstraintOverrides(BaseModel):
    """Hand-confirmed constraint ID to callsign pairs."""

    driver: dict[str, str] = Field(default_factory=dict)
    vehicle: dict[str, str] = Field(default_factory=dict)

    def get(self, kind: ConstraintKind, constraint_id: int) -> str | None:
        table: dict[str, str] = getattr(self, kind.value)
        return table.get(str(constraint_id))


class ConstraintConfig(BaseModel):
    """Settings for resolving opaque constraint IDs."""

    mapping_path: str | None = None
    lookup_timeout_seconds: float = Field(default=3.0, gt=0, le=30)
    overrides: ConstraintOverrides = Field(default_factory=ConstraintOverrides)


class RosterConfig(BaseModel):
    """Settings for the driver authorization roster."""

    path: str | None = None
    companies: list[str] | None = None
    strict: bool = True


class SnapshotConfig(BaseModel):
    """Settings for a single aggregation pass."""

    pass_deadline_seconds: float = Field(default=20.0, gt=0, le=300)
    excluded_callsigns: frozenset[str] = frozenset()


class FleetFileConfig(BaseModel):
    """Schema for the fleet.yaml configuration file."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    tenants: list[TenantConfig]
    geo_bounds: GeoBounds = Field(default_factory=GeoBounds)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    constraints: ConstraintConfig = Field(default_factory=ConstraintConfig)
    roster: RosterConfig = Field(default_factory=RosterConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)

    @model_validator(mode="after")
    def validate_tenants(self) -> Self:
        """Ensure there is at least one tenant and IDs are unique."""
        if not self.tenants:
            raise ValueError("At least one tenant must be configured")
        ids = [tenant.id for tenant in self.tenants]
        if len(ids) != len(set(ids)):
            raise ValueError("Tenant IDs must be unique")
        return self
