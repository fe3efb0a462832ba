"""Prometheus metrics for the fleet snapshot service."""

import time

from prometheus_client import Counter, Gauge, Histogram

# Wall-clock time of the last successful pass (for /health)
_last_pass_success: dict[str, float] = {}

TIMING_BUCKETS = [0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0]

# Upstream call metrics
upstream_calls = Counter(
    "fleet_upstream_calls_total",
    "Upstream API call attempts",
    ["tenant", "kind"],
)

upstream_errors = Counter(
    "fleet_upstream_errors_total",
    "Failed upstream API calls",
    ["tenant", "kind", "error_type"],
)

upstream_duration = Histogram(
    "fleet_upstream_duration_seconds",
    "Time to complete an upstream API call",
    ["tenant", "kind"],
    buckets=TIMING_BUCKETS,
    unit="seconds",
)

upstream_records = Counter(
    "fleet_upstream_records_total",
    "Records returned by upstream calls",
    ["tenant", "kind"],
)

upstream_invalid_records = Counter(
    "fleet_upstream_invalid_records_total",
    "Records skipped because they failed validation",
    ["kind"],
)

# Aggregation pass metrics
passes = Counter(
    "fleet_passes_total",
    "Aggregation passes",
    ["outcome"],
)

pass_duration = Histogram(
    "fleet_pass_duration_seconds",
    "Time to run one aggregation pass",
    buckets=TIMING_BUCKETS,
    unit="seconds",
)

snapshot_vehicles = Gauge(
    "fleet_snapshot_vehicles",
    "Vehicles in the most recent successful snapshot",
    ["status_color"],
)

# Lookup tables
constraint_resolutions = Counter(
    "fleet_constraint_resolutions_total",
    "Constraint ID resolutions by source",
    ["kind", "source"],
)

roster_entries = Gauge(
    "fleet_roster_entries",
    "Vehicles in the loaded roster",
)

constraint_table_entries = Gauge(
    "fleet_constraint_table_entries",
    "Entries in the loaded constraint table",
    ["kind"],
)


def record_upstream_attempt(tenant: str, kind: str) -> None:
    """Record an upstream call attempt."""
    upstream_calls.labels(tenant=tenant, kind=kind).inc()


def record_upstream_success(
    tenant: str,
    kind: str,
    duration_seconds: float,
    record_count: int,
) -> None:
    """Record a successful upstream call.

    Args:
        tenant: Tenant identifier.
        kind: Resource kind.
        duration_seconds: Time taken, including retries.
        record_count: Number of records returned.
    """
    upstream_duration.labels(tenant=tenant, kind=kind).observe(duration_seconds)
    upstream_records.labels(tenant=tenant, kind=kind).inc(record_count)


def record_upstream_error(tenant: str, kind: str, error_type: str) -> None:
    """Record a failed upstream call.

    Args:
        tenant: Tenant identifier.
        kind: Resource kind.
        error_type: Type of error (e.g., "timeout", "transport", "http_404").
    """
    upstream_errors.labels(tenant=tenant, kind=kind, error_type=error_type).inc()


def record_invalid_records(kind: str, count: int) -> None:
    if count:
        upstream_invalid_records.labels(kind=kind).inc(count)


def record_pass(
    success: bool,
    duration_seconds: float,
    color_counts: dict[str, int] | None = None,
) -> None:
    """Record the outcome of an aggregation pass.

    Args:
        success: Whether the pass produced a snapshot.
        duration_seconds: Wall time of the pass.
        color_counts: Vehicles per status colour, for successful passes.
    """
    passes.labels(outcome="success" if success else "failure").inc()
    pass_duration.observe(duration_seconds)
    if success:
        _last_pass_success["last"] = time.time()
        for color, count in (color_counts or {}).items():
            snapshot_vehicles.labels(status_color=color).set(count)


def record_constraint_resolution(kind: str, source: str) -> None:
    """Record where a constraint ID was resolved from ("unresolved" on miss)."""
    constraint_resolutions.labels(kind=kind, source=source).inc()


def set_roster_entries(count: int) -> None:
    roster_entries.set(count)


def set_constraint_table_entries(drivers: int, vehicles: int) -> None:
    constraint_table_entries.labels(kind="driver").set(drivers)
    constraint_table_entries.labels(kind="vehicle").set(vehicles)


def get_last_pass_success() -> float | None:
    """Get the Unix timestamp of the last successful pass, or None."""
    return _last_pass_success.get("last")
