"""Multi-tenant HTTP fetcher for the dispatch platform API."""

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fleet_snapshot.logging import get_logger
from fleet_snapshot.metrics import (
    record_invalid_records,
    record_upstream_attempt,
    record_upstream_error,
    record_upstream_success,
)
from fleet_snapshot.models import (
    SNAPSHOT_KINDS,
    ResourceKind,
    RetryConfig,
    TenantConfig,
    UpstreamConfig,
)
from fleet_snapshot.records import (
    DriverListEntry,
    GpsRecord,
    ShiftRecord,
    StatusRecord,
    VehicleInventoryRecord,
)

logger = get_logger(__name__)


class NonRetryableError(Exception):
    """Error that should not be retried (e.g., 4xx client errors)."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class MalformedResponseError(Exception):
    """Upstream body could not be read as a JSON array."""


# HTTP status codes that should not be retried
NON_RETRYABLE_STATUS_CODES = {
    400,  # Bad request (our fault)
    401,  # Unauthorized (bad api key)
    403,  # Forbidden (tenant not enabled for this key)
    404,  # Not found (endpoint moved)
    410,  # Gone
}

# Exception types that warrant a retry
RETRYABLE_EXCEPTIONS = (
    httpx.TransportError,  # Connection errors and timeouts
    httpx.HTTPStatusError,  # 5xx server errors (after raise_for_status)
)

RECORD_MODELS: dict[ResourceKind, type[BaseModel]] = {
    ResourceKind.INVENTORY: VehicleInventoryRecord,
    ResourceKind.STATUS: StatusRecord,
    ResourceKind.GPS: GpsRecord,
    ResourceKind.SHIFTS: ShiftRecord,
    ResourceKind.DRIVERS: DriverListEntry,
}


@dataclass
class FetchResult:
    """Raw result of one successful (tenant, kind) call."""

    tenant_id: str
    kind: ResourceKind
    payload: list[Any]
    status_code: int
    duration_ms: float


def create_retrying(retry: RetryConfig) -> AsyncRetrying:
    """Create a tenacity AsyncRetrying instance from retry settings.

    Args:
        retry: Retry settings.

    Returns:
        An AsyncRetrying instance for use in async for loops.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(retry.max_attempts),
        wait=wait_exponential(
            multiplier=retry.backoff_base,
            max=retry.backoff_max,
        ),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
        reraise=True,
    )


def build_headers(
    upstream: UpstreamConfig,
    tenant: TenantConfig,
    api_key: str | None,
) -> dict[str, str]:
    """Build request headers selecting the tenant and carrying the api key."""
    headers = {
        "Accept": "application/json",
        upstream.tenant_header: tenant.id,
    }
    if api_key:
        headers[upstream.api_key_header] = api_key
    return headers


async def _do_fetch(
    client: httpx.AsyncClient,
    upstream: UpstreamConfig,
    tenant: TenantConfig,
    kind: ResourceKind,
    api_key: str | None,
    timeout: float,
) -> FetchResult:
    """Perform a single HTTP request for one (tenant, kind) pair.

    Raises:
        NonRetryableError: For 4xx client errors that should not be retried.
        MalformedResponseError: If the body is not a JSON array.
        httpx.HTTPStatusError: For 5xx server errors.
        httpx.TransportError: For network errors and timeouts.
    """
    start = time.monotonic()
    response = await client.get(
        upstream.url_for(kind),
        headers=build_headers(upstream, tenant, api_key),
        timeout=timeout,
    )
    duration_ms = (time.monotonic() - start) * 1000

    if response.status_code in NON_RETRYABLE_STATUS_CODES:
        raise NonRetryableError(
            response.status_code,
            f"{kind.value} for tenant {tenant.id}",
        )

    response.raise_for_status()

    try:
        payload = response.json()
    except ValueError as e:
        raise MalformedResponseError(f"Invalid JSON body: {e}") from e
    if not isinstance(payload, list):
        raise MalformedResponseError(f"Expected JSON array, got {type(payload).__name__}")

    return FetchResult(
        tenant_id=tenant.id,
        kind=kind,
        payload=payload,
        status_code=response.status_code,
        duration_ms=duration_ms,
    )


async def fetch_resource(
    client: httpx.AsyncClient,
    upstream: UpstreamConfig,
    tenant: TenantConfig,
    kind: ResourceKind,
    api_key: str | None = None,
    timeout: float | None = None,
    retry: RetryConfig | None = None,
) -> FetchResult:
    """Fetch one resource for one tenant with retry logic.

    Args:
        client: Async HTTP client to use for the request.
        upstream: Upstream connection settings.
        tenant: Tenant to select.
        kind: Resource kind to fetch.
        api_key: Subscription key sent with every request.
        timeout: Per-attempt timeout (defaults to upstream.timeout_seconds).
        retry: Retry settings (defaults to upstream.retry).

    Returns:
        FetchResult containing the decoded JSON array.

    Raises:
        NonRetryableError: For 4xx client errors.
        MalformedResponseError: For non-array bodies.
        httpx.HTTPStatusError: For 5xx errors (after retry exhaustion).
        httpx.TransportError: For network errors (after retry exhaustion).
    """
    retrying = create_retrying(retry or upstream.retry)

    async for attempt in retrying:
        with attempt:
            return await _do_fetch(
                client,
                upstream,
                tenant,
                kind,
                api_key,
                timeout or upstream.timeout_seconds,
            )

    # This should never be reached due to reraise=True
    raise RuntimeError("Retry loop exited without returning or raising")


def parse_records(result: FetchResult) -> list[Any]:
    """Validate a raw payload into record models tagged with the tenant.

    Elements that fail validation are skipped and counted.
    """
    model = RECORD_MODELS[result.kind]
    records = []
    invalid = 0
    for item in result.payload:
        if not isinstance(item, dict):
            invalid += 1
            continue
        try:
            records.append(model.model_validate({**item, "tenantId": result.tenant_id}))
        except ValidationError as e:
            invalid += 1
            logger.debug(
                "record_invalid",
                tenant_id=result.tenant_id,
                kind=result.kind.value,
                error_count=e.error_count(),
            )

    if invalid:
        record_invalid_records(result.kind.value, invalid)
        logger.warning(
            "records_skipped",
            tenant_id=result.tenant_id,
            kind=result.kind.value,
            skipped=invalid,
            kept=len(records),
        )
    return records


def classify_error(error: BaseException) -> str:
    """Map an exception to a short error type label for logs and metrics."""
    if isinstance(error, NonRetryableError):
        return f"http_{error.status_code}"
    if isinstance(error, MalformedResponseError):
        return "malformed"
    if isinstance(error, httpx.TimeoutException | TimeoutError):
        return "timeout"
    if isinstance(error, httpx.TransportError):
        return "transport"
    if isinstance(error, httpx.HTTPStatusError):
        return f"http_{error.response.status_code}"
    return "unknown"


@dataclass
class FetchBundle:
    """Records gathered by one fan-out, with per-call outcomes."""

    records: dict[ResourceKind, list[Any]] = field(default_factory=dict)
    succeeded: dict[ResourceKind, list[str]] = field(default_factory=dict)
    failed: dict[ResourceKind, dict[str, str]] = field(default_factory=dict)

    def get(self, kind: ResourceKind) -> list[Any]:
        return self.records.get(kind, [])

    def tenants_succeeded(self, kind: ResourceKind) -> list[str]:
        return self.succeeded.get(kind, [])


class MultiTenantFetcher:
    """Issues one request per (tenant, kind) pair, concurrently and bounded."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        upstream: UpstreamConfig,
        tenants: list[TenantConfig],
        api_key: str | None = None,
        max_concurrent: int = 8,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Shared async HTTP client.
            upstream: Upstream connection settings.
            tenants: Tenants to query, in merge order.
            api_key: Subscription key for the upstream API.
            max_concurrent: Maximum number of in-flight calls.
        """
        self.client = client
        self.upstream = upstream
        self.tenants = tenants
        self._api_key = api_key
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def fetch_one(
        self,
        tenant: TenantConfig,
        kind: ResourceKind,
        timeout: float | None = None,
        retry: RetryConfig | None = None,
    ) -> list[Any] | None:
        """Fetch and parse one (tenant, kind) pair.

        Failures are logged and recorded, never raised.

        Returns:
            Parsed records, or None if the call failed.
        """
        async with self._semaphore:
            record_upstream_attempt(tenant.id, kind.value)
            start = time.monotonic()
            try:
                result = await fetch_resource(
                    self.client,
                    self.upstream,
                    tenant,
                    kind,
                    api_key=self._api_key,
                    timeout=timeout,
                    retry=retry,
                )
            except (NonRetryableError, MalformedResponseError, httpx.HTTPError) as e:
                error_type = classify_error(e)
                record_upstream_error(tenant.id, kind.value, error_type)
                logger.warning(
                    "upstream_call_failed",
                    tenant_id=tenant.id,
                    kind=kind.value,
                    error_type=error_type,
                    error_message=str(e),
                )
                return None
            except Exception as e:
                record_upstream_error(tenant.id, kind.value, "unknown")
                logger.exception(
                    "upstream_call_error",
                    tenant_id=tenant.id,
                    kind=kind.value,
                    error_type=type(e).__name__,
                )
                return None

        records = parse_records(result)
        record_upstream_success(
            tenant.id,
            kind.value,
            time.monotonic() - start,
            len(records),
        )
        logger.debug(
            "upstream_call_success",
            tenant_id=tenant.id,
            kind=kind.value,
            records=len(records),
            duration_ms=round(result.duration_ms, 1),
        )
        return records

    async def fetch_all(
        self,
        kinds: Iterable[ResourceKind] = SNAPSHOT_KINDS,
        deadline: float | None = None,
    ) -> FetchBundle:
        """Fetch every (tenant, kind) pair concurrently.

        Calls still outstanding when the deadline expires are cancelled and
        treated as failed. Records are concatenated in tenant order, so the
        result does not depend on completion order.

        Args:
            kinds: Resource kinds to fetch.
            deadline: Seconds to wait for the whole fan-out (None waits for all).

        Returns:
            A FetchBundle with the records and per-call outcomes.
        """
        kinds = list(kinds)
        tasks: dict[tuple[ResourceKind, str], asyncio.Task[list[Any] | None]] = {}
        for kind in kinds:
            for tenant in self.tenants:
                tasks[(kind, tenant.id)] = asyncio.create_task(
                    self.fetch_one(tenant, kind),
                    name=f"fetch-{kind.value}-{tenant.id}",
                )

        bundle = FetchBundle(
            records={kind: [] for kind in kinds},
            succeeded={kind: [] for kind in kinds},
            failed={kind: {} for kind in kinds},
        )
        if not tasks:
            return bundle

        _, pending = await asyncio.wait(tasks.values(), timeout=deadline)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for (kind, tenant_id), task in tasks.items():
            if task in pending:
                record_upstream_error(tenant_id, kind.value, "deadline")
                logger.warning(
                    "upstream_call_cancelled",
                    tenant_id=tenant_id,
                    kind=kind.value,
                    deadline_seconds=deadline,
                )
                bundle.failed[kind][tenant_id] = "deadline"
                continue

            records = task.result()
            if records is None:
                bundle.failed[kind][tenant_id] = "error"
                continue
            bundle.records[kind].extend(records)
            bundle.succeeded[kind].append(tenant_id)

        return bundle


def create_http_client(max_connections: int = 20) -> httpx.AsyncClient:
    """Create an async HTTP client with connection pooling.

    Args:
        max_connections: Maximum number of concurrent connections.

    Returns:
        Configured httpx.AsyncClient instance.
    """
    limits = httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max(1, max_connections // 2),
    )

    return httpx.AsyncClient(
        limits=limits,
        follow_redirects=True,
    )
