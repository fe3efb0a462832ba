"""HTTP surface: snapshot, constraint lookup, reload, health and metrics."""

import json
import time
from typing import TYPE_CHECKING

from aiohttp import web
from prometheus_client import REGISTRY
from prometheus_client.openmetrics.exposition import (
    CONTENT_TYPE_LATEST,
    generate_latest,
)

from fleet_snapshot.logging import get_logger
from fleet_snapshot.metrics import get_last_pass_success
from fleet_snapshot.models import ConstraintKind

if TYPE_CHECKING:
    from fleet_snapshot.reloader import LookupReloader
    from fleet_snapshot.snapshot import SnapshotEngine

logger = get_logger(__name__)


def _json_error(status: int, payload: dict[str, object]) -> web.Response:
    return web.Response(
        text=json.dumps(payload),
        status=status,
        content_type="application/json",
    )


class SnapshotServer:
    """aiohttp server exposing the snapshot engine."""

    def __init__(
        self,
        engine: "SnapshotEngine",
        reloader: "LookupReloader | None" = None,
        port: int = 8080,
    ) -> None:
        """Initialize the server.

        Args:
            engine: Engine that runs aggregation passes.
            reloader: Reloader for the roster and constraint table.
            port: Port to listen on.
        """
        self.engine = engine
        self.reloader = reloader
        self.port = port
        self._start_time = time.time()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes."""
        app = web.Application()
        app.router.add_get("/vehicles", self._handle_vehicles)
        app.router.add_get("/constraints/{kind}/{constraint_id}", self._handle_constraint)
        app.router.add_post("/admin/reload", self._handle_reload)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def _handle_vehicles(self, _request: web.Request) -> web.Response:
        """Run one aggregation pass and return the snapshot."""
        result = await self.engine.run_pass(trigger="http")
        return web.json_response(result.to_dict(), status=200 if result.success else 503)

    async def _handle_constraint(self, request: web.Request) -> web.Response:
        """Resolve a driver or vehicle constraint ID."""
        try:
            kind = ConstraintKind(request.match_info["kind"])
            constraint_id = int(request.match_info["constraint_id"])
        except ValueError:
            return _json_error(400, {"error": "kind must be driver|vehicle and id an integer"})

        identity = await self.engine.resolver.resolve(kind, constraint_id)
        if identity is None:
            return _json_error(
                404,
                {"resolved": False, "kind": kind.value, "constraintId": constraint_id},
            )

        return web.json_response(
            {
                "resolved": True,
                "kind": kind.value,
                "constraintId": constraint_id,
                "callsign": identity.callsign,
                "fullName": identity.full_name,
                "registration": identity.registration,
                "source": identity.source,
            }
        )

    async def _handle_reload(self, _request: web.Request) -> web.Response:
        """Reload the roster and constraint table."""
        if self.reloader is None:
            return _json_error(503, {"error": "no reloader"})

        outcome = await self.reloader.reload_all_async()
        failed = any(value != "ok" for value in outcome.values())
        logger.info("reload_requested", **outcome)
        return web.json_response(outcome, status=500 if failed else 200)

    def _get_health_status(self) -> dict[str, object]:
        roster = self.engine.roster
        last_success = get_last_pass_success()
        return {
            "status": "healthy",
            "uptime_seconds": round(time.time() - self._start_time, 2),
            "tenants": [tenant.id for tenant in self.engine.fetcher.tenants],
            "roster": {
                "mode": roster.mode.value,
                "vehicles": len(roster.roster) if roster.roster is not None else 0,
            },
            "constraints": {
                "drivers": len(self.engine.resolver.table.drivers),
                "vehicles": len(self.engine.resolver.table.vehicles),
            },
            "last_pass_success_seconds_ago": (
                round(time.time() - last_success, 1) if last_success is not None else None
            ),
        }

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Handle /health endpoint."""
        return web.json_response(self._get_health_status())

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        """Handle /ready endpoint for readiness probes."""
        if self.reloader is not None and self.reloader.interval_seconds > 0:
            if not self.reloader.is_running:
                return _json_error(503, {"status": "not_ready", "reason": "reloader_not_running"})

        return web.json_response({"status": "ready"})

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        metrics = generate_latest(REGISTRY)  # type: ignore[no-untyped-call]
        # aiohttp takes content type and charset separately
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(
            body=metrics,
            content_type=content_type,
            charset="utf-8",
        )

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await self._site.start()

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
