"""Main entry point for the fleet snapshot service."""

import asyncio
import signal

from fleet_snapshot.config import Settings, load_fleet_file, resolve_relative_paths
from fleet_snapshot.fetcher import MultiTenantFetcher, create_http_client
from fleet_snapshot.logging import configure_logging, get_logger
from fleet_snapshot.models import FleetFileConfig
from fleet_snapshot.reloader import LookupReloader
from fleet_snapshot.resolver import ConstraintResolver
from fleet_snapshot.roster import RosterStore
from fleet_snapshot.server import SnapshotServer
from fleet_snapshot.snapshot import SnapshotEngine


def build_engine(
    config: FleetFileConfig,
    fetcher: MultiTenantFetcher,
) -> tuple[SnapshotEngine, LookupReloader]:
    """Wire the resolver, roster store and engine around a fetcher.

    Lookup tables start empty; call ``reload_all`` on the returned
    reloader to load them.
    """
    resolver = ConstraintResolver(config.constraints, fetcher=fetcher)
    roster = RosterStore(config.roster)
    engine = SnapshotEngine(config, fetcher, resolver, roster)
    reloader = LookupReloader(roster, resolver)
    return engine, reloader


async def run() -> None:
    """Run the fleet snapshot service."""
    settings = Settings()

    configure_logging(settings.log_level, settings.log_format)
    logger = get_logger(__name__)

    logger.info(
        "starting",
        config_path=str(settings.config_path),
        max_concurrent=settings.max_concurrent,
        http_port=settings.http_port,
    )

    config = resolve_relative_paths(
        load_fleet_file(settings.config_path),
        settings.config_path.parent,
    )
    logger.info(
        "loaded_config",
        tenant_count=len(config.tenants),
        roster_path=config.roster.path,
        mapping_path=config.constraints.mapping_path,
    )
    if settings.api_key is None:
        logger.warning("upstream_api_key_missing")

    http_client = create_http_client(settings.max_concurrent)
    fetcher = MultiTenantFetcher(
        http_client,
        config.upstream,
        config.tenants,
        api_key=settings.api_key,
        max_concurrent=settings.max_concurrent,
    )

    engine, reloader = build_engine(config, fetcher)
    reloader.interval_seconds = settings.reload_interval_seconds
    reloader.reload_all()

    server = SnapshotServer(engine, reloader=reloader, port=settings.http_port)

    shutdown_event = asyncio.Event()

    def handle_shutdown(signum: int, _frame: object) -> None:
        logger.info("shutdown_signal_received", signal=signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        await server.start()
        logger.info("server_started", port=settings.http_port)

        await reloader.start()
        logger.info(
            "reloader_started",
            interval_seconds=settings.reload_interval_seconds,
        )

        await shutdown_event.wait()

    finally:
        logger.info("shutting_down")

        await reloader.stop()
        await server.stop()
        await http_client.aclose()

        logger.info("shutdown_complete")


def main() -> None:
    """Entry point for the fleet snapshot service."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
