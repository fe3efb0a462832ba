#!/usr/bin/env python3
"""Build the reverse constraint mapping from full tenant dumps.

Fetches the drivers and vehicles lists of every tenant in fleet.yaml and
writes the JSON artifact the constraint resolver loads at startup and on
reload.

Usage:
    # Write to the mapping_path configured in fleet.yaml
    uv run python scripts/build_constraint_mapping.py

    # Write somewhere else
    uv run python scripts/build_constraint_mapping.py --output mapping.json

    # Show counts without writing
    uv run python scripts/build_constraint_mapping.py --dry-run

Environment variables required:
    - UPSTREAM_API_KEY: Subscription key for the dispatch platform API
    - CONFIG_PATH: (optional) Path to fleet.yaml
"""

import argparse
import asyncio
import sys
from pathlib import Path

from fleet_snapshot.config import Settings, load_fleet_file, resolve_relative_paths
from fleet_snapshot.fetcher import MultiTenantFetcher, create_http_client
from fleet_snapshot.logging import configure_logging, get_logger
from fleet_snapshot.models import ResourceKind
from fleet_snapshot.resolver import build_mapping_file, write_mapping_file


async def build(output: Path | None, dry_run: bool) -> int:
    """Fetch tenant dumps and write the mapping.

    Returns:
        Process exit code.
    """
    settings = Settings()
    configure_logging(settings.log_level, "text")
    logger = get_logger("build_constraint_mapping")

    config = resolve_relative_paths(
        load_fleet_file(settings.config_path),
        settings.config_path.parent,
    )
    mapping_path = config.constraints.mapping_path
    target = output or (Path(mapping_path) if mapping_path else None)
    if target is None and not dry_run:
        logger.error("no_output_path", hint="pass --output or set constraints.mapping_path")
        return 2

    async with create_http_client(settings.max_concurrent) as client:
        fetcher = MultiTenantFetcher(
            client,
            config.upstream,
            config.tenants,
            api_key=settings.api_key,
            max_concurrent=settings.max_concurrent,
        )
        bundle = await fetcher.fetch_all([ResourceKind.DRIVERS, ResourceKind.INVENTORY])

    failed = {kind.value: sorted(tenants) for kind, tenants in bundle.failed.items() if tenants}
    if failed:
        # Partial dumps are not written
        logger.error("tenant_dump_incomplete", failed=failed)
        return 1

    mapping = build_mapping_file(
        bundle.get(ResourceKind.DRIVERS),
        bundle.get(ResourceKind.INVENTORY),
    )
    logger.info(
        "mapping_built",
        drivers=len(mapping.drivers),
        vehicles=len(mapping.vehicles),
        output=str(target),
        dry_run=dry_run,
    )

    if not dry_run and target is not None:
        write_mapping_file(mapping, target)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    parser.add_argument("--output", type=Path, default=None, help="Output JSON path")
    parser.add_argument("--dry-run", action="store_true", help="Fetch and count, do not write")
    args = parser.parse_args()

    sys.exit(asyncio.run(build(args.output, args.dry_run)))


if __name__ == "__main__":
    main()
