"""APScheduler-based periodic reload of the roster and constraint table."""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

from apscheduler import AsyncScheduler, CoalescePolicy
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError

from fleet_snapshot.logging import get_logger
from fleet_snapshot.resolver import ConstraintResolver
from fleet_snapshot.roster import RosterError, RosterStore

logger = get_logger(__name__)

# APScheduler v4 needs importable job functions, so jobs look up their
# reloader by ID in this registry
_reloader_registry: dict[str, "LookupReloader"] = {}

RELOAD_ERRORS = (OSError, ValidationError, RosterError, ValueError)


async def _execute_scheduled_reload(reloader_id: str) -> None:
    """Module-level job function for APScheduler.

    Args:
        reloader_id: Unique ID of the reloader instance.
    """
    reloader = _reloader_registry.get(reloader_id)
    if reloader:
        await reloader.reload_all_async()


class LookupReloader:
    """Reloads lookup tables on demand and on a fixed interval."""

    def __init__(
        self,
        roster: RosterStore,
        resolver: ConstraintResolver,
        interval_seconds: int = 900,
    ) -> None:
        """Initialize the reloader.

        Args:
            roster: Roster store to reload.
            resolver: Resolver whose constraint table is reloaded.
            interval_seconds: Seconds between reloads (0 disables the schedule).
        """
        self._id = str(uuid.uuid4())
        self.roster = roster
        self.resolver = resolver
        self.interval_seconds = interval_seconds
        self._scheduler: AsyncScheduler | None = None
        self.last_reload: datetime | None = None

    @property
    def is_running(self) -> bool:
        """Check if the periodic schedule is running."""
        return self._scheduler is not None and self._scheduler.state.name == "started"

    def reload_all(self) -> dict[str, str]:
        """Reload the roster and the constraint table independently.

        A table that fails to load keeps its previous generation.

        Returns:
            Mapping of table name to "ok" or the error type.
        """
        outcome: dict[str, str] = {}

        try:
            self.roster.reload()
            outcome["roster"] = "ok"
        except RELOAD_ERRORS as e:
            outcome["roster"] = type(e).__name__
            logger.error(
                "roster_reload_failed",
                path=self.roster.config.path,
                error_type=type(e).__name__,
                error_message=str(e),
            )

        try:
            self.resolver.reload()
            outcome["constraints"] = "ok"
        except RELOAD_ERRORS as e:
            outcome["constraints"] = type(e).__name__
            logger.error(
                "constraint_table_reload_failed",
                path=self.resolver.config.mapping_path,
                error_type=type(e).__name__,
                error_message=str(e),
            )

        self.last_reload = datetime.now(UTC)
        return outcome

    async def reload_all_async(self) -> dict[str, str]:
        """Run reload_all in a worker thread."""
        return await asyncio.to_thread(self.reload_all)

    async def start(self) -> None:
        """Start the periodic reload schedule, if enabled."""
        if self.interval_seconds <= 0:
            logger.info("reload_schedule_disabled")
            return

        _reloader_registry[self._id] = self

        # APScheduler v4 requires the context manager to be entered
        self._scheduler = AsyncScheduler()
        await self._scheduler.__aenter__()

        start_time = datetime.now(UTC) + timedelta(seconds=self.interval_seconds)
        await self._scheduler.add_schedule(
            _execute_scheduled_reload,
            trigger=IntervalTrigger(seconds=self.interval_seconds, start_time=start_time),
            id=f"reload-{self._id}",
            kwargs={"reloader_id": self._id},
            coalesce=CoalescePolicy.latest,
        )
        await self._scheduler.start_in_background()

    async def stop(self) -> None:
        """Stop the periodic reload schedule."""
        if self._scheduler is not None:
            await self._scheduler.stop()
            await self._scheduler.wait_until_stopped()
            await self._scheduler.__aexit__(None, None, None)
            self._scheduler = None

        _reloader_registry.pop(self._id, None)
