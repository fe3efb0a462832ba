"""Driver authorization roster loaded from an externally produced CSV."""

import csv
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from types import MappingProxyType

from fleet_snapshot.logging import get_logger
from fleet_snapshot.metrics import set_roster_entries
from fleet_snapshot.models import RosterConfig

logger = get_logger(__name__)

# Roster exports use day-first timestamps, with or without seconds
LAST_LOGON_FORMATS = (
    "%d/%m/%Y, %H:%M",
    "%d/%m/%Y, %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)

RECENT_LOGON_WINDOW = timedelta(hours=24)

# Normalized header name -> RosterEntry field
HEADER_FIELDS = {
    "drivercallsign": "driver_callsign",
    "drivername": "driver_name",
    "name": "driver_name",
    "company": "company",
    "vehiclecallsign": "vehicle_callsign",
    "lastlogon": "last_logon",
    "lastlogin": "last_logon",
}

REQUIRED_FIELDS = {"driver_callsign", "vehicle_callsign"}


class RosterError(Exception):
    """Roster file could not be read."""


class RosterMode(str, Enum):
    STRICT = "strict"
    PERMISSIVE = "permissive"


def parse_last_logon(value: str | None) -> datetime | None:
    """Parse a roster last-logon timestamp; unparseable values yield None."""
    if not value:
        return None
    value = value.strip()
    for fmt in LAST_LOGON_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def callsign_variants(callsign: str) -> list[str]:
    """Candidate spellings of a callsign: exact, zero-padded, zero-stripped."""
    callsign = callsign.strip()
    variants = [callsign]
    padded = callsign.zfill(2)
    stripped = callsign.lstrip("0") or "0"
    for variant in (padded, stripped):
        if variant not in variants:
            variants.append(variant)
    return variants


@dataclass(frozen=True)
class RosterEntry:
    """One authorized driver/vehicle pairing."""

    driver_callsign: str
    driver_name: str
    company: str
    vehicle_callsign: str
    last_logon: datetime | None = None

    def logged_on_since(self, now: datetime, window: timedelta = RECENT_LOGON_WINDOW) -> bool:
        """Check whether the driver logged on within the window before now.

        Roster timestamps carry no offset; an aware ``now`` is compared in UTC.
        """
        if self.last_logon is None:
            return False
        if now.tzinfo is not None:
            now = now.astimezone(UTC).replace(tzinfo=None)
        return self.last_logon > now - window


def _wins(candidate: RosterEntry, current: RosterEntry) -> bool:
    if candidate.last_logon is None:
        return False
    if current.last_logon is None:
        return True
    return candidate.last_logon > current.last_logon


@dataclass(frozen=True)
class Roster:
    """Immutable vehicle-callsign -> roster entry mapping."""

    by_vehicle: Mapping[str, RosterEntry]
    source: str | None = None

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[RosterEntry],
        source: str | None = None,
    ) -> "Roster":
        """Build a roster, keeping the most recent logon per vehicle.

        Ties and entries without a parseable logon keep the earlier row.
        """
        by_vehicle: dict[str, RosterEntry] = {}
        for entry in entries:
            current = by_vehicle.get(entry.vehicle_callsign)
            if current is None:
                by_vehicle[entry.vehicle_callsign] = entry
                continue

            kept, dropped = (entry, current) if _wins(entry, current) else (current, entry)
            logger.info(
                "roster_duplicate_vehicle",
                vehicle_callsign=entry.vehicle_callsign,
                kept_driver=kept.driver_callsign,
                dropped_driver=dropped.driver_callsign,
            )
            by_vehicle[entry.vehicle_callsign] = kept

        return cls(by_vehicle=MappingProxyType(by_vehicle), source=source)

    def lookup(self, callsign: str) -> RosterEntry | None:
        """Find the entry for a vehicle, tolerating zero-padding differences."""
        for variant in callsign_variants(callsign):
            entry = self.by_vehicle.get(variant)
            if entry is not None:
                return entry
        return None

    def __len__(self) -> int:
        return len(self.by_vehicle)


def _normalize_header(name: str) -> str:
    return re.sub(r"[^a-z]", "", name.lower())


def read_roster_csv(
    path: Path,
    companies: Iterable[str] | None = None,
) -> list[RosterEntry]:
    """Read roster rows from a CSV export.

    Columns are matched by header name, ignoring case, spaces and
    punctuation. Rows without a driver or vehicle callsign are skipped.

    Args:
        path: Path to the CSV file.
        companies: If given, only rows for these companies are kept.

    Returns:
        Roster entries in file order.

    Raises:
        FileNotFoundError: If the file does not exist.
        RosterError: If required columns are missing.
    """
    allowed = set(companies) if companies is not None else None
    entries: list[RosterEntry] = []

    # utf-8-sig strips the BOM that roster exports carry
    with path.open(newline="", encoding="utf-8-sig") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header is None:
            return entries

        columns: dict[str, int] = {}
        for index, name in enumerate(header):
            field_name = HEADER_FIELDS.get(_normalize_header(name))
            if field_name and field_name not in columns:
                columns[field_name] = index

        missing = REQUIRED_FIELDS - columns.keys()
        if missing:
            raise RosterError(f"Roster {path} is missing columns: {', '.join(sorted(missing))}")

        def cell(row: list[str], field_name: str) -> str:
            index = columns.get(field_name)
            if index is None or index >= len(row):
                return ""
            return row[index].strip()

        for row in reader:
            vehicle = cell(row, "vehicle_callsign")
            driver = cell(row, "driver_callsign")
            if not vehicle or not driver:
                continue
            company = cell(row, "company")
            if allowed is not None and company not in allowed:
                continue
            entries.append(
                RosterEntry(
                    driver_callsign=driver,
                    driver_name=cell(row, "driver_name"),
                    company=company,
                    vehicle_callsign=vehicle,
                    last_logon=parse_last_logon(cell(row, "last_logon")),
                )
            )

    return entries


@dataclass(frozen=True)
class RosterMatch:
    """Outcome of checking one vehicle against the roster."""

    authorized: bool
    entry: RosterEntry | None = None


class RosterStore:
    """Holds the current roster generation; replaced wholesale on reload."""

    def __init__(self, config: RosterConfig, roster: Roster | None = None) -> None:
        self.config = config
        self._roster = roster

    @property
    def roster(self) -> Roster | None:
        return self._roster

    @property
    def mode(self) -> RosterMode:
        """Strict only when a roster is loaded and strict filtering is enabled."""
        if self._roster is None or not self.config.strict:
            return RosterMode.PERMISSIVE
        return RosterMode.STRICT

    def swap(self, roster: Roster | None) -> None:
        """Publish a new roster generation."""
        self._roster = roster
        set_roster_entries(len(roster) if roster is not None else 0)

    def reload(self) -> Roster | None:
        """Reload the roster from the configured path and publish it.

        The previous generation stays in place if loading fails.

        Raises:
            FileNotFoundError: If the roster file is missing.
            RosterError: If the roster is malformed.
        """
        if not self.config.path:
            return self._roster
        entries = read_roster_csv(Path(self.config.path), self.config.companies)
        roster = Roster.from_entries(entries, source=self.config.path)
        self.swap(roster)
        logger.info(
            "roster_loaded",
            path=self.config.path,
            rows=len(entries),
            vehicles=len(roster),
        )
        return roster

    def authorize(self, callsign: str) -> RosterMatch:
        """Check a vehicle against the current roster and filtering mode."""
        # Bind once so the check sees a single generation
        roster = self._roster
        entry = roster.lookup(callsign) if roster is not None else None
        if entry is not None:
            return RosterMatch(authorized=True, entry=entry)
        return RosterMatch(authorized=self.mode is RosterMode.PERMISSIVE)
