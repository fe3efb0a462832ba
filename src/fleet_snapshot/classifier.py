"""Status colour classification for a single vehicle.

The classifier is a pure function of one status record. The base ladder
is evaluated top to bottom and the first matching rule decides:

1. Meter-off tag while at pickup -> ``meter_off_at_pickup`` (YELLOW by
   default, "going to client"; configurable to RED, "at pickup").
2. Meter-on / passenger-aboard tag -> RED.
3. Dispatched / offered tag, dispatch in progress, or prebookings while
   not at pickup -> YELLOW.
4. At pickup -> RED.
5. Otherwise -> GREEN.

A pause indicator (destination mode, a penalty, or soon-to-clear with
destination time remaining) then overrides the ladder with GRAY. A
vehicle with no status record is GREEN.
"""

from fleet_snapshot.models import ClassifierConfig, StatusColor
from fleet_snapshot.records import StatusRecord

DEFAULT_CLASSIFIER = ClassifierConfig()

# Raw status tags with a fixed human-readable label
READABLE_STATUS = {
    "BusyMeterOnFromMeterOffCash": "Busy Cash Job",
    "BusyMeterOnFromMeterOffAccount": "Busy Account Job",
    "BusyMeterOffAccount": "Busy Account Job",
    "BusyMeterOnFromMeterOffOnlineAndCash": "Busy Online Job",
    "BusyMeterOn": "Busy (Meter On)",
    "Busy": "Busy (Active Job)",
    "Clear": "Available",
    "Available": "Available",
    "Dispatched": "Dispatched to Job",
    "JobOffered": "Job Offered",
}


def is_paused(status: StatusRecord) -> bool:
    """Check whether a status record carries a pause indicator."""
    if status.in_destination_mode:
        return True
    if status.penalty is not None:
        return True
    return status.is_soon_to_clear and status.destination_mode_time_remaining is not None


def base_color(
    status: StatusRecord,
    config: ClassifierConfig = DEFAULT_CLASSIFIER,
) -> StatusColor:
    """Evaluate the base ladder, ignoring pause indicators."""
    status_type = status.vehicle_status_type

    if status_type in config.meter_off_tags and status.at_pickup:
        return config.meter_off_at_pickup
    if status_type in config.meter_on_tags:
        return StatusColor.RED
    if (
        status_type in config.dispatched_tags
        or status.dispatch_in_progress
        or (status.has_prebookings and not status.at_pickup)
    ):
        return StatusColor.YELLOW
    if status.at_pickup:
        return StatusColor.RED
    return StatusColor.GREEN


def classify_status(
    status: StatusRecord | None,
    config: ClassifierConfig = DEFAULT_CLASSIFIER,
) -> StatusColor:
    """Map a status record to one of the four canonical colours.

    Args:
        status: The vehicle's status record, or None when none was reported.
        config: Tag sets and the meter-off-at-pickup interpretation.

    Returns:
        The vehicle's StatusColor.
    """
    if status is None:
        return StatusColor.GREEN
    if is_paused(status):
        return StatusColor.GRAY
    return base_color(status, config)


def describe_status(status: StatusRecord | None) -> str:
    """Return a human-readable label for a vehicle's raw status."""
    if status is None:
        return "Available"

    raw = status.status_text or status.vehicle_status_type
    if not raw:
        return "Available"
    if raw == "BusyMeterOff":
        return "Going to Client" if status.at_pickup else "Available"
    return READABLE_STATUS.get(raw, raw)
