"""GPS validation against a geographic envelope."""

import math

from fleet_snapshot.models import GeoBounds
from fleet_snapshot.records import Coordinates, GpsRecord

DEFAULT_BOUNDS = GeoBounds()


def extract_coordinates(
    gps: GpsRecord | None,
    bounds: GeoBounds = DEFAULT_BOUNDS,
) -> Coordinates | None:
    """Return the validated position of a GPS record, or None.

    A record yields no position when it is missing, flagged as having no
    fix, carries a zero or missing coordinate, or falls outside the bounds.
    Never raises for bad input.

    Args:
        gps: GPS record for a vehicle, if one was reported.
        bounds: Envelope of acceptable positions.

    Returns:
        Coordinates when the fix is usable, otherwise None.
    """
    if gps is None or gps.is_empty:
        return None

    lat, lng = gps.latitude, gps.longitude
    if lat is None or lng is None:
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if lat == 0 or lng == 0:
        return None
    if not bounds.contains(lat, lng):
        return None

    return Coordinates(lat=lat, lng=lng)
