"""Tests for GPS validation."""

import pytest

from fleet_snapshot.geo import extract_coordinates
from fleet_snapshot.models import GeoBounds
from fleet_snapshot.records import Coordinates, GpsRecord


def make_gps(latitude: float | None, longitude: float | None, is_empty: bool = False) -> GpsRecord:
    return GpsRecord(id=1, latitude=latitude, longitude=longitude, is_empty=is_empty)


class TestExtractCoordinates:
    """Tests for extract_coordinates."""

    def test_valid_fix(self) -> None:
        """A fix inside the envelope is returned unchanged."""
        coords = extract_coordinates(make_gps(51.5, -0.1))
        assert coords == Coordinates(lat=51.5, lng=-0.1)

    def test_missing_record(self) -> None:
        assert extract_coordinates(None) is None

    def test_empty_fix(self) -> None:
        """The upstream no-fix flag discards otherwise valid coordinates."""
        assert extract_coordinates(make_gps(51.5, -0.1, is_empty=True)) is None

    @pytest.mark.parametrize(
        ("latitude", "longitude"),
        [
            (0.0, 0.0),
            (51.5, 0.0),
            (0.0, -0.1),
            (None, -0.1),
            (51.5, None),
        ],
    )
    def test_zero_or_missing_coordinate(
        self, latitude: float | None, longitude: float | None
    ) -> None:
        """Zero is the upstream placeholder for an unknown coordinate."""
        assert extract_coordinates(make_gps(latitude, longitude)) is None

    def test_out_of_bounds(self) -> None:
        """A fix in New York is rejected by the default UK envelope."""
        assert extract_coordinates(make_gps(40.7128, -74.0060)) is None

    def test_non_finite(self) -> None:
        assert extract_coordinates(make_gps(float("nan"), -0.1)) is None
        assert extract_coordinates(make_gps(51.5, float("inf"))) is None

    def test_boundary_is_inclusive(self) -> None:
        bounds = GeoBounds(min_latitude=50, max_latitude=52, min_longitude=-1, max_longitude=1.5)
        assert extract_coordinates(make_gps(52.0, 1.5), bounds) == Coordinates(lat=52.0, lng=1.5)

    def test_custom_bounds(self) -> None:
        """The envelope is configurable."""
        bounds = GeoBounds(
            min_latitude=40, max_latitude=41, min_longitude=-75, max_longitude=-73
        )
        assert extract_coordinates(make_gps(40.7128, -74.0060), bounds) is not None
        assert extract_coordinates(make_gps(51.5, -0.1), bounds) is None


class TestGeoBounds:
    """Tests for GeoBounds validation."""

    def test_inverted_latitude_rejected(self) -> None:
        with pytest.raises(ValueError, match="min_latitude"):
            GeoBounds(min_latitude=60, max_latitude=50)

    def test_inverted_longitude_rejected(self) -> None:
        with pytest.raises(ValueError, match="min_longitude"):
            GeoBounds(min_longitude=2, max_longitude=-8)
