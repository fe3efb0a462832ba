"""Tests for status colour classification."""

from typing import Any

import pytest

from fleet_snapshot.classifier import base_color, classify_status, describe_status, is_paused
from fleet_snapshot.models import ClassifierConfig, StatusColor
from fleet_snapshot.records import StatusRecord


def make_status(status_type: str | None = "Clear", **fields: Any) -> StatusRecord:
    """Create a status record with the given flags."""
    return StatusRecord(vehicle_id=1, vehicle_status_type=status_type, **fields)


class TestClassifyStatus:
    """Tests for the base colour ladder and the pause override."""

    def test_clear_is_green(self) -> None:
        """A clear vehicle with no flags is available."""
        assert classify_status(make_status("Clear")) == StatusColor.GREEN

    def test_missing_status_is_green(self) -> None:
        """A vehicle that reported no status is treated as available."""
        assert classify_status(None) == StatusColor.GREEN

    def test_meter_on_is_red(self) -> None:
        """A passenger-aboard tag is busy."""
        assert classify_status(make_status("BusyMeterOnFromMeterOffCash")) == StatusColor.RED

    @pytest.mark.parametrize(
        "status_type",
        [
            "BusyMeterOnFromMeterOffAccount",
            "BusyMeterOnFromMeterOffOnlineAndCash",
            "Busy",
            "BusyMeterOn",
        ],
    )
    def test_all_meter_on_tags_are_red(self, status_type: str) -> None:
        """Every meter-on tag maps to RED."""
        assert classify_status(make_status(status_type)) == StatusColor.RED

    def test_destination_mode_overrides_meter_on(self) -> None:
        """Pause indicators take precedence over the base ladder."""
        status = make_status("BusyMeterOnFromMeterOffCash", in_destination_mode=True)
        assert classify_status(status) == StatusColor.GRAY

    def test_dispatched_is_yellow(self) -> None:
        """A dispatched vehicle is heading to a job."""
        assert classify_status(make_status("Dispatched")) == StatusColor.YELLOW

    def test_job_offered_is_yellow(self) -> None:
        assert classify_status(make_status("JobOffered")) == StatusColor.YELLOW

    def test_dispatch_in_progress_is_yellow(self) -> None:
        """The dispatch flag alone is enough for YELLOW."""
        status = make_status("Clear", dispatch_in_progress=True)
        assert classify_status(status) == StatusColor.YELLOW

    def test_prebookings_not_at_pickup_is_yellow(self) -> None:
        status = make_status("Clear", has_prebookings=True)
        assert classify_status(status) == StatusColor.YELLOW

    def test_prebookings_at_pickup_is_red(self) -> None:
        """Prebookings only count while not yet at pickup."""
        status = make_status("Clear", has_prebookings=True, at_pickup=True)
        assert classify_status(status) == StatusColor.RED

    def test_at_pickup_is_red(self) -> None:
        """A vehicle at the pickup point with no other tag is busy."""
        assert classify_status(make_status("Clear", at_pickup=True)) == StatusColor.RED

    def test_meter_off_not_at_pickup_is_yellow(self) -> None:
        """Meter-off tags belong to the dispatched set."""
        assert classify_status(make_status("BusyMeterOff")) == StatusColor.YELLOW

    def test_meter_off_at_pickup_defaults_to_yellow(self) -> None:
        """By default meter-off at pickup reads as going to client."""
        status = make_status("BusyMeterOff", at_pickup=True)
        assert classify_status(status) == StatusColor.YELLOW

    def test_meter_off_at_pickup_configured_red(self) -> None:
        """The meter-off at pickup combination can be configured as busy."""
        config = ClassifierConfig(meter_off_at_pickup=StatusColor.RED)
        status = make_status("BusyMeterOffCash", at_pickup=True)
        assert classify_status(status, config) == StatusColor.RED

    def test_unknown_tag_is_green(self) -> None:
        """Unrecognized tags fall through the ladder."""
        assert classify_status(make_status("SomethingNew")) == StatusColor.GREEN

    def test_null_status_type_uses_flags(self) -> None:
        status = make_status(None, at_pickup=True)
        assert classify_status(status) == StatusColor.RED

    def test_penalty_is_gray(self) -> None:
        """Any penalty value pauses the vehicle."""
        status = make_status("Clear", penalty={"minutes": 10})
        assert classify_status(status) == StatusColor.GRAY

    def test_soon_to_clear_with_time_remaining_is_gray(self) -> None:
        status = make_status(
            "BusyMeterOn",
            is_soon_to_clear=True,
            destination_mode_time_remaining="00:05:00",
        )
        assert classify_status(status) == StatusColor.GRAY

    def test_soon_to_clear_alone_is_not_paused(self) -> None:
        """Soon-to-clear without destination time does not pause."""
        status = make_status("BusyMeterOn", is_soon_to_clear=True)
        assert classify_status(status) == StatusColor.RED

    def test_custom_tag_sets(self) -> None:
        """Tag sets come from configuration."""
        config = ClassifierConfig(
            meter_on_tags=frozenset({"Occupied"}),
            dispatched_tags=frozenset({"EnRoute"}),
            meter_off_tags=frozenset(),
        )
        assert classify_status(make_status("Occupied"), config) == StatusColor.RED
        assert classify_status(make_status("EnRoute"), config) == StatusColor.YELLOW
        assert classify_status(make_status("Busy"), config) == StatusColor.GREEN


class TestIsPaused:
    """Tests for the pause indicators."""

    def test_no_indicators(self) -> None:
        assert is_paused(make_status("Clear")) is False

    def test_destination_mode(self) -> None:
        assert is_paused(make_status("Clear", in_destination_mode=True)) is True

    def test_base_color_ignores_pause(self) -> None:
        """base_color evaluates only the ladder."""
        status = make_status("Dispatched", in_destination_mode=True)
        assert base_color(status) == StatusColor.YELLOW


class TestClassifierConfig:
    """Tests for ClassifierConfig validation."""

    def test_rejects_green_for_meter_off_at_pickup(self) -> None:
        with pytest.raises(ValueError, match="meter_off_at_pickup"):
            ClassifierConfig(meter_off_at_pickup=StatusColor.GREEN)

    def test_rejects_overlapping_tag_sets(self) -> None:
        with pytest.raises(ValueError, match="must not overlap"):
            ClassifierConfig(
                meter_on_tags=frozenset({"Busy"}),
                dispatched_tags=frozenset({"Busy"}),
            )

    def test_meter_off_tags_must_be_dispatched(self) -> None:
        with pytest.raises(ValueError, match="subset of dispatched_tags"):
            ClassifierConfig(meter_off_tags=frozenset({"BusyMeterOff", "Parked"}))

    def test_meter_off_tags_cannot_be_meter_on(self) -> None:
        """A meter-on tag listed as meter-off would change the colour at pickup."""
        with pytest.raises(ValueError, match="meter_off_tags and meter_on_tags"):
            ClassifierConfig(
                meter_on_tags=frozenset({"BusyMeterOn"}),
                dispatched_tags=frozenset({"Dispatched"}),
                meter_off_tags=frozenset({"BusyMeterOn"}),
            )


class TestDescribeStatus:
    """Tests for human-readable status labels."""

    def test_missing_status(self) -> None:
        assert describe_status(None) == "Available"

    def test_known_tag(self) -> None:
        assert describe_status(make_status("BusyMeterOnFromMeterOffCash")) == "Busy Cash Job"

    def test_meter_off_at_pickup(self) -> None:
        status = make_status("BusyMeterOff", at_pickup=True)
        assert describe_status(status) == "Going to Client"

    def test_meter_off_elsewhere(self) -> None:
        assert describe_status(make_status("BusyMeterOff")) == "Available"

    def test_unknown_tag_passes_through(self) -> None:
        assert describe_status(make_status("OnBreak")) == "OnBreak"

    def test_status_text_preferred(self) -> None:
        """The free-text status wins over the tag when present."""
        status = make_status("Clear", status_text="Dispatched")
        assert describe_status(status) == "Dispatched to Job"

    def test_empty_tag(self) -> None:
        assert describe_status(make_status(None)) == "Available"
