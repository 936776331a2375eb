"""Tests for schedule parsing and partner availability windows."""
from datetime import date
from types import SimpleNamespace

import pytest

from booking_service.availability import is_available, parse_time_to_minutes

from conftest import MONDAY, weekly

TUESDAY = date(2024, 6, 11)


def _partner(availability):
    return SimpleNamespace(id=1, availability=availability)


class TestParseTime:

    @pytest.mark.parametrize("value,expected", [
        ("09:00", 540),
        ("17:30", 1050),
        ("00:00", 0),
        ("9:05 AM", 545),
        ("12:00 AM", 0),
        ("12:30 PM", 750),
        ("05:00 pm", 1020),
    ])
    def test_valid_formats(self, value, expected):
        assert parse_time_to_minutes(value) == expected

    @pytest.mark.parametrize("value", ["", None, "25:00", "10:75", "13:00 PM", "noon", "1000"])
    def test_invalid_values(self, value):
        assert parse_time_to_minutes(value) is None


class TestIsAvailable:

    def test_asap_booking_is_always_available(self):
        partner = _partner(weekly(day="sunday"))
        assert is_available(partner, None, None) is True
        assert is_available(partner, MONDAY, None) is True

    def test_inside_window(self):
        assert is_available(_partner(weekly()), MONDAY, "10:00") is True

    def test_window_bounds_are_inclusive(self):
        partner = _partner(weekly(start="09:00", end="17:00"))
        assert is_available(partner, MONDAY, "09:00") is True
        assert is_available(partner, MONDAY, "5:00 PM") is True
        assert is_available(partner, MONDAY, "17:01") is False

    def test_day_marked_unavailable(self):
        assert is_available(_partner(weekly(day="monday")), TUESDAY, "10:00") is False

    def test_missing_day_entry(self):
        assert is_available(_partner([]), MONDAY, "10:00") is False

    def test_unparseable_time_is_unavailable(self):
        table = weekly()
        table[0]["start_time"] = "morning"
        assert is_available(_partner(table), MONDAY, "10:00") is False

    def test_unenforced_policy_treats_everyone_as_available(self):
        partner = _partner(weekly(day="sunday"))
        assert is_available(partner, MONDAY, "10:00", enforce_window=False) is True
        assert is_available(partner, MONDAY, "10:00", enforce_window=True) is False
