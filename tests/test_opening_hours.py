"""
Tests for opening hours evaluation.

Tests cover:
1. Parsing of the supported subset (24/7, day ranges, lists, off, PH)
2. Overnight intervals spilling into the next day
3. Unknown hours (missing or unsupported strings)
4. Labels of the day
"""

from datetime import datetime

import pytest

from app.services.opening_hours import (
    UNKNOWN_LABEL,
    OpeningHoursParseError,
    opening_hours_of_the_day,
    parse_opening_hours,
)

# 2025-06-02 is a Monday
MONDAY = datetime(2025, 6, 2)


def at(day_offset: int, hour: int, minute: int = 0) -> datetime:
    return MONDAY.replace(day=MONDAY.day + day_offset, hour=hour, minute=minute)


class TestParseOpeningHours:
    """Tests for parse_opening_hours."""

    def test_always_open(self):
        hours = parse_opening_hours("24/7")
        assert hours.is_open(at(0, 3))
        assert hours.is_open(at(6, 23, 59))

    def test_weekday_ranges_with_split_service(self):
        hours = parse_opening_hours("Mo-Fr 11:30-14:00,18:30-22:00; Sa 18:00-23:00; Su off")
        assert hours.is_open(at(0, 12, 30))
        assert not hours.is_open(at(0, 15))
        assert hours.is_open(at(4, 21, 59))
        assert not hours.is_open(at(5, 12))
        assert hours.is_open(at(5, 19))
        assert not hours.is_open(at(6, 19))

    def test_end_is_exclusive(self):
        hours = parse_opening_hours("Mo 11:00-14:00")
        assert hours.is_open(at(0, 13, 59))
        assert not hours.is_open(at(0, 14))

    def test_wrapping_day_range_and_overnight(self):
        hours = parse_opening_hours("Fr-Mo 18:00-02:00")
        assert hours.is_open(at(6, 23))  # Sunday night
        assert hours.is_open(at(0, 1, 30))  # Monday, spill-over from Sunday
        assert hours.is_open(at(1, 1, 30))  # Tuesday, spill-over from Monday
        assert not hours.is_open(at(1, 2))
        assert not hours.is_open(at(2, 1))  # Wednesday
        assert not hours.is_open(at(3, 20))  # Thursday

    def test_rule_without_days_applies_every_day(self):
        hours = parse_opening_hours("10:00-22:00")
        assert all(hours.is_open(at(day, 12)) for day in range(7))

    def test_later_rules_override(self):
        hours = parse_opening_hours("Mo-Su 12:00-22:00; We off")
        assert hours.is_open(at(1, 13))
        assert not hours.is_open(at(2, 13))

    def test_day_lists(self):
        hours = parse_opening_hours("Mo,We,Fr 12:00-14:00")
        assert hours.is_open(at(2, 12))
        assert not hours.is_open(at(1, 12))

    def test_public_holiday_rules_are_ignored(self):
        hours = parse_opening_hours("Mo-Fr 09:00-18:00; PH off")
        assert hours.is_open(at(0, 10))

    @pytest.mark.parametrize(
        "text",
        ["", "sunrise-sunset", "Jan-Mar Mo 10:00-12:00", "Mo 25:00-26:00", "PH off", "Mo 10h-12h"],
    )
    def test_unsupported_strings_raise(self, text):
        with pytest.raises(OpeningHoursParseError):
            parse_opening_hours(text)


class TestOpeningHoursOfTheDay:
    """Tests for opening_hours_of_the_day."""

    def test_missing_hours_are_unknown(self):
        result = opening_hours_of_the_day(at(0, 12), None)
        assert result.unknown
        assert result.open is None
        assert result.hours_label == UNKNOWN_LABEL

    def test_unparseable_hours_are_unknown(self):
        result = opening_hours_of_the_day(at(0, 12), "by appointment")
        assert result.unknown

    def test_open_day_label(self):
        result = opening_hours_of_the_day(at(0, 12, 45), "Mo-Fr 11:30-14:00,18:30-22:00")
        assert result.open is True
        assert not result.unknown
        assert result.day_label == "Monday"
        assert result.hours_label == "11:30 - 14:00, 18:30 - 22:00"

    def test_closed_day_label(self):
        result = opening_hours_of_the_day(at(6, 12), "Mo-Sa 12:00-22:00; Su off")
        assert result.open is False
        assert result.hours_label == "Closed"

    def test_always_open_label(self):
        assert opening_hours_of_the_day(at(3, 4), "24/7").hours_label == "Open 24 hours"
