"""Tests for shared utility functions."""

from datetime import datetime, timedelta, timezone

import pytest

from brand_booking.utils import (
    format_timestamp,
    normalize_phone,
    parse_iso_duration,
    parse_timestamp,
    to_utc,
)


class TestNormalizePhone:
    def test_strips_spaces(self):
        assert normalize_phone("0412 345 678") == "0412345678"

    def test_strips_dashes(self):
        assert normalize_phone("0412-345-678") == "0412345678"

    def test_preserves_leading_plus(self):
        assert normalize_phone("+45 12 34 56 78") == "+4512345678"

    def test_strips_whitespace(self):
        assert normalize_phone("  0412345678  ") == "0412345678"

    def test_mixed_separators(self):
        assert normalize_phone("+45 (12) 34-56-78") == "+4512345678"


class TestParseIsoDuration:
    @pytest.mark.parametrize("value,minutes", [
        ("PT1H", 60),
        ("PT30M", 30),
        ("PT1H30M", 90),
        ("pt45m", 45),
        ("P1D", 1440),
        ("PT2H0M59S", 120),
    ])
    def test_valid_durations(self, value, minutes):
        assert parse_iso_duration(value) == minutes

    @pytest.mark.parametrize("value", ["", "1H", "PT", "P", "PT1X"])
    def test_invalid_durations(self, value):
        with pytest.raises(ValueError, match="ISO-8601"):
            parse_iso_duration(value)


class TestTimestamps:
    def test_naive_is_taken_as_utc(self):
        assert to_utc(datetime(2026, 3, 2, 9, 0)).tzinfo == timezone.utc

    def test_offset_is_converted(self):
        value = datetime(2026, 3, 2, 10, 0, tzinfo=timezone(timedelta(hours=1)))
        assert to_utc(value) == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def test_parse_graph_seven_digit_fraction(self):
        parsed = parse_timestamp("2026-03-02T09:00:00.0000000")
        assert parsed == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def test_parse_z_suffix(self):
        assert parse_timestamp("2026-03-02T09:00:00Z").hour == 9

    def test_format_is_utc_without_offset(self):
        value = datetime(2026, 3, 2, 10, 0, tzinfo=timezone(timedelta(hours=1)))
        assert format_timestamp(value) == "2026-03-02T09:00:00"
