"""Tests for the date/time helpers used by scheduling."""

from datetime import date, datetime, timezone

import pytest

from util.dates import (
    ceil_to_half_hour,
    format_clock,
    format_date,
    infer_duration,
    parse_clock_time,
    parse_date_phrase,
    parse_iso_datetime,
)

TUESDAY = date(2025, 6, 10)


class TestParseDatePhrase:
    @pytest.mark.parametrize("text,expected", [
        ("lunch on 2025-07-01 please", date(2025, 7, 1)),
        ("today at noon", TUESDAY),
        ("tomorrow at 9am", date(2025, 6, 11)),
        ("next monday", date(2025, 6, 16)),
        ("next tuesday", date(2025, 6, 17)),
        ("on friday", date(2025, 6, 13)),
        ("this tuesday", TUESDAY),
        ("October 21", date(2025, 10, 21)),
        ("the 3rd of july", date(2025, 7, 3)),
    ])
    def test_recognised_phrases(self, text, expected):
        assert parse_date_phrase(text, TUESDAY) == expected

    def test_month_day_in_the_past_rolls_to_next_year(self):
        assert parse_date_phrase("January 5", TUESDAY) == date(2026, 1, 5)

    def test_explicit_year_is_kept(self):
        assert parse_date_phrase("January 5, 2025", TUESDAY) == date(2025, 1, 5)

    def test_nothing_recognisable(self):
        assert parse_date_phrase("sometime soon", TUESDAY) is None
        assert parse_date_phrase("", TUESDAY) is None


class TestParseClockTime:
    @pytest.mark.parametrize("text,expected", [
        ("9am", "09:00"),
        ("at 9:15 pm", "21:15"),
        ("12am", "00:00"),
        ("12pm", "12:00"),
        ("14:30", "14:30"),
        ("noon", "12:00"),
        ("midnight", "00:00"),
        ("3 p.m.", "15:00"),
    ])
    def test_formats(self, text, expected):
        assert parse_clock_time(text) == expected

    def test_no_time(self):
        assert parse_clock_time("tomorrow") is None


class TestDuration:
    def test_same_day(self):
        assert infer_duration("14:00", "14:30") == 30

    def test_wraps_past_midnight(self):
        assert infer_duration("23:30", "00:15") == 45

    def test_equal_times_mean_a_full_day(self):
        assert infer_duration("10:00", "10:00") == 24 * 60


class TestFormatting:
    def test_format_clock(self):
        assert format_clock(datetime(2025, 6, 10, 9, 0)) == "9:00 AM"
        assert format_clock(datetime(2025, 6, 10, 13, 5)) == "1:05 PM"
        assert format_clock(datetime(2025, 6, 10, 0, 30)) == "12:30 AM"

    def test_format_date(self):
        assert format_date(date(2025, 6, 1)) == "6/1/2025"

    def test_ceil_to_half_hour(self):
        assert ceil_to_half_hour(datetime(2025, 6, 10, 13, 10)) == datetime(2025, 6, 10, 13, 30)
        assert ceil_to_half_hour(datetime(2025, 6, 10, 13, 30)) == datetime(2025, 6, 10, 13, 30)
        assert ceil_to_half_hour(datetime(2025, 6, 10, 13, 45)) == datetime(2025, 6, 10, 14, 0)

    def test_naive_iso_is_taken_in_the_given_zone(self):
        parsed = parse_iso_datetime("2025-06-11T09:00:00", timezone.utc)
        assert parsed == datetime(2025, 6, 11, 9, 0, tzinfo=timezone.utc)
