"""Tests for mailroom.calendar_days -- business-timezone day arithmetic.

Covers:
- Business date of UTC / offset / naive / string instants
- Day counts across local midnight, both DST transitions and year end
- Independence from the process timezone
- Helper functions (date strings, same-day checks, start of day)
"""

import time
from datetime import date, datetime, timedelta, timezone

import pytest

from mailroom.calendar_days import (
    business_date,
    days_between,
    days_since,
    format_business_date,
    is_business_today,
    is_same_business_day,
    start_of_business_day,
    to_business_date_string,
    to_instant,
)


# ============================================================================
# Instant Coercion
# ============================================================================

class TestToInstant:
    def test_z_suffix(self):
        assert to_instant("2025-12-10T05:00:00Z") == datetime(2025, 12, 10, 5, tzinfo=timezone.utc)

    def test_offset_string(self):
        dt = to_instant("2025-12-10T00:00:00-05:00")
        assert dt.utcoffset() == timedelta(hours=-5)

    def test_naive_is_utc(self):
        dt = to_instant(datetime(2025, 12, 10, 3, 0))
        assert dt.tzinfo == timezone.utc

    def test_aware_passthrough(self):
        dt = datetime(2025, 12, 10, 3, 0, tzinfo=timezone.utc)
        assert to_instant(dt) is dt

    def test_bad_type(self):
        with pytest.raises(TypeError):
            to_instant(12345)

    def test_bad_string(self):
        with pytest.raises(ValueError):
            to_instant("not a date")


# ============================================================================
# Business Date
# ============================================================================

class TestBusinessDate:
    def test_utc_midnight_is_previous_evening(self):
        assert business_date("2025-12-10T00:00:00Z") == date(2025, 12, 9)

    def test_naive_datetime_treated_as_utc(self):
        assert business_date(datetime(2025, 12, 10, 3, 0)) == date(2025, 12, 9)
        assert business_date(datetime(2025, 12, 10, 6, 0)) == date(2025, 12, 10)

    def test_summer_offset(self):
        # EDT is UTC-4
        assert business_date("2025-07-04T03:59:00Z") == date(2025, 7, 3)
        assert business_date("2025-07-04T04:00:00Z") == date(2025, 7, 4)

    @pytest.mark.skipif(not hasattr(time, "tzset"), reason="requires time.tzset")
    def test_independent_of_process_timezone(self, monkeypatch):
        expected = business_date("2025-12-10T03:00:00Z")
        monkeypatch.setenv("TZ", "Asia/Tokyo")
        time.tzset()
        try:
            assert business_date("2025-12-10T03:00:00Z") == expected == date(2025, 12, 9)
        finally:
            monkeypatch.undo()
            time.tzset()


# ============================================================================
# Day Counting
# ============================================================================

class TestDaysBetween:
    @pytest.mark.parametrize("start,end,expected", [
        # Local midnight crossing, two minutes apart
        ("2025-12-10T04:59:00Z", "2025-12-10T05:01:00Z", 1),
        # 23 hours on the same local date
        ("2025-12-09T00:30:00-05:00", "2025-12-09T23:30:00-05:00", 0),
        # Spring forward (Mar 9 2025 is a 23-hour day)
        ("2025-03-09T04:30:00Z", "2025-03-10T03:59:00Z", 1),
        ("2025-03-09T04:30:00Z", "2025-03-10T04:01:00Z", 2),
        # Fall back (Nov 2 2025 is a 25-hour day)
        ("2025-11-01T04:30:00Z", "2025-11-03T04:59:00Z", 1),
        ("2025-11-01T04:30:00Z", "2025-11-03T05:01:00Z", 2),
        # Year boundary
        ("2025-12-31T23:00:00-05:00", "2026-01-01T00:30:00-05:00", 1),
        # One full week
        ("2025-12-03T10:00:00-05:00", "2025-12-10T10:00:00-05:00", 7),
    ])
    def test_reference_dates(self, start, end, expected):
        assert days_between(start, end) == expected

    def test_negative_when_end_is_earlier(self):
        assert days_between("2025-12-10T15:00:00Z", "2025-12-08T15:00:00Z") == -2

    def test_days_since_clamps_at_zero(self):
        assert days_since("2025-12-10T15:00:00Z", "2025-12-08T15:00:00Z") == 0

    def test_days_since_defaults_to_now(self):
        two_days_ago = datetime.now(timezone.utc) - timedelta(days=2, hours=1)
        assert days_since(two_days_ago) in (2, 3)


# ============================================================================
# Helpers
# ============================================================================

class TestHelpers:
    def test_date_string(self):
        assert to_business_date_string("2025-12-10T04:00:00Z") == "2025-12-09"

    def test_format_business_date(self):
        assert format_business_date("2025-12-10T04:00:00Z") == "Dec 09, 2025"

    def test_same_business_day(self):
        assert is_same_business_day("2025-12-10T05:30:00Z", "2025-12-11T04:30:00Z")
        assert not is_same_business_day("2025-12-10T04:30:00Z", "2025-12-10T05:30:00Z")

    def test_is_business_today(self):
        assert is_business_today("2025-12-10T14:00:00Z", as_of="2025-12-10T22:00:00Z")
        assert not is_business_today("2025-12-10T14:00:00Z", as_of="2025-12-11T06:00:00Z")

    def test_start_of_business_day_winter(self):
        assert start_of_business_day(date(2025, 12, 10)) == datetime(2025, 12, 10, 5, tzinfo=timezone.utc)

    def test_start_of_business_day_summer(self):
        assert start_of_business_day(date(2025, 7, 4)) == datetime(2025, 7, 4, 4, tzinfo=timezone.utc)
