"""
Mailroom Fee Engine -- Business-Timezone Calendar Utilities

All "days since" arithmetic in the engine goes through this module.  A day
boundary is business-local midnight in America/New_York, for every tenant,
regardless of the timezone the process runs in.

Day counts are differences between calendar dates, never elapsed time
divided by 24 hours: a package logged at 11pm is "1 day old" one minute
after local midnight, and a 23-hour or 25-hour DST day still counts as one.

Accepted instant inputs:
  - timezone-aware ``datetime``
  - naive ``datetime`` (interpreted as UTC, the store's convention)
  - ISO-8601 string, with offset or trailing ``Z``
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from .config import BUSINESS_TIMEZONE

BUSINESS_TZ = ZoneInfo(BUSINESS_TIMEZONE)

_DATE_STRING_FORMAT = "%Y-%m-%d"


# ---------------------------------------------------------------------------
# Instant coercion
# ---------------------------------------------------------------------------

def now_utc() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_instant(value: datetime | str) -> datetime:
    """Coerce a datetime or ISO-8601 string into an aware datetime.

    Naive datetimes are treated as UTC.

    >>> to_instant("2025-12-10T00:00:00Z").isoformat()
    '2025-12-10T00:00:00+00:00'
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    if not isinstance(value, datetime):
        raise TypeError(f"Expected datetime or ISO string, got {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Core contract
# ---------------------------------------------------------------------------

def business_date(instant: datetime | str) -> date:
    """Calendar date the instant falls on in the business timezone.

    >>> business_date("2025-12-10T00:00:00Z")   # 7pm EST on Dec 9
    datetime.date(2025, 12, 9)
    """
    return to_instant(instant).astimezone(BUSINESS_TZ).date()


def days_between(start: datetime | str, end: datetime | str) -> int:
    """Whole business-calendar days from ``start`` to ``end``.

    Negative when ``end`` is on an earlier business date; callers clamp.

    >>> days_between("2025-12-10T04:59:00Z", "2025-12-10T05:01:00Z")
    1
    """
    return (business_date(end) - business_date(start)).days


def days_since(instant: datetime | str, as_of: datetime | str | None = None) -> int:
    """Non-negative business days from ``instant`` until ``as_of`` (default now)."""
    if as_of is None:
        as_of = now_utc()
    return max(0, days_between(instant, as_of))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_business_date_string(instant: datetime | str) -> str:
    """Business date formatted as 'YYYY-MM-DD'."""
    return business_date(instant).strftime(_DATE_STRING_FORMAT)


def is_same_business_day(a: datetime | str, b: datetime | str) -> bool:
    return business_date(a) == business_date(b)


def is_business_today(instant: datetime | str, as_of: datetime | str | None = None) -> bool:
    """True when ``instant`` falls on the same business date as ``as_of``."""
    if as_of is None:
        as_of = now_utc()
    return is_same_business_day(instant, as_of)


def start_of_business_day(day: date) -> datetime:
    """Aware UTC instant of business-local midnight opening ``day``."""
    local_midnight = datetime.combine(day, time.min, tzinfo=BUSINESS_TZ)
    return local_midnight.astimezone(timezone.utc)


def format_business_date(instant: datetime | str) -> str:
    """Human-readable business date, e.g. 'Dec 09, 2025'."""
    return business_date(instant).strftime("%b %d, %Y")
