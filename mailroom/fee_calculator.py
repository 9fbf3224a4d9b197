"""
Mailroom Fee Engine -- Storage Fee Calculator

Pure function from (package, as-of instant) to the fee owed.

Business rules:
    Day 0 (arrival) and Day 1 are free (grace period of 1 day).
    Each later business day costs ``daily_rate`` ($2.00 by default).
    Day 2 is the first billable day.

Day counting uses business-local midnights (see calendar_days), so a package
logged at 11pm reaches Day 1 at local midnight, not 24 hours later.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .calendar_days import days_between, now_utc
from .models import MailItem, PackageFee

DEFAULT_DAILY_RATE: float = 2.00
DEFAULT_GRACE_PERIOD_DAYS: int = 1


@dataclass(frozen=True)
class FeeCalculation:
    """Result of a single fee calculation."""
    fee_amount: float
    days_charged: int
    billable_days: int

    def to_dict(self) -> dict[str, float | int]:
        return {
            "fee_amount": self.fee_amount,
            "days_charged": self.days_charged,
            "billable_days": self.billable_days,
        }


def calculate_fee(
    mail_item: MailItem,
    as_of: Optional[datetime | str] = None,
    daily_rate: float = DEFAULT_DAILY_RATE,
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
) -> FeeCalculation:
    """Calculate the storage fee for a package as of a given instant.

    Args:
        mail_item: The package; only ``received_date`` is read.
        as_of: Instant to calculate at.  Defaults to now.
        daily_rate: Dollars per billable day.
        grace_period_days: Free days after Day 0.

    Returns:
        FeeCalculation with the amount rounded to cents.

    Examples:
        >>> item = MailItem("m1", "c1", received_date=datetime.fromisoformat("2025-12-03T10:00:00-05:00"))
        >>> calculate_fee(item, "2025-12-10T10:00:00-05:00")
        FeeCalculation(fee_amount=12.0, days_charged=7, billable_days=6)
    """
    if as_of is None:
        as_of = now_utc()

    # Clock skew can put received_date after as_of; never bill or store negatives.
    days_charged = max(0, days_between(mail_item.received_date, as_of))
    billable_days = max(0, days_charged - grace_period_days)
    fee_amount = round(billable_days * daily_rate, 2)

    return FeeCalculation(
        fee_amount=fee_amount,
        days_charged=days_charged,
        billable_days=billable_days,
    )


def calculate_fee_for_record(
    fee: PackageFee,
    mail_item: MailItem,
    as_of: Optional[datetime | str] = None,
) -> FeeCalculation:
    """Recalculate an existing fee using the rate and grace fixed on that fee."""
    return calculate_fee(
        mail_item,
        as_of=as_of,
        daily_rate=fee.daily_rate,
        grace_period_days=fee.grace_period_days,
    )
