"""
Mailroom Fee Engine -- Fee Lifecycle Manager

Creates fee records and moves them through ``pending -> paid | waived``.

A terminal transition is a single conditional update on the store
(``WHERE fee_id = ? AND fee_status = 'pending'``).  If no row matched, the
fee was missing or already processed and ``AlreadyProcessedError`` is
raised; the two cases are not distinguished.  Under concurrent
calls for the same fee exactly one caller succeeds.

Usage:
    from mailroom.fee_service import FeeService

    service = FeeService(store)
    fee = service.create_fee_record("mail-1", "contact-1", "tenant-1")
    service.waive_fee(fee.fee_id, "Customer complaint resolved", "staff-7")
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from .calendar_days import now_utc, start_of_business_day
from .config import MailroomConfig, get_config
from .exceptions import AlreadyProcessedError, ValidationError
from .fee_calculator import calculate_fee
from .models import FeeStatus, MailItem, PackageFee, RevenueStats
from .store import SQLiteStore

logger = logging.getLogger(__name__)


class FeeService:
    """Fee record creation, terminal transitions and fee queries."""

    def __init__(self, store: SQLiteStore, config: MailroomConfig | None = None):
        self.store = store
        self.config = config or get_config()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_fee_record(
        self,
        mail_item_id: str,
        contact_id: str,
        user_id: str,
        fee_amount: float = 0.0,
        days_charged: int = 0,
    ) -> PackageFee:
        """Insert a pending fee for a fee-bearing mail item.

        New fees start at $0.00 / day 0 with the configured rate and grace
        period; the daily recalculation brings them up to date.  At most one
        fee may exist per mail item.
        """
        fee = PackageFee(
            fee_id="",
            mail_item_id=mail_item_id,
            contact_id=contact_id,
            user_id=user_id,
            fee_amount=fee_amount,
            days_charged=days_charged,
            daily_rate=self.config.fees.daily_rate,
            grace_period_days=self.config.fees.grace_period_days,
            fee_status=FeeStatus.PENDING.value,
            last_calculated_at=now_utc(),
        )
        self.store.insert_fee(fee)
        logger.info("Created fee record %s for mail item %s", fee.fee_id, mail_item_id)
        return fee

    def is_fee_bearing(self, mail_item: MailItem) -> bool:
        return mail_item.item_type in self.config.fees.fee_item_types

    def ensure_fee_for_item(
        self,
        mail_item: MailItem,
        as_of: Optional[datetime | str] = None,
    ) -> PackageFee | None:
        """Create the fee for a fee-bearing item if it doesn't have one yet.

        Called at intake and whenever an item's type changes.  With ``as_of``
        the new fee is seeded with the amount already accrued; otherwise it
        starts at zero.

        Returns:
            The existing or newly created fee, or None for items that don't
            bear fees.
        """
        if not self.is_fee_bearing(mail_item):
            return None

        existing = self.store.get_fee_for_mail_item(mail_item.mail_item_id)
        if existing is not None:
            return existing

        amount, days = 0.0, 0
        if as_of is not None:
            calc = calculate_fee(
                mail_item,
                as_of=as_of,
                daily_rate=self.config.fees.daily_rate,
                grace_period_days=self.config.fees.grace_period_days,
            )
            amount, days = calc.fee_amount, calc.days_charged

        return self.create_fee_record(
            mail_item.mail_item_id,
            mail_item.contact_id,
            mail_item.user_id,
            fee_amount=amount,
            days_charged=days,
        )

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def waive_fee(self, fee_id: str, reason: str, actor_id: str) -> PackageFee:
        """Waive a pending fee.

        Raises:
            ValidationError: reason is missing or too short after stripping.
            AlreadyProcessedError: fee missing, already paid or already waived.
        """
        min_len = self.config.fees.min_waive_reason_length
        cleaned = (reason or "").strip()
        if len(cleaned) < min_len:
            raise ValidationError(
                f"Waive reason must be at least {min_len} characters"
            )

        affected = self.store.conditional_update_fee(
            fee_id,
            FeeStatus.PENDING,
            {
                "fee_status": FeeStatus.WAIVED.value,
                "waived_date": now_utc(),
                "waive_reason": cleaned,
                "waived_by": actor_id,
            },
            action="waived",
            actor=actor_id,
        )
        if affected == 0:
            raise AlreadyProcessedError(fee_id)

        logger.info("Fee %s waived by %s: %s", fee_id, actor_id, cleaned)
        return self.store.get_fee(fee_id)

    def mark_fee_paid(
        self,
        fee_id: str,
        payment_method: str,
        collected_amount: Optional[float] = None,
        collected_by: Optional[str] = None,
    ) -> PackageFee:
        """Record payment of a pending fee.

        ``collected_amount`` below the fee amount records a discount; the
        fee amount itself keeps what was owed.  Leaving it out means the
        full amount was collected.

        Raises:
            ValidationError: unknown payment method or negative amount.
            AlreadyProcessedError: fee missing, already paid or already waived.
        """
        method = (payment_method or "").strip().lower()
        allowed = [m.lower() for m in self.config.fees.payment_methods]
        if method not in allowed:
            raise ValidationError(
                f"Invalid payment method '{payment_method}'. "
                f"Must be one of: {', '.join(allowed)}"
            )
        if collected_amount is not None:
            collected_amount = float(collected_amount)
            if collected_amount < 0:
                raise ValidationError("Collected amount cannot be negative")
            collected_amount = round(collected_amount, 2)

        affected = self.store.conditional_update_fee(
            fee_id,
            FeeStatus.PENDING,
            {
                "fee_status": FeeStatus.PAID.value,
                "paid_date": now_utc(),
                "payment_method": method,
                "collected_amount": collected_amount,
                "collected_by": collected_by,
            },
            action="paid",
            actor=collected_by,
        )
        if affected == 0:
            raise AlreadyProcessedError(fee_id)

        fee = self.store.get_fee(fee_id)
        if fee is not None and fee.discount_amount > 0:
            logger.info(
                "Fee %s paid via %s with discount $%.2f (owed $%.2f, collected $%.2f)",
                fee_id, method, fee.discount_amount, fee.fee_amount, collected_amount,
            )
        else:
            logger.info("Fee %s paid via %s", fee_id, method)
        return fee

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_fee(self, fee_id: str) -> PackageFee | None:
        return self.store.get_fee(fee_id)

    def get_fee_for_mail_item(self, mail_item_id: str) -> PackageFee | None:
        return self.store.get_fee_for_mail_item(mail_item_id)

    def get_outstanding_fees(self, user_id: str) -> list[PackageFee]:
        """Pending fees for one tenant, largest first, including $0.00 fees."""
        return self.store.fetch_fees(user_id, FeeStatus.PENDING)

    def get_revenue_stats(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> RevenueStats:
        """Fee totals for one tenant.

        The optional business-date range (inclusive) filters paid fees by
        ``paid_date``.  Outstanding and waived totals are always all-time.
        """
        start = start_of_business_day(start_date) if start_date else None
        end = start_of_business_day(end_date + timedelta(days=1)) if end_date else None

        stats = RevenueStats(
            start_date=start_date.isoformat() if start_date else None,
            end_date=end_date.isoformat() if end_date else None,
        )
        total_revenue = outstanding = waived = discounts = 0.0

        for fee in self.store.fetch_fees(user_id):
            if fee.fee_status == FeeStatus.PAID.value:
                if start and (fee.paid_date is None or fee.paid_date < start):
                    continue
                if end and (fee.paid_date is None or fee.paid_date >= end):
                    continue
                stats.paid_count += 1
                collected = (
                    fee.collected_amount if fee.collected_amount is not None
                    else fee.fee_amount
                )
                total_revenue += collected
                discounts += fee.discount_amount
            elif fee.fee_status == FeeStatus.PENDING.value:
                stats.pending_count += 1
                outstanding += fee.fee_amount
            elif fee.fee_status == FeeStatus.WAIVED.value:
                stats.waived_count += 1
                waived += fee.fee_amount

        stats.total_revenue = round(total_revenue, 2)
        stats.outstanding_fees = round(outstanding, 2)
        stats.waived_fees = round(waived, 2)
        stats.discounts_given = round(discounts, 2)
        return stats
