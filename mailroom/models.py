"""Data models for the mailroom storage-fee engine.

All models are plain dataclasses with type hints.  No ORM, no Pydantic --
rows coming out of the store are converted into these in ``store.py``.

Statuses and item types are kept as plain strings on the dataclasses because
the intake layer accepts free-form values; the enums below name the values
this engine gives meaning to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ItemType(str, Enum):
    """Kinds of mail logged at intake."""

    LETTER = "Letter"
    PACKAGE = "Package"
    LARGE_PACKAGE = "Large Package"
    CERTIFIED_MAIL = "Certified Mail"
    POSTCARD = "Postcard"


# Grouped on the "packages" side of a follow-up card; everything else is a letter.
PACKAGE_ITEM_TYPES: frozenset[str] = frozenset({
    ItemType.PACKAGE.value,
    ItemType.LARGE_PACKAGE.value,
})


class MailStatus(str, Enum):
    """Mail item handling states."""

    RECEIVED = "Received"
    NOTIFIED = "Notified"
    PENDING = "Pending"
    PICKED_UP = "Picked Up"
    SCANNED = "Scanned"
    SCANNED_DOCUMENT = "Scanned Document"
    FORWARD = "Forward"
    FORWARDED = "Forwarded"
    ABANDONED = "Abandoned"
    ABANDONED_PACKAGE = "Abandoned Package"


# "Abandoned" variants are matched by substring, see is_terminal_status().
TERMINAL_STATUSES: frozenset[str] = frozenset({
    MailStatus.PICKED_UP.value,
    MailStatus.SCANNED.value,
    MailStatus.SCANNED_DOCUMENT.value,
    MailStatus.FORWARD.value,
    MailStatus.FORWARDED.value,
})


def is_terminal_status(status: str | None) -> bool:
    """True once an item is resolved: picked up, forwarded, scanned or abandoned."""
    if not status:
        return False
    return status in TERMINAL_STATUSES or "Abandoned" in status


class FeeStatus(str, Enum):
    """Fee lifecycle.  PAID and WAIVED are terminal."""

    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class PaymentMethod(str, Enum):
    """How a storage fee was collected."""

    CASH = "cash"
    CARD = "card"
    VENMO = "venmo"
    ZELLE = "zelle"
    PAYPAL = "paypal"
    CHECK = "check"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Core Data Models
# ---------------------------------------------------------------------------

@dataclass
class Contact:
    """A mailbox customer."""

    contact_id: str
    contact_person: str = ""
    company_name: str = ""
    mailbox_number: str = ""
    email: str = ""
    user_id: str = ""

    @property
    def display_name(self) -> str:
        """Person name, falling back to company, then mailbox number.

        >>> Contact("c1", company_name="Acme LLC").display_name
        'Acme LLC'
        """
        return (
            self.contact_person
            or self.company_name
            or (f"Box {self.mailbox_number}" if self.mailbox_number else "")
            or self.contact_id
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "contact_person": self.contact_person,
            "company_name": self.company_name,
            "mailbox_number": self.mailbox_number,
            "email": self.email,
        }


@dataclass
class MailItem:
    """One physical receiving event.

    ``received_date`` is authoritative and set once at intake.
    ``pickup_date`` is only set while status is 'Picked Up'.
    """

    mail_item_id: str
    contact_id: str
    received_date: datetime
    item_type: str = ItemType.PACKAGE.value
    status: str = MailStatus.RECEIVED.value
    user_id: str = ""
    quantity: int = 1
    description: str = ""
    pickup_date: datetime | None = None
    last_notified: datetime | None = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError(f"quantity must be a positive integer, got {self.quantity}")

    @property
    def is_package(self) -> bool:
        return self.item_type in PACKAGE_ITEM_TYPES

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    @property
    def is_picked_up(self) -> bool:
        return self.status == MailStatus.PICKED_UP.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "mail_item_id": self.mail_item_id,
            "contact_id": self.contact_id,
            "item_type": self.item_type,
            "status": self.status,
            "quantity": self.quantity,
            "received_date": self.received_date.isoformat(),
            "last_notified": self.last_notified.isoformat() if self.last_notified else None,
        }


@dataclass
class PackageFee:
    """Storage fee attached 1:1 to a fee-bearing mail item.

    ``fee_amount`` only changes while the fee is pending; once paid or
    waived the row is frozen.  ``collected_amount`` is what the customer
    actually handed over, which may be less than ``fee_amount`` when staff
    grant a discount.
    """

    fee_id: str
    mail_item_id: str
    contact_id: str
    user_id: str
    fee_amount: float = 0.0
    days_charged: int = 0
    daily_rate: float = 2.00
    grace_period_days: int = 1
    fee_status: str = FeeStatus.PENDING.value

    # --- terminal transition details ---
    paid_date: datetime | None = None
    payment_method: str | None = None
    collected_amount: float | None = None
    collected_by: str | None = None
    waived_date: datetime | None = None
    waive_reason: str | None = None
    waived_by: str | None = None

    # --- bookkeeping ---
    last_calculated_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.fee_status == FeeStatus.PENDING.value

    @property
    def discount_amount(self) -> float:
        """Amount forgiven at collection time (0.0 unless paid short)."""
        if self.collected_amount is None or self.fee_status != FeeStatus.PAID.value:
            return 0.0
        return round(max(0.0, self.fee_amount - self.collected_amount), 2)

    @property
    def fee_amount_formatted(self) -> str:
        """Dollar-formatted amount, e.g. '$12.00'."""
        return f"${self.fee_amount:,.2f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "fee_id": self.fee_id,
            "mail_item_id": self.mail_item_id,
            "contact_id": self.contact_id,
            "fee_amount": self.fee_amount,
            "days_charged": self.days_charged,
            "fee_status": self.fee_status,
            "payment_method": self.payment_method,
            "collected_amount": self.collected_amount,
            "waive_reason": self.waive_reason,
        }


@dataclass
class FollowUpGroup:
    """Outstanding mail for one customer, scored for staff triage.

    Rebuilt from current store state on every request; never persisted.
    """

    contact: Contact
    packages: list[MailItem] = field(default_factory=list)
    letters: list[MailItem] = field(default_factory=list)
    fees: dict[str, PackageFee] = field(default_factory=dict)   # by mail_item_id
    total_fees: float = 0.0
    urgency_score: float = 0.0
    max_age_days: int = 0
    last_notified: datetime | None = None

    @property
    def contact_id(self) -> str:
        return self.contact.contact_id

    @property
    def items(self) -> list[MailItem]:
        return self.packages + self.letters

    @property
    def package_count(self) -> int:
        return sum(item.quantity for item in self.packages)

    @property
    def letter_count(self) -> int:
        return sum(item.quantity for item in self.letters)

    @property
    def has_fees(self) -> bool:
        return self.total_fees > 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the dashboard/API layer."""
        return {
            "contact": self.contact.to_dict(),
            "packages": [
                {**p.to_dict(), "package_fee": self.fees[p.mail_item_id].to_dict()
                 if p.mail_item_id in self.fees else None}
                for p in self.packages
            ],
            "letters": [item.to_dict() for item in self.letters],
            "total_fees": self.total_fees,
            "urgency_score": self.urgency_score,
            "last_notified": self.last_notified.isoformat() if self.last_notified else None,
        }


@dataclass
class RecalculationSummary:
    """Outcome of a bulk fee recalculation.  Errors are counted, never raised."""

    updated: int = 0
    errors: int = 0
    total: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "updated": self.updated,
            "errors": self.errors,
            "total": self.total,
            "skipped": self.skipped,
        }


@dataclass
class RevenueStats:
    """Per-tenant fee totals for the revenue widget."""

    total_revenue: float = 0.0
    outstanding_fees: float = 0.0
    waived_fees: float = 0.0
    paid_count: int = 0
    pending_count: int = 0
    waived_count: int = 0
    discounts_given: float = 0.0
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_revenue": self.total_revenue,
            "outstanding_fees": self.outstanding_fees,
            "waived_fees": self.waived_fees,
            "paid_count": self.paid_count,
            "pending_count": self.pending_count,
            "waived_count": self.waived_count,
            "discounts_given": self.discounts_given,
        }
