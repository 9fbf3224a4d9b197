"""Mailroom Storage-Fee Engine.

Per-day storage fees on undelivered packages, the ``pending -> paid |
waived`` fee lifecycle, bulk fee recalculation, and a scored follow-up list
of customers with outstanding mail.

The SQLiteStore provides persistent row storage with a fee audit log and
notification history.
"""

from .models import (
    Contact,
    FeeStatus,
    FollowUpGroup,
    ItemType,
    MailItem,
    MailStatus,
    PackageFee,
    PaymentMethod,
    RecalculationSummary,
    RevenueStats,
)
from .exceptions import AlreadyProcessedError, FeeError, ValidationError
from .fee_calculator import FeeCalculation, calculate_fee
from .fee_service import FeeService
from .store import SQLiteStore

__all__ = [
    "AlreadyProcessedError",
    "Contact",
    "FeeCalculation",
    "FeeError",
    "FeeService",
    "FeeStatus",
    "FollowUpGroup",
    "ItemType",
    "MailItem",
    "MailStatus",
    "PackageFee",
    "PaymentMethod",
    "RecalculationSummary",
    "RevenueStats",
    "SQLiteStore",
    "ValidationError",
    "calculate_fee",
]
