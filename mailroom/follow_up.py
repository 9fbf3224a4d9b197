"""
Mailroom Fee Engine -- Follow-Up Grouper & Urgency Scorer

Builds the staff triage list: outstanding mail grouped per customer and
ordered by a deterministic urgency score.

Scoring (higher = more urgent):

    +1000 + total_fees   if the customer owes any pending storage fee
    +500                 if the oldest item is 30+ business days old
    +100                 else if the oldest item is 7+ business days old
    +max_age             oldest item's age in business days

Any fee outranks any fee-free group, so a customer owing $0.01 on a
same-day package (1000.01) comes before one with a 29-day-old letter (129).
Ties are not ordered.

Groups are recomputed on every call and never cached.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from .calendar_days import days_between, days_since, is_same_business_day, now_utc, to_instant
from .config import FollowUpSettings
from .models import (
    Contact,
    FeeStatus,
    FollowUpGroup,
    MailItem,
    PackageFee,
    is_terminal_status,
)
from .store import SQLiteStore

logger = logging.getLogger(__name__)

_DEFAULTS = FollowUpSettings()

__all__ = [
    "is_terminal_status",
    "needs_follow_up",
    "filter_follow_up_candidates",
    "calculate_urgency_score",
    "group_and_score",
    "build_follow_up_list",
    "dashboard_counts",
]


# ---------------------------------------------------------------------------
# Candidate filtering
# ---------------------------------------------------------------------------

def needs_follow_up(
    item: MailItem,
    as_of: Optional[datetime | str] = None,
    interval_days: int = _DEFAULTS.notify_interval_days,
) -> bool:
    """True for unresolved mail never notified, or last notified long enough ago.

    Recency is measured in business days, so an item notified on Monday
    afternoon is due again from Thursday at local midnight.
    """
    if is_terminal_status(item.status):
        return False
    if item.last_notified is None:
        return True
    if as_of is None:
        as_of = now_utc()
    return days_between(item.last_notified, as_of) >= interval_days


def filter_follow_up_candidates(
    items: Iterable[MailItem],
    as_of: Optional[datetime | str] = None,
    interval_days: int = _DEFAULTS.notify_interval_days,
) -> list[MailItem]:
    as_of = to_instant(as_of) if as_of is not None else now_utc()
    return [item for item in items if needs_follow_up(item, as_of, interval_days)]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def calculate_urgency_score(
    total_fees: float,
    max_age: int,
    settings: FollowUpSettings = _DEFAULTS,
) -> float:
    """Urgency score for one customer group.

    >>> calculate_urgency_score(0.01, 0)
    1000.01
    >>> calculate_urgency_score(0, 29)
    129
    """
    score: float = 0
    if total_fees > 0:
        score += settings.fee_band_score + total_fees
    if max_age >= settings.abandonment_days:
        score += settings.abandonment_band_score
    elif max_age >= settings.overdue_days:
        score += settings.overdue_band_score
    score += max_age
    return round(score, 2) if isinstance(score, float) else score


def group_and_score(
    candidate_items: Iterable[MailItem],
    pending_fees: Iterable[PackageFee],
    as_of: Optional[datetime | str] = None,
    contacts: Optional[dict[str, Contact]] = None,
    settings: FollowUpSettings = _DEFAULTS,
) -> list[FollowUpGroup]:
    """Group candidate items by customer and order groups by urgency.

    Args:
        candidate_items: Items already passed through the candidate filter.
        pending_fees: Fees that may belong to the candidates; matched by
            ``mail_item_id``.  Only fees still pending count toward totals.
        as_of: Instant ages are measured at.  Defaults to now.
        contacts: Contact lookup by ``contact_id``.  Missing contacts get a
            bare placeholder so the group is still shown.

    Returns:
        Groups sorted by ``urgency_score`` descending.
    """
    as_of = to_instant(as_of) if as_of is not None else now_utc()
    contacts = contacts or {}
    fees_by_item = {fee.mail_item_id: fee for fee in pending_fees}

    by_contact: dict[str, list[MailItem]] = defaultdict(list)
    for item in candidate_items:
        by_contact[item.contact_id].append(item)

    groups: list[FollowUpGroup] = []
    for contact_id, items in by_contact.items():
        contact = contacts.get(contact_id)
        if contact is None:
            logger.debug("No contact record for %s, using placeholder", contact_id)
            contact = Contact(contact_id=contact_id)

        group = FollowUpGroup(contact=contact)
        for item in items:
            if item.is_package:
                group.packages.append(item)
            else:
                group.letters.append(item)
            fee = fees_by_item.get(item.mail_item_id)
            if fee is not None:
                group.fees[item.mail_item_id] = fee

        group.total_fees = round(sum(
            fee.fee_amount for fee in group.fees.values()
            if fee.fee_status == FeeStatus.PENDING.value
        ), 2)
        group.max_age_days = max(
            (days_since(item.received_date, as_of) for item in items),
            default=0,
        )
        notified = [item.last_notified for item in items if item.last_notified is not None]
        group.last_notified = max(notified) if notified else None
        group.urgency_score = calculate_urgency_score(
            group.total_fees, group.max_age_days, settings,
        )
        groups.append(group)

    groups.sort(key=lambda g: g.urgency_score, reverse=True)
    return groups


def build_follow_up_list(
    store: SQLiteStore,
    user_id: str,
    as_of: Optional[datetime | str] = None,
    settings: FollowUpSettings = _DEFAULTS,
) -> list[FollowUpGroup]:
    """Triage list for one tenant, fresh from the store."""
    as_of = to_instant(as_of) if as_of is not None else now_utc()

    items = store.fetch_mail_items_needing_follow_up(user_id)
    candidates = filter_follow_up_candidates(items, as_of, settings.notify_interval_days)
    fees = store.fetch_fees(user_id, FeeStatus.PENDING)
    contacts = store.fetch_contacts(user_id)

    groups = group_and_score(candidates, fees, as_of, contacts, settings)
    logger.info(
        "Follow-up list for %s: %d group(s) from %d candidate item(s)",
        user_id, len(groups), len(candidates),
    )
    return groups


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def dashboard_counts(
    items: Iterable[MailItem],
    as_of: Optional[datetime | str] = None,
    settings: FollowUpSettings = _DEFAULTS,
) -> dict[str, int]:
    """Headline counts for the staff dashboard.

    "Today" is the business date of ``as_of``, not the UTC date.
    """
    as_of = to_instant(as_of) if as_of is not None else now_utc()
    counts = {
        "todays_mail": 0,
        "pending_pickups": 0,
        "overdue_mail": 0,
        "completed_today": 0,
        "reminders_due": 0,
    }

    for item in items:
        if is_same_business_day(item.received_date, as_of):
            counts["todays_mail"] += 1

        if item.is_picked_up:
            if item.pickup_date and is_same_business_day(item.pickup_date, as_of):
                counts["completed_today"] += 1
            continue
        if is_terminal_status(item.status):
            continue

        counts["pending_pickups"] += 1
        if days_since(item.received_date, as_of) >= settings.overdue_days:
            counts["overdue_mail"] += 1
        if (
            item.last_notified is not None
            and days_between(item.last_notified, as_of) >= settings.notify_interval_days
        ):
            counts["reminders_due"] += 1

    return counts
