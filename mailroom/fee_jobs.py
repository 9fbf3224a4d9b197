"""
Mailroom Fee Engine -- Bulk Fee Jobs

    recalculate_all()        -- recompute every pending fee (one tenant or all)
    run_daily_fee_update()   -- timer-triggered wrapper around recalculate_all
    backfill_package_fees()  -- create missing fee records for existing packages

Recalculation *sets* ``fee_amount`` and ``days_charged`` from the package's
age, so running it twice on the same business day changes nothing.  A
failure on one fee is logged and counted; the batch always runs to the end.

Usage::

    python -m mailroom.main recalculate
    python -m mailroom.main backfill
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Optional

from .calendar_days import BUSINESS_TZ, now_utc, to_instant
from .config import MailroomConfig, get_config
from .fee_calculator import calculate_fee, calculate_fee_for_record
from .fee_service import FeeService
from .models import FeeStatus, RecalculationSummary
from .store import SQLiteStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bulk Recalculation
# ---------------------------------------------------------------------------

def recalculate_all(
    store: SQLiteStore,
    user_id: Optional[str] = None,
    as_of: Optional[datetime | str] = None,
) -> RecalculationSummary:
    """Recompute every pending fee as of ``as_of`` (default now).

    Picked-up items are left untouched.  Forwarded, scanned and abandoned
    items keep accruing until their fee is paid or waived.

    Only a failure of the initial fetch propagates.

    Returns:
        RecalculationSummary with updated / errors / skipped / total counts.
    """
    as_of = to_instant(as_of) if as_of is not None else now_utc()
    pending = store.fetch_pending_fees(user_id)

    summary = RecalculationSummary(total=len(pending))
    logger.info(
        "Recalculating %d pending fee(s)%s",
        len(pending), f" for user {user_id}" if user_id else "",
    )

    for fee, mail_item in pending:
        if mail_item.is_picked_up:
            summary.skipped += 1
            logger.debug("Skipping fee %s: item %s already picked up",
                         fee.fee_id, mail_item.mail_item_id)
            continue

        try:
            calc = calculate_fee_for_record(fee, mail_item, as_of=as_of)
            affected = store.conditional_update_fee(
                fee.fee_id,
                FeeStatus.PENDING,
                {
                    "fee_amount": calc.fee_amount,
                    "days_charged": calc.days_charged,
                    "last_calculated_at": as_of,
                },
            )
        except Exception:
            summary.errors += 1
            logger.exception("Error recalculating fee %s", fee.fee_id)
            continue

        if affected == 0:
            # Paid or waived since the fetch.
            summary.skipped += 1
            logger.debug("Fee %s no longer pending, left as is", fee.fee_id)
        else:
            summary.updated += 1

    logger.info(
        "Fee recalculation done: %d updated, %d skipped, %d errors (of %d)",
        summary.updated, summary.skipped, summary.errors, summary.total,
    )
    return summary


def run_daily_fee_update(
    store: SQLiteStore,
    as_of: Optional[datetime | str] = None,
) -> RecalculationSummary:
    """Daily job entry point: recalculate fees for every tenant."""
    as_of = to_instant(as_of) if as_of is not None else now_utc()

    logger.info("=" * 60)
    logger.info("  DAILY PACKAGE FEE UPDATE STARTED")
    logger.info("=" * 60)
    logger.info("Timestamp    : %s", as_of.isoformat())
    logger.info("New York time: %s", as_of.astimezone(BUSINESS_TZ).strftime("%Y-%m-%d %H:%M:%S %Z"))

    started = time.monotonic()
    try:
        summary = recalculate_all(store, as_of=as_of)
    except Exception:
        logger.exception("DAILY PACKAGE FEE UPDATE FAILED")
        raise

    duration = time.monotonic() - started
    logger.info("=" * 60)
    logger.info("  DAILY PACKAGE FEE UPDATE COMPLETED")
    logger.info("=" * 60)
    logger.info("Updated : %d", summary.updated)
    logger.info("Skipped : %d", summary.skipped)
    logger.info("Errors  : %d", summary.errors)
    logger.info("Total   : %d", summary.total)
    logger.info("Duration: %.2fs", duration)
    return summary


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------

def backfill_package_fees(
    store: SQLiteStore,
    as_of: Optional[datetime | str] = None,
    config: MailroomConfig | None = None,
) -> dict[str, Any]:
    """Create fee records for fee-bearing items that predate fee tracking.

    Items that already have a fee, or are already resolved (picked up,
    forwarded, scanned, abandoned), are left alone.  New records are seeded
    with the fee accrued so far.

    Returns:
        Dict with ``created``, ``errors`` and ``total`` (items considered).
    """
    config = config or get_config()
    service = FeeService(store, config)
    as_of = to_instant(as_of) if as_of is not None else now_utc()

    existing = {fee.mail_item_id for fee in store.fetch_fees()}
    candidates = [
        item for item in store.fetch_mail_items()
        if service.is_fee_bearing(item)
        and item.mail_item_id not in existing
        and not item.is_terminal
    ]
    logger.info("Backfill: %d package(s) need fee records", len(candidates))

    created = errors = 0
    for item in sorted(candidates, key=lambda i: i.received_date):
        if not item.user_id:
            logger.warning("Skipping package %s: no user_id", item.mail_item_id)
            errors += 1
            continue
        try:
            calc = calculate_fee(
                item,
                as_of=as_of,
                daily_rate=config.fees.daily_rate,
                grace_period_days=config.fees.grace_period_days,
            )
            service.create_fee_record(
                item.mail_item_id,
                item.contact_id,
                item.user_id,
                fee_amount=calc.fee_amount,
                days_charged=calc.days_charged,
            )
            created += 1
            logger.debug("Backfilled %s: $%.2f (%d days)",
                         item.mail_item_id, calc.fee_amount, calc.days_charged)
        except Exception:
            errors += 1
            logger.exception("Error backfilling fee for %s", item.mail_item_id)

    logger.info("Backfill done: %d created, %d errors (of %d)", created, errors, len(candidates))
    return {"created": created, "errors": errors, "total": len(candidates)}
