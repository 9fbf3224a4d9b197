"""Mailroom Fee Engine -- Command Line Entry Point.

Subcommands:

    recalculate   Recompute pending storage fees (daily job)
    backfill      Create fee records for packages that predate fee tracking
    follow-ups    Print the follow-up triage list for one tenant
    revenue       Print fee revenue statistics for one tenant
    export        Write outstanding fees or the triage list to XLSX

Usage::

    # Daily job (all tenants):
    python -m mailroom.main recalculate

    # One tenant, pinned to a date:
    python -m mailroom.main recalculate --user-id tenant-1 --as-of 2025-12-10T12:00:00Z

    # Triage list:
    python -m mailroom.main follow-ups --user-id tenant-1

    # Export:
    python -m mailroom.main export fees --user-id tenant-1 --output fees.xlsx
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from .calendar_days import now_utc, to_business_date_string, to_instant
from .config import MailroomConfig, get_config
from .exceptions import FeeError
from .fee_jobs import backfill_package_fees, recalculate_all, run_daily_fee_update
from .fee_service import FeeService
from .follow_up import build_follow_up_list
from .models import FeeStatus
from .reports import export_follow_up_xlsx, export_outstanding_fees_xlsx
from .store import SQLiteStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def _cmd_recalculate(args: argparse.Namespace, store: SQLiteStore, config: MailroomConfig) -> int:
    if args.user_id:
        summary = recalculate_all(store, user_id=args.user_id, as_of=args.as_of)
    else:
        summary = run_daily_fee_update(store, as_of=args.as_of)

    print(f"  Updated : {summary.updated}")
    print(f"  Skipped : {summary.skipped}")
    print(f"  Errors  : {summary.errors}")
    print(f"  Total   : {summary.total}")
    return 0


def _cmd_backfill(args: argparse.Namespace, store: SQLiteStore, config: MailroomConfig) -> int:
    result = backfill_package_fees(store, as_of=args.as_of, config=config)
    print(f"  Created : {result['created']}")
    print(f"  Errors  : {result['errors']}")
    print(f"  Total   : {result['total']}")
    return 0


def _cmd_follow_ups(args: argparse.Namespace, store: SQLiteStore, config: MailroomConfig) -> int:
    as_of = args.as_of or now_utc()
    groups = build_follow_up_list(store, args.user_id, as_of=as_of, settings=config.follow_up)
    if args.limit:
        groups = groups[: args.limit]

    print()
    print("=" * 78)
    print(f"  Follow-Ups for {args.user_id} -- {to_business_date_string(as_of)}")
    print("=" * 78)
    if not groups:
        print("  Nothing needs follow-up.")
    for rank, group in enumerate(groups, start=1):
        last = to_business_date_string(group.last_notified) if group.last_notified else "never"
        print(
            f"  {rank:>3}. {group.contact.display_name:<28.28s} "
            f"pkg {group.package_count:>2}  ltr {group.letter_count:>2}  "
            f"age {group.max_age_days:>3}d  fees ${group.total_fees:>8,.2f}  "
            f"score {group.urgency_score:>9,.2f}  last {last}"
        )
    print("=" * 78)
    return 0


def _cmd_revenue(args: argparse.Namespace, store: SQLiteStore, config: MailroomConfig) -> int:
    service = FeeService(store, config)
    stats = service.get_revenue_stats(args.user_id, start_date=args.start, end_date=args.end)

    print()
    print("=" * 50)
    print(f"  Fee Revenue -- {args.user_id}")
    if stats.start_date or stats.end_date:
        print(f"  Paid between {stats.start_date or '...'} and {stats.end_date or '...'}")
    print("=" * 50)
    print(f"  Revenue collected : ${stats.total_revenue:>10,.2f}  ({stats.paid_count} paid)")
    print(f"  Discounts given   : ${stats.discounts_given:>10,.2f}")
    print(f"  Outstanding       : ${stats.outstanding_fees:>10,.2f}  ({stats.pending_count} pending)")
    print(f"  Waived            : ${stats.waived_fees:>10,.2f}  ({stats.waived_count} waived)")
    print("=" * 50)
    return 0


def _cmd_export(args: argparse.Namespace, store: SQLiteStore, config: MailroomConfig) -> int:
    as_of = args.as_of or now_utc()
    stamp = to_business_date_string(as_of)

    if args.output:
        output = Path(args.output)
    else:
        config.output.ensure_dirs()
        output = config.output.resolve(config.output.report_dir) / f"{args.what}_{args.user_id}_{stamp}.xlsx"

    if args.what == "fees":
        fees = store.fetch_fees(args.user_id, FeeStatus.PENDING)
        path = export_outstanding_fees_xlsx(fees, output, store.fetch_contacts(args.user_id))
    else:
        groups = build_follow_up_list(store, args.user_id, as_of=as_of, settings=config.follow_up)
        path = export_follow_up_xlsx(groups, output, as_of=as_of)

    print(f"Exported to {path}")
    return 0


_HANDLERS = {
    "recalculate": _cmd_recalculate,
    "backfill": _cmd_backfill,
    "follow-ups": _cmd_follow_ups,
    "revenue": _cmd_revenue,
    "export": _cmd_export,
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _parse_as_of(value: str):
    try:
        return to_instant(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO-8601 instant: {value}") from exc


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailroom",
        description="Mailroom storage-fee engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  mailroom recalculate\n"
            "  mailroom backfill --as-of 2025-12-10T07:00:00Z\n"
            "  mailroom follow-ups --user-id tenant-1 --limit 20\n"
            "  mailroom revenue --user-id tenant-1 --start 2025-12-01 --end 2025-12-31\n"
            "  mailroom export follow-ups --user-id tenant-1\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: project root config.yaml)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Path to the SQLite database (overrides config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("recalculate", help="Recompute pending storage fees")
    p.add_argument("--user-id", default=None, help="Limit to one tenant (default: all)")
    p.add_argument("--as-of", type=_parse_as_of, default=None, help="Calculate as of this instant")

    p = sub.add_parser("backfill", help="Create missing fee records")
    p.add_argument("--as-of", type=_parse_as_of, default=None, help="Seed fees as of this instant")

    p = sub.add_parser("follow-ups", help="Print the follow-up triage list")
    p.add_argument("--user-id", required=True)
    p.add_argument("--as-of", type=_parse_as_of, default=None)
    p.add_argument("--limit", type=int, default=0, help="Show at most N groups")

    p = sub.add_parser("revenue", help="Print fee revenue statistics")
    p.add_argument("--user-id", required=True)
    p.add_argument("--start", type=_parse_date, default=None, help="First paid date (YYYY-MM-DD)")
    p.add_argument("--end", type=_parse_date, default=None, help="Last paid date (YYYY-MM-DD)")

    p = sub.add_parser("export", help="Export an XLSX report")
    p.add_argument("what", choices=["fees", "follow-ups"])
    p.add_argument("--user-id", required=True)
    p.add_argument("--as-of", type=_parse_as_of, default=None)
    p.add_argument("--output", "-o", default=None, help="Output .xlsx path")

    return parser


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 = success, 1 = error).
    """
    args = build_parser().parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = get_config(args.config)
        store = SQLiteStore(args.db or config.storage.resolved_path)
        return _HANDLERS[args.command](args, store, config)

    except FeeError as exc:
        logger.error("%s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except Exception as exc:
        logger.exception("Unexpected error")
        print(f"\nUNEXPECTED ERROR: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
