"""
Mailroom Fee Engine -- XLSX Reports

Review workbooks for staff:

    export_outstanding_fees_xlsx()  -- pending fees, largest first
    export_follow_up_xlsx()         -- triage list, most urgent first

Both write a single sheet with a bold, frozen header row and currency
formatting on money columns, and return the path written.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from .calendar_days import now_utc, to_business_date_string, to_instant
from .models import Contact, FollowUpGroup, PackageFee

logger = logging.getLogger(__name__)

_CURRENCY_FORMAT = '"$"#,##0.00'


def _write_sheet(
    ws: Worksheet,
    headers: list[str],
    rows: Iterable[list],
    currency_columns: Iterable[str] = (),
) -> int:
    """Write header + rows, style the header and currency columns.  Returns row count."""
    currency = set(currency_columns)
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A2"

    count = 0
    for row in rows:
        ws.append(row)
        count += 1

    for idx, header in enumerate(headers, start=1):
        letter = get_column_letter(idx)
        width = max(
            [len(str(header))]
            + [len(str(c.value)) for c in ws[letter][1:] if c.value is not None]
        )
        ws.column_dimensions[letter].width = min(width + 2, 50)
        if header in currency:
            for cell in ws[letter][1:]:
                cell.number_format = _CURRENCY_FORMAT

    return count


def _ensure_parent(path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def export_outstanding_fees_xlsx(
    fees: Iterable[PackageFee],
    path: str | Path,
    contacts: Optional[dict[str, Contact]] = None,
) -> Path:
    """Write pending fees to an XLSX workbook, highest amount first."""
    path = _ensure_parent(path)
    contacts = contacts or {}
    pending = sorted(
        (f for f in fees if f.is_pending),
        key=lambda f: f.fee_amount,
        reverse=True,
    )

    wb = Workbook()
    ws = wb.active
    ws.title = "Outstanding Fees"
    headers = [
        "Fee ID", "Mail Item", "Customer", "Mailbox",
        "Days Charged", "Daily Rate", "Fee Amount", "Last Calculated",
    ]

    rows = []
    for fee in pending:
        contact = contacts.get(fee.contact_id)
        rows.append([
            fee.fee_id,
            fee.mail_item_id,
            contact.display_name if contact else fee.contact_id,
            contact.mailbox_number if contact else "",
            fee.days_charged,
            fee.daily_rate,
            fee.fee_amount,
            to_business_date_string(fee.last_calculated_at) if fee.last_calculated_at else "",
        ])

    count = _write_sheet(ws, headers, rows, {"Daily Rate", "Fee Amount"})
    wb.save(path)
    logger.info("Exported %d outstanding fee(s) to %s", count, path)
    return path


def export_follow_up_xlsx(
    groups: Iterable[FollowUpGroup],
    path: str | Path,
    as_of: Optional[datetime | str] = None,
) -> Path:
    """Write the triage list to an XLSX workbook in the given group order."""
    path = _ensure_parent(path)
    as_of = to_instant(as_of) if as_of is not None else now_utc()

    wb = Workbook()
    ws = wb.active
    ws.title = f"Follow-Ups {to_business_date_string(as_of)}"
    headers = [
        "Rank", "Customer", "Mailbox", "Email", "Packages", "Letters",
        "Oldest (days)", "Total Fees", "Urgency Score", "Last Notified",
    ]

    rows = []
    for rank, group in enumerate(groups, start=1):
        rows.append([
            rank,
            group.contact.display_name,
            group.contact.mailbox_number,
            group.contact.email,
            group.package_count,
            group.letter_count,
            group.max_age_days,
            group.total_fees,
            group.urgency_score,
            to_business_date_string(group.last_notified) if group.last_notified else "Never",
        ])

    count = _write_sheet(ws, headers, rows, {"Total Fees"})
    wb.save(path)
    logger.info("Exported %d follow-up group(s) to %s", count, path)
    return path
