"""
Mailroom Fee Engine -- SQLite Row Store

Persistent row store for contacts, mail items and package fees.  The fee
engine only relies on a handful of operations, so any store offering the
same methods can stand in for this one:

    fetch_pending_fees(user_id=None)          -> [(PackageFee, MailItem), ...]
    fetch_mail_items_needing_follow_up(uid)   -> [MailItem, ...] (non-terminal)
    insert_fee(fee)                           -> PackageFee
    conditional_update_fee(fee_id, expected_status, patch) -> rows affected

Terminal fee transitions rely on ``conditional_update_fee``: the status
check and the write happen in one UPDATE ... WHERE fee_status = ? statement,
so two concurrent pay/waive calls can never both succeed.

Database schema:
    contacts              - Mailbox customers
    mail_items            - One row per receiving event
    package_fees          - At most one fee per mail item (UNIQUE)
    fee_audit_log         - Every fee creation / terminal transition
    notification_history  - Each notification sent, per mail item

Usage:
    from mailroom.store import SQLiteStore

    store = SQLiteStore()                     # uses configured db path
    store = SQLiteStore("path/to/mailroom.db")

    store.add_mail_item(item)
    pending = store.fetch_pending_fees(user_id="tenant-1")
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .calendar_days import now_utc, to_instant
from .models import (
    Contact,
    FeeStatus,
    MailItem,
    MailStatus,
    PackageFee,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# WAL lets readers proceed while a fee transition is being written.
_PRAGMA_SETTINGS = [
    "PRAGMA journal_mode=WAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA busy_timeout=5000;",
]

# Columns a conditional fee update may touch.
_FEE_PATCH_COLUMNS = frozenset({
    "fee_status",
    "fee_amount",
    "days_charged",
    "paid_date",
    "payment_method",
    "collected_amount",
    "collected_by",
    "waived_date",
    "waive_reason",
    "waived_by",
    "last_calculated_at",
})

_MAIL_ITEM_PATCH_COLUMNS = frozenset({
    "item_type",
    "status",
    "quantity",
    "description",
    "contact_id",
    "pickup_date",
    "last_notified",
})


# ---------------------------------------------------------------------------
# Database Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS contacts (
    contact_id      TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL DEFAULT '',
    contact_person  TEXT NOT NULL DEFAULT '',
    company_name    TEXT NOT NULL DEFAULT '',
    mailbox_number  TEXT NOT NULL DEFAULT '',
    email           TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS mail_items (
    mail_item_id    TEXT PRIMARY KEY,
    contact_id      TEXT NOT NULL,
    user_id         TEXT NOT NULL DEFAULT '',
    item_type       TEXT NOT NULL DEFAULT 'Package',
    status          TEXT NOT NULL DEFAULT 'Received',
    quantity        INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
    description     TEXT NOT NULL DEFAULT '',
    received_date   TEXT NOT NULL,
    pickup_date     TEXT,
    last_notified   TEXT
);

CREATE TABLE IF NOT EXISTS package_fees (
    fee_id              TEXT PRIMARY KEY,
    mail_item_id        TEXT NOT NULL UNIQUE,
    contact_id          TEXT NOT NULL,
    user_id             TEXT NOT NULL DEFAULT '',
    fee_amount          REAL NOT NULL DEFAULT 0.0 CHECK (fee_amount >= 0),
    days_charged        INTEGER NOT NULL DEFAULT 0 CHECK (days_charged >= 0),
    daily_rate          REAL NOT NULL DEFAULT 2.0,
    grace_period_days   INTEGER NOT NULL DEFAULT 1,
    fee_status          TEXT NOT NULL DEFAULT 'pending',
    paid_date           TEXT,
    payment_method      TEXT,
    collected_amount    REAL,
    collected_by        TEXT,
    waived_date         TEXT,
    waive_reason        TEXT,
    waived_by           TEXT,
    last_calculated_at  TEXT,
    created_at          TEXT NOT NULL DEFAULT '',
    FOREIGN KEY (mail_item_id) REFERENCES mail_items(mail_item_id)
);

CREATE TABLE IF NOT EXISTS fee_audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    fee_id      TEXT NOT NULL,
    action      TEXT NOT NULL,
    actor       TEXT NOT NULL DEFAULT 'system',
    details     TEXT NOT NULL DEFAULT '{}',
    timestamp   TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS notification_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    mail_item_id    TEXT NOT NULL,
    contact_id      TEXT NOT NULL,
    user_id         TEXT NOT NULL DEFAULT '',
    message_id      TEXT NOT NULL DEFAULT '',
    subject         TEXT NOT NULL DEFAULT '',
    sent_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_contact ON mail_items(contact_id);
CREATE INDEX IF NOT EXISTS idx_items_user_status ON mail_items(user_id, status);
CREATE INDEX IF NOT EXISTS idx_fees_user_status ON package_fees(user_id, fee_status);
CREATE INDEX IF NOT EXISTS idx_audit_fee ON fee_audit_log(fee_id);
CREATE INDEX IF NOT EXISTS idx_notif_item ON notification_history(mail_item_id);
"""


# ---------------------------------------------------------------------------
# Serialization Helpers
# ---------------------------------------------------------------------------

def _to_db_time(value: datetime | str | None) -> str | None:
    """Normalize an instant to a UTC ISO 8601 string for storage."""
    if value is None:
        return None
    return to_instant(value).astimezone(timezone.utc).isoformat()


def _from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return to_instant(value)


def _to_db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _to_db_time(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _row_to_contact(row: dict[str, Any]) -> Contact:
    return Contact(
        contact_id=row["contact_id"],
        contact_person=row.get("contact_person", "") or "",
        company_name=row.get("company_name", "") or "",
        mailbox_number=row.get("mailbox_number", "") or "",
        email=row.get("email", "") or "",
        user_id=row.get("user_id", "") or "",
    )


def _row_to_mail_item(row: dict[str, Any]) -> MailItem:
    return MailItem(
        mail_item_id=row["mail_item_id"],
        contact_id=row["contact_id"],
        received_date=_from_db_time(row["received_date"]),
        item_type=row.get("item_type", ""),
        status=row.get("status", ""),
        user_id=row.get("user_id", "") or "",
        quantity=int(row.get("quantity") or 1),
        description=row.get("description", "") or "",
        pickup_date=_from_db_time(row.get("pickup_date")),
        last_notified=_from_db_time(row.get("last_notified")),
    )


def _row_to_fee(row: dict[str, Any]) -> PackageFee:
    collected = row.get("collected_amount")
    return PackageFee(
        fee_id=row["fee_id"],
        mail_item_id=row["mail_item_id"],
        contact_id=row["contact_id"],
        user_id=row.get("user_id", "") or "",
        fee_amount=float(row.get("fee_amount") or 0.0),
        days_charged=int(row.get("days_charged") or 0),
        daily_rate=float(row.get("daily_rate") or 0.0),
        grace_period_days=int(row.get("grace_period_days") or 0),
        fee_status=row.get("fee_status", FeeStatus.PENDING.value),
        paid_date=_from_db_time(row.get("paid_date")),
        payment_method=row.get("payment_method"),
        collected_amount=float(collected) if collected is not None else None,
        collected_by=row.get("collected_by"),
        waived_date=_from_db_time(row.get("waived_date")),
        waive_reason=row.get("waive_reason"),
        waived_by=row.get("waived_by"),
        last_calculated_at=_from_db_time(row.get("last_calculated_at")),
        created_at=_from_db_time(row.get("created_at")),
    )


def _split_joined_row(row: dict[str, Any]) -> tuple[PackageFee, MailItem]:
    """Split a package_fees JOIN mail_items row (item columns prefixed 'mi_')."""
    fee_row = {k: v for k, v in row.items() if not k.startswith("mi_")}
    item_row = {k[3:]: v for k, v in row.items() if k.startswith("mi_")}
    return _row_to_fee(fee_row), _row_to_mail_item(item_row)


# ---------------------------------------------------------------------------
# SQLiteStore -- the main public API
# ---------------------------------------------------------------------------

class SQLiteStore:
    """Row store backed by SQLite.

    Thread safety: each method opens and closes its own connection, so the
    store can be shared between threads.  Writes are serialized by SQLite;
    ``busy_timeout`` makes a concurrent writer wait instead of failing.
    """

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            from .config import get_config
            db_path = get_config().storage.resolved_path

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # ------------------------------------------------------------------
    # Database connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        """Open a new SQLite connection with row_factory and pragmas."""
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMA_SETTINGS:
            conn.execute(pragma)
        return conn

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _log_action(
        conn: sqlite3.Connection,
        fee_id: str,
        action: str,
        actor: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append to fee_audit_log inside the caller's transaction."""
        conn.execute(
            """INSERT INTO fee_audit_log (fee_id, action, actor, details, timestamp)
               VALUES (?, ?, ?, ?, ?)""",
            (
                fee_id,
                action,
                actor or "system",
                json.dumps(details or {}, default=str),
                _to_db_time(now_utc()),
            ),
        )

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def add_contact(self, contact: Contact) -> Contact:
        conn = self._get_conn()
        try:
            conn.execute(
                """INSERT INTO contacts
                   (contact_id, user_id, contact_person, company_name, mailbox_number, email)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    contact.contact_id, contact.user_id, contact.contact_person,
                    contact.company_name, contact.mailbox_number, contact.email,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return contact

    def get_contact(self, contact_id: str) -> Contact | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM contacts WHERE contact_id = ?", (contact_id,)
            ).fetchone()
            return _row_to_contact(dict(row)) if row else None
        finally:
            conn.close()

    def fetch_contacts(self, user_id: Optional[str] = None) -> dict[str, Contact]:
        """All contacts (optionally one tenant's) keyed by contact_id."""
        conn = self._get_conn()
        try:
            if user_id:
                rows = conn.execute(
                    "SELECT * FROM contacts WHERE user_id = ?", (user_id,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM contacts").fetchall()
            return {r["contact_id"]: _row_to_contact(dict(r)) for r in rows}
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Mail items
    # ------------------------------------------------------------------

    def add_mail_item(self, item: MailItem) -> MailItem:
        """Insert a mail item.  ``received_date`` is stored as given."""
        conn = self._get_conn()
        try:
            conn.execute(
                """INSERT INTO mail_items
                   (mail_item_id, contact_id, user_id, item_type, status, quantity,
                    description, received_date, pickup_date, last_notified)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    item.mail_item_id, item.contact_id, item.user_id, item.item_type,
                    item.status, item.quantity, item.description,
                    _to_db_time(item.received_date),
                    _to_db_time(item.pickup_date),
                    _to_db_time(item.last_notified),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return item

    def get_mail_item(self, mail_item_id: str) -> MailItem | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM mail_items WHERE mail_item_id = ?", (mail_item_id,)
            ).fetchone()
            return _row_to_mail_item(dict(row)) if row else None
        finally:
            conn.close()

    def update_mail_item(self, mail_item_id: str, **changes: Any) -> MailItem | None:
        """Apply column changes to a mail item.  Returns the updated item."""
        unknown = set(changes) - _MAIL_ITEM_PATCH_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update mail_items columns: {sorted(unknown)}")
        if not changes:
            return self.get_mail_item(mail_item_id)

        # pickup_date only exists while the item is Picked Up
        if "status" in changes and "pickup_date" not in changes:
            picked_up = _to_db_value(changes["status"]) == MailStatus.PICKED_UP.value
            changes["pickup_date"] = now_utc() if picked_up else None

        set_clause = ", ".join(f"{k} = ?" for k in changes)
        values = [_to_db_value(v) for v in changes.values()] + [mail_item_id]

        conn = self._get_conn()
        try:
            result = conn.execute(
                f"UPDATE mail_items SET {set_clause} WHERE mail_item_id = ?",
                values,
            )
            conn.commit()
            if result.rowcount == 0:
                return None
        finally:
            conn.close()
        return self.get_mail_item(mail_item_id)

    def fetch_mail_items(self, user_id: Optional[str] = None) -> list[MailItem]:
        """All mail items, newest first."""
        conn = self._get_conn()
        try:
            if user_id:
                rows = conn.execute(
                    "SELECT * FROM mail_items WHERE user_id = ? ORDER BY received_date DESC",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM mail_items ORDER BY received_date DESC"
                ).fetchall()
            return [_row_to_mail_item(dict(r)) for r in rows]
        finally:
            conn.close()

    def fetch_mail_items_needing_follow_up(self, user_id: str) -> list[MailItem]:
        """Non-terminal mail items for a tenant.

        Notification recency is not filtered here; see
        follow_up.filter_follow_up_candidates().
        """
        terminal = sorted(TERMINAL_STATUSES)
        placeholders = ", ".join(["?"] * len(terminal))
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""SELECT * FROM mail_items
                    WHERE user_id = ?
                      AND status NOT IN ({placeholders})
                      AND instr(status, 'Abandoned') = 0
                    ORDER BY received_date ASC""",
                [user_id, *terminal],
            ).fetchall()
            return [_row_to_mail_item(dict(r)) for r in rows]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Package fees
    # ------------------------------------------------------------------

    def insert_fee(self, fee: PackageFee, actor: str | None = None) -> PackageFee:
        """Insert a fee row.  Raises sqlite3.IntegrityError on a duplicate mail item."""
        if not fee.fee_id:
            fee.fee_id = str(uuid.uuid4())
        if fee.created_at is None:
            fee.created_at = now_utc()

        conn = self._get_conn()
        try:
            conn.execute(
                """INSERT INTO package_fees
                   (fee_id, mail_item_id, contact_id, user_id, fee_amount, days_charged,
                    daily_rate, grace_period_days, fee_status, last_calculated_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    fee.fee_id, fee.mail_item_id, fee.contact_id, fee.user_id,
                    fee.fee_amount, fee.days_charged, fee.daily_rate,
                    fee.grace_period_days, fee.fee_status,
                    _to_db_time(fee.last_calculated_at),
                    _to_db_time(fee.created_at),
                ),
            )
            self._log_action(conn, fee.fee_id, "created", actor=actor, details={
                "mail_item_id": fee.mail_item_id,
                "fee_amount": fee.fee_amount,
                "days_charged": fee.days_charged,
            })
            conn.commit()
        finally:
            conn.close()
        return fee

    def get_fee(self, fee_id: str) -> PackageFee | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM package_fees WHERE fee_id = ?", (fee_id,)
            ).fetchone()
            return _row_to_fee(dict(row)) if row else None
        finally:
            conn.close()

    def get_fee_for_mail_item(self, mail_item_id: str) -> PackageFee | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM package_fees WHERE mail_item_id = ?", (mail_item_id,)
            ).fetchone()
            return _row_to_fee(dict(row)) if row else None
        finally:
            conn.close()

    def fetch_fees(
        self,
        user_id: Optional[str] = None,
        status: FeeStatus | str | None = None,
    ) -> list[PackageFee]:
        """Fees filtered by tenant and/or status, highest amount first."""
        clauses: list[str] = []
        params: list[Any] = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("fee_status = ?")
            params.append(_to_db_value(status))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM package_fees {where} ORDER BY fee_amount DESC, created_at ASC",
                params,
            ).fetchall()
            return [_row_to_fee(dict(r)) for r in rows]
        finally:
            conn.close()

    def fetch_pending_fees(self, user_id: Optional[str] = None) -> list[tuple[PackageFee, MailItem]]:
        """Every pending fee joined with its mail item."""
        sql = """
            SELECT f.*,
                   m.mail_item_id  AS mi_mail_item_id,
                   m.contact_id    AS mi_contact_id,
                   m.user_id       AS mi_user_id,
                   m.item_type     AS mi_item_type,
                   m.status        AS mi_status,
                   m.quantity      AS mi_quantity,
                   m.description   AS mi_description,
                   m.received_date AS mi_received_date,
                   m.pickup_date   AS mi_pickup_date,
                   m.last_notified AS mi_last_notified
            FROM package_fees f
            JOIN mail_items m ON m.mail_item_id = f.mail_item_id
            WHERE f.fee_status = ?
        """
        params: list[Any] = [FeeStatus.PENDING.value]
        if user_id:
            sql += " AND f.user_id = ?"
            params.append(user_id)

        conn = self._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [_split_joined_row(dict(r)) for r in rows]
        finally:
            conn.close()

    def conditional_update_fee(
        self,
        fee_id: str,
        expected_status: FeeStatus | str,
        patch: dict[str, Any],
        action: str | None = None,
        actor: str | None = None,
    ) -> int:
        """Apply ``patch`` only if the fee is currently in ``expected_status``.

        The predicate and the write are one statement.  When ``action`` is
        given and a row changed, an audit entry is written in the same
        transaction.

        Returns:
            Number of rows affected (0 or 1).
        """
        unknown = set(patch) - _FEE_PATCH_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update package_fees columns: {sorted(unknown)}")
        if not patch:
            raise ValueError("Empty fee patch")

        set_clause = ", ".join(f"{k} = ?" for k in patch)
        values = [_to_db_value(v) for v in patch.values()]
        values += [fee_id, _to_db_value(expected_status)]

        conn = self._get_conn()
        try:
            result = conn.execute(
                f"UPDATE package_fees SET {set_clause} WHERE fee_id = ? AND fee_status = ?",
                values,
            )
            affected = result.rowcount
            if affected and action:
                self._log_action(conn, fee_id, action, actor=actor, details=patch)
            conn.commit()
            return affected
        finally:
            conn.close()

    def fetch_audit_log(self, fee_id: str) -> list[dict[str, Any]]:
        """Audit entries for one fee, oldest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM fee_audit_log WHERE fee_id = ? ORDER BY id ASC",
                (fee_id,),
            ).fetchall()
            result = []
            for r in rows:
                entry = dict(r)
                try:
                    entry["details"] = json.loads(entry.get("details") or "{}")
                except (json.JSONDecodeError, TypeError):
                    entry["details"] = {}
                result.append(entry)
            return result
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def record_notification(
        self,
        mail_item_ids: list[str],
        contact_id: str,
        sent_at: datetime,
        message_id: str = "",
        subject: str = "",
        user_id: str = "",
    ) -> None:
        """Stamp ``last_notified`` on the items and log the send, atomically.

        Items still in 'Received' move to 'Notified'.
        """
        sent_at_db = _to_db_time(sent_at)
        conn = self._get_conn()
        try:
            for mail_item_id in mail_item_ids:
                conn.execute(
                    """UPDATE mail_items
                       SET last_notified = ?,
                           status = CASE WHEN status = ? THEN ? ELSE status END
                       WHERE mail_item_id = ?""",
                    (
                        sent_at_db,
                        MailStatus.RECEIVED.value, MailStatus.NOTIFIED.value,
                        mail_item_id,
                    ),
                )
                conn.execute(
                    """INSERT INTO notification_history
                       (mail_item_id, contact_id, user_id, message_id, subject, sent_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (mail_item_id, contact_id, user_id, message_id, subject, sent_at_db),
                )
            conn.commit()
        finally:
            conn.close()

    def notification_counts(self, user_id: Optional[str] = None) -> dict[str, int]:
        """Number of notifications sent per mail item."""
        conn = self._get_conn()
        try:
            if user_id:
                rows = conn.execute(
                    """SELECT mail_item_id, COUNT(*) AS n FROM notification_history
                       WHERE user_id = ? GROUP BY mail_item_id""",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT mail_item_id, COUNT(*) AS n FROM notification_history GROUP BY mail_item_id"
                ).fetchall()
            return {r["mail_item_id"]: r["n"] for r in rows}
        finally:
            conn.close()
