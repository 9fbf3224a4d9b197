"""
Mailroom Fee Engine -- Follow-Up Notifier

Sends one "mail waiting for pickup" notification for a follow-up group and
records it:

    1. Build pickup variables (counts, pluralized nouns, fees, date)
    2. Render the staff template (template_engine.render)
    3. Wrap the body into HTML
    4. Hand off to the transport
    5. Stamp ``last_notified`` on every item in the group and log the send

The transport is any callable ``(to, subject, html, sender_user_id) ->
{"message_id": ...}``.  Transport errors propagate unchanged and nothing is
recorded for that group.  ``SMTPTransport`` is the bundled implementation.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Any, Callable, Optional

from .calendar_days import now_utc, to_instant
from .config import MailroomConfig, SenderInfo, SMTPSettings, get_config
from .exceptions import ValidationError
from .models import FollowUpGroup, MailStatus
from .store import SQLiteStore
from .template_engine import build_pickup_variables, render, text_to_html

logger = logging.getLogger(__name__)

Transport = Callable[[str, str, str, Optional[str]], dict[str, Any]]


@dataclass
class NotificationResult:
    """What was sent for one group."""
    contact_id: str
    to: str
    subject: str
    message_id: str
    sent_at: datetime
    mail_item_ids: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# SMTP transport
# ---------------------------------------------------------------------------

class SMTPTransport:
    """Send HTML notifications over SMTP (STARTTLS + login)."""

    def __init__(self, smtp: SMTPSettings | None = None, sender: SenderInfo | None = None):
        cfg = None if (smtp and sender) else get_config()
        self.smtp = smtp or cfg.smtp
        self.sender = sender or cfg.sender

    def build_message(self, to: str, subject: str, html: str) -> MIMEMultipart:
        from_email = self.sender.email or self.smtp.username
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.sender.name, from_email)) if self.sender.name else from_email
        msg["To"] = to
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def __call__(
        self,
        to: str,
        subject: str,
        html: str,
        sender_user_id: Optional[str] = None,
    ) -> dict[str, Any]:
        msg = self.build_message(to, subject, html)
        from_email = self.sender.email or self.smtp.username

        with smtplib.SMTP(self.smtp.host, self.smtp.port) as server:
            if self.smtp.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp.username:
                server.login(self.smtp.username, self.smtp.password)
            server.sendmail(from_email, [to], msg.as_string())

        logger.info("Sent notification to %s (sender user %s)", to, sender_user_id or "-")
        return {"message_id": msg["Message-ID"]}


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------

class FollowUpNotifier:
    """Render, send and record follow-up notifications."""

    def __init__(
        self,
        store: SQLiteStore,
        transport: Transport,
        config: MailroomConfig | None = None,
    ):
        self.store = store
        self.transport = transport
        self.config = config or get_config()

    def notify_group(
        self,
        group: FollowUpGroup,
        subject_template: str,
        body_template: str,
        sender_user_id: Optional[str] = None,
        as_of: Optional[datetime | str] = None,
    ) -> NotificationResult:
        """Notify one customer about all mail in ``group``.

        Raises:
            ValidationError: the contact has no email address.
        """
        to = (group.contact.email or "").strip()
        if not to:
            raise ValidationError(
                f"Contact {group.contact_id} has no email address"
            )
        sent_at = to_instant(as_of) if as_of is not None else now_utc()

        variables = build_pickup_variables(
            group.contact,
            letter_count=group.letter_count,
            package_count=group.package_count,
            as_of=sent_at,
            total_fees=group.total_fees,
        )
        rendered = render(subject_template, body_template, variables)
        html = text_to_html(rendered.body)

        response = self.transport(to, rendered.subject, html, sender_user_id) or {}
        message_id = str(response.get("message_id", ""))

        item_ids = [item.mail_item_id for item in group.items]
        self.store.record_notification(
            item_ids,
            group.contact_id,
            sent_at,
            message_id=message_id,
            subject=rendered.subject,
            user_id=group.contact.user_id or (group.items[0].user_id if group.items else ""),
        )
        for item in group.items:
            item.last_notified = sent_at
            if item.status == MailStatus.RECEIVED.value:
                item.status = MailStatus.NOTIFIED.value
        group.last_notified = sent_at

        logger.info(
            "Notified %s about %d %s / %d %s",
            group.contact.display_name,
            group.letter_count, variables["LetterText"],
            group.package_count, variables["PackageText"],
        )
        return NotificationResult(
            contact_id=group.contact_id,
            to=to,
            subject=rendered.subject,
            message_id=message_id,
            sent_at=sent_at,
            mail_item_ids=item_ids,
        )
