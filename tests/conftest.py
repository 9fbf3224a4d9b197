"""Shared fixtures: a throwaway SQLite store and small builders for rows."""

from datetime import datetime

import pytest

from mailroom.config import MailroomConfig
from mailroom.models import Contact, MailItem
from mailroom.store import SQLiteStore

TENANT = "tenant-1"


@pytest.fixture
def config() -> MailroomConfig:
    return MailroomConfig()


@pytest.fixture
def store(tmp_path) -> SQLiteStore:
    return SQLiteStore(tmp_path / "mailroom.db")


@pytest.fixture
def make_contact(store):
    def _make(contact_id="c1", email="ana@example.com", **kwargs) -> Contact:
        kwargs.setdefault("user_id", TENANT)
        kwargs.setdefault("contact_person", "Ana Lopez")
        kwargs.setdefault("mailbox_number", "101")
        return store.add_contact(Contact(contact_id=contact_id, email=email, **kwargs))
    return _make


@pytest.fixture
def make_item(store):
    def _make(mail_item_id, received, contact_id="c1", **kwargs) -> MailItem:
        kwargs.setdefault("user_id", TENANT)
        if isinstance(received, str):
            received = datetime.fromisoformat(received)
        return store.add_mail_item(MailItem(
            mail_item_id=mail_item_id,
            contact_id=contact_id,
            received_date=received,
            **kwargs,
        ))
    return _make
