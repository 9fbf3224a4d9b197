"""Tests for mailroom.fee_service -- fee lifecycle and fee queries.

Covers:
- Fee record creation and the fee-bearing item check
- Waive / pay validation
- At-most-once terminal transitions, including concurrent callers
- Outstanding fee listing and revenue statistics
"""

import threading
from datetime import timedelta

import pytest

from mailroom.calendar_days import business_date, now_utc
from mailroom.config import MailroomConfig
from mailroom.exceptions import AlreadyProcessedError, ValidationError
from mailroom.fee_service import FeeService

TENANT = "tenant-1"


@pytest.fixture
def service(store, config) -> FeeService:
    return FeeService(store, config)


@pytest.fixture
def pending_fee(service, make_item):
    make_item("m1", "2025-12-01T10:00:00Z")
    return service.create_fee_record("m1", "c1", TENANT, fee_amount=12.0, days_charged=7)


# ============================================================================
# Creation
# ============================================================================

class TestCreateFeeRecord:
    def test_new_fee_is_pending_zero(self, service, store, make_item):
        make_item("m1", "2025-12-01T10:00:00Z")
        fee = service.create_fee_record("m1", "c1", TENANT)
        stored = store.get_fee(fee.fee_id)
        assert stored.fee_status == "pending"
        assert stored.fee_amount == 0.0
        assert stored.days_charged == 0
        assert stored.daily_rate == 2.00
        assert stored.grace_period_days == 1

    def test_rate_comes_from_config(self, store, make_item):
        cfg = MailroomConfig()
        cfg.fees.daily_rate = 3.5
        make_item("m1", "2025-12-01T10:00:00Z")
        fee = FeeService(store, cfg).create_fee_record("m1", "c1", TENANT)
        assert store.get_fee(fee.fee_id).daily_rate == 3.5


class TestEnsureFeeForItem:
    def test_letter_gets_no_fee(self, service, make_item):
        item = make_item("m1", "2025-12-01T10:00:00Z", item_type="Letter")
        assert service.ensure_fee_for_item(item) is None
        assert service.get_fee_for_mail_item("m1") is None

    def test_package_gets_one_fee(self, service, make_item):
        item = make_item("m1", "2025-12-01T10:00:00Z", item_type="Package")
        first = service.ensure_fee_for_item(item)
        second = service.ensure_fee_for_item(item)
        assert first is not None
        assert first.fee_id == second.fee_id

    def test_type_conversion_creates_fee(self, service, store, make_item):
        make_item("m1", "2025-12-01T10:00:00Z", item_type="Letter")
        converted = store.update_mail_item("m1", item_type="Package")
        fee = service.ensure_fee_for_item(converted)
        assert fee is not None and fee.mail_item_id == "m1"

    def test_seeded_with_accrued_amount(self, service, make_item):
        item = make_item("m1", "2025-12-03T15:00:00Z")
        fee = service.ensure_fee_for_item(item, as_of="2025-12-10T15:00:00Z")
        assert fee.fee_amount == 12.0
        assert fee.days_charged == 7


# ============================================================================
# Waive
# ============================================================================

class TestWaiveFee:
    @pytest.mark.parametrize("reason", ["", "    ", "abcd", "  abcd  ", None])
    def test_reason_too_short(self, service, pending_fee, reason):
        with pytest.raises(ValidationError):
            service.waive_fee(pending_fee.fee_id, reason, "staff-1")
        assert service.get_fee(pending_fee.fee_id).fee_status == "pending"

    def test_waive(self, service, store, pending_fee):
        fee = service.waive_fee(pending_fee.fee_id, "  Long-time customer  ", "staff-1")
        assert fee.fee_status == "waived"
        assert fee.waive_reason == "Long-time customer"
        assert fee.waived_by == "staff-1"
        assert fee.waived_date is not None
        assert fee.fee_amount == 12.0
        actions = [e["action"] for e in store.fetch_audit_log(fee.fee_id)]
        assert actions == ["created", "waived"]

    def test_waive_twice(self, service, pending_fee):
        service.waive_fee(pending_fee.fee_id, "Damaged box", "staff-1")
        with pytest.raises(AlreadyProcessedError) as exc_info:
            service.waive_fee(pending_fee.fee_id, "Damaged box", "staff-2")
        assert exc_info.value.fee_id == pending_fee.fee_id
        assert service.get_fee(pending_fee.fee_id).waived_by == "staff-1"

    def test_waive_after_pay(self, service, pending_fee):
        service.mark_fee_paid(pending_fee.fee_id, "cash")
        with pytest.raises(AlreadyProcessedError):
            service.waive_fee(pending_fee.fee_id, "Changed my mind", "staff-1")
        assert service.get_fee(pending_fee.fee_id).fee_status == "paid"

    def test_unknown_fee(self, service):
        with pytest.raises(AlreadyProcessedError):
            service.waive_fee("missing", "Valid reason", "staff-1")

    def test_errors_are_catchable_as_builtins(self, service):
        with pytest.raises(LookupError):
            service.waive_fee("missing", "Valid reason", "staff-1")
        with pytest.raises(ValueError):
            service.waive_fee("missing", "no", "staff-1")


# ============================================================================
# Pay
# ============================================================================

class TestMarkFeePaid:
    @pytest.mark.parametrize("method", ["bitcoin", "", "credit"])
    def test_invalid_method(self, service, pending_fee, method):
        with pytest.raises(ValidationError):
            service.mark_fee_paid(pending_fee.fee_id, method)

    def test_method_case_insensitive(self, service, pending_fee):
        fee = service.mark_fee_paid(pending_fee.fee_id, "Venmo")
        assert fee.payment_method == "venmo"

    def test_negative_collected_amount(self, service, pending_fee):
        with pytest.raises(ValidationError):
            service.mark_fee_paid(pending_fee.fee_id, "cash", collected_amount=-1)
        assert service.get_fee(pending_fee.fee_id).is_pending

    def test_full_payment(self, service, pending_fee):
        fee = service.mark_fee_paid(pending_fee.fee_id, "card", collected_by="staff-1")
        assert fee.fee_status == "paid"
        assert fee.collected_amount is None
        assert fee.collected_by == "staff-1"
        assert fee.paid_date is not None
        assert fee.discount_amount == 0.0

    def test_discounted_payment_keeps_amount_owed(self, service, pending_fee):
        fee = service.mark_fee_paid(pending_fee.fee_id, "cash", collected_amount=10.0)
        assert fee.fee_amount == 12.0
        assert fee.collected_amount == 10.0
        assert fee.discount_amount == 2.0

    def test_pay_twice(self, service, pending_fee):
        service.mark_fee_paid(pending_fee.fee_id, "cash")
        with pytest.raises(AlreadyProcessedError):
            service.mark_fee_paid(pending_fee.fee_id, "card")
        assert service.get_fee(pending_fee.fee_id).payment_method == "cash"

    def test_pay_after_waive(self, service, pending_fee):
        service.waive_fee(pending_fee.fee_id, "Holiday courtesy", "staff-1")
        with pytest.raises(AlreadyProcessedError):
            service.mark_fee_paid(pending_fee.fee_id, "cash")


# ============================================================================
# Concurrency
# ============================================================================

class TestConcurrentTransitions:
    def test_exactly_one_terminal_transition_wins(self, service, pending_fee):
        n_threads = 8
        barrier = threading.Barrier(n_threads)
        outcomes: list[str] = []
        lock = threading.Lock()

        def worker(i: int) -> None:
            barrier.wait()
            try:
                if i % 2:
                    service.mark_fee_paid(pending_fee.fee_id, "cash", collected_by=f"s{i}")
                else:
                    service.waive_fee(pending_fee.fee_id, "Concurrent waive", f"s{i}")
                result = "ok"
            except AlreadyProcessedError:
                result = "already"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("already") == n_threads - 1
        assert service.get_fee(pending_fee.fee_id).fee_status in ("paid", "waived")


# ============================================================================
# Queries
# ============================================================================

class TestQueries:
    @pytest.fixture
    def ledger(self, service, make_item):
        """Fees paid in full, paid at a discount, waived, pending, and pending at zero."""
        amounts = {"full": 12.0, "discount": 8.0, "waived": 4.0, "open": 6.0, "zero": 0.0}
        fees = {}
        for key, amount in amounts.items():
            make_item(key, "2025-12-01T10:00:00Z")
            fees[key] = service.create_fee_record(key, "c1", TENANT, fee_amount=amount)
        service.mark_fee_paid(fees["full"].fee_id, "cash")
        service.mark_fee_paid(fees["discount"].fee_id, "zelle", collected_amount=5.0)
        service.waive_fee(fees["waived"].fee_id, "First-time customer", "staff-1")
        return fees

    def test_outstanding_fees(self, service, ledger, make_item):
        make_item("big", "2025-11-01T10:00:00Z")
        service.create_fee_record("big", "c1", TENANT, fee_amount=40.0)
        outstanding = service.get_outstanding_fees(TENANT)
        assert [f.mail_item_id for f in outstanding] == ["big", "open", "zero"]

    def test_outstanding_includes_zero_amount_fee(self, service, make_item):
        make_item("fresh", "2025-12-10T10:00:00Z")
        fee = service.create_fee_record("fresh", "c1", TENANT)
        outstanding = service.get_outstanding_fees(TENANT)
        assert [f.fee_id for f in outstanding] == [fee.fee_id]
        assert outstanding[0].fee_amount == 0.0

    def test_revenue_stats(self, service, ledger):
        stats = service.get_revenue_stats(TENANT)
        assert stats.total_revenue == 17.0
        assert stats.discounts_given == 3.0
        assert stats.outstanding_fees == 6.0
        assert stats.waived_fees == 4.0
        assert (stats.paid_count, stats.pending_count, stats.waived_count) == (2, 2, 1)

    def test_revenue_date_range(self, service, ledger):
        today = business_date(now_utc())
        assert service.get_revenue_stats(TENANT, start_date=today, end_date=today).paid_count == 2
        later = service.get_revenue_stats(TENANT, start_date=today + timedelta(days=1))
        assert later.paid_count == 0
        assert later.total_revenue == 0.0
        assert later.start_date == (today + timedelta(days=1)).isoformat()

    def test_revenue_other_tenant_empty(self, service, ledger):
        stats = service.get_revenue_stats("tenant-2")
        assert stats.to_dict()["paid_count"] == 0
        assert stats.outstanding_fees == 0.0

    def test_revenue_end_before_start_of_paid_day(self, service, ledger):
        yesterday = business_date(now_utc()) - timedelta(days=1)
        assert service.get_revenue_stats(TENANT, end_date=yesterday).paid_count == 0
