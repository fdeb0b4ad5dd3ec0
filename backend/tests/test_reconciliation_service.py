"""
Payment reconciliation tests.

Verifies:
- Unpaid supply records without payments appear as synthetic pending entries
- A supply record with any payment row is never listed twice
- Statistics add supply-record totals to payment totals without double counting
- The average only looks at completed payment rows
"""

from datetime import timedelta

import pytest

from teasupply.errors import ValidationError
from teasupply.services import payment_service, supply_service
from teasupply.services.reconciliation_service import (
    PaymentFilters,
    find_all_payments,
    get_payment_statistics,
)
from teasupply.time_utils import utcnow


def _record(supplier, quantity="6", price="50", minutes_ago=0, **kwargs):
    return supply_service.create_supply_record(
        supplier.id, quantity, price, now=utcnow() - timedelta(minutes=minutes_ago), **kwargs
    )


class TestFindAllPayments:

    def test_synthetic_entry_for_unpaid_record(self, supplier):
        record = _record(supplier, "6", "50")

        entries = find_all_payments()
        assert len(entries) == 1
        entry = entries[0]
        assert entry["source"] == "supply_record"
        assert entry["payment_status"] == "pending"
        assert entry["amount"] == "300.00"
        assert entry["payment_id"] is None
        assert entry["supply_id"] == record.supply_id
        assert entry["supplier_code"] == supplier.supplier_id

    def test_record_with_payment_listed_once(self, supplier):
        record = _record(supplier)
        payment_service.create_payment(record.id)

        entries = find_all_payments()
        assert len(entries) == 1
        assert entries[0]["source"] == "payment"
        assert entries[0]["supply_record_id"] == record.id

    def test_failed_payment_still_hides_synthetic_entry(self, supplier):
        record = _record(supplier)
        payment = payment_service.create_payment(record.id)
        payment_service.update_payment_status(payment.payment_id, "failed")

        entries = find_all_payments()
        assert [e["source"] for e in entries] == ["payment"]

    def test_paid_record_without_payment_not_listed(self, supplier):
        _record(supplier, payment_status="paid")
        assert find_all_payments() == []

    def test_newest_first(self, supplier):
        old = _record(supplier, minutes_ago=60)
        mid = _record(supplier, minutes_ago=30)
        payment_service.create_payment(mid.id)
        new = _record(supplier, minutes_ago=0)

        entries = find_all_payments()
        assert [e["supply_record_id"] for e in entries] == [new.id, mid.id, old.id]

    def test_status_filter_excludes_synthetic(self, supplier):
        _record(supplier)
        paid = _record(supplier)
        payment_service.record_direct_payment(paid.id)

        completed = find_all_payments(PaymentFilters(payment_status="completed"))
        assert [e["source"] for e in completed] == ["payment"]

        pending = find_all_payments(PaymentFilters(payment_status="pending"))
        assert [e["source"] for e in pending] == ["supply_record"]

    def test_supplier_filter(self, supplier, other_supplier):
        _record(supplier)
        _record(other_supplier)
        entries = find_all_payments(PaymentFilters(supplier_id=other_supplier.id))
        assert [e["supplier_id"] for e in entries] == [other_supplier.id]

    def test_search_by_supplier_name(self, supplier, other_supplier):
        _record(supplier)
        _record(other_supplier)
        entries = find_all_payments(PaymentFilters(search="kamala"))
        assert len(entries) == 1
        assert entries[0]["supplier_name"] == "Kamala Silva"

    def test_limit(self, supplier):
        for i in range(5):
            _record(supplier, minutes_ago=i)
        assert len(find_all_payments(PaymentFilters(limit=3))) == 3


class TestStatistics:

    def test_empty(self, db_session):
        stats = get_payment_statistics()
        assert stats["total_transactions"] == 0
        assert stats["completed_amount"] == "0.00"
        assert stats["pending_amount"] == "0.00"
        assert stats["average_payment_amount"] is None

    def test_merges_payments_and_records(self, supplier):
        _record(supplier, "6", "50")                          # unpaid, no payment: 300 pending
        _record(supplier, "2", "50", payment_status="paid")   # paid, no payment: 100 completed
        pending_record = _record(supplier, "4", "50")         # pending payment: 200
        done_record = _record(supplier, "10", "50")           # completed payment: 500
        failed_record = _record(supplier, "1", "50")          # failed payment, still owed: 50

        payment_service.create_payment(pending_record.id)
        payment_service.record_direct_payment(done_record.id)
        failed = payment_service.create_payment(failed_record.id)
        payment_service.update_payment_status(failed.payment_id, "failed")

        stats = get_payment_statistics()
        assert stats["pending_count"] == 3
        assert stats["pending_amount"] == "550.00"
        assert stats["completed_count"] == 2
        assert stats["completed_amount"] == "600.00"
        assert stats["failed_count"] == 1
        assert stats["failed_amount"] == "50.00"
        assert stats["total_transactions"] == 6
        # Only the real completed payment row counts toward the average
        assert stats["average_payment_amount"] == "500.00"

    def test_paid_record_with_payment_counted_once(self, supplier):
        record = _record(supplier, "10", "50")
        payment_service.record_direct_payment(record.id)

        stats = get_payment_statistics()
        assert stats["completed_count"] == 1
        assert stats["completed_amount"] == "500.00"
        assert stats["breakdown"]["supply_records"]["paid_without_payment_count"] == 0

    def test_failed_gateway_attempt_stays_pending(self, supplier):
        record = _record(supplier, "6", "50")
        session = payment_service.create_gateway_session(record.id, supplier_id=supplier.id)
        assert get_payment_statistics()["pending_amount"] == "300.00"

        payment_service.handle_gateway_callback(success=False, session_id=session["session_id"])

        stats = get_payment_statistics()
        assert stats["pending_count"] == 1
        assert stats["pending_amount"] == "300.00"
        assert stats["failed_amount"] == "300.00"
        assert stats["breakdown"]["supply_records"]["unpaid_amount"] == "300.00"

    def test_refunded_record_is_owed_again(self, supplier):
        record = _record(supplier, "6", "50")
        payment = payment_service.record_direct_payment(record.id)
        payment_service.update_payment_status(payment.payment_id, "refunded")

        stats = get_payment_statistics()
        assert stats["pending_count"] == 1
        assert stats["pending_amount"] == "300.00"
        assert stats["completed_count"] == 0
        assert stats["refunded_count"] == 1

    def test_retry_after_failure_counted_once(self, supplier):
        record = _record(supplier, "6", "50")
        failed = payment_service.create_payment(record.id)
        payment_service.update_payment_status(failed.payment_id, "failed")
        payment_service.create_payment(record.id)

        stats = get_payment_statistics()
        assert stats["pending_count"] == 1
        assert stats["pending_amount"] == "300.00"


class TestPaging:

    def test_offset_pages_through_merged_list(self, supplier):
        oldest = _record(supplier, minutes_ago=30)
        middle = _record(supplier, minutes_ago=20)
        payment_service.create_payment(middle.id, now=utcnow() - timedelta(minutes=15))
        newest = _record(supplier, minutes_ago=10)

        first = find_all_payments(PaymentFilters(limit=2))
        second = find_all_payments(PaymentFilters(limit=2, offset=2))
        assert [e["supply_record_id"] for e in first] == [newest.id, middle.id]
        assert [e["supply_record_id"] for e in second] == [oldest.id]

    def test_offset_from_args(self):
        filters = PaymentFilters.from_args({"offset": "40", "limit": "20"})
        assert (filters.limit, filters.offset) == (20, 40)
        assert PaymentFilters.from_args({}).offset == 0


class TestFilters:

    def test_from_args(self):
        filters = PaymentFilters.from_args({
            "supplier_id": "7",
            "date_from": "2026-01-01",
            "date_to": "2026-01-31",
            "payment_status": "pending",
            "limit": "5000",
        })
        assert filters.supplier_id == 7
        assert filters.payment_status == "pending"
        assert filters.limit == 1000

    def test_forced_supplier_wins(self):
        filters = PaymentFilters.from_args({"supplier_id": "7"}, supplier_id=3)
        assert filters.supplier_id == 3

    @pytest.mark.parametrize("args", [
        {"supplier_id": "x"},
        {"date_from": "yesterday"},
        {"payment_status": "lost"},
        {"limit": "0"},
        {"offset": "-1"},
        {"date_from": "2026-02-01", "date_to": "2026-01-01"},
    ])
    def test_rejects_bad_args(self, args):
        with pytest.raises(ValidationError):
            PaymentFilters.from_args(args)
