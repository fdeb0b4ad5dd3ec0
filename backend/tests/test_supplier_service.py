"""
Supplier lifecycle tests.

Verifies:
- Registration validates contact and bank fields and rejects duplicates
- A generated password is returned and mailed once
- Supplier ids can be backfilled and reset to a dense SUP000001.. sequence
- The inactivity sweep retires only old suppliers with no recent deliveries
"""

from datetime import datetime, timedelta

import pytest

from teasupply.errors import ConflictError, NotFound, ValidationError
from teasupply.models import User
from teasupply.scheduler import SupplierSweepScheduler
from teasupply.services import auth_service, supplier_service, supply_service
from teasupply.time_utils import subtract_months, utcnow

from conftest import make_supplier


class RecordingMailer:

    def __init__(self):
        self.sent = []

    def send_async(self, to, subject, body):
        self.sent.append((to, subject, body))


def _age(db_session, supplier, days):
    supplier.created_at = utcnow() - timedelta(days=days)
    db_session.commit()


def _status(db_session, user_id):
    db_session.expire_all()
    return db_session.get(User, user_id).status


class TestCreateSupplier:

    def test_defaults(self, db_session):
        supplier = make_supplier()
        assert supplier.role == "supplier"
        assert supplier.status == "active"
        assert supplier.supplier_id == "SUP000001"
        assert supplier.must_change_password is False

    def test_generated_password_is_returned_and_mailed(self, db_session):
        mailer = RecordingMailer()
        supplier, generated = supplier_service.create_supplier(
            {"name": "Sunil", "email": "Sunil@Example.com", "phone": "0751112223"},
            mailer=mailer,
        )
        assert generated is not None
        assert len(generated) == 12
        assert supplier.email == "sunil@example.com"
        assert supplier.must_change_password is True
        assert auth_service.verify_password(generated, supplier.password_hash)

        assert len(mailer.sent) == 1
        to, _, body = mailer.sent[0]
        assert to == "sunil@example.com"
        assert supplier.supplier_id in body

    def test_duplicate_email(self, supplier):
        with pytest.raises(ConflictError):
            make_supplier(name="Copy", phone="0709999999")

    def test_duplicate_phone(self, supplier):
        with pytest.raises(ConflictError):
            make_supplier(name="Copy", email="copy@example.com")

    @pytest.mark.parametrize("extra", [
        {"phone": "077-123"},
        {"email": "not-an-email"},
        {"account_number": "12ab5678", "account_holder_name": "X"},
        {"account_number": "12345678"},
        {"bank_code": "7X"},
        {"supplier_id": "SUP999999"},
    ])
    def test_rejects_bad_fields(self, db_session, extra):
        data = {"name": "Bad", "email": "bad@example.com", "phone": "0770000000"}
        data.update(extra)
        with pytest.raises(ValidationError):
            supplier_service.create_supplier(data, password="Password123!")

    def test_missing_required(self, db_session):
        with pytest.raises(ValidationError):
            supplier_service.create_supplier({"name": "Only Name"}, password="Password123!")

    def test_status_in_payload_ignored(self, db_session):
        supplier = make_supplier(status="inactive")
        assert supplier.status == "active"


class TestUpdateSupplier:

    def test_update_and_masking(self, supplier):
        supplier_service.update_supplier(supplier.id, {"account_number": "9876543210"})
        masked = supplier_service.get_supplier(supplier.id)
        assert masked["account_number"] == "***3210"
        full = supplier_service.get_supplier(supplier.id, mask_bank_details=False)
        assert full["account_number"] == "9876543210"

    def test_unknown_status(self, supplier):
        with pytest.raises(ValidationError):
            supplier_service.update_supplier(supplier.id, {"status": "retired"})

    def test_not_a_supplier(self, staff):
        with pytest.raises(NotFound):
            supplier_service.find_supplier(staff.id)
        assert not supplier_service.supplier_exists(staff.id)

    def test_supplier_exists(self, supplier):
        assert supplier_service.supplier_exists(supplier.id)
        assert not supplier_service.supplier_exists(supplier.id + 1000)

    def test_custom_price_cleared(self, supplier):
        supplier_service.set_custom_unit_price(supplier.id, "55")
        cleared = supplier_service.set_custom_unit_price(supplier.id, None)
        assert cleared.custom_unit_price is None

    def test_list_search(self, supplier, other_supplier):
        found = supplier_service.list_suppliers(search="kamala")
        assert [s["name"] for s in found] == ["Kamala Silva"]
        assert len(supplier_service.list_suppliers(status="active")) == 2


class TestSupplierIds:

    def test_backfill(self, db_session, supplier):
        supplier.supplier_id = None
        db_session.commit()

        assert supplier_service.backfill_supplier_ids() == 1
        db_session.expire_all()
        assert db_session.get(User, supplier.id).supplier_id == "SUP000002"

    def test_listing_backfills(self, db_session, supplier):
        supplier.supplier_id = None
        db_session.commit()
        listed = supplier_service.list_suppliers()
        assert listed[0]["supplier_id"] is not None

    def test_reset_renumbers_densely(self, db_session):
        first = make_supplier(name="A", email="a@example.com", phone="0700000001")
        second = make_supplier(name="B", email="b@example.com", phone="0700000002")
        third = make_supplier(name="C", email="c@example.com", phone="0700000003")
        first.supplier_id = "SUP000900"
        third.supplier_id = "SUP000077"
        db_session.commit()

        result = supplier_service.reset_all_supplier_ids()
        assert result == {"updated": 3, "next_supplier_id": "SUP000004"}

        db_session.expire_all()
        assert [db_session.get(User, s.id).supplier_id for s in (first, second, third)] == [
            "SUP000001", "SUP000002", "SUP000003",
        ]
        assert make_supplier(name="D", email="d@example.com", phone="0700000004").supplier_id == "SUP000004"

    def test_id_stats(self, db_session, supplier, other_supplier):
        other_supplier.supplier_id = "legacy-7"
        db_session.commit()

        stats = supplier_service.get_supplier_id_stats()
        assert stats["total_suppliers"] == 2
        assert stats["with_supplier_id"] == 2
        assert stats["invalid_format"] == 1
        assert stats["highest_supplier_id"] == "SUP000001"
        assert stats["sequence_next_number"] == 3


class TestInactivitySweep:

    def test_old_supplier_without_supply_deactivated(self, db_session, supplier):
        _age(db_session, supplier, days=7 * 31)
        assert supplier_service.deactivate_old_suppliers() == 1
        assert _status(db_session, supplier.id) == "inactive"

    def test_recent_supply_keeps_supplier_active(self, db_session, supplier):
        _age(db_session, supplier, days=7 * 31)
        two_months_ago = (utcnow() - timedelta(days=60)).date().isoformat()
        supply_service.create_supply_record(supplier.id, "10", "50", supply_date=two_months_ago)

        assert supplier_service.deactivate_old_suppliers() == 0
        assert _status(db_session, supplier.id) == "active"

    def test_stale_supply_does_not_count(self, db_session, supplier):
        _age(db_session, supplier, days=400)
        old = (utcnow() - timedelta(days=250)).date().isoformat()
        supply_service.create_supply_record(supplier.id, "10", "50", supply_date=old)

        assert supplier_service.deactivate_old_suppliers() == 1

    def test_young_supplier_untouched(self, db_session, supplier):
        _age(db_session, supplier, days=30)
        assert supplier_service.deactivate_old_suppliers() == 0

    def test_other_roles_untouched(self, db_session, staff):
        _age(db_session, staff, days=400)
        assert supplier_service.deactivate_old_suppliers() == 0
        assert _status(db_session, staff.id) == "active"

    def test_explicit_now(self, db_session, supplier):
        now = utcnow() + timedelta(days=365)
        assert supplier_service.deactivate_old_suppliers(now=now) == 1

    def test_counts_by_status(self, db_session, supplier, other_supplier):
        _age(db_session, supplier, days=400)
        supplier_service.deactivate_old_suppliers()
        assert supplier_service.count_suppliers_by_status() == {"active": 1, "inactive": 1}

    def test_scheduler_tick(self, app, db_session, supplier):
        _age(db_session, supplier, days=400)
        scheduler = SupplierSweepScheduler(app, interval_seconds=3600)
        assert scheduler.tick() == 1
        assert not scheduler.is_running
        assert _status(db_session, supplier.id) == "inactive"


class TestSubtractMonths:

    @pytest.mark.parametrize("start,expected", [
        (datetime(2026, 8, 31, 10, 0), datetime(2026, 2, 28, 10, 0)),
        (datetime(2026, 3, 15), datetime(2025, 9, 15)),
        (datetime(2028, 8, 29), datetime(2028, 2, 29)),
    ])
    def test_clamps_to_month_end(self, start, expected):
        assert subtract_months(start, 6) == expected
