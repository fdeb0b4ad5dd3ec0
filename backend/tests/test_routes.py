"""
API route tests.

Verifies:
- Protected routes require a bearer token (401) and the right role (403)
- Suppliers only ever see and change their own records
- Domain errors map to their HTTP status codes
- Gateway callbacks honour the webhook signature when a secret is set
"""

import hashlib
import hmac
import json
from datetime import timedelta

from teasupply.services import payment_service, supply_service
from teasupply.time_utils import utcnow

from conftest import auth_headers, get_auth_token


def _post_supply(client, headers, **body):
    payload = {"quantity_kg": "100", "unit_price": "50", "supply_date": "2026-10-01"}
    payload.update(body)
    return client.post("/api/supply-records", json=payload, headers=headers)


class TestAuthentication:

    def test_missing_token(self, client, db_session):
        response = client.get("/api/supply-records")
        assert response.status_code == 401

    def test_bad_token(self, client, db_session):
        response = client.get("/api/supply-records", headers=auth_headers("nope"))
        assert response.status_code == 401

    def test_bad_password(self, client, supplier):
        assert get_auth_token(client, supplier.email, "wrong") is None

    def test_login_returns_user(self, client, supplier):
        response = client.post("/api/auth/login", json={"email": supplier.email, "password": "Password123!"})
        assert response.status_code == 200
        assert response.json["user"]["role"] == "supplier"
        assert response.json["token"]

    def test_me(self, client, supplier, supplier_headers):
        response = client.get("/api/auth/me", headers=supplier_headers)
        assert response.status_code == 200
        assert response.json["user"]["supplier_id"] == supplier.supplier_id

    def test_logout_revokes_token(self, client, supplier_headers):
        assert client.post("/api/auth/logout", headers=supplier_headers).status_code == 200
        assert client.get("/api/auth/me", headers=supplier_headers).status_code == 401

    def test_inactive_supplier_rejected(self, client, db_session, supplier, supplier_headers):
        supplier.status = "inactive"
        db_session.commit()
        assert client.get("/api/supply-records", headers=supplier_headers).status_code == 401


class TestRoles:

    def test_supplier_cannot_list_suppliers(self, client, supplier_headers):
        response = client.get("/api/suppliers", headers=supplier_headers)
        assert response.status_code == 403
        assert "staff" in response.json["required_roles"]

    def test_staff_cannot_create_production(self, client, staff_headers):
        response = client.post("/api/production", json={"quantity": "1"}, headers=staff_headers)
        assert response.status_code == 403

    def test_only_admin_resets_ids(self, client, manager_headers, admin_headers):
        assert client.post("/api/suppliers/reset-ids", json={"confirm": True}, headers=manager_headers).status_code == 403
        assert client.post("/api/suppliers/reset-ids", json={}, headers=admin_headers).status_code == 400
        response = client.post("/api/suppliers/reset-ids", json={"confirm": True}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json["next_supplier_id"] == "SUP000001"

    def test_supplier_cannot_record_direct_payment(self, client, supplier_headers):
        response = client.post("/api/payments/direct", json={"supply_record_id": 1}, headers=supplier_headers)
        assert response.status_code == 403


class TestSupplyRecords:

    def test_supplier_records_own_delivery(self, client, supplier, other_supplier, supplier_headers):
        response = _post_supply(client, supplier_headers, supplier_id=other_supplier.id)
        assert response.status_code == 201
        record = response.json["supply_record"]
        assert record["supplier_id"] == supplier.id
        assert record["total_payment"] == "5000.00"
        assert record["payment_status"] == "unpaid"

    def test_supplier_cannot_set_payment_status(self, client, supplier_headers):
        response = _post_supply(client, supplier_headers, payment_status="paid")
        assert response.status_code == 400

    def test_staff_must_name_supplier(self, client, staff_headers):
        response = _post_supply(client, staff_headers)
        assert response.status_code == 400

    def test_staff_records_for_supplier(self, client, supplier, staff_headers):
        response = _post_supply(client, staff_headers, supplier_id=supplier.id)
        assert response.status_code == 201

    def test_staff_cannot_record_for_staff(self, client, staff, staff_headers):
        response = _post_supply(client, staff_headers, supplier_id=staff.id)
        assert response.status_code == 400
        assert response.json["code"] == "invalid_supplier"

    def test_supplier_sees_only_own_records(self, client, supplier, other_supplier, supplier_headers):
        supply_service.create_supply_record(supplier.id, "10", "50")
        supply_service.create_supply_record(other_supplier.id, "20", "50")

        response = client.get(f"/api/supply-records?supplier_id={other_supplier.id}", headers=supplier_headers)
        assert response.status_code == 200
        assert response.json["count"] == 1
        assert response.json["supply_records"][0]["supplier_id"] == supplier.id

    def test_supplier_cannot_read_other_record(self, client, other_supplier, supplier_headers):
        record = supply_service.create_supply_record(other_supplier.id, "20", "50")
        response = client.get(f"/api/supply-records/{record.id}", headers=supplier_headers)
        assert response.status_code == 404

    def test_edit_inside_window(self, client, supplier_headers):
        created = _post_supply(client, supplier_headers).json["supply_record"]
        response = client.put(
            f"/api/supply-records/{created['id']}", json={"quantity_kg": "80"}, headers=supplier_headers,
        )
        assert response.status_code == 200
        assert response.json["supply_record"]["total_payment"] == "4000.00"

    def test_edit_after_window(self, client, supplier, supplier_headers):
        record = supply_service.create_supply_record(
            supplier.id, "10", "50", now=utcnow() - timedelta(minutes=20),
        )
        response = client.put(f"/api/supply-records/{record.id}", json={"notes": "x"}, headers=supplier_headers)
        assert response.status_code == 403
        assert response.json["code"] == "edit_window_expired"

        response = client.delete(f"/api/supply-records/{record.id}", headers=supplier_headers)
        assert response.status_code == 403

    def test_delete_inside_window(self, client, supplier_headers):
        created = _post_supply(client, supplier_headers).json["supply_record"]
        response = client.delete(f"/api/supply-records/{created['id']}", headers=supplier_headers)
        assert response.status_code == 200
        assert response.json["supply_id"] == created["supply_id"]

    def test_analytics_is_staff_only(self, client, supplier, supplier_headers, staff_headers):
        supply_service.create_supply_record(supplier.id, "10", "50")
        assert client.get("/api/supply-records/analytics", headers=supplier_headers).status_code == 403

        response = client.get("/api/supply-records/analytics", headers=staff_headers)
        assert response.status_code == 200
        assert response.json["analytics"]["supply_metrics"]["total_value"] == "500.00"

    def test_unexpected_error_is_generic_500(self, client, supplier_headers, monkeypatch):
        def boom(**kwargs):
            raise RuntimeError("connection string leaked")

        monkeypatch.setattr(supply_service, "list_supply_records", boom)
        response = client.get("/api/supply-records", headers=supplier_headers)
        assert response.status_code == 500
        assert response.json == {"error": "Internal server error", "code": "unexpected"}

    def test_staff_marks_paid_any_time(self, client, supplier, staff_headers):
        record = supply_service.create_supply_record(
            supplier.id, "10", "50", now=utcnow() - timedelta(days=2),
        )
        response = client.put(
            f"/api/supply-records/{record.id}/payment-status",
            json={"payment_status": "paid"},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json["supply_record"]["payment_status"] == "paid"


class TestStockRoutes:

    def test_inventory_and_production_flow(self, client, supplier, staff_headers, manager_headers):
        supply_service.create_supply_record(supplier.id, "100", "50")

        response = client.post("/api/inventory", json={"quantity": "60"}, headers=staff_headers)
        assert response.status_code == 201

        response = client.post("/api/inventory", json={"quantity": "50"}, headers=staff_headers)
        assert response.status_code == 400
        assert response.json["code"] == "insufficient_supply"

        response = client.post(
            "/api/production",
            json={"quantity": "25", "production_date": "2026-10-02", "production_time": "08:30"},
            headers=manager_headers,
        )
        assert response.status_code == 201

        summary = client.get("/api/inventory/summary", headers=staff_headers).json["summary"]
        assert summary["available_inventory"] == "35.00"
        assert summary["available_supply_kg"] == "40.00"

    def test_quantity_required(self, client, staff_headers):
        response = client.post("/api/inventory", json={}, headers=staff_headers)
        assert response.status_code == 400


class TestPaymentRoutes:

    def test_direct_payment_then_conflict(self, client, supplier, staff_headers):
        record = supply_service.create_supply_record(supplier.id, "100", "50")

        response = client.post("/api/payments/direct", json={"supply_record_id": record.id}, headers=staff_headers)
        assert response.status_code == 201
        assert response.json["payment"]["amount"] == "5000.00"

        response = client.post("/api/payments/direct", json={"supply_record_id": record.id}, headers=staff_headers)
        assert response.status_code == 409

    def test_get_payment_scoped_to_owner(self, client, supplier, other_supplier, supplier_headers, staff_headers):
        mine = payment_service.record_direct_payment(
            supply_service.create_supply_record(supplier.id, "10", "50").id
        )
        theirs = payment_service.record_direct_payment(
            supply_service.create_supply_record(other_supplier.id, "10", "50").id
        )

        response = client.get(f"/api/payments/{mine.payment_id}", headers=supplier_headers)
        assert response.status_code == 200
        assert response.json["payment"]["payment_id"] == mine.payment_id

        assert client.get(f"/api/payments/{theirs.payment_id}", headers=supplier_headers).status_code == 404
        assert client.get(f"/api/payments/{theirs.payment_id}", headers=staff_headers).status_code == 200
        assert client.get("/api/payments/PAY-missing", headers=staff_headers).status_code == 404

    def test_history_is_scoped_to_supplier(self, client, supplier, other_supplier, supplier_headers, staff_headers):
        supply_service.create_supply_record(supplier.id, "6", "50")
        supply_service.create_supply_record(other_supplier.id, "8", "50")

        mine = client.get("/api/payments/history", headers=supplier_headers).json
        assert mine["count"] == 1
        assert mine["payments"][0]["amount"] == "300.00"
        assert mine["payments"][0]["source"] == "supply_record"

        everyone = client.get("/api/payments/history", headers=staff_headers).json
        assert everyone["count"] == 2

    def test_statistics(self, client, supplier, staff_headers):
        supply_service.create_supply_record(supplier.id, "6", "50")
        response = client.get("/api/payments/statistics", headers=staff_headers)
        assert response.status_code == 200
        assert response.json["statistics"]["pending_amount"] == "300.00"

    def test_bad_filter(self, client, staff_headers):
        response = client.get("/api/payments/history?date_from=soon", headers=staff_headers)
        assert response.status_code == 400

    def test_gateway_callback_signature(self, app, client, supplier, supplier_headers, monkeypatch):
        record = supply_service.create_supply_record(supplier.id, "10", "50")
        session = client.post(
            "/api/payments/gateway", json={"supply_record_id": record.id}, headers=supplier_headers,
        ).json

        monkeypatch.setitem(app.config, "PAYMENT_WEBHOOK_SECRET", "s3cret")
        body = json.dumps({"session_id": session["session_id"], "gateway_payment_id": "GW-1"}).encode()

        response = client.post(
            "/api/payments/callback/success",
            data=body,
            content_type="application/json",
            headers={"X-Webhook-Signature": "bad"},
        )
        assert response.status_code == 401

        signature = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        response = client.post(
            "/api/payments/callback/success",
            data=body,
            content_type="application/json",
            headers={"X-Webhook-Signature": signature},
        )
        assert response.status_code == 200
        assert response.json["payment"]["payment_status"] == "completed"


class TestSupplierRoutes:

    def test_create_returns_generated_password(self, client, staff_headers):
        response = client.post("/api/suppliers", json={
            "name": "Ruwan",
            "email": "ruwan@example.com",
            "phone": "0765554443",
        }, headers=staff_headers)
        assert response.status_code == 201
        assert response.json["supplier"]["supplier_id"] == "SUP000001"
        assert len(response.json["generated_password"]) == 12

    def test_duplicate_is_conflict(self, client, supplier, staff_headers):
        response = client.post("/api/suppliers", json={
            "name": "Again",
            "email": supplier.email,
            "phone": "0765554443",
        }, headers=staff_headers)
        assert response.status_code == 409

    def test_list_masks_account_numbers(self, client, supplier, staff_headers):
        listed = client.get("/api/suppliers", headers=staff_headers).json["suppliers"]
        assert listed[0]["account_number"] == "***7890"

    def test_custom_price(self, client, supplier, manager_headers):
        response = client.put(
            f"/api/suppliers/{supplier.id}/custom-price",
            json={"custom_unit_price": "57.25"},
            headers=manager_headers,
        )
        assert response.status_code == 200
        assert response.json["supplier"]["custom_unit_price"] == "57.25"


class TestSystem:

    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert response.json["checks"]["supplier_sweep"]["details"]["enabled"] is False

    def test_unit_price_round_trip(self, client, manager_headers, supplier_headers):
        response = client.put("/api/settings/unit-price", json={"unit_price": "52.5"}, headers=manager_headers)
        assert response.status_code == 200
        assert client.get("/api/settings/unit-price", headers=supplier_headers).json["unit_price"] == "52.50"

        response = client.put("/api/settings/unit-price", json={"unit_price": "60"}, headers=supplier_headers)
        assert response.status_code == 403
