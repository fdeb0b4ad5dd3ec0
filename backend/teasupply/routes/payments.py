# Overview: Flask API routes for payments; parses input and returns JSON responses.

# backend/teasupply/routes/payments.py
"""
Payment API Routes

WHY: Staff settle supply records directly (cash, bank transfer, cheque) or
send suppliers through a hosted gateway checkout. The history endpoint
merges real payments with unpaid supply records so nothing owed is missed.

DESIGN:
- A supply record has at most one completed payment; a second attempt is 409.
- Gateway callbacks are unauthenticated but, when PAYMENT_WEBHOOK_SECRET is
  configured, must carry an HMAC-SHA256 signature of the raw body in the
  X-Webhook-Signature header.
- Suppliers only ever see their own history and statistics.
"""

import hashlib
import hmac

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, is_supplier
from ..errors import LedgerError, NotFound, Unexpected, ValidationError, error_response
from ..services import payment_service
from ..services import reconciliation_service
from ..services.reconciliation_service import PaymentFilters


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

STAFF_ROLES = ("staff", "manager", "admin")


def _verify_webhook_signature() -> bool:
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    if not secret:
        return True
    signature = request.headers.get("X-Webhook-Signature", "")
    expected = hmac.new(secret.encode("utf-8"), request.get_data(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected)


@payments_bp.post("/direct")
@require_auth
@require_role(*STAFF_ROLES)
def direct_payment_route():
    """
    Record a completed payment made outside the gateway.

    Request body:
    {
        "supply_record_id": 5,
        "amount": "5000.00",          (optional, defaults to total_payment)
        "payment_method": "cash",     (cash | bank_transfer | cheque | spot | monthly)
        "payment_notes": "..."
    }

    Returns:
        201: Payment created, supply record marked paid
        409: Supply record already paid
    """
    try:
        data = request.get_json(silent=True) or {}
        supply_record_id = data.get("supply_record_id")
        if supply_record_id is None:
            raise ValidationError("supply_record_id is required")
        try:
            supply_record_id = int(supply_record_id)
        except (TypeError, ValueError):
            raise ValidationError("supply_record_id must be an integer")

        payment = payment_service.record_direct_payment(
            supply_record_id,
            amount=data.get("amount"),
            payment_method=data.get("payment_method") or payment_service.METHOD_CASH,
            payment_notes=data.get("payment_notes"),
            created_by_user_id=g.current_user.id,
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record direct payment")
        return error_response(Unexpected())


@payments_bp.post("/gateway")
@require_auth
@require_role("supplier", *STAFF_ROLES)
def gateway_session_route():
    """Start a gateway checkout for one supply record."""
    try:
        data = request.get_json(silent=True) or {}
        try:
            supply_record_id = int(data.get("supply_record_id"))
        except (TypeError, ValueError):
            raise ValidationError("supply_record_id is required")

        session = payment_service.create_gateway_session(
            supply_record_id,
            supplier_id=g.current_user.id if is_supplier() else None,
            created_by_user_id=g.current_user.id,
        )
        return jsonify(session), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create gateway session")
        return error_response(Unexpected())


def _gateway_callback(success: bool):
    if not _verify_webhook_signature():
        current_app.logger.warning("Rejected gateway callback with bad signature from %s", request.remote_addr)
        return jsonify({"error": "Invalid signature"}), 401
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.handle_gateway_callback(
            success=success,
            payment_id=data.get("payment_id") or data.get("order_id"),
            session_id=data.get("session_id"),
            gateway_meta={k: v for k, v in data.items() if k not in ("payment_id", "order_id", "session_id")},
        )
        return jsonify({"payment": payment.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process gateway callback")
        return error_response(Unexpected())


@payments_bp.post("/callback/success")
def gateway_success_route():
    return _gateway_callback(True)


@payments_bp.post("/callback/failure")
def gateway_failure_route():
    return _gateway_callback(False)


@payments_bp.put("/<payment_id>/status")
@require_auth
@require_role(*STAFF_ROLES)
def update_payment_status_route(payment_id: str):
    """
    Request body:
    {
        "payment_status": "completed"
    }

    Allowed: pending -> completed/failed/cancelled, failed -> pending/completed,
    completed -> refunded. Refunding marks the supply record unpaid again.
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("payment_status")
        if not status:
            raise ValidationError("payment_status required")
        payment = payment_service.update_payment_status(payment_id, status)
        return jsonify({"payment": payment.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return error_response(Unexpected())


@payments_bp.get("/<payment_id>")
@require_auth
@require_role("supplier", *STAFF_ROLES)
def get_payment_route(payment_id: str):
    """Single payment by its PAY- id. Suppliers get 404 for other suppliers' payments."""
    try:
        payment = payment_service.get_payment(payment_id)
        if is_supplier() and payment.supplier_id != g.current_user.id:
            raise NotFound(f"Payment {payment_id} not found")
        return jsonify({"payment": payment.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return error_response(Unexpected())


def _filters() -> PaymentFilters:
    return PaymentFilters.from_args(
        request.args,
        supplier_id=g.current_user.id if is_supplier() else None,
    )


@payments_bp.get("/history")
@require_auth
@require_role("supplier", *STAFF_ROLES)
def payment_history_route():
    """
    Payments plus unpaid supply records, newest first.

    Query params: supplier_id (staff only), date_from, date_to, search,
    payment_status, limit (default 100, max 1000), offset (default 0)

    Results are paged: a response holds at most `limit` entries starting at
    `offset`; request the next page with offset += limit.
    """
    try:
        entries = reconciliation_service.find_all_payments(_filters())
        return jsonify({"payments": entries, "count": len(entries)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load payment history")
        return error_response(Unexpected())


@payments_bp.get("/statistics")
@require_auth
@require_role("supplier", *STAFF_ROLES)
def payment_statistics_route():
    try:
        stats = reconciliation_service.get_payment_statistics(_filters())
        return jsonify({"statistics": stats}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute payment statistics")
        return error_response(Unexpected())


@payments_bp.get("/supply-record/<int:supply_record_id>")
@require_auth
@require_role(*STAFF_ROLES)
def supply_record_payments_route(supply_record_id: int):
    try:
        payments = payment_service.get_payments_for_supply_record(supply_record_id)
        return jsonify({"payments": [p.to_dict() for p in payments], "count": len(payments)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payments for supply record")
        return error_response(Unexpected())
