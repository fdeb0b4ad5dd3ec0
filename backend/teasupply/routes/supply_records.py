# Overview: Flask API routes for supply records; parses input and returns JSON responses.

# backend/teasupply/routes/supply_records.py
"""
Supply Record API Routes

DESIGN:
- Suppliers see and change only their own records; supplier_id is taken
  from the session, never from the body.
- Staff and managers record deliveries on behalf of a supplier.
- Edits and deletes are only accepted within 15 minutes of creation (403
  afterwards).
- payment_status changes are staff-only and have no time limit.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, is_supplier
from ..errors import LedgerError, Unexpected, ValidationError, error_response
from ..models import SupplyRecord
from ..services import supply_service
from ..validation import SUPPLY_RECORD_POLICY, validate_payload
from ..time_utils import parse_iso_date


supply_records_bp = Blueprint("supply_records", __name__, url_prefix="/api/supply-records")

STAFF_ROLES = ("staff", "manager", "admin")
WRITE_ROLES = ("supplier", "staff", "manager")


def _owner_id():
    return g.current_user.id if is_supplier() else None


@supply_records_bp.get("")
@require_auth
@require_role("supplier", *STAFF_ROLES)
def list_supply_records_route():
    """
    List supply records, newest first.

    Query params: supplier_id (staff only), date_from, date_to,
    payment_status, limit
    """
    try:
        supplier_id = _owner_id()
        if supplier_id is None:
            supplier_id = request.args.get("supplier_id", type=int)
        try:
            date_from = parse_iso_date(request.args.get("date_from"))
            date_to = parse_iso_date(request.args.get("date_to"))
        except ValueError:
            raise ValidationError("date_from/date_to must be YYYY-MM-DD dates")

        records = supply_service.list_supply_records(
            supplier_id=supplier_id,
            date_from=date_from,
            date_to=date_to,
            payment_status=request.args.get("payment_status"),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({
            "supply_records": [r.to_dict() for r in records],
            "count": len(records),
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list supply records")
        return error_response(Unexpected())


@supply_records_bp.post("")
@require_auth
@require_role(*WRITE_ROLES)
def create_supply_record_route():
    """
    Record a delivery.

    Request body:
    {
        "supplier_id": 12,             (staff/manager only)
        "quantity_kg": "100.5",
        "unit_price": "50.00",         (optional: custom or global price)
        "payment_method": "monthly",   (spot | monthly)
        "supply_date": "2026-10-01",
        "notes": "..."
    }

    Returns:
        201: Created record
        400: Invalid input or supplier
    """
    try:
        data = dict(request.get_json(silent=True) or {})
        if is_supplier():
            if "payment_status" in data:
                raise ValidationError("Field not allowed: payment_status")
            data["supplier_id"] = g.current_user.id

        patch = validate_payload(
            model=SupplyRecord, payload=data, policy=SUPPLY_RECORD_POLICY, partial=False,
        )
        if patch.get("supplier_id") is None:
            raise ValidationError("supplier_id is required")

        record = supply_service.create_supply_record(
            patch["supplier_id"],
            patch["quantity_kg"],
            unit_price=patch.get("unit_price"),
            payment_method=patch.get("payment_method") or "monthly",
            payment_status=patch.get("payment_status") or "unpaid",
            supply_date=patch.get("supply_date"),
            notes=patch.get("notes"),
            supply_time=patch.get("supply_time"),
        )
        return jsonify({"supply_record": record.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supply record")
        return error_response(Unexpected())


@supply_records_bp.get("/<int:record_id>")
@require_auth
@require_role("supplier", *STAFF_ROLES)
def get_supply_record_route(record_id: int):
    """
    Supply record with supplier and payments.

    ?full_bank_details=true shows the unmasked account number (staff only).
    """
    try:
        full = request.args.get("full_bank_details", "").lower() == "true" and not is_supplier()
        detail = supply_service.get_supply_record_detail(
            record_id,
            owner_id=_owner_id(),
            mask_bank_details=not full,
        )
        return jsonify({"supply_record": detail}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get supply record")
        return error_response(Unexpected())


@supply_records_bp.put("/<int:record_id>")
@require_auth
@require_role(*WRITE_ROLES)
def update_supply_record_route(record_id: int):
    """
    Partial edit within the 15 minute window.

    Returns:
        200: Updated record (total_payment recomputed)
        403: Edit window expired
        404: Not found
    """
    try:
        data = request.get_json(silent=True) or {}
        if is_supplier() and "payment_status" in data:
            raise ValidationError("Field not allowed: payment_status")
        if "supplier_id" in data:
            raise ValidationError("Field not allowed: supplier_id")

        patch = validate_payload(
            model=SupplyRecord, payload=data, policy=SUPPLY_RECORD_POLICY, partial=True,
        )
        record = supply_service.update_supply_record(record_id, patch, owner_id=_owner_id())
        return jsonify({"supply_record": record.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update supply record")
        return error_response(Unexpected())


@supply_records_bp.delete("/<int:record_id>")
@require_auth
@require_role(*WRITE_ROLES)
def delete_supply_record_route(record_id: int):
    try:
        supply_id = supply_service.delete_supply_record(record_id, owner_id=_owner_id())
        return jsonify({"message": "Supply record deleted", "supply_id": supply_id}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete supply record")
        return error_response(Unexpected())


@supply_records_bp.put("/<int:record_id>/payment-status")
@require_auth
@require_role(*STAFF_ROLES)
def update_payment_status_route(record_id: int):
    """
    Request body:
    {
        "payment_status": "paid"   (paid | unpaid)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("payment_status")
        if not status:
            raise ValidationError("payment_status required")
        record = supply_service.update_payment_status(record_id, status)
        return jsonify({"supply_record": record.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update supply payment status")
        return error_response(Unexpected())


@supply_records_bp.put("/<int:record_id>/mark-paid")
@require_auth
@require_role(*STAFF_ROLES)
def mark_paid_route(record_id: int):
    try:
        record = supply_service.update_payment_status(record_id, "paid")
        return jsonify({"supply_record": record.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark supply record paid")
        return error_response(Unexpected())


@supply_records_bp.get("/analytics")
@require_auth
@require_role(*STAFF_ROLES)
def supply_analytics_route():
    """Dashboard totals, top suppliers, 6-month trend and payment method split."""
    try:
        return jsonify({"analytics": supply_service.get_supply_analytics()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute supply analytics")
        return error_response(Unexpected())
