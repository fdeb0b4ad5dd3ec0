# Overview: Flask API routes for the supplier directory and supplier lifecycle; parses input and returns JSON responses.

# backend/teasupply/routes/suppliers.py
"""
Supplier API Routes

Suppliers are registered by staff; the account password is generated and
mailed unless one is given. Bank account numbers are masked unless
?full_bank_details=true is passed.
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..errors import LedgerError, Unexpected, ValidationError, error_response
from ..services import supplier_service


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")

STAFF_ROLES = ("staff", "manager", "admin")


def _full_bank_details() -> bool:
    return request.args.get("full_bank_details", "").lower() == "true"


@suppliers_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_suppliers_route():
    """Query params: status (active | inactive | pending), search"""
    try:
        suppliers = supplier_service.list_suppliers(
            status=request.args.get("status"),
            search=(request.args.get("search") or "").strip() or None,
            mask_bank_details=not _full_bank_details(),
        )
        return jsonify({"suppliers": suppliers, "count": len(suppliers)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list suppliers")
        return error_response(Unexpected())


@suppliers_bp.post("")
@require_auth
@require_role(*STAFF_ROLES)
def create_supplier_route():
    """
    Register a supplier.

    Request body:
    {
        "name": "Nimal Perera",
        "email": "nimal@example.com",
        "phone": "0771234567",
        "address": "...",
        "bank_name": "...",
        "account_number": "12345678",
        "account_holder_name": "...",
        "bank_branch": "...",
        "bank_code": "7010",
        "password": "..."             (optional, generated otherwise)
    }

    Returns:
        201: Supplier with supplier_id; generated_password when one was made
        409: Email or phone already registered
    """
    try:
        data = dict(request.get_json(silent=True) or {})
        password = data.pop("password", None)

        supplier, generated = supplier_service.create_supplier(
            data,
            password=password,
            mailer=current_app.extensions.get("mailer"),
        )
        body = {"supplier": supplier.to_dict(mask_bank_details=False)}
        if generated:
            body["generated_password"] = generated
        return jsonify(body), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return error_response(Unexpected())


@suppliers_bp.get("/id-stats")
@require_auth
@require_role("manager", "admin")
def supplier_id_stats_route():
    try:
        return jsonify({"stats": supplier_service.get_supplier_id_stats()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute supplier id stats")
        return error_response(Unexpected())


@suppliers_bp.post("/reset-ids")
@require_auth
@require_role("admin")
def reset_supplier_ids_route():
    """
    Renumber all suppliers from SUP000001. Destructive for anyone holding
    printed ids, so the body must contain {"confirm": true}.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("confirm") is not True:
            raise ValidationError('Pass {"confirm": true} to renumber every supplier')
        result = supplier_service.reset_all_supplier_ids()
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reset supplier ids")
        return error_response(Unexpected())


@suppliers_bp.post("/backfill-ids")
@require_auth
@require_role("manager", "admin")
def backfill_supplier_ids_route():
    try:
        return jsonify({"assigned": supplier_service.backfill_supplier_ids()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to backfill supplier ids")
        return error_response(Unexpected())


@suppliers_bp.post("/deactivate-stale")
@require_auth
@require_role("manager", "admin")
def deactivate_stale_route():
    """Run the inactivity sweep now instead of waiting for the daily job."""
    try:
        return jsonify({"deactivated": supplier_service.deactivate_old_suppliers()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate stale suppliers")
        return error_response(Unexpected())


@suppliers_bp.get("/<int:user_id>")
@require_auth
@require_role(*STAFF_ROLES)
def get_supplier_route(user_id: int):
    try:
        supplier = supplier_service.get_supplier(user_id, mask_bank_details=not _full_bank_details())
        return jsonify({"supplier": supplier}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get supplier")
        return error_response(Unexpected())


@suppliers_bp.put("/<int:user_id>")
@require_auth
@require_role(*STAFF_ROLES)
def update_supplier_route(user_id: int):
    try:
        data = request.get_json(silent=True) or {}
        supplier = supplier_service.update_supplier(user_id, data)
        return jsonify({"supplier": supplier.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update supplier")
        return error_response(Unexpected())


@suppliers_bp.put("/<int:user_id>/custom-price")
@require_auth
@require_role("manager", "admin")
def set_custom_price_route(user_id: int):
    """
    Request body:
    {
        "custom_unit_price": "55.00"    (null clears the override)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if "custom_unit_price" not in data:
            raise ValidationError("custom_unit_price is required")
        supplier = supplier_service.set_custom_unit_price(user_id, data["custom_unit_price"])
        return jsonify({"supplier": supplier.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set custom unit price")
        return error_response(Unexpected())
