# Overview: Flask API routes for pricing settings; parses input and returns JSON responses.

# backend/teasupply/routes/settings.py

from flask import Blueprint, request, jsonify, g, current_app

from ..decimal_utils import decimal_to_str
from ..decorators import require_auth, require_role
from ..errors import LedgerError, Unexpected, ValidationError, error_response
from ..services import settings_service


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("/unit-price")
@require_auth
def get_unit_price_route():
    """Global price per kg; null until a manager sets it."""
    price = settings_service.get_unit_price()
    return jsonify({"unit_price": decimal_to_str(price)}), 200


@settings_bp.put("/unit-price")
@require_auth
@require_role("manager", "admin")
def set_unit_price_route():
    """
    Request body:
    {
        "unit_price": "52.50",
        "reason": "Monthly rate review"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("unit_price") is None:
            raise ValidationError("unit_price is required")
        price = settings_service.set_unit_price(
            data["unit_price"],
            user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return jsonify({"unit_price": decimal_to_str(price)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set unit price")
        return error_response(Unexpected())


@settings_bp.get("/unit-price/history")
@require_auth
@require_role("staff", "manager", "admin")
def unit_price_history_route():
    history = settings_service.get_unit_price_history(request.args.get("limit", 100, type=int))
    return jsonify({"history": [h.to_dict() for h in history]}), 200
