# Overview: Flask API routes for inventory lots; parses input and returns JSON responses.

# backend/teasupply/routes/inventory.py
"""
Inventory Lot API Routes

Creating a lot draws its quantity FIFO from supply records. Lots can be
resized within 15 minutes of creation; a decrease returns quantity to the
supply records it came from.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import LedgerError, Unexpected, ValidationError, error_response
from ..services import stock_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

READ_ROLES = ("staff", "manager", "admin")
WRITE_ROLES = ("staff", "manager")


@inventory_bp.get("")
@require_auth
@require_role(*READ_ROLES)
def list_inventory_route():
    """Query params: available_only (true/false), limit"""
    try:
        available_only = request.args.get("available_only", "false").lower() == "true"
        lots = stock_service.list_inventory_lots(
            available_only=available_only,
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"inventory": [lot.to_dict() for lot in lots], "count": len(lots)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory")
        return error_response(Unexpected())


@inventory_bp.get("/summary")
@require_auth
@require_role(*READ_ROLES)
def stock_summary_route():
    try:
        return jsonify({"summary": stock_service.get_stock_summary()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build stock summary")
        return error_response(Unexpected())


@inventory_bp.get("/<int:lot_id>")
@require_auth
@require_role(*READ_ROLES)
def get_inventory_route(lot_id: int):
    try:
        lot = stock_service.get_inventory_lot(lot_id)
        return jsonify({
            "inventory": lot.to_dict(),
            "movements": [m.to_dict() for m in stock_service.get_lot_movements(lot_id)],
            "net_supply_drawn": str(stock_service.get_lot_supply_attribution(lot_id)),
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get inventory lot")
        return error_response(Unexpected())


@inventory_bp.post("")
@require_auth
@require_role(*WRITE_ROLES)
def create_inventory_route():
    """
    Request body:
    {
        "quantity": "60"
    }

    Returns:
        201: Created lot
        400: Insufficient supply or invalid quantity
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quantity") is None:
            raise ValidationError("quantity is required")
        lot = stock_service.create_inventory_lot(data["quantity"], actor_user_id=g.current_user.id)
        return jsonify({"inventory": lot.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create inventory lot")
        return error_response(Unexpected())


@inventory_bp.put("/<int:lot_id>")
@require_auth
@require_role(*WRITE_ROLES)
def update_inventory_route(lot_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quantity") is None:
            raise ValidationError("quantity is required")
        lot = stock_service.update_inventory_lot(lot_id, data["quantity"], actor_user_id=g.current_user.id)
        return jsonify({"inventory": lot.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update inventory lot")
        return error_response(Unexpected())
