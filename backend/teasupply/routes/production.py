# Overview: Flask API routes for production runs; parses input and returns JSON responses.

# backend/teasupply/routes/production.py

from datetime import time as dt_time

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import LedgerError, Unexpected, ValidationError, error_response
from ..services import stock_service
from teasupply.time_utils import parse_iso_date


production_bp = Blueprint("production", __name__, url_prefix="/api/production")


@production_bp.get("")
@require_auth
@require_role("staff", "manager", "admin")
def list_production_route():
    try:
        try:
            date_from = parse_iso_date(request.args.get("date_from"))
            date_to = parse_iso_date(request.args.get("date_to"))
        except ValueError:
            raise ValidationError("date_from/date_to must be YYYY-MM-DD dates")
        records = stock_service.list_production_records(
            date_from=date_from,
            date_to=date_to,
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"production": [r.to_dict() for r in records], "count": len(records)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list production records")
        return error_response(Unexpected())


@production_bp.get("/<int:record_id>")
@require_auth
@require_role("staff", "manager", "admin")
def get_production_route(record_id: int):
    try:
        record = stock_service.get_production_record(record_id)
        return jsonify({
            "production": record.to_dict(),
            "movements": [m.to_dict() for m in stock_service.get_production_movements(record_id)],
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get production record")
        return error_response(Unexpected())


@production_bp.post("")
@require_auth
@require_role("manager")
def create_production_route():
    """
    Consume inventory into a production run.

    Request body:
    {
        "quantity": "50",
        "production_date": "2026-10-01",   (optional, defaults to today)
        "production_time": "08:30:00"      (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quantity") is None:
            raise ValidationError("quantity is required")

        production_time = None
        if data.get("production_time"):
            try:
                production_time = dt_time.fromisoformat(str(data["production_time"]))
            except ValueError:
                raise ValidationError("production_time must be HH:MM[:SS]")

        record = stock_service.create_production_record(
            data["quantity"],
            data.get("production_date"),
            production_time=production_time,
            actor_user_id=g.current_user.id,
        )
        return jsonify({"production": record.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create production record")
        return error_response(Unexpected())
