# backend/teasupply/routes/system.py
"""
System health endpoint.

Checks the database and the supplier sweep so deployments can tell a dead
store from a stalled background job.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InventoryLot, Payment, SupplyRecord, User
from ..services import supplier_service
from teasupply.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "supply_records": db.session.query(SupplyRecord).count(),
            "inventory_lots": db.session.query(InventoryLot).count(),
            "payments": db.session.query(Payment).count(),
            "suppliers_by_status": supplier_service.count_suppliers_by_status(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_scheduler_health() -> dict:
    scheduler = current_app.extensions.get("supplier_sweep")
    if scheduler is None:
        return {"status": "healthy", "details": {"enabled": False}}
    if not scheduler.is_running:
        return {"status": "degraded", "warning": "Supplier sweep thread is not running"}
    return {
        "status": "healthy",
        "details": {"enabled": True, "interval_seconds": scheduler.interval_seconds},
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    scheduler_health = check_scheduler_health()

    all_checks = [database_health, scheduler_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "supplier_sweep": scheduler_health,
        }
    }, http_status
