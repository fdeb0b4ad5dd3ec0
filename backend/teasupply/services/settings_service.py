# Overview: Service-layer operations for global settings; unit price per kg and its change history.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..decimal_utils import to_decimal, to_positive_decimal
from ..extensions import db
from ..models import AppSetting, UnitPriceHistory
from .concurrency import run_with_retry


UNIT_PRICE_KEY = "unit_price_per_kg"
MAX_HISTORY_LIMIT = 500


def get_setting(key: str) -> str | None:
    row = db.session.query(AppSetting).filter_by(key=key).first()
    return row.value if row else None


def _upsert_setting(key: str, value: str, *, user_id: int | None = None) -> AppSetting:
    row = db.session.query(AppSetting).filter_by(key=key).first()
    if row is None:
        row = AppSetting(key=key, value=value, updated_by_user_id=user_id)
        db.session.add(row)
    else:
        row.value = value
        row.updated_by_user_id = user_id
    db.session.flush()
    return row


def get_unit_price() -> Decimal | None:
    """Global price per kg, or None when it has never been set."""
    raw = get_setting(UNIT_PRICE_KEY)
    if raw is None:
        return None
    try:
        return to_decimal(raw, UNIT_PRICE_KEY)
    except ValueError:
        current_app.logger.warning("Stored %s is not a number: %r", UNIT_PRICE_KEY, raw)
        return None


def set_unit_price(value, *, user_id: int | None = None, reason: str | None = None) -> Decimal:
    """Set the global price per kg and append a history row in the same transaction."""
    new_price = to_positive_decimal(value, UNIT_PRICE_KEY)

    def _op() -> Decimal:
        old_price = get_unit_price()
        _upsert_setting(UNIT_PRICE_KEY, str(new_price), user_id=user_id)
        db.session.add(UnitPriceHistory(
            old_price=old_price,
            new_price=new_price,
            changed_by_user_id=user_id,
            reason=reason,
        ))
        db.session.commit()
        current_app.logger.info("Unit price changed from %s to %s by user %s", old_price, new_price, user_id)
        return new_price

    return run_with_retry(_op, label="set_unit_price")


def get_unit_price_history(limit: int = 100) -> list[UnitPriceHistory]:
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    return (
        db.session.query(UnitPriceHistory)
        .order_by(UnitPriceHistory.changed_at.desc(), UnitPriceHistory.id.desc())
        .limit(limit)
        .all()
    )
