# Overview: Service-layer operations for supply records; creation, edit-window mutations, payment status and quantity deduction.

"""
Supply Ledger

WHY: Supply records are the source of every kilogram in the stock pool and
every rupee owed to a supplier. Owners may correct a record freely for a
short time after submitting it; after that the record only changes through
payment status transitions and FIFO deductions by the stock pool.

DESIGN PRINCIPLES:
- Edit window: 15 minutes from created_at. An edit at exactly 15:00 is
  already too late.
- Window-gated writes are single conditional UPDATE/DELETE statements
  guarded by created_at and version_id, so a write racing the window
  boundary (or another writer) affects zero rows instead of succeeding late.
- total_payment is always recomputed here from quantity_kg x unit_price;
  client-supplied totals are never accepted.
- remaining_quantity_kg tracks what the stock pool may still draw. A
  quantity edit moves it by the same delta and can never push it below
  what has already been allocated.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import case, delete, exists, func, update

from ..decimal_utils import ZERO, coerce_sum, decimal_to_str, quantize, to_positive_decimal
from ..errors import (
    ConcurrentModification,
    ConflictError,
    EditWindowExpired,
    InsufficientQuantity,
    InvalidSupplier,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Payment, StockMovement, SupplyRecord, User
from ..models.auth import ROLE_SUPPLIER
from ..validation import SUPPLY_PAYMENT_STATUSES, enforce_rules_supply_record
from teasupply.time_utils import parse_iso_date, subtract_months, utcnow
from . import identifier_service, settings_service
from .concurrency import lock_for_update, run_with_retry


EDIT_WINDOW = timedelta(minutes=15)

# Fields an owner may change inside the edit window
EDITABLE_FIELDS = {
    "quantity_kg",
    "unit_price",
    "payment_method",
    "payment_status",
    "supply_date",
    "supply_time",
    "notes",
}


def is_within_edit_window(created_at: datetime, now: datetime | None = None) -> bool:
    return (now or utcnow()) - created_at < EDIT_WINDOW


def _get_supplier(supplier_id) -> User:
    supplier = db.session.query(User).filter_by(id=supplier_id, role=ROLE_SUPPLIER).first()
    if not supplier:
        raise InvalidSupplier(f"Supplier {supplier_id} not found")
    return supplier


def resolve_unit_price(supplier: User, unit_price=None) -> Decimal:
    """Explicit price, else the supplier's custom price, else the global price."""
    if unit_price is not None:
        return to_positive_decimal(unit_price, "unit_price")
    if supplier.custom_unit_price is not None:
        return quantize(Decimal(supplier.custom_unit_price))
    global_price = settings_service.get_unit_price()
    if global_price is None:
        raise ValidationError("unit_price is required (no default unit price is configured)")
    return global_price


def _load_record(record_id: int, owner_id: int | None = None) -> SupplyRecord:
    query = db.session.query(SupplyRecord).filter_by(id=record_id)
    if owner_id is not None:
        query = query.filter_by(supplier_id=owner_id)
    record = query.first()
    if not record:
        raise NotFound(f"Supply record {record_id} not found")
    return record


def _raise_guard_failure(record_id: int, owner_id: int | None, now: datetime):
    """Explain why a guarded UPDATE/DELETE matched no row."""
    record = _load_record(record_id, owner_id)
    if not is_within_edit_window(record.created_at, now):
        raise EditWindowExpired("Supply records can only be changed within 15 minutes of creation")
    raise ConcurrentModification(f"Supply record {record_id} changed during the update")


# =============================================================================
# CREATION
# =============================================================================

def create_supply_record(
    supplier_id: int,
    quantity_kg,
    unit_price=None,
    payment_method: str = "monthly",
    payment_status: str = "unpaid",
    supply_date=None,
    notes: str | None = None,
    *,
    supply_time=None,
    now: datetime | None = None,
) -> SupplyRecord:
    """
    Record a delivery.

    Raises:
        InvalidSupplier: supplier_id is not a supplier account
        ValidationError: quantity/price not positive, unknown method/status
    """
    quantity = to_positive_decimal(quantity_kg, "quantity_kg")
    try:
        parsed_date = parse_iso_date(supply_date)
    except ValueError:
        raise ValidationError("supply_date must be a YYYY-MM-DD date")
    rules = {
        "quantity_kg": quantity,
        "payment_method": payment_method,
        "payment_status": payment_status,
    }
    if unit_price is not None:
        rules["unit_price"] = to_positive_decimal(unit_price, "unit_price")
    enforce_rules_supply_record(rules)

    def _op() -> SupplyRecord:
        created_at = now or utcnow()
        supplier = _get_supplier(supplier_id)
        price = resolve_unit_price(supplier, unit_price)
        enforce_rules_supply_record({"unit_price": price})

        record = SupplyRecord(
            supply_id=identifier_service.generate_supply_id(created_at),
            supplier_id=supplier.id,
            quantity_kg=quantity,
            remaining_quantity_kg=quantity,
            unit_price=price,
            total_payment=quantize(quantity * price),
            payment_method=payment_method,
            payment_status=payment_status,
            supply_date=parsed_date or created_at.date(),
            supply_time=supply_time or created_at.time().replace(microsecond=0),
            notes=notes,
            created_at=created_at,
            updated_at=created_at,
        )
        db.session.add(record)
        db.session.commit()
        current_app.logger.info(
            "Supply record %s created for supplier %s: %s kg at %s",
            record.supply_id, supplier.id, quantity, price,
        )
        return record

    return run_with_retry(
        _op,
        unique_tokens=identifier_service.SUPPLY_ID_TOKENS,
        label="create_supply_record",
    )


# =============================================================================
# EDIT WINDOW MUTATIONS
# =============================================================================

def update_supply_record(
    record_id: int,
    fields: dict,
    *,
    owner_id: int | None = None,
    now: datetime | None = None,
) -> SupplyRecord:
    """
    Partially update a record inside its edit window.

    Only provided fields change. total_payment is recomputed whenever
    quantity_kg or unit_price is part of the edit.

    Raises:
        NotFound, EditWindowExpired,
        ConflictError: new quantity below what is already allocated
    """
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    fields = dict(fields)
    for key in ("quantity_kg", "unit_price"):
        if key in fields:
            fields[key] = to_positive_decimal(fields[key], key)
    if "supply_date" in fields:
        try:
            fields["supply_date"] = parse_iso_date(fields["supply_date"])
        except ValueError:
            raise ValidationError("supply_date must be a YYYY-MM-DD date")
        if fields["supply_date"] is None:
            raise ValidationError("supply_date cannot be null")
    enforce_rules_supply_record(fields)

    def _op() -> SupplyRecord:
        at = now or utcnow()
        record = _load_record(record_id, owner_id)
        if not is_within_edit_window(record.created_at, at):
            raise EditWindowExpired("Supply records can only be changed within 15 minutes of creation")

        values = dict(fields)
        if not values:
            return record

        quantity = values.get("quantity_kg", record.quantity_kg)
        price = values.get("unit_price", record.unit_price)
        if "quantity_kg" in values:
            allocated = record.quantity_kg - record.remaining_quantity_kg
            if quantity < allocated:
                raise ConflictError(
                    f"quantity_kg cannot be lower than the {allocated} kg already moved to inventory"
                )
            values["remaining_quantity_kg"] = quantity - allocated
        if "quantity_kg" in values or "unit_price" in values:
            values["total_payment"] = quantize(Decimal(quantity) * Decimal(price))

        values["updated_at"] = at
        values["version_id"] = record.version_id + 1

        stmt = (
            update(SupplyRecord)
            .where(
                SupplyRecord.id == record.id,
                SupplyRecord.version_id == record.version_id,
                SupplyRecord.created_at > at - EDIT_WINDOW,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            _raise_guard_failure(record_id, owner_id, at)

        db.session.commit()
        current_app.logger.info("Supply record %s updated: %s", record_id, sorted(fields))
        return _load_record(record_id)

    return run_with_retry(_op, label="update_supply_record")


def delete_supply_record(
    record_id: int,
    *,
    owner_id: int | None = None,
    now: datetime | None = None,
) -> str:
    """
    Delete a record inside its edit window. Returns the deleted supply_id.

    Records that have fed inventory or carry payment rows are kept.
    """
    def _op() -> str:
        at = now or utcnow()
        record = _load_record(record_id, owner_id)
        if not is_within_edit_window(record.created_at, at):
            raise EditWindowExpired("Supply records can only be deleted within 15 minutes of creation")

        has_movements = (
            db.session.query(StockMovement.id).filter_by(supply_record_id=record.id).first() is not None
        )
        if has_movements:
            raise ConflictError("Supply record has already been moved to inventory")
        if db.session.query(Payment.id).filter_by(supply_record_id=record.id).first() is not None:
            raise ConflictError("Supply record has payments and cannot be deleted")

        supply_id = record.supply_id
        stmt = (
            delete(SupplyRecord)
            .where(
                SupplyRecord.id == record.id,
                SupplyRecord.version_id == record.version_id,
                SupplyRecord.created_at > at - EDIT_WINDOW,
                ~exists().where(Payment.supply_record_id == SupplyRecord.id),
                ~exists().where(StockMovement.supply_record_id == SupplyRecord.id),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            _raise_guard_failure(record_id, owner_id, at)

        db.session.expunge(record)
        db.session.commit()
        current_app.logger.info("Supply record %s deleted", supply_id)
        return supply_id

    return run_with_retry(_op, label="delete_supply_record")


# =============================================================================
# BUSINESS PATHS (no edit window)
# =============================================================================

def set_payment_status_locked(record: SupplyRecord, status: str) -> None:
    """Set payment_status on an already-loaded record inside the caller's transaction."""
    if status not in SUPPLY_PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of {', '.join(SUPPLY_PAYMENT_STATUSES)}")
    record.payment_status = status
    db.session.flush()


def update_payment_status(record_id: int, status: str) -> SupplyRecord:
    """Unconditional payment status change; allowed at any time."""
    if status not in SUPPLY_PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of {', '.join(SUPPLY_PAYMENT_STATUSES)}")

    def _op() -> SupplyRecord:
        record = lock_for_update(db.session.query(SupplyRecord).filter_by(id=record_id)).first()
        if not record:
            raise NotFound(f"Supply record {record_id} not found")
        set_payment_status_locked(record, status)
        db.session.commit()
        return record

    return run_with_retry(_op, label="update_supply_payment_status")


def deduct_locked(record: SupplyRecord, amount: Decimal) -> Decimal:
    """
    Decrement remaining_quantity_kg of a row the caller already holds.

    Flushes immediately so the version check runs per record.
    Returns the new remaining quantity.
    """
    if amount <= ZERO:
        raise ValidationError("Deduction amount must be greater than 0")
    if amount > record.remaining_quantity_kg:
        raise InsufficientQuantity(
            f"Supply record {record.supply_id} has {record.remaining_quantity_kg} kg remaining, "
            f"cannot deduct {amount} kg"
        )
    record.remaining_quantity_kg = record.remaining_quantity_kg - amount
    db.session.flush()
    return record.remaining_quantity_kg


def deduct_quantity(record_id: int, amount) -> SupplyRecord:
    """Deduct from one record outside any edit window (stock pool path)."""
    value = to_positive_decimal(amount, "amount")

    def _op() -> SupplyRecord:
        record = lock_for_update(db.session.query(SupplyRecord).filter_by(id=record_id)).first()
        if not record:
            raise NotFound(f"Supply record {record_id} not found")
        deduct_locked(record, value)
        db.session.commit()
        return record

    return run_with_retry(_op, label="deduct_supply_quantity")


# =============================================================================
# QUERIES
# =============================================================================

def get_supply_record(record_id: int, *, owner_id: int | None = None) -> SupplyRecord:
    return _load_record(record_id, owner_id)


def get_supply_record_detail(
    record_id: int,
    *,
    owner_id: int | None = None,
    mask_bank_details: bool = True,
    now: datetime | None = None,
) -> dict:
    """Record plus supplier block and payment rows."""
    record = _load_record(record_id, owner_id)
    data = record.to_dict()
    data["allocated_quantity_kg"] = str(quantize(record.allocated_quantity_kg))
    data["editable"] = is_within_edit_window(record.created_at, now)
    data["supplier"] = record.supplier.to_dict(mask_bank_details=mask_bank_details) if record.supplier else None
    data["payments"] = [
        p.to_dict()
        for p in db.session.query(Payment)
        .filter_by(supply_record_id=record.id)
        .order_by(Payment.created_at.desc())
        .all()
    ]
    return data


def list_supply_records(
    *,
    supplier_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    payment_status: str | None = None,
    limit: int | None = None,
) -> list[SupplyRecord]:
    query = db.session.query(SupplyRecord)
    if supplier_id is not None:
        query = query.filter(SupplyRecord.supplier_id == supplier_id)
    if date_from is not None:
        query = query.filter(SupplyRecord.supply_date >= date_from)
    if date_to is not None:
        query = query.filter(SupplyRecord.supply_date <= date_to)
    if payment_status:
        query = query.filter(SupplyRecord.payment_status == payment_status)
    query = query.order_by(SupplyRecord.created_at.desc(), SupplyRecord.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_total_available_supply() -> Decimal:
    return coerce_sum(db.session.query(func.sum(SupplyRecord.remaining_quantity_kg)).scalar())


# =============================================================================
# ANALYTICS
# =============================================================================

TOP_SUPPLIER_LIMIT = 5
TREND_MONTHS = 6


def get_supply_analytics(*, now: datetime | None = None) -> dict:
    """
    Staff dashboard figures over all supply records.

    Returns supply_metrics, supplier_stats, top_suppliers (by total value),
    monthly_trend (last 6 months, newest first), payment_methods and a
    summary with the paid percentage and average supplies per trend month.
    """
    now = now or utcnow()
    today = now.date()
    recent_from = today - timedelta(days=30)

    (
        total_supplies, total_quantity, total_value, avg_unit_price,
        paid_supplies, unpaid_supplies, monthly_supplies, total_suppliers,
    ) = db.session.query(
        func.count(SupplyRecord.id),
        func.sum(SupplyRecord.quantity_kg),
        func.sum(SupplyRecord.total_payment),
        func.avg(SupplyRecord.unit_price),
        func.count(case((SupplyRecord.payment_status == "paid", 1))),
        func.count(case((SupplyRecord.payment_status == "unpaid", 1))),
        func.count(case((SupplyRecord.supply_date >= recent_from, 1))),
        func.count(func.distinct(SupplyRecord.supplier_id)),
    ).one()
    total_supplies = int(total_supplies or 0)
    paid_supplies = int(paid_supplies or 0)

    supplier_value = func.sum(SupplyRecord.total_payment)
    top_rows = (
        db.session.query(
            User.id,
            User.supplier_id,
            User.name,
            func.count(SupplyRecord.id),
            supplier_value,
            func.avg(SupplyRecord.unit_price),
        )
        .join(User, SupplyRecord.supplier_id == User.id)
        .group_by(User.id, User.supplier_id, User.name)
        .order_by(supplier_value.desc(), User.id.asc())
        .limit(TOP_SUPPLIER_LIMIT)
        .all()
    )

    # Grouped in Python so the month bucket does not depend on SQL dialect
    trend: dict[str, dict] = {}
    trend_from = subtract_months(datetime.combine(today, datetime.min.time()), TREND_MONTHS).date()
    trend_rows = (
        db.session.query(SupplyRecord.supply_date, SupplyRecord.total_payment)
        .filter(SupplyRecord.supply_date >= trend_from)
        .all()
    )
    for supply_date, value in trend_rows:
        bucket = trend.setdefault(supply_date.strftime("%Y-%m"), {"supply_count": 0, "total_value": ZERO})
        bucket["supply_count"] += 1
        bucket["total_value"] += coerce_sum(value)
    monthly_trend = [
        {"month": month, "supply_count": b["supply_count"], "total_value": str(b["total_value"])}
        for month, b in sorted(trend.items(), reverse=True)
    ]

    method_rows = (
        db.session.query(
            SupplyRecord.payment_method,
            func.count(SupplyRecord.id),
            func.sum(SupplyRecord.total_payment),
        )
        .group_by(SupplyRecord.payment_method)
        .order_by(SupplyRecord.payment_method.asc())
        .all()
    )

    efficiency = ZERO
    if total_supplies:
        efficiency = quantize(Decimal(paid_supplies) * 100 / Decimal(total_supplies))
    avg_monthly = Decimal("0.0")
    if monthly_trend:
        avg_monthly = (
            Decimal(sum(m["supply_count"] for m in monthly_trend)) / len(monthly_trend)
        ).quantize(Decimal("0.1"))

    return {
        "supply_metrics": {
            "total_supplies": total_supplies,
            "total_quantity_kg": str(coerce_sum(total_quantity)),
            "total_value": str(coerce_sum(total_value)),
            "avg_unit_price": decimal_to_str(coerce_sum(avg_unit_price)) if total_supplies else None,
            "paid_supplies": paid_supplies,
            "unpaid_supplies": int(unpaid_supplies or 0),
            "monthly_supplies": int(monthly_supplies or 0),
        },
        "supplier_stats": {
            "total_suppliers": int(total_suppliers or 0),
            "total_records": total_supplies,
        },
        "top_suppliers": [
            {
                "supplier_id": user_id,
                "supplier_code": supplier_code,
                "supplier_name": name,
                "supply_count": int(count or 0),
                "total_value": str(coerce_sum(value)),
                "avg_price": decimal_to_str(coerce_sum(avg_price)),
            }
            for user_id, supplier_code, name, count, value, avg_price in top_rows
        ],
        "monthly_trend": monthly_trend,
        "payment_methods": [
            {"payment_method": method, "count": int(count or 0), "total_value": str(coerce_sum(value))}
            for method, count, value in method_rows
        ],
        "summary": {
            "efficiency_rate": str(efficiency),
            "avg_monthly_supplies": str(avg_monthly),
        },
    }
