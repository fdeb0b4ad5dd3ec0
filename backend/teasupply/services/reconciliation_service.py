# Overview: Service-layer read model merging payment rows and unpaid supply records into one ledger view.

"""
Payment Reconciliation

WHY: Suppliers and staff want a single list of "what has been paid and what
is still owed". Money owed lives in two places: real payment rows, and
supply records nobody has started paying yet.

DESIGN:
- Two reads plus an in-memory merge: payment rows (source="payment") and
  supply records with payment_status != paid and no payment row at all
  (source="supply_record"), sorted newest first.
- A supply record referenced by ANY payment row (pending, failed, completed
  ...) is represented by that row only, never by a synthetic entry, so
  nothing is counted twice.
- Statistics count payment rows by status. An unpaid supply record is added
  to pending unless a pending or completed payment covers it, so a record
  whose only attempts failed, were cancelled or were refunded is still owed.
  The average payment amount only looks at completed payment rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Mapping

from flask import current_app
from sqlalchemy import exists, func, or_

from ..decimal_utils import ZERO, coerce_sum, decimal_to_str, quantize
from ..errors import ValidationError
from ..extensions import db
from ..models import Payment, SupplyRecord, User
from teasupply.time_utils import parse_iso_date, to_iso_date, to_utc_z
from .payment_service import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_REFUNDED,
    VALID_PAYMENT_STATUSES,
)


SOURCE_PAYMENT = "payment"
SOURCE_SUPPLY_RECORD = "supply_record"

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

# Payment rows that leave their supply record owed in full
CLOSED_WITHOUT_SETTLEMENT = (STATUS_FAILED, STATUS_CANCELLED, STATUS_REFUNDED)


@dataclass(frozen=True)
class PaymentFilters:
    supplier_id: int | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None
    payment_status: str | None = None
    limit: int | None = DEFAULT_LIMIT
    offset: int = 0

    @classmethod
    def from_args(cls, args: Mapping, *, supplier_id: int | None = None) -> "PaymentFilters":
        """Build filters from query-string style args. supplier_id overrides args."""
        def _int(name: str) -> int | None:
            raw = args.get(name)
            if raw in (None, ""):
                return None
            try:
                return int(raw)
            except (TypeError, ValueError):
                raise ValidationError(f"{name} must be an integer")

        def _date(name: str) -> date | None:
            try:
                return parse_iso_date(args.get(name))
            except ValueError:
                raise ValidationError(f"{name} must be a YYYY-MM-DD date")

        status = (args.get("payment_status") or args.get("status") or "").strip() or None
        if status and status not in VALID_PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of {', '.join(VALID_PAYMENT_STATUSES)}")

        limit = _int("limit")
        if limit is not None and limit < 1:
            raise ValidationError("limit must be positive")
        offset = _int("offset") or 0
        if offset < 0:
            raise ValidationError("offset must not be negative")

        date_from = _date("date_from")
        date_to = _date("date_to")
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_from must not be after date_to")

        return cls(
            supplier_id=supplier_id if supplier_id is not None else _int("supplier_id"),
            date_from=date_from,
            date_to=date_to,
            search=(args.get("search") or "").strip() or None,
            payment_status=status,
            limit=min(limit, MAX_LIMIT) if limit else DEFAULT_LIMIT,
            offset=offset,
        )


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _payments_query(filters: PaymentFilters):
    query = (
        db.session.query(Payment, SupplyRecord, User)
        .join(SupplyRecord, Payment.supply_record_id == SupplyRecord.id)
        .join(User, Payment.supplier_id == User.id)
    )
    if filters.supplier_id is not None:
        query = query.filter(Payment.supplier_id == filters.supplier_id)
    if filters.date_from:
        query = query.filter(Payment.created_at >= _day_start(filters.date_from))
    if filters.date_to:
        query = query.filter(Payment.created_at < _day_start(filters.date_to + timedelta(days=1)))
    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.filter(or_(
            Payment.payment_id.ilike(pattern),
            SupplyRecord.supply_id.ilike(pattern),
            User.name.ilike(pattern),
        ))
    return query


def _unpaid_records_query(
    filters: PaymentFilters,
    *,
    unpaid_only: bool = True,
    ignored_statuses: tuple[str, ...] = (),
):
    """
    Supply records no payment row references.

    Payment rows whose status is in ignored_statuses do not count as a
    reference.
    """
    payment_rows = exists().where(Payment.supply_record_id == SupplyRecord.id)
    if ignored_statuses:
        payment_rows = payment_rows.where(Payment.payment_status.notin_(ignored_statuses))
    query = (
        db.session.query(SupplyRecord, User)
        .join(User, SupplyRecord.supplier_id == User.id)
        .filter(~payment_rows)
    )
    if unpaid_only:
        query = query.filter(SupplyRecord.payment_status != "paid")
    if filters.supplier_id is not None:
        query = query.filter(SupplyRecord.supplier_id == filters.supplier_id)
    if filters.date_from:
        query = query.filter(SupplyRecord.supply_date >= filters.date_from)
    if filters.date_to:
        query = query.filter(SupplyRecord.supply_date <= filters.date_to)
    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.filter(or_(
            SupplyRecord.supply_id.ilike(pattern),
            User.name.ilike(pattern),
        ))
    return query


def _payment_entry(payment: Payment, record: SupplyRecord, supplier: User) -> dict:
    return {
        "id": payment.id,
        "payment_id": payment.payment_id,
        "source": SOURCE_PAYMENT,
        "supply_record_id": record.id,
        "supply_id": record.supply_id,
        "supplier_id": supplier.id,
        "supplier_code": supplier.supplier_id,
        "supplier_name": supplier.name,
        "amount": decimal_to_str(payment.amount),
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "payment_status": payment.payment_status,
        "payment_date": to_utc_z(payment.payment_date) if payment.payment_date else None,
        "supply_date": to_iso_date(record.supply_date),
        "quantity_kg": decimal_to_str(record.quantity_kg),
        "unit_price": decimal_to_str(record.unit_price),
        "created_at": to_utc_z(payment.created_at),
    }


def _synthetic_entry(record: SupplyRecord, supplier: User, currency: str) -> dict:
    return {
        "id": None,
        "payment_id": None,
        "source": SOURCE_SUPPLY_RECORD,
        "supply_record_id": record.id,
        "supply_id": record.supply_id,
        "supplier_id": supplier.id,
        "supplier_code": supplier.supplier_id,
        "supplier_name": supplier.name,
        "amount": decimal_to_str(record.total_payment),
        "currency": currency,
        "payment_method": record.payment_method,
        "payment_status": STATUS_COMPLETED if record.payment_status == "paid" else STATUS_PENDING,
        "payment_date": None,
        "supply_date": to_iso_date(record.supply_date),
        "quantity_kg": decimal_to_str(record.quantity_kg),
        "unit_price": decimal_to_str(record.unit_price),
        "created_at": to_utc_z(record.created_at),
    }


def find_all_payments(filters: PaymentFilters | None = None) -> list[dict]:
    """
    Combined, newest-first ledger of payment rows and synthetic pending entries.

    Each source is read at most `offset + limit` rows deep, which is enough
    for the merged page starting at `offset`. Page through with offset; a
    single call never returns more than MAX_LIMIT entries.
    """
    filters = filters or PaymentFilters()
    limit = filters.limit
    offset = max(filters.offset or 0, 0)
    depth = offset + limit if limit else None

    payments_query = _payments_query(filters)
    if filters.payment_status:
        payments_query = payments_query.filter(Payment.payment_status == filters.payment_status)
    payments_query = payments_query.order_by(Payment.created_at.desc(), Payment.id.desc())
    if depth:
        payments_query = payments_query.limit(depth)

    merged: list[tuple[datetime, int, dict]] = []
    for payment, record, supplier in payments_query.all():
        key = payment.created_at or payment.payment_date or datetime.min
        merged.append((key, 1, _payment_entry(payment, record, supplier)))

    # Synthetic entries are always pending
    if filters.payment_status in (None, STATUS_PENDING):
        currency = current_app.config.get("DEFAULT_CURRENCY", "LKR")
        records_query = _unpaid_records_query(filters).order_by(
            SupplyRecord.created_at.desc(), SupplyRecord.id.desc()
        )
        if depth:
            records_query = records_query.limit(depth)
        for record, supplier in records_query.all():
            key = record.created_at or _day_start(record.supply_date)
            merged.append((key, 0, _synthetic_entry(record, supplier, currency)))

    merged.sort(key=lambda item: (item[0], item[1]), reverse=True)
    entries = [entry for _, _, entry in merged]
    return entries[offset:depth]


def get_payment_statistics(filters: PaymentFilters | None = None) -> dict:
    """
    Counts and sums by status.

    pending   = pending payment rows + unpaid supply records without an open
                or completed payment
    completed = completed payment rows + paid supply records without payments
    """
    filters = filters or PaymentFilters()

    by_status: dict[str, dict] = {
        status: {"count": 0, "amount": ZERO} for status in VALID_PAYMENT_STATUSES
    }
    rows = (
        _payments_query(filters)
        .with_entities(Payment.payment_status, func.count(Payment.id), func.sum(Payment.amount))
        .group_by(Payment.payment_status)
        .all()
    )
    for status, count, amount in rows:
        bucket = by_status.setdefault(status, {"count": 0, "amount": ZERO})
        bucket["count"] = int(count or 0)
        bucket["amount"] = coerce_sum(amount)

    def _record_totals(query) -> dict:
        count, amount = query.with_entities(
            func.count(SupplyRecord.id), func.sum(SupplyRecord.total_payment)
        ).one()
        return {"count": int(count or 0), "amount": coerce_sum(amount)}

    # Still owed unless a pending or completed payment already covers it
    unpaid = _record_totals(
        _unpaid_records_query(filters, ignored_statuses=CLOSED_WITHOUT_SETTLEMENT)
    )
    paid_without_payment = _record_totals(
        _unpaid_records_query(filters, unpaid_only=False)
        .filter(SupplyRecord.payment_status == "paid")
    )

    completed = by_status[STATUS_COMPLETED]
    average: Decimal | None = None
    if completed["count"]:
        average = quantize(completed["amount"] / completed["count"])

    total_completed = completed["amount"] + paid_without_payment["amount"]
    total_pending = by_status[STATUS_PENDING]["amount"] + unpaid["amount"]

    return {
        "total_transactions": (
            sum(b["count"] for b in by_status.values()) + unpaid["count"] + paid_without_payment["count"]
        ),
        "completed_count": completed["count"] + paid_without_payment["count"],
        "completed_amount": decimal_to_str(total_completed),
        "pending_count": by_status[STATUS_PENDING]["count"] + unpaid["count"],
        "pending_amount": decimal_to_str(total_pending),
        "failed_count": by_status[STATUS_FAILED]["count"],
        "failed_amount": decimal_to_str(by_status[STATUS_FAILED]["amount"]),
        "cancelled_count": by_status[STATUS_CANCELLED]["count"],
        "refunded_count": by_status[STATUS_REFUNDED]["count"],
        "average_payment_amount": decimal_to_str(average),
        "breakdown": {
            "payments": {
                status: {"count": b["count"], "amount": decimal_to_str(b["amount"])}
                for status, b in by_status.items()
            },
            "supply_records": {
                "unpaid_count": unpaid["count"],
                "unpaid_amount": decimal_to_str(unpaid["amount"]),
                "paid_without_payment_count": paid_without_payment["count"],
                "paid_without_payment_amount": decimal_to_str(paid_without_payment["amount"]),
            },
        },
    }
