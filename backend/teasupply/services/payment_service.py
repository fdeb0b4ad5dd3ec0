# Overview: Service-layer operations for payments; direct and gateway payments, status transitions and supply record settlement.

"""
Payment Processing Service

WHY: Suppliers are paid per supply record, either directly (cash, bank
transfer, cheque) by staff or through an online gateway checkout.

DESIGN PRINCIPLES:
- A payment belongs to exactly one supply record and its supplier.
- At most one completed payment per supply record (partial unique index
  plus an application check under row lock).
- Completing a payment marks the supply record paid in the same
  transaction; refunding it marks the record unpaid again.
- Payments are never deleted; failed and cancelled attempts stay as history.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from urllib.parse import urlencode

from flask import current_app

from ..decimal_utils import to_positive_decimal
from ..errors import ConflictError, InvalidSupplyRecord, NotFound, ValidationError
from ..extensions import db
from ..models import Payment, SupplyRecord
from teasupply.time_utils import utcnow
from . import identifier_service, supply_service
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# CONSTANTS
# =============================================================================

METHOD_SPOT = "spot"
METHOD_MONTHLY = "monthly"
METHOD_GATEWAY = "gateway"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CASH = "cash"
METHOD_CHEQUE = "cheque"

VALID_PAYMENT_METHODS = (
    METHOD_SPOT,
    METHOD_MONTHLY,
    METHOD_GATEWAY,
    METHOD_BANK_TRANSFER,
    METHOD_CASH,
    METHOD_CHEQUE,
)
DIRECT_PAYMENT_METHODS = (METHOD_CASH, METHOD_BANK_TRANSFER, METHOD_CHEQUE, METHOD_SPOT, METHOD_MONTHLY)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

VALID_PAYMENT_STATUSES = (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_CANCELLED,
    STATUS_REFUNDED,
)

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED},
    STATUS_FAILED: {STATUS_PENDING, STATUS_COMPLETED},
    STATUS_COMPLETED: {STATUS_REFUNDED},
    STATUS_CANCELLED: set(),
    STATUS_REFUNDED: set(),
}


def _lock_supply_record(supply_record_id: int) -> SupplyRecord:
    record = lock_for_update(db.session.query(SupplyRecord).filter_by(id=supply_record_id)).first()
    if not record:
        raise InvalidSupplyRecord(f"Supply record {supply_record_id} not found")
    return record


def _has_completed_payment(supply_record_id: int, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(Payment.id).filter_by(
        supply_record_id=supply_record_id, payment_status=STATUS_COMPLETED
    )
    if exclude_id is not None:
        query = query.filter(Payment.id != exclude_id)
    return query.first() is not None


def _merge_gateway_meta(payment: Payment, gateway_meta: dict | None) -> None:
    if not gateway_meta:
        return
    merged = dict(payment.gateway_response or {})
    merged.update(gateway_meta)
    payment.gateway_response = merged
    if gateway_meta.get("gateway_payment_id"):
        payment.gateway_payment_id = str(gateway_meta["gateway_payment_id"])


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def create_payment(
    supply_record_id: int,
    supplier_id: int | None = None,
    amount=None,
    payment_method: str = METHOD_CASH,
    *,
    status: str = STATUS_PENDING,
    currency: str | None = None,
    payment_notes: str | None = None,
    payment_gateway: str | None = None,
    gateway_session_id: str | None = None,
    created_by_user_id: int | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Create a payment for one supply record.

    amount defaults to the record's total_payment. A completed payment
    settles the record (payment_status = paid).

    Raises:
        InvalidSupplyRecord: record missing or owned by another supplier
        ConflictError: record already has a completed payment
        ValidationError: bad method/status/amount
    """
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(VALID_PAYMENT_METHODS)}")
    if status not in (STATUS_PENDING, STATUS_COMPLETED):
        raise ValidationError("New payments must be pending or completed")
    value = to_positive_decimal(amount, "amount") if amount is not None else None

    def _op() -> Payment:
        at = now or utcnow()
        record = _lock_supply_record(supply_record_id)
        if supplier_id is not None and record.supplier_id != supplier_id:
            raise InvalidSupplyRecord(
                f"Supply record {supply_record_id} does not belong to supplier {supplier_id}"
            )
        if status == STATUS_COMPLETED and _has_completed_payment(record.id):
            raise ConflictError(f"Supply record {record.supply_id} is already paid")

        payment = Payment(
            payment_id=identifier_service.generate_payment_id(),
            supply_record_id=record.id,
            supplier_id=record.supplier_id,
            amount=value if value is not None else record.total_payment,
            currency=currency or current_app.config.get("DEFAULT_CURRENCY", "LKR"),
            payment_method=payment_method,
            payment_gateway=payment_gateway,
            gateway_session_id=gateway_session_id,
            payment_status=status,
            payment_date=at if status == STATUS_COMPLETED else None,
            payment_notes=payment_notes,
            created_by_user_id=created_by_user_id,
            created_at=at,
            updated_at=at,
        )
        db.session.add(payment)
        if status == STATUS_COMPLETED:
            supply_service.set_payment_status_locked(record, "paid")
        db.session.commit()
        current_app.logger.info(
            "Payment %s (%s) created for supply record %s: %s %s",
            payment.payment_id, status, record.supply_id, payment.amount, payment.currency,
        )
        return payment

    return run_with_retry(
        _op,
        unique_tokens=identifier_service.PAYMENT_ID_TOKENS,
        label="create_payment",
    )


def record_direct_payment(
    supply_record_id: int,
    *,
    amount=None,
    payment_method: str = METHOD_CASH,
    payment_notes: str | None = None,
    created_by_user_id: int | None = None,
) -> Payment:
    """Staff-recorded payment outside the gateway; completed immediately."""
    if payment_method not in DIRECT_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(DIRECT_PAYMENT_METHODS)}")
    return create_payment(
        supply_record_id,
        amount=amount,
        payment_method=payment_method,
        status=STATUS_COMPLETED,
        payment_notes=payment_notes,
        created_by_user_id=created_by_user_id,
    )


def create_gateway_session(
    supply_record_id: int,
    *,
    supplier_id: int | None = None,
    created_by_user_id: int | None = None,
) -> dict:
    """
    Start a gateway checkout: a pending payment plus the URL to redirect to.

    The provider reports back through the success/failure callbacks using
    the returned session id.
    """
    record = db.session.query(SupplyRecord).filter_by(id=supply_record_id).first()
    if not record:
        raise InvalidSupplyRecord(f"Supply record {supply_record_id} not found")
    if record.payment_status == "paid":
        raise ConflictError(f"Supply record {record.supply_id} is already paid")

    session_id = secrets.token_urlsafe(24)
    payment = create_payment(
        supply_record_id,
        supplier_id=supplier_id,
        payment_method=METHOD_GATEWAY,
        status=STATUS_PENDING,
        payment_gateway=current_app.config.get("PAYMENT_GATEWAY_PROVIDER"),
        gateway_session_id=session_id,
        created_by_user_id=created_by_user_id,
    )

    frontend = current_app.config.get("FRONTEND_URL", "").rstrip("/")
    query = urlencode({
        "order_id": payment.payment_id,
        "session_id": session_id,
        "amount": str(payment.amount),
        "currency": payment.currency,
        "return_url": f"{frontend}/payments/success?payment_id={payment.payment_id}",
        "cancel_url": f"{frontend}/payments/cancel?payment_id={payment.payment_id}",
    })
    return {
        "payment": payment.to_dict(),
        "session_id": session_id,
        "checkout_url": f"{current_app.config.get('PAYMENT_GATEWAY_URL')}?{query}",
    }


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def _lock_payment(payment_id: str | None = None, gateway_session_id: str | None = None) -> Payment:
    query = db.session.query(Payment)
    if payment_id:
        query = query.filter_by(payment_id=payment_id)
    elif gateway_session_id:
        query = query.filter_by(gateway_session_id=gateway_session_id)
    else:
        raise ValidationError("payment_id or session_id is required")
    payment = lock_for_update(query).first()
    if not payment:
        raise NotFound(f"Payment {payment_id or gateway_session_id} not found")
    return payment


def _apply_status(payment: Payment, status: str, gateway_meta: dict | None, at: datetime) -> None:
    if status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of {', '.join(VALID_PAYMENT_STATUSES)}")

    _merge_gateway_meta(payment, gateway_meta)
    if payment.payment_status == status:
        # Webhook redelivery
        return
    if status not in ALLOWED_TRANSITIONS[payment.payment_status]:
        raise ConflictError(f"Cannot change payment from {payment.payment_status} to {status}")

    record = _lock_supply_record(payment.supply_record_id)
    if status == STATUS_COMPLETED:
        if _has_completed_payment(record.id, exclude_id=payment.id):
            raise ConflictError(f"Supply record {record.supply_id} is already paid")
        payment.payment_date = at
        supply_service.set_payment_status_locked(record, "paid")
    elif status == STATUS_REFUNDED:
        supply_service.set_payment_status_locked(record, "unpaid")

    payment.payment_status = status
    payment.updated_at = at


def update_payment_status(
    payment_id: str,
    status: str,
    gateway_meta: dict | None = None,
    *,
    now: datetime | None = None,
) -> Payment:
    """
    Move a payment to a new status by business id.

    Raises:
        NotFound: unknown payment
        ConflictError: transition not allowed, or record already paid
    """
    def _op() -> Payment:
        payment = _lock_payment(payment_id=payment_id)
        _apply_status(payment, status, gateway_meta, now or utcnow())
        db.session.commit()
        current_app.logger.info("Payment %s is now %s", payment.payment_id, payment.payment_status)
        return payment

    return run_with_retry(_op, label="update_payment_status")


def handle_gateway_callback(
    *,
    success: bool,
    payment_id: str | None = None,
    session_id: str | None = None,
    gateway_meta: dict | None = None,
) -> Payment:
    """Apply a provider success/failure notification."""
    status = STATUS_COMPLETED if success else STATUS_FAILED

    def _op() -> Payment:
        payment = _lock_payment(payment_id=payment_id, gateway_session_id=session_id)
        _apply_status(payment, status, gateway_meta, utcnow())
        db.session.commit()
        return payment

    payment = run_with_retry(_op, label="gateway_callback")
    current_app.logger.info("Gateway reported %s for payment %s", status, payment.payment_id)
    return payment


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

def get_payment(payment_id: str) -> Payment:
    payment = db.session.query(Payment).filter_by(payment_id=payment_id).first()
    if not payment:
        raise NotFound(f"Payment {payment_id} not found")
    return payment


def get_payments_for_supply_record(supply_record_id: int) -> list[Payment]:
    if db.session.query(SupplyRecord.id).filter_by(id=supply_record_id).first() is None:
        raise NotFound(f"Supply record {supply_record_id} not found")
    return (
        db.session.query(Payment)
        .filter_by(supply_record_id=supply_record_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
