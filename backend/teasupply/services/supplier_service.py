# Overview: Service-layer operations for suppliers; directory, supplier id issuance/repair and the inactivity sweep.

"""
Supplier Lifecycle

WHY: Suppliers are users with role = supplier. Staff register them,
the business knows them by supplier_id (SUP000123), and suppliers who stop
delivering are retired automatically.

DESIGN:
- Supplier ids come from identifier_service (sequence row + unique index);
  creation runs under run_with_retry so a collision re-issues the id.
- reset_all_supplier_ids rewrites every id as SUP000001.. in internal id
  order. It locks all supplier rows and must not run alongside supplier
  creation.
- deactivate_old_suppliers is one conditional bulk UPDATE, safe to run
  while suppliers are being created or edited.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, select, update

from ..decimal_utils import to_positive_decimal
from ..errors import ConflictError, NotFound, ValidationError
from ..extensions import db
from ..models import SupplyRecord, User
from ..models.auth import (
    ROLE_SUPPLIER,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    VALID_USER_STATUSES,
)
from ..validation import SUPPLIER_POLICY, enforce_rules_supplier, validate_payload
from teasupply.time_utils import subtract_months, utcnow
from . import auth_service, identifier_service
from .concurrency import lock_for_update, run_with_retry
from .mail_service import Mailer, supplier_welcome_message


INACTIVITY_MONTHS = 6


# =============================================================================
# DIRECTORY
# =============================================================================

def find_supplier(user_id: int) -> User:
    supplier = db.session.query(User).filter_by(id=user_id, role=ROLE_SUPPLIER).first()
    if not supplier:
        raise NotFound(f"Supplier {user_id} not found")
    return supplier


def supplier_exists(user_id: int) -> bool:
    return db.session.query(User.id).filter_by(id=user_id, role=ROLE_SUPPLIER).first() is not None


def get_supplier(user_id: int, *, mask_bank_details: bool = True) -> dict:
    return find_supplier(user_id).to_dict(mask_bank_details=mask_bank_details)


def list_suppliers(
    *,
    status: str | None = None,
    search: str | None = None,
    mask_bank_details: bool = True,
) -> list[dict]:
    """Supplier directory, oldest first. Assigns ids to any supplier still missing one."""
    missing = (
        db.session.query(User.id)
        .filter(User.role == ROLE_SUPPLIER, User.supplier_id.is_(None))
        .first()
    )
    if missing:
        backfill_supplier_ids()

    query = db.session.query(User).filter(User.role == ROLE_SUPPLIER)
    if status:
        if status not in VALID_USER_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(VALID_USER_STATUSES)}")
        query = query.filter(User.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            User.name.ilike(pattern) | User.email.ilike(pattern) | User.supplier_id.ilike(pattern)
        )
    return [
        s.to_dict(mask_bank_details=mask_bank_details)
        for s in query.order_by(User.id.asc()).all()
    ]


def _check_unique_contact(patch: dict, *, exclude_id: int | None = None) -> None:
    for column in ("email", "phone"):
        value = patch.get(column)
        if not value:
            continue
        query = db.session.query(User.id).filter(getattr(User, column) == value)
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first():
            raise ConflictError(f"A user with this {column} already exists")


def create_supplier(
    data: dict,
    *,
    password: str | None = None,
    mailer: Mailer | None = None,
) -> tuple[User, str | None]:
    """
    Register a supplier account.

    Generates a 12-character password when none is given and mails the
    credentials (fire-and-forget). Returns (supplier, generated_password),
    generated_password being None when the caller supplied one.

    Raises:
        ValidationError: bad fields
        ConflictError: email or phone already registered
    """
    payload = dict(data or {})
    payload.pop("status", None)
    patch = validate_payload(model=User, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    enforce_rules_supplier(patch, creating=True)

    generated = None if password else auth_service.generate_password()
    password_hash = auth_service.hash_password(password or generated)

    def _op() -> User:
        _check_unique_contact(patch)
        supplier = User(
            **patch,
            password_hash=password_hash,
            role=ROLE_SUPPLIER,
            status=STATUS_ACTIVE,
            supplier_id=identifier_service.generate_supplier_id(),
            must_change_password=generated is not None,
        )
        db.session.add(supplier)
        db.session.commit()
        return supplier

    supplier = run_with_retry(
        _op,
        unique_tokens=identifier_service.SUPPLIER_ID_TOKENS,
        label="create_supplier",
    )
    current_app.logger.info("Supplier %s created as %s", supplier.id, supplier.supplier_id)

    if mailer is not None:
        subject, body = supplier_welcome_message(
            supplier.name,
            supplier.email,
            supplier.supplier_id,
            generated,
            current_app.config.get("FRONTEND_URL", ""),
        )
        mailer.send_async(supplier.email, subject, body)

    return supplier, generated


def update_supplier(user_id: int, data: dict) -> User:
    patch = validate_payload(model=User, payload=data, policy=SUPPLIER_POLICY, partial=True)
    enforce_rules_supplier(patch)
    if "status" in patch and patch["status"] not in VALID_USER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(VALID_USER_STATUSES)}")

    def _op() -> User:
        supplier = find_supplier(user_id)
        _check_unique_contact(patch, exclude_id=supplier.id)
        for key, value in patch.items():
            setattr(supplier, key, value)
        db.session.commit()
        return supplier

    return run_with_retry(_op, label="update_supplier")


def set_custom_unit_price(user_id: int, price) -> User:
    """Per-supplier price override; None clears it."""
    value: Decimal | None = to_positive_decimal(price, "custom_unit_price") if price is not None else None

    def _op() -> User:
        supplier = find_supplier(user_id)
        supplier.custom_unit_price = value
        db.session.commit()
        return supplier

    supplier = run_with_retry(_op, label="set_custom_unit_price")
    current_app.logger.info("Custom unit price for supplier %s set to %s", user_id, value)
    return supplier


# =============================================================================
# SUPPLIER IDS
# =============================================================================

def generate_supplier_id() -> str:
    return identifier_service.generate_supplier_id()


def backfill_supplier_ids() -> int:
    """Assign ids to suppliers that have none. Returns how many were assigned."""
    def _op() -> int:
        suppliers = lock_for_update(
            db.session.query(User)
            .filter(User.role == ROLE_SUPPLIER, User.supplier_id.is_(None))
            .order_by(User.id.asc())
        ).all()
        for supplier in suppliers:
            supplier.supplier_id = identifier_service.generate_supplier_id()
            db.session.flush()
        db.session.commit()
        return len(suppliers)

    count = run_with_retry(
        _op,
        unique_tokens=identifier_service.SUPPLIER_ID_TOKENS,
        label="backfill_supplier_ids",
    )
    if count:
        current_app.logger.info("Assigned supplier ids to %d supplier(s)", count)
    return count


def reset_all_supplier_ids() -> dict:
    """
    Renumber every supplier SUP000001, SUP000002 ... in internal id order.

    Ids are first moved to temporary values so the renumbering never trips
    the unique index on an id another row still holds.
    """
    def _op() -> dict:
        suppliers = lock_for_update(
            db.session.query(User).filter(User.role == ROLE_SUPPLIER).order_by(User.id.asc())
        ).all()
        for supplier in suppliers:
            supplier.supplier_id = f"TMP{supplier.id}"
        db.session.flush()

        for number, supplier in enumerate(suppliers, start=1):
            supplier.supplier_id = identifier_service.format_supplier_id(number)
        db.session.flush()

        identifier_service.reset_supplier_sequence(len(suppliers) + 1)
        db.session.commit()
        return {
            "updated": len(suppliers),
            "next_supplier_id": identifier_service.format_supplier_id(len(suppliers) + 1),
        }

    result = run_with_retry(_op, label="reset_all_supplier_ids")
    current_app.logger.warning("Supplier ids reset: %d supplier(s) renumbered", result["updated"])
    return result


def get_supplier_id_stats() -> dict:
    rows = (
        db.session.query(User.supplier_id)
        .filter(User.role == ROLE_SUPPLIER)
        .all()
    )
    ids = [row.supplier_id for row in rows]
    numbers = [identifier_service.parse_supplier_number(value) for value in ids]
    valid = [n for n in numbers if n is not None]
    return {
        "total_suppliers": len(ids),
        "with_supplier_id": sum(1 for value in ids if value),
        "without_supplier_id": sum(1 for value in ids if not value),
        "invalid_format": sum(1 for value, n in zip(ids, numbers) if value and n is None),
        "highest_supplier_id": identifier_service.format_supplier_id(max(valid)) if valid else None,
        "sequence_next_number": identifier_service.get_supplier_sequence_value(),
    }


# =============================================================================
# INACTIVITY SWEEP
# =============================================================================

def deactivate_old_suppliers(*, now: datetime | None = None) -> int:
    """
    Mark suppliers inactive when their account is older than 6 months and
    they have no supply record dated within the last 6 months.

    Returns the number of suppliers deactivated.
    """
    def _op() -> int:
        at = now or utcnow()
        cutoff = subtract_months(at, INACTIVITY_MONTHS)
        recent_suppliers = select(SupplyRecord.supplier_id).where(SupplyRecord.supply_date >= cutoff.date())
        stmt = (
            update(User)
            .where(
                User.role == ROLE_SUPPLIER,
                User.status == STATUS_ACTIVE,
                User.created_at <= cutoff,
                User.id.not_in(recent_suppliers),
            )
            .values(status=STATUS_INACTIVE, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        affected = db.session.execute(stmt).rowcount or 0
        db.session.commit()
        return affected

    affected = run_with_retry(_op, label="deactivate_old_suppliers")
    current_app.logger.info("Supplier deactivation sweep: %d supplier(s) set to inactive", affected)
    return affected


def count_suppliers_by_status() -> dict:
    rows = (
        db.session.query(User.status, func.count(User.id))
        .filter(User.role == ROLE_SUPPLIER)
        .group_by(User.status)
        .all()
    )
    return {status: count for status, count in rows}
