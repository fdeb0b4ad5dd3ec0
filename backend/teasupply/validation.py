from __future__ import annotations
from datetime import date, datetime, time
from teasupply.time_utils import parse_iso_datetime, parse_iso_date

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text, Time
from sqlalchemy.orm import DeclarativeMeta

from .decimal_utils import to_decimal
from .errors import ConflictError, ValidationError  # noqa: F401  (re-exported)


# Largest quantity (kg) or price accepted from clients
MAX_QUANTITY_KG = Decimal("999999.99")
MAX_UNIT_PRICE = Decimal("999999.99")

SUPPLY_PAYMENT_METHODS = ("spot", "monthly")
SUPPLY_PAYMENT_STATUSES = ("unpaid", "paid")

PHONE_RE = re.compile(r"^\d{10}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Fixed-point quantities and money
    if isinstance(coltype, Numeric):
        return to_decimal(value, col.key)

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, (date, str)):
            try:
                parsed = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be a YYYY-MM-DD date")
            if parsed is None:
                raise ValidationError(f"{col.key} must be a YYYY-MM-DD date")
            return parsed
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, Time):
        if isinstance(value, time):
            return value
        try:
            return time.fromisoformat(str(value).strip())
        except ValueError:
            raise ValidationError(f"{col.key} must be a HH:MM[:SS] time")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


SUPPLY_RECORD_POLICY = ModelValidationPolicy(
    writable_fields={
        "supplier_id",
        "quantity_kg",
        "unit_price",
        "payment_method",
        "payment_status",
        "supply_date",
        "supply_time",
        "notes",
    },
    required_on_create={"quantity_kg", "supply_date"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "email",
        "phone",
        "address",
        "bank_name",
        "account_number",
        "account_holder_name",
        "bank_branch",
        "bank_code",
        "status",
    },
    required_on_create={"name", "email", "phone"},
)


def enforce_rules_supply_record(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "quantity_kg" in patch:
        qty = patch["quantity_kg"]
        if qty is None or qty <= 0:
            raise ValidationError("quantity_kg must be greater than 0")
        if qty > MAX_QUANTITY_KG:
            raise ValidationError(f"quantity_kg cannot exceed {MAX_QUANTITY_KG}")

    if "unit_price" in patch and patch["unit_price"] is not None:
        price = patch["unit_price"]
        if price <= 0:
            raise ValidationError("unit_price must be greater than 0")
        if price > MAX_UNIT_PRICE:
            raise ValidationError(f"unit_price cannot exceed {MAX_UNIT_PRICE}")

    if "payment_method" in patch and patch["payment_method"] not in SUPPLY_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(SUPPLY_PAYMENT_METHODS)}")

    if "payment_status" in patch and patch["payment_status"] not in SUPPLY_PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of {', '.join(SUPPLY_PAYMENT_STATUSES)}")


def enforce_rules_supplier(patch: dict, *, creating: bool = False) -> None:
    if "email" in patch and patch["email"] is not None:
        patch["email"] = patch["email"].lower()
        if not EMAIL_RE.match(patch["email"]):
            raise ValidationError("email is not a valid address")

    if "phone" in patch and patch["phone"] is not None:
        if not PHONE_RE.match(patch["phone"]):
            raise ValidationError("phone must be exactly 10 digits")

    if patch.get("account_number"):
        if not patch["account_number"].isdigit() or not 8 <= len(patch["account_number"]) <= 20:
            raise ValidationError("account_number must be 8-20 digits")
        if (creating or "account_holder_name" in patch) and not patch.get("account_holder_name"):
            raise ValidationError("account_holder_name is required when account_number is provided")

    if patch.get("bank_code") and not patch["bank_code"].isdigit():
        raise ValidationError("bank_code must contain digits only")
