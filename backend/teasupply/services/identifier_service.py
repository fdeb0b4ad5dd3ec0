# Overview: Service-layer operations for business identifiers; collision-checked id generation and the supplier id sequence.

"""
Business Identifier Generation

WHY: Every entity exposes a human-readable id next to its internal key:

- Supply records:    SUP-YYYYMMDD-HHMM, then SUP-YYYYMMDD-HHMM-01, -02 ...
- Inventory lots:    INV-YYYYMMDD-HHMM-NN (NN random)
- Production runs:   PROD-<epoch ms base36>-<6 random chars>, upper-cased
- Payments:          PAY_<epoch ms>_<3 random digits>
- Suppliers:         SUP + 6 digits, strictly increasing

DESIGN:
- The existence check only makes collisions unlikely. The unique index is
  the final authority: callers insert inside run_with_retry(unique_tokens=...)
  so a collision at insert time regenerates the id and tries again.
- Supplier numbers come from the identifier_sequences row instead of a
  max() scan over users. The scan runs once, to seed the row.
"""

from __future__ import annotations

import random
import re
import string
from datetime import datetime
from typing import Callable

from flask import current_app
from sqlalchemy import update

from ..errors import GenerationExhausted
from ..extensions import db
from ..models import IdentifierSequence, InventoryLot, Payment, ProductionRecord, SupplyRecord, User
from teasupply.time_utils import epoch_ms, utcnow


MAX_ID_ATTEMPTS = 100
SUPPLIER_ID_ATTEMPTS = 10

SUPPLIER_SEQUENCE = "supplier_id"
SUPPLIER_ID_RE = re.compile(r"^SUP(\d{6})$")

# Tokens matched against unique-violation messages by run_with_retry
SUPPLY_ID_TOKENS = ("supply_id",)
INVENTORY_ID_TOKENS = ("inventory_id",)
PRODUCTION_ID_TOKENS = ("production_id",)
PAYMENT_ID_TOKENS = ("payment_id",)
SUPPLIER_ID_TOKENS = ("supplier_id", "identifier_sequences")

_BASE36_ALPHABET = string.digits + string.ascii_uppercase


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_business_id(
    prefix: str,
    exists: Callable[[str], bool],
    *,
    now: datetime | None = None,
    random_suffix: bool = False,
    max_attempts: int = MAX_ID_ATTEMPTS,
) -> str:
    """
    Minute-stamped id with a collision suffix.

    Sequential mode tries the bare base first, then -01, -02 ...
    Random mode always appends a random two-digit suffix.
    Raises GenerationExhausted after max_attempts candidates.
    """
    base = f"{prefix}-{(now or utcnow()).strftime('%Y%m%d-%H%M')}"
    for attempt in range(max_attempts):
        if random_suffix:
            candidate = f"{base}-{random.randint(0, 99):02d}"
        elif attempt == 0:
            candidate = base
        else:
            candidate = f"{base}-{attempt:02d}"
        if not exists(candidate):
            return candidate
    current_app.logger.error("Identifier space exhausted for %s after %d attempts", base, max_attempts)
    raise GenerationExhausted(f"Could not generate a unique {prefix} identifier")


def supply_id_exists(candidate: str) -> bool:
    return db.session.query(SupplyRecord.id).filter_by(supply_id=candidate).first() is not None


def inventory_id_exists(candidate: str) -> bool:
    return db.session.query(InventoryLot.id).filter_by(inventory_id=candidate).first() is not None


def production_id_exists(candidate: str) -> bool:
    return db.session.query(ProductionRecord.id).filter_by(production_id=candidate).first() is not None


def payment_id_exists(candidate: str) -> bool:
    return db.session.query(Payment.id).filter_by(payment_id=candidate).first() is not None


def supplier_id_exists(candidate: str) -> bool:
    return db.session.query(User.id).filter_by(supplier_id=candidate).first() is not None


def generate_supply_id(now: datetime | None = None) -> str:
    return generate_business_id("SUP", supply_id_exists, now=now)


def generate_inventory_id(now: datetime | None = None) -> str:
    return generate_business_id("INV", inventory_id_exists, now=now, random_suffix=True)


def generate_production_id() -> str:
    for _ in range(MAX_ID_ATTEMPTS):
        token = "".join(random.choices(_BASE36_ALPHABET, k=6))
        candidate = f"PROD-{_to_base36(epoch_ms())}-{token}"
        if not production_id_exists(candidate):
            return candidate
    raise GenerationExhausted("Could not generate a unique production identifier")


def generate_payment_id() -> str:
    for _ in range(MAX_ID_ATTEMPTS):
        candidate = f"PAY_{epoch_ms()}_{random.randint(0, 999):03d}"
        if not payment_id_exists(candidate):
            return candidate
    raise GenerationExhausted("Could not generate a unique payment identifier")


# =============================================================================
# SUPPLIER IDS
# =============================================================================

def format_supplier_id(number: int) -> str:
    return f"SUP{number:06d}"


def parse_supplier_number(value: str | None) -> int | None:
    if not value:
        return None
    match = SUPPLIER_ID_RE.match(value)
    return int(match.group(1)) if match else None


def max_existing_supplier_number() -> int:
    """Highest N over all supplier ids matching SUP + 6 digits (0 when none)."""
    rows = (
        db.session.query(User.supplier_id)
        .filter(User.supplier_id.isnot(None), User.supplier_id.like("SUP%"))
        .all()
    )
    numbers = [parse_supplier_number(row.supplier_id) for row in rows]
    return max((n for n in numbers if n is not None), default=0)


def _allocate_supplier_number() -> int:
    """
    Atomically take the next supplier number.

    The first call seeds the sequence row from the highest existing id. Two
    first calls racing on the seed collide on identifier_sequences.name and
    the caller's retry loop re-runs the allocation against the seeded row.
    """
    stmt = (
        update(IdentifierSequence)
        .where(IdentifierSequence.name == SUPPLIER_SEQUENCE)
        .values(next_number=IdentifierSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(IdentifierSequence.next_number)
            .filter_by(name=SUPPLIER_SEQUENCE)
            .scalar()
        )
        return current - 1

    seed = max_existing_supplier_number() + 1
    db.session.add(IdentifierSequence(name=SUPPLIER_SEQUENCE, next_number=seed + 1))
    db.session.flush()
    return seed


def next_supplier_id() -> str:
    """Next sequence-backed supplier id, skipping numbers already taken."""
    for _ in range(SUPPLIER_ID_ATTEMPTS):
        candidate = format_supplier_id(_allocate_supplier_number())
        if not supplier_id_exists(candidate):
            return candidate
        current_app.logger.warning("Supplier id %s already taken, advancing sequence", candidate)
    raise GenerationExhausted("Could not allocate a supplier id")


def fallback_supplier_id() -> str:
    """Timestamp-derived id: SUP + last six digits of epoch ms. Not monotonic."""
    for _ in range(SUPPLIER_ID_ATTEMPTS):
        candidate = f"SUP{str(epoch_ms())[-6:]}"
        if not supplier_id_exists(candidate):
            return candidate
    raise GenerationExhausted("Could not allocate a fallback supplier id")


def generate_supplier_id() -> str:
    try:
        return next_supplier_id()
    except GenerationExhausted:
        current_app.logger.exception("Supplier id sequence exhausted, using timestamp fallback")
        return fallback_supplier_id()


def reset_supplier_sequence(next_number: int) -> None:
    """Point the supplier sequence at next_number (caller commits)."""
    seq = db.session.query(IdentifierSequence).filter_by(name=SUPPLIER_SEQUENCE).first()
    if seq is None:
        db.session.add(IdentifierSequence(name=SUPPLIER_SEQUENCE, next_number=next_number))
    else:
        seq.next_number = next_number
    db.session.flush()


def get_supplier_sequence_value() -> int | None:
    return (
        db.session.query(IdentifierSequence.next_number)
        .filter_by(name=SUPPLIER_SEQUENCE)
        .scalar()
    )
