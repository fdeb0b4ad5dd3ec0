# Overview: Service-layer operations for the stock pool; FIFO allocation from supply into inventory lots and from lots into production.

"""
Stock Pool

WHY: Quantity flows supply record -> inventory lot -> production run, and
must be conserved along the way. Both hops use the same FIFO algorithm:
drain the oldest source (by created_at) first.

DESIGN PRINCIPLES:
- The availability pre-check and every per-record decrement run in one
  transaction. Source rows are selected FOR UPDATE and each decrement is
  flushed immediately under the mapper's version check, so a concurrent
  writer either waits on the lock or trips StaleDataError; run_with_retry
  rolls back and re-runs the whole operation.
- A shortfall after a successful pre-check means another writer got there
  first: ConcurrentModification, rolled back and retried.
- Every take is recorded as a StockMovement, so the supply draws attributed
  to a lot always sum to its allocated_quantity.
- On any failure mid-deduction the amount already deducted is logged before
  the rollback, for manual reconciliation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterable

from flask import current_app
from sqlalchemy import func, update

from ..decimal_utils import ZERO, coerce_sum, to_decimal, to_positive_decimal
from ..errors import (
    ConcurrentModification,
    EditWindowExpired,
    InsufficientInventory,
    InsufficientSupply,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import InventoryLot, ProductionRecord, StockMovement, SupplyRecord
from ..models.stock import (
    MOVEMENT_INVENTORY_RETURN,
    MOVEMENT_INVENTORY_TO_PRODUCTION,
    MOVEMENT_SUPPLY_TO_INVENTORY,
)
from teasupply.time_utils import parse_iso_date, utcnow
from . import identifier_service, supply_service
from .concurrency import lock_for_update, run_with_retry
from .supply_service import EDIT_WINDOW, is_within_edit_window


# =============================================================================
# FIFO ALGORITHM
# =============================================================================

@dataclass
class FifoTake:
    source: object
    quantity: Decimal


@dataclass
class FifoResult:
    deducted: Decimal
    unfulfilled: Decimal
    takes: list[FifoTake] = field(default_factory=list)


def fifo_deduct(
    records: Iterable,
    required: Decimal,
    *,
    available: Callable[[object], Decimal],
    deduct: Callable[[object, Decimal], object],
    label: str = "fifo",
) -> FifoResult:
    """
    Drain records oldest-first until required is met or records run out.

    deduct(record, take) must persist the decrement immediately. Returns
    the amount deducted and the unfulfilled remainder; the caller decides
    whether a remainder is an error.
    """
    outstanding = required
    takes: list[FifoTake] = []
    try:
        for record in sorted(records, key=lambda r: (r.created_at, r.id)):
            if outstanding <= ZERO:
                break
            avail = available(record)
            if avail <= ZERO:
                continue
            take = min(avail, outstanding)
            deduct(record, take)
            takes.append(FifoTake(source=record, quantity=take))
            outstanding -= take
            current_app.logger.debug("%s: took %s from %s, %s outstanding", label, take, record.id, outstanding)
    except Exception:
        current_app.logger.warning(
            "%s: deduction interrupted after %s of %s deducted (%s)",
            label, required - outstanding, required,
            ", ".join(f"{t.source.id}:{t.quantity}" for t in takes) or "nothing taken",
        )
        raise
    return FifoResult(deducted=required - outstanding, unfulfilled=outstanding, takes=takes)


def _deduct_lot(lot: InventoryLot, amount: Decimal) -> Decimal:
    if amount > lot.quantity:
        raise ConcurrentModification(f"Inventory lot {lot.inventory_id} no longer holds {amount}")
    lot.quantity = lot.quantity - amount
    db.session.flush()
    return lot.quantity


def _lock_available_supply() -> list[SupplyRecord]:
    return lock_for_update(
        db.session.query(SupplyRecord)
        .filter(SupplyRecord.remaining_quantity_kg > 0)
        .order_by(SupplyRecord.created_at.asc(), SupplyRecord.id.asc())
    ).all()


def _lock_available_lots() -> list[InventoryLot]:
    return lock_for_update(
        db.session.query(InventoryLot)
        .filter(InventoryLot.quantity > 0)
        .order_by(InventoryLot.created_at.asc(), InventoryLot.id.asc())
    ).all()


def _draw_supply(lot: InventoryLot, amount: Decimal, *, actor_user_id: int | None, at: datetime) -> FifoResult:
    """Pre-check and FIFO-draw amount from supply into lot, recording movements."""
    sources = _lock_available_supply()
    available = sum((r.remaining_quantity_kg for r in sources), ZERO)
    if available < amount:
        raise InsufficientSupply(
            f"Insufficient supply: requested {amount} kg, available {available} kg",
            requested=str(amount),
            available=str(available),
        )

    result = fifo_deduct(
        sources,
        amount,
        available=lambda r: r.remaining_quantity_kg,
        deduct=supply_service.deduct_locked,
        label=f"inventory {lot.inventory_id}",
    )
    if result.unfulfilled > ZERO:
        current_app.logger.warning(
            "inventory %s: supply shortfall of %s after pre-check (deducted %s)",
            lot.inventory_id, result.unfulfilled, result.deducted,
        )
        raise ConcurrentModification("Supply changed while allocating inventory")

    for take in result.takes:
        db.session.add(StockMovement(
            movement_type=MOVEMENT_SUPPLY_TO_INVENTORY,
            supply_record_id=take.source.id,
            inventory_lot_id=lot.id,
            quantity=take.quantity,
            actor_user_id=actor_user_id,
            occurred_at=at,
        ))
    return result


def _return_supply(lot: InventoryLot, amount: Decimal, *, actor_user_id: int | None, at: datetime) -> Decimal:
    """Give amount back to the supply records this lot drew from, most recent draw first."""
    rows = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.inventory_lot_id == lot.id,
            StockMovement.movement_type.in_((MOVEMENT_SUPPLY_TO_INVENTORY, MOVEMENT_INVENTORY_RETURN)),
        )
        .order_by(StockMovement.id.asc())
        .all()
    )
    net: dict[int, Decimal] = {}
    last_draw: dict[int, int] = {}
    for row in rows:
        if row.movement_type == MOVEMENT_SUPPLY_TO_INVENTORY:
            net[row.supply_record_id] = net.get(row.supply_record_id, ZERO) + row.quantity
            last_draw[row.supply_record_id] = row.id
        else:
            net[row.supply_record_id] = net.get(row.supply_record_id, ZERO) - row.quantity

    order = sorted((sid for sid, qty in net.items() if qty > ZERO), key=lambda sid: last_draw[sid], reverse=True)
    records = {
        r.id: r
        for r in lock_for_update(db.session.query(SupplyRecord).filter(SupplyRecord.id.in_(order))).all()
    }

    outstanding = amount
    for supply_record_id in order:
        if outstanding <= ZERO:
            break
        record = records.get(supply_record_id)
        if record is None:
            continue
        give = min(net[supply_record_id], outstanding, record.quantity_kg - record.remaining_quantity_kg)
        if give <= ZERO:
            continue
        record.remaining_quantity_kg = record.remaining_quantity_kg + give
        db.session.flush()
        db.session.add(StockMovement(
            movement_type=MOVEMENT_INVENTORY_RETURN,
            supply_record_id=record.id,
            inventory_lot_id=lot.id,
            quantity=give,
            actor_user_id=actor_user_id,
            occurred_at=at,
        ))
        outstanding -= give

    if outstanding > ZERO:
        current_app.logger.error(
            "inventory %s: could not attribute %s of %s returned kg to a supply record",
            lot.inventory_id, outstanding, amount,
        )
        raise ConcurrentModification("Supply attribution changed while reducing inventory")
    return amount


# =============================================================================
# INVENTORY LOTS
# =============================================================================

def create_inventory_lot(
    quantity,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> InventoryLot:
    """
    Allocate quantity from supply into a new inventory lot.

    Raises:
        InsufficientSupply: total remaining supply is below quantity
        ConcurrentModification: supply kept changing across 3 attempts
        GenerationExhausted: no free inventory id
    """
    amount = to_positive_decimal(quantity, "quantity")

    def _op() -> InventoryLot:
        at = now or utcnow()
        lot = InventoryLot(
            inventory_id=identifier_service.generate_inventory_id(at),
            quantity=amount,
            allocated_quantity=amount,
            created_by_user_id=actor_user_id,
            created_at=at,
            updated_at=at,
        )
        db.session.add(lot)
        db.session.flush()

        result = _draw_supply(lot, amount, actor_user_id=actor_user_id, at=at)
        db.session.commit()
        current_app.logger.info(
            "Inventory lot %s created with %s kg from %d supply record(s)",
            lot.inventory_id, result.deducted, len(result.takes),
        )
        return lot

    return run_with_retry(
        _op,
        unique_tokens=identifier_service.INVENTORY_ID_TOKENS,
        label="create_inventory_lot",
    )


def update_inventory_lot(
    lot_id: int,
    quantity,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> InventoryLot:
    """
    Set a lot's available quantity inside its 15 minute edit window.

    An increase draws the difference FIFO from supply; a decrease hands it
    back to the supply records the lot drew from.
    """
    new_quantity = to_decimal(quantity, "quantity")
    if new_quantity < ZERO:
        raise ValidationError("quantity must be 0 or greater")

    def _op() -> InventoryLot:
        at = now or utcnow()
        lot = lock_for_update(db.session.query(InventoryLot).filter_by(id=lot_id)).first()
        if not lot:
            raise NotFound(f"Inventory lot {lot_id} not found")
        if not is_within_edit_window(lot.created_at, at):
            raise EditWindowExpired("Inventory can only be edited within 15 minutes of creation")

        delta = new_quantity - lot.quantity
        if delta == ZERO:
            return lot

        stmt = (
            update(InventoryLot)
            .where(
                InventoryLot.id == lot.id,
                InventoryLot.version_id == lot.version_id,
                InventoryLot.created_at > at - EDIT_WINDOW,
            )
            .values(
                quantity=new_quantity,
                allocated_quantity=lot.allocated_quantity + delta,
                updated_at=at,
                version_id=lot.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != 1:
            db.session.rollback()
            current = db.session.query(InventoryLot).filter_by(id=lot_id).first()
            if not current:
                raise NotFound(f"Inventory lot {lot_id} not found")
            if not is_within_edit_window(current.created_at, at):
                raise EditWindowExpired("Inventory can only be edited within 15 minutes of creation")
            raise ConcurrentModification(f"Inventory lot {lot_id} changed during the update")

        if delta > ZERO:
            _draw_supply(lot, delta, actor_user_id=actor_user_id, at=at)
        else:
            _return_supply(lot, -delta, actor_user_id=actor_user_id, at=at)

        db.session.commit()
        current_app.logger.info("Inventory lot %s adjusted by %s kg", lot.inventory_id, delta)
        return db.session.query(InventoryLot).filter_by(id=lot_id).first()

    return run_with_retry(_op, label="update_inventory_lot")


def get_inventory_lot(lot_id: int) -> InventoryLot:
    lot = db.session.query(InventoryLot).filter_by(id=lot_id).first()
    if not lot:
        raise NotFound(f"Inventory lot {lot_id} not found")
    return lot


def list_inventory_lots(*, available_only: bool = False, limit: int | None = None) -> list[InventoryLot]:
    query = db.session.query(InventoryLot)
    if available_only:
        query = query.filter(InventoryLot.quantity > 0)
    query = query.order_by(InventoryLot.created_at.desc(), InventoryLot.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_lot_movements(lot_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.inventory_lot_id == lot_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def get_lot_supply_attribution(lot_id: int) -> Decimal:
    """Net kilograms drawn from supply for a lot (draws minus returns)."""
    drawn = coerce_sum(
        db.session.query(func.sum(StockMovement.quantity))
        .filter_by(inventory_lot_id=lot_id, movement_type=MOVEMENT_SUPPLY_TO_INVENTORY)
        .scalar()
    )
    returned = coerce_sum(
        db.session.query(func.sum(StockMovement.quantity))
        .filter_by(inventory_lot_id=lot_id, movement_type=MOVEMENT_INVENTORY_RETURN)
        .scalar()
    )
    return drawn - returned


def get_total_available_inventory() -> Decimal:
    return coerce_sum(db.session.query(func.sum(InventoryLot.quantity)).scalar())


# =============================================================================
# PRODUCTION
# =============================================================================

def create_production_record(
    quantity,
    production_date=None,
    *,
    production_time=None,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> ProductionRecord:
    """
    Consume quantity from inventory lots (FIFO) into a production run.

    Raises:
        InsufficientInventory: total lot quantity is below quantity
    """
    amount = to_positive_decimal(quantity, "quantity")
    try:
        run_date = parse_iso_date(production_date)
    except ValueError:
        raise ValidationError("production_date must be a YYYY-MM-DD date")

    def _op() -> ProductionRecord:
        at = now or utcnow()
        lots = _lock_available_lots()
        available = sum((lot.quantity for lot in lots), ZERO)
        if available < amount:
            raise InsufficientInventory(
                f"Insufficient inventory: requested {amount}, available {available}",
                requested=str(amount),
                available=str(available),
            )

        record = ProductionRecord(
            production_id=identifier_service.generate_production_id(),
            quantity=amount,
            production_date=run_date or at.date(),
            production_time=production_time or at.time().replace(microsecond=0),
            created_by_user_id=actor_user_id,
            created_at=at,
        )
        db.session.add(record)
        db.session.flush()

        result = fifo_deduct(
            lots,
            amount,
            available=lambda lot: lot.quantity,
            deduct=_deduct_lot,
            label=f"production {record.production_id}",
        )
        if result.unfulfilled > ZERO:
            current_app.logger.warning(
                "production %s: inventory shortfall of %s after pre-check (deducted %s)",
                record.production_id, result.unfulfilled, result.deducted,
            )
            raise ConcurrentModification("Inventory changed while recording production")

        for take in result.takes:
            db.session.add(StockMovement(
                movement_type=MOVEMENT_INVENTORY_TO_PRODUCTION,
                inventory_lot_id=take.source.id,
                production_record_id=record.id,
                quantity=take.quantity,
                actor_user_id=actor_user_id,
                occurred_at=at,
            ))
        db.session.commit()
        current_app.logger.info(
            "Production %s recorded: %s from %d lot(s)",
            record.production_id, result.deducted, len(result.takes),
        )
        return record

    return run_with_retry(
        _op,
        unique_tokens=identifier_service.PRODUCTION_ID_TOKENS,
        label="create_production_record",
    )


def get_production_record(record_id: int) -> ProductionRecord:
    record = db.session.query(ProductionRecord).filter_by(id=record_id).first()
    if not record:
        raise NotFound(f"Production record {record_id} not found")
    return record


def list_production_records(
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int | None = None,
) -> list[ProductionRecord]:
    query = db.session.query(ProductionRecord)
    if date_from is not None:
        query = query.filter(ProductionRecord.production_date >= date_from)
    if date_to is not None:
        query = query.filter(ProductionRecord.production_date <= date_to)
    query = query.order_by(ProductionRecord.created_at.desc(), ProductionRecord.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_production_movements(record_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.production_record_id == record_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def get_stock_summary() -> dict:
    produced = coerce_sum(db.session.query(func.sum(ProductionRecord.quantity)).scalar())
    return {
        "available_supply_kg": str(supply_service.get_total_available_supply()),
        "available_inventory": str(get_total_available_inventory()),
        "total_produced": str(produced),
        "inventory_lot_count": db.session.query(func.count(InventoryLot.id)).scalar() or 0,
        "production_run_count": db.session.query(func.count(ProductionRecord.id)).scalar() or 0,
    }
