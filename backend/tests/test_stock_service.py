"""
Stock pool tests.

Verifies:
- FIFO drains the oldest supply record (by created_at) first
- Over-allocation fails without touching any record
- Quantity is conserved supply -> inventory -> production
- Lot edits inside the window draw more or hand quantity back
"""

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from teasupply.errors import (
    EditWindowExpired,
    InsufficientInventory,
    InsufficientSupply,
    ValidationError,
)
from teasupply.models import InventoryLot, StockMovement, SupplyRecord
from teasupply.models.stock import (
    MOVEMENT_INVENTORY_RETURN,
    MOVEMENT_INVENTORY_TO_PRODUCTION,
    MOVEMENT_SUPPLY_TO_INVENTORY,
)
from teasupply.services import stock_service, supply_service
from teasupply.services.stock_service import fifo_deduct
from teasupply.time_utils import utcnow


def _supply(supplier, quantity, minutes_ago=0):
    return supply_service.create_supply_record(
        supplier.id, quantity, "50", now=utcnow() - timedelta(minutes=minutes_ago),
    )


def _remaining(record_id):
    return supply_service.get_supply_record(record_id).remaining_quantity_kg


class TestFifoDeduct:
    """The shared algorithm, on plain objects."""

    def _rows(self, *amounts):
        base = utcnow()
        return [
            SimpleNamespace(id=i, created_at=base + timedelta(seconds=i), left=Decimal(a))
            for i, a in enumerate(amounts)
        ]

    def _take(self, row, amount):
        row.left -= amount

    def test_oldest_first(self, app):
        rows = self._rows("30", "30", "30")
        result = fifo_deduct(reversed(rows), Decimal("45"), available=lambda r: r.left, deduct=self._take)
        assert result.deducted == Decimal("45")
        assert result.unfulfilled == Decimal("0")
        assert [r.left for r in rows] == [Decimal("0"), Decimal("15"), Decimal("30")]

    def test_skips_empty_rows(self, app):
        rows = self._rows("0", "10")
        result = fifo_deduct(rows, Decimal("5"), available=lambda r: r.left, deduct=self._take)
        assert [t.source.id for t in result.takes] == [1]

    def test_reports_unfulfilled(self, app):
        rows = self._rows("10")
        result = fifo_deduct(rows, Decimal("25"), available=lambda r: r.left, deduct=self._take)
        assert result.deducted == Decimal("10")
        assert result.unfulfilled == Decimal("15")

    def test_failure_mid_way_propagates(self, app):
        rows = self._rows("10", "10")

        def flaky(row, amount):
            if row.id == 1:
                raise RuntimeError("disk on fire")
            row.left -= amount

        with pytest.raises(RuntimeError):
            fifo_deduct(rows, Decimal("15"), available=lambda r: r.left, deduct=flaky)
        assert rows[0].left == Decimal("0")


class TestInventoryLots:

    def test_allocation_scenario(self, supplier):
        record = _supply(supplier, "100")
        assert record.total_payment == Decimal("5000.00")

        lot = stock_service.create_inventory_lot("60")
        assert lot.quantity == Decimal("60.00")
        assert lot.inventory_id.startswith("INV-")
        assert _remaining(record.id) == Decimal("40.00")

        with pytest.raises(InsufficientSupply):
            stock_service.create_inventory_lot("50")
        assert _remaining(record.id) == Decimal("40.00")

    def test_second_supply_record_covers_shortfall(self, supplier, other_supplier):
        first = _supply(supplier, "100", minutes_ago=30)
        second = _supply(other_supplier, "20", minutes_ago=10)
        stock_service.create_inventory_lot("60")

        lot = stock_service.create_inventory_lot("50")
        assert _remaining(first.id) == Decimal("0.00")
        assert _remaining(second.id) == Decimal("10.00")

        draws = stock_service.get_lot_movements(lot.id)
        assert [(m.supply_record_id, m.quantity) for m in draws] == [
            (first.id, Decimal("40.00")),
            (second.id, Decimal("10.00")),
        ]

    def test_oldest_record_drained_first(self, supplier):
        newer = _supply(supplier, "50", minutes_ago=5)
        older = _supply(supplier, "50", minutes_ago=60)
        stock_service.create_inventory_lot("30")
        assert _remaining(older.id) == Decimal("20.00")
        assert _remaining(newer.id) == Decimal("50.00")

    def test_rejects_non_positive(self, supplier):
        _supply(supplier, "10")
        with pytest.raises(ValidationError):
            stock_service.create_inventory_lot("0")

    def test_no_supply_at_all(self, db_session):
        with pytest.raises(InsufficientSupply):
            stock_service.create_inventory_lot("1")
        assert db_session.query(InventoryLot).count() == 0

    def test_increase_draws_more(self, supplier):
        record = _supply(supplier, "100")
        lot = stock_service.create_inventory_lot("30")
        updated = stock_service.update_inventory_lot(lot.id, "45")
        assert updated.quantity == Decimal("45.00")
        assert updated.allocated_quantity == Decimal("45.00")
        assert _remaining(record.id) == Decimal("55.00")

    def test_decrease_returns_to_latest_draw_first(self, supplier):
        older = _supply(supplier, "20", minutes_ago=30)
        newer = _supply(supplier, "50", minutes_ago=10)
        lot = stock_service.create_inventory_lot("40")
        assert _remaining(older.id) == Decimal("0.00")
        assert _remaining(newer.id) == Decimal("30.00")

        stock_service.update_inventory_lot(lot.id, "15")
        assert _remaining(newer.id) == Decimal("50.00")
        assert _remaining(older.id) == Decimal("5.00")
        assert stock_service.get_lot_supply_attribution(lot.id) == Decimal("15.00")

    def test_edit_after_window(self, supplier):
        _supply(supplier, "100")
        lot = stock_service.create_inventory_lot("10", now=utcnow() - timedelta(minutes=15))
        with pytest.raises(EditWindowExpired):
            stock_service.update_inventory_lot(lot.id, "20")


class TestProduction:

    def test_consumes_lots_fifo(self, supplier, manager):
        _supply(supplier, "200")
        old_lot = stock_service.create_inventory_lot("30", now=utcnow() - timedelta(minutes=5))
        new_lot = stock_service.create_inventory_lot("40")

        record = stock_service.create_production_record("50", "2026-04-01", actor_user_id=manager.id)
        assert record.production_id.startswith("PROD-")
        assert record.production_date == date(2026, 4, 1)
        assert stock_service.get_inventory_lot(old_lot.id).quantity == Decimal("0.00")
        assert stock_service.get_inventory_lot(new_lot.id).quantity == Decimal("20.00")

        movements = stock_service.get_production_movements(record.id)
        assert {m.movement_type for m in movements} == {MOVEMENT_INVENTORY_TO_PRODUCTION}
        assert sum(m.quantity for m in movements) == Decimal("50.00")

    def test_insufficient_inventory(self, supplier):
        _supply(supplier, "100")
        lot = stock_service.create_inventory_lot("20")
        with pytest.raises(InsufficientInventory):
            stock_service.create_production_record("25")
        assert stock_service.get_inventory_lot(lot.id).quantity == Decimal("20.00")

    def test_bad_date(self, supplier):
        with pytest.raises(ValidationError):
            stock_service.create_production_record("1", "01/04/2026")


class TestConservation:

    def test_quantity_is_conserved(self, db_session, supplier, other_supplier):
        _supply(supplier, "120", minutes_ago=40)
        _supply(other_supplier, "80", minutes_ago=20)
        _supply(supplier, "35.5", minutes_ago=1)

        lot_a = stock_service.create_inventory_lot("150")
        lot_b = stock_service.create_inventory_lot("60.25")
        stock_service.update_inventory_lot(lot_a.id, "140")
        stock_service.create_production_record("100")
        stock_service.create_production_record("70.25")

        delivered = sum(r.quantity_kg for r in db_session.query(SupplyRecord).all())
        remaining = sum(r.remaining_quantity_kg for r in db_session.query(SupplyRecord).all())
        in_lots = sum(lot.allocated_quantity for lot in db_session.query(InventoryLot).all())
        lot_quantity = sum(lot.quantity for lot in db_session.query(InventoryLot).all())
        produced = sum(
            m.quantity for m in db_session.query(StockMovement)
            .filter_by(movement_type=MOVEMENT_INVENTORY_TO_PRODUCTION).all()
        )

        assert delivered == remaining + in_lots
        assert in_lots == lot_quantity + produced
        assert lot_quantity == Decimal("30.00")

        for lot in (lot_a, lot_b):
            drawn = sum(
                m.quantity for m in db_session.query(StockMovement)
                .filter_by(inventory_lot_id=lot.id, movement_type=MOVEMENT_SUPPLY_TO_INVENTORY).all()
            )
            returned = sum(
                (m.quantity for m in db_session.query(StockMovement)
                 .filter_by(inventory_lot_id=lot.id, movement_type=MOVEMENT_INVENTORY_RETURN).all()),
                Decimal("0"),
            )
            assert drawn - returned == stock_service.get_inventory_lot(lot.id).allocated_quantity

    def test_summary(self, supplier):
        _supply(supplier, "100")
        stock_service.create_inventory_lot("60")
        stock_service.create_production_record("10")
        summary = stock_service.get_stock_summary()
        assert summary["available_supply_kg"] == "40.00"
        assert summary["available_inventory"] == "50.00"
        assert summary["total_produced"] == "10.00"
        assert summary["inventory_lot_count"] == 1
