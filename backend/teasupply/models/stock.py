from __future__ import annotations

from ..extensions import db
from teasupply.decimal_utils import decimal_to_str
from teasupply.time_utils import to_iso_date, to_iso_time, to_utc_z, utcnow


MOVEMENT_SUPPLY_TO_INVENTORY = "supply_to_inventory"
MOVEMENT_INVENTORY_RETURN = "inventory_return"
MOVEMENT_INVENTORY_TO_PRODUCTION = "inventory_to_production"
VALID_MOVEMENT_TYPES = (
    MOVEMENT_SUPPLY_TO_INVENTORY,
    MOVEMENT_INVENTORY_RETURN,
    MOVEMENT_INVENTORY_TO_PRODUCTION,
)


class InventoryLot(db.Model):
    """
    Processed stock drawn FIFO from supply records.

    quantity is what production may still consume; allocated_quantity is the
    net amount drawn from supply (draws minus returns). Production consumes
    lots FIFO by created_at.
    """
    __tablename__ = "inventory_lots"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_lots_quantity_non_negative"),
        db.Index("ix_inventory_lots_quantity_created", "quantity", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.String(32), nullable=False, unique=True, index=True)

    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    allocated_quantity = db.Column(db.Numeric(12, 2), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.relationship("User")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "quantity": decimal_to_str(self.quantity),
            "allocated_quantity": decimal_to_str(self.allocated_quantity),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ProductionRecord(db.Model):
    """A manufacturing run. Immutable once created."""
    __tablename__ = "production_records"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_production_records_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    production_id = db.Column(db.String(32), nullable=False, unique=True, index=True)

    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    production_date = db.Column(db.Date, nullable=False, index=True)
    production_time = db.Column(db.Time, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    created_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "production_id": self.production_id,
            "quantity": decimal_to_str(self.quantity),
            "production_date": to_iso_date(self.production_date),
            "production_time": to_iso_time(self.production_time),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only attribution of every FIFO take.

    WHY: Lets us prove conservation (a lot's supply draws minus its returns
    equal its allocated_quantity) and tells an inventory lot which supply
    records to hand quantity back to when it is reduced.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.Index("ix_stock_movements_lot_occurred", "inventory_lot_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    supply_record_id = db.Column(db.Integer, db.ForeignKey("supply_records.id"), nullable=True, index=True)
    inventory_lot_id = db.Column(db.Integer, db.ForeignKey("inventory_lots.id"), nullable=True)
    production_record_id = db.Column(db.Integer, db.ForeignKey("production_records.id"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(12, 2), nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "supply_record_id": self.supply_record_id,
            "inventory_lot_id": self.inventory_lot_id,
            "production_record_id": self.production_record_id,
            "quantity": decimal_to_str(self.quantity),
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
