from __future__ import annotations

from ..extensions import db
from teasupply.decimal_utils import decimal_to_str
from teasupply.time_utils import to_iso_date, to_iso_time, to_utc_z, utcnow


class SupplyRecord(db.Model):
    """
    A delivery of raw tea leaf from one supplier.

    quantity_kg is what was delivered; remaining_quantity_kg is what the
    stock pool may still draw into inventory. The difference is the amount
    already allocated, which is never handed back except by an inventory
    lot returning its own draw.

    WHY version_id: FIFO deductions decrement remaining_quantity_kg from
    concurrent requests. The mapper's version check turns a lost update
    into StaleDataError, which the service layer retries.
    """
    __tablename__ = "supply_records"
    __table_args__ = (
        db.CheckConstraint("quantity_kg > 0", name="ck_supply_records_quantity_positive"),
        db.CheckConstraint(
            "remaining_quantity_kg >= 0 AND remaining_quantity_kg <= quantity_kg",
            name="ck_supply_records_remaining_bounds",
        ),
        db.Index("ix_supply_records_supplier_date", "supplier_id", "supply_date"),
        db.Index("ix_supply_records_remaining_created", "remaining_quantity_kg", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supply_id = db.Column(db.String(32), nullable=False, unique=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    quantity_kg = db.Column(db.Numeric(12, 2), nullable=False)
    remaining_quantity_kg = db.Column(db.Numeric(12, 2), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_payment = db.Column(db.Numeric(12, 2), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, default="monthly")  # spot, monthly
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)  # unpaid, paid

    supply_date = db.Column(db.Date, nullable=False, index=True)
    supply_time = db.Column(db.Time, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("User", backref=db.backref("supply_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def allocated_quantity_kg(self):
        return self.quantity_kg - self.remaining_quantity_kg

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supply_id": self.supply_id,
            "supplier_id": self.supplier_id,
            "quantity_kg": decimal_to_str(self.quantity_kg),
            "remaining_quantity_kg": decimal_to_str(self.remaining_quantity_kg),
            "unit_price": decimal_to_str(self.unit_price),
            "total_payment": decimal_to_str(self.total_payment),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "supply_date": to_iso_date(self.supply_date),
            "supply_time": to_iso_time(self.supply_time),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Payment(db.Model):
    """
    An explicit payment transaction against exactly one supply record.

    A supply record may carry several failed/cancelled attempts but at most
    one completed payment; the partial unique index enforces that at the
    storage layer.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        db.Index(
            "uq_payments_completed_supply_record",
            "supply_record_id",
            unique=True,
            sqlite_where=db.text("payment_status = 'completed'"),
            postgresql_where=db.text("payment_status = 'completed'"),
        ),
        db.Index("ix_payments_supplier_created", "supplier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.String(32), nullable=False, unique=True, index=True)

    supply_record_id = db.Column(db.Integer, db.ForeignKey("supply_records.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="LKR")

    # spot, monthly, gateway, bank_transfer, cash, cheque
    payment_method = db.Column(db.String(20), nullable=False)

    # Opaque provider metadata
    payment_gateway = db.Column(db.String(50), nullable=True)
    gateway_session_id = db.Column(db.String(255), nullable=True, index=True)
    gateway_payment_id = db.Column(db.String(255), nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)

    # pending, completed, failed, cancelled, refunded
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_date = db.Column(db.DateTime, nullable=True)
    payment_notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supply_record = db.relationship("SupplyRecord", backref=db.backref("payments", lazy=True))
    supplier = db.relationship("User", foreign_keys=[supplier_id])
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "supply_record_id": self.supply_record_id,
            "supplier_id": self.supplier_id,
            "amount": decimal_to_str(self.amount),
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_gateway": self.payment_gateway,
            "gateway_session_id": self.gateway_session_id,
            "gateway_payment_id": self.gateway_payment_id,
            "payment_status": self.payment_status,
            "payment_date": to_utc_z(self.payment_date) if self.payment_date else None,
            "payment_notes": self.payment_notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
