from __future__ import annotations

from ..extensions import db
from teasupply.decimal_utils import decimal_to_str
from teasupply.time_utils import to_utc_z, utcnow


class AppSetting(db.Model):
    """Global key/value settings (values stored as text)."""
    __tablename__ = "app_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), nullable=False, unique=True)
    value = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class UnitPriceHistory(db.Model):
    """
    Append-only audit of unit price changes.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "unit_price_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    old_price = db.Column(db.Numeric(12, 2), nullable=True)
    new_price = db.Column(db.Numeric(12, 2), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    changed_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "old_price": decimal_to_str(self.old_price),
            "new_price": decimal_to_str(self.new_price),
            "changed_by_user_id": self.changed_by_user_id,
            "changed_by_name": self.changed_by.name if self.changed_by else None,
            "reason": self.reason,
            "changed_at": to_utc_z(self.changed_at),
        }
