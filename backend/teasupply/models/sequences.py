from __future__ import annotations

from ..extensions import db
from teasupply.time_utils import utcnow


class IdentifierSequence(db.Model):
    """
    Named atomic counter.

    next_number is the next value to hand out. Allocation is a single
    UPDATE ... SET next_number = next_number + 1, so concurrent callers
    serialize on the row instead of scanning the users table.
    """
    __tablename__ = "identifier_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {"name": self.name, "next_number": self.next_number}
