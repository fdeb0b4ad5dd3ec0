from __future__ import annotations

from ..extensions import db
from teasupply.decimal_utils import decimal_to_str
from teasupply.time_utils import to_utc_z, utcnow


ROLE_SUPPLIER = "supplier"
ROLE_STAFF = "staff"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_SUPPLIER, ROLE_STAFF, ROLE_MANAGER, ROLE_ADMIN)

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_PENDING = "pending"
VALID_USER_STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE, STATUS_PENDING)


def mask_account_number(value: str | None) -> str | None:
    """'***' followed by the last four characters; short values are fully masked."""
    if not value:
        return value
    if len(value) <= 4:
        return "***"
    return "***" + value[-4:]


class User(db.Model):
    """
    Accounts for every role. Suppliers additionally carry a business
    supplier_id (SUP + 6 digits) and banking details.

    WHY one table: suppliers log in like everyone else; the supplier
    directory is the subset with role = supplier.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_status", "role", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_SUPPLIER, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_ACTIVE)

    phone = db.Column(db.String(20), nullable=True, unique=True)
    address = db.Column(db.Text, nullable=True)

    # Business identifier, suppliers only
    supplier_id = db.Column(db.String(16), nullable=True, unique=True, index=True)

    # Banking metadata; account_number is masked on all but full-detail reads
    bank_name = db.Column(db.String(100), nullable=True)
    account_number = db.Column(db.String(50), nullable=True)
    account_holder_name = db.Column(db.String(100), nullable=True)
    bank_branch = db.Column(db.String(100), nullable=True)
    bank_code = db.Column(db.String(20), nullable=True)

    # Per-supplier override of the global unit price
    custom_unit_price = db.Column(db.Numeric(12, 2), nullable=True)

    must_change_password = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_login_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def to_dict(self, *, mask_bank_details: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }
        if self.role == ROLE_SUPPLIER:
            data.update({
                "supplier_id": self.supplier_id,
                "address": self.address,
                "bank_name": self.bank_name,
                "account_number": (
                    mask_account_number(self.account_number) if mask_bank_details else self.account_number
                ),
                "account_holder_name": self.account_holder_name,
                "bank_branch": self.bank_branch,
                "bank_code": self.bank_code,
                "custom_unit_price": decimal_to_str(self.custom_unit_price),
            })
        return data


class SessionToken(db.Model):
    """
    Bearer session tokens.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout, 2-hour idle timeout
    - Revocable on logout or account deactivation
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime, nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
