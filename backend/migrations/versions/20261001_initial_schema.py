"""Initial schema: users, supply ledger, stock pool, payments

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("supplier_id", sa.String(length=16), nullable=True),
        sa.Column("bank_name", sa.String(length=100), nullable=True),
        sa.Column("account_number", sa.String(length=50), nullable=True),
        sa.Column("account_holder_name", sa.String(length=100), nullable=True),
        sa.Column("bank_branch", sa.String(length=100), nullable=True),
        sa.Column("bank_code", sa.String(length=20), nullable=True),
        sa.Column("custom_unit_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("phone"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_supplier_id", "users", ["supplier_id"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])
    op.create_index("ix_users_role_status", "users", ["role", "status"])

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_reason", sa.String(length=255), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"])
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "supply_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("supply_id", sa.String(length=32), nullable=False),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("quantity_kg", sa.Numeric(12, 2), nullable=False),
        sa.Column("remaining_quantity_kg", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_payment", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=16), nullable=False),
        sa.Column("payment_status", sa.String(length=16), nullable=False),
        sa.Column("supply_date", sa.Date(), nullable=False),
        sa.Column("supply_time", sa.Time(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("quantity_kg > 0", name="ck_supply_records_quantity_positive"),
        sa.CheckConstraint(
            "remaining_quantity_kg >= 0 AND remaining_quantity_kg <= quantity_kg",
            name="ck_supply_records_remaining_bounds",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_supply_records_supply_id", "supply_records", ["supply_id"], unique=True)
    op.create_index("ix_supply_records_supplier_id", "supply_records", ["supplier_id"])
    op.create_index("ix_supply_records_payment_status", "supply_records", ["payment_status"])
    op.create_index("ix_supply_records_supply_date", "supply_records", ["supply_date"])
    op.create_index("ix_supply_records_created_at", "supply_records", ["created_at"])
    op.create_index("ix_supply_records_supplier_date", "supply_records", ["supplier_id", "supply_date"])
    op.create_index(
        "ix_supply_records_remaining_created", "supply_records", ["remaining_quantity_kg", "created_at"]
    )

    op.create_table(
        "inventory_lots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("inventory_id", sa.String(length=32), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("allocated_quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_lots_quantity_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_lots_inventory_id", "inventory_lots", ["inventory_id"], unique=True)
    op.create_index("ix_inventory_lots_created_at", "inventory_lots", ["created_at"])
    op.create_index("ix_inventory_lots_quantity_created", "inventory_lots", ["quantity", "created_at"])

    op.create_table(
        "production_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("production_id", sa.String(length=32), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("production_date", sa.Date(), nullable=False),
        sa.Column("production_time", sa.Time(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_production_records_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_production_records_production_id", "production_records", ["production_id"], unique=True
    )
    op.create_index("ix_production_records_production_date", "production_records", ["production_date"])
    op.create_index("ix_production_records_created_at", "production_records", ["created_at"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("movement_type", sa.String(length=32), nullable=False),
        sa.Column("supply_record_id", sa.Integer(), sa.ForeignKey("supply_records.id"), nullable=True),
        sa.Column("inventory_lot_id", sa.Integer(), sa.ForeignKey("inventory_lots.id"), nullable=True),
        sa.Column("production_record_id", sa.Integer(), sa.ForeignKey("production_records.id"), nullable=True),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movements_movement_type", "stock_movements", ["movement_type"])
    op.create_index("ix_stock_movements_supply_record_id", "stock_movements", ["supply_record_id"])
    op.create_index("ix_stock_movements_production_record_id", "stock_movements", ["production_record_id"])
    op.create_index("ix_stock_movements_lot_occurred", "stock_movements", ["inventory_lot_id", "occurred_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.String(length=32), nullable=False),
        sa.Column("supply_record_id", sa.Integer(), sa.ForeignKey("supply_records.id"), nullable=False),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("payment_gateway", sa.String(length=50), nullable=True),
        sa.Column("gateway_session_id", sa.String(length=255), nullable=True),
        sa.Column("gateway_payment_id", sa.String(length=255), nullable=True),
        sa.Column("gateway_response", sa.JSON(), nullable=True),
        sa.Column("payment_status", sa.String(length=16), nullable=False),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("payment_notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payments_payment_id", "payments", ["payment_id"], unique=True)
    op.create_index("ix_payments_supply_record_id", "payments", ["supply_record_id"])
    op.create_index("ix_payments_supplier_id", "payments", ["supplier_id"])
    op.create_index("ix_payments_gateway_session_id", "payments", ["gateway_session_id"])
    op.create_index("ix_payments_payment_status", "payments", ["payment_status"])
    op.create_index("ix_payments_created_at", "payments", ["created_at"])
    op.create_index("ix_payments_supplier_created", "payments", ["supplier_id", "created_at"])
    op.create_index(
        "uq_payments_completed_supply_record",
        "payments",
        ["supply_record_id"],
        unique=True,
        sqlite_where=sa.text("payment_status = 'completed'"),
        postgresql_where=sa.text("payment_status = 'completed'"),
    )

    op.create_table(
        "identifier_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "unit_price_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("old_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("new_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("changed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_unit_price_history_changed_at", "unit_price_history", ["changed_at"])


def downgrade():
    op.drop_table("unit_price_history")
    op.drop_table("app_settings")
    op.drop_table("identifier_sequences")
    op.drop_index("uq_payments_completed_supply_record", table_name="payments")
    op.drop_table("payments")
    op.drop_table("stock_movements")
    op.drop_table("production_records")
    op.drop_table("inventory_lots")
    op.drop_table("supply_records")
    op.drop_table("session_tokens")
    op.drop_table("users")
