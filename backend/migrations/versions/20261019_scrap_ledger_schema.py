"""Scrap ledger schema: transactions, line items, id sequences, cash ledger, employees

Revision ID: 20261019_scrap_ledger_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_scrap_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_kind", sa.String(length=16), nullable=False, server_default="individual"),
        sa.Column("employee", sa.String(length=255), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("session_type", sa.String(length=16), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expenses_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expense_items", sa.JSON(), nullable=False),
        sa.Column("session_images", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("kind IN ('buy', 'sell')", name="ck_transactions_kind"),
        sa.CheckConstraint(
            "status IN ('in-progress', 'for-payment', 'completed', 'cancelled')",
            name="ck_transactions_status",
        ),
        sa.CheckConstraint(
            "customer_kind IN ('individual', 'business', 'government')",
            name="ck_transactions_customer_kind",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transactions_kind", "transactions", ["kind"], unique=False)
    op.create_index("ix_transactions_status", "transactions", ["status"], unique=False)
    op.create_index("ix_transactions_employee", "transactions", ["employee"], unique=False)
    op.create_index("ix_transactions_status_timestamp", "transactions", ["status", "timestamp"], unique=False)

    op.create_table(
        "transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("weight", sa.Numeric(precision=12, scale=3), nullable=True),
        sa.Column("piece_count", sa.Integer(), nullable=True),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint(
            "(weight IS NULL AND piece_count IS NOT NULL) OR (weight IS NOT NULL AND piece_count IS NULL)",
            name="ck_transaction_items_single_quantity",
        ),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "position", name="uq_transaction_items_position"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transaction_items_transaction_id", "transaction_items", ["transaction_id"], unique=False)

    op.create_table(
        "transaction_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prefix", sa.String(length=16), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("employee", sa.String(length=255), nullable=True),
        sa.Column("transaction_id", sa.String(length=64), nullable=True),
        sa.Column("reverses_entry_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint(
            "kind IN ('opening', 'transaction_effect', 'general_expense', 'adjustment')",
            name="ck_ledger_entries_kind",
        ),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["reverses_entry_id"], ["ledger_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_entries_kind", "ledger_entries", ["kind"], unique=False)
    op.create_index("ix_ledger_entries_transaction_id", "ledger_entries", ["transaction_id"], unique=False)
    # An entry can be reversed once
    op.create_index("ix_ledger_entries_reverses_entry_id", "ledger_entries", ["reverses_entry_id"], unique=True)
    op.create_index("ix_ledger_entries_occurred_at", "ledger_entries", ["occurred_at"], unique=False)
    op.create_index("ix_ledger_entries_kind_occurred", "ledger_entries", ["kind", "occurred_at"], unique=False)
    # At most one transaction_effect per transaction
    op.create_index(
        "uq_ledger_entries_transaction_effect",
        "ledger_entries",
        ["transaction_id"],
        unique=True,
        sqlite_where=sa.text("kind = 'transaction_effect'"),
        postgresql_where=sa.text("kind = 'transaction_effect'"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="employee"),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("weekly_salary_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sessions_handled", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_advances_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "cash_advances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("status IN ('pending', 'active', 'deducted')", name="ck_cash_advances_status"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_advances_employee_id", "cash_advances", ["employee_id"], unique=False)
    op.create_index("ix_cash_advances_status", "cash_advances", ["status"], unique=False)


def downgrade():
    op.drop_index("ix_cash_advances_status", table_name="cash_advances")
    op.drop_index("ix_cash_advances_employee_id", table_name="cash_advances")
    op.drop_table("cash_advances")
    op.drop_table("employees")

    op.drop_index("uq_ledger_entries_transaction_effect", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_kind_occurred", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_occurred_at", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_reverses_entry_id", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_transaction_id", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_kind", table_name="ledger_entries")
    op.drop_table("ledger_entries")

    op.drop_table("transaction_sequences")

    op.drop_index("ix_transaction_items_transaction_id", table_name="transaction_items")
    op.drop_table("transaction_items")

    op.drop_index("ix_transactions_status_timestamp", table_name="transactions")
    op.drop_index("ix_transactions_employee", table_name="transactions")
    op.drop_index("ix_transactions_status", table_name="transactions")
    op.drop_index("ix_transactions_kind", table_name="transactions")
    op.drop_table("transactions")
