from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TRANSACTION_KINDS = ("buy", "sell")
TRANSACTION_STATUSES = ("in-progress", "for-payment", "completed", "cancelled")
TERMINAL_STATUSES = ("completed", "cancelled")
CUSTOMER_KINDS = ("individual", "business", "government")
SESSION_TYPES = ("pickup", "delivery")


class Transaction(db.Model):
    """
    One buy or sell session.

    The id is allocated by the sequence service when the session starts and
    never changes afterwards. Totals are derived from the line items and
    expenses on every full save; see services/pricing.py.

    Status changes beyond in-progress -> for-payment go through
    lifecycle_service.update_status so that completion posts its ledger effect.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("kind IN ('buy', 'sell')", name="ck_transactions_kind"),
        db.CheckConstraint(
            "status IN ('in-progress', 'for-payment', 'completed', 'cancelled')",
            name="ck_transactions_status",
        ),
        db.CheckConstraint(
            "customer_kind IN ('individual', 'business', 'government')",
            name="ck_transactions_customer_kind",
        ),
        db.Index("ix_transactions_status_timestamp", "status", "timestamp"),
    )

    # Human-readable identifier (e.g., "TXN-00000123")
    id = db.Column(db.String(64), primary_key=True)

    kind = db.Column(db.String(8), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="in-progress", index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_kind = db.Column(db.String(16), nullable=False, default="individual")
    employee = db.Column(db.String(255), nullable=False, index=True)
    location = db.Column(db.String(255), nullable=True)

    # pickup | delivery (replaces the old is_pickup / is_delivery pair)
    session_type = db.Column(db.String(16), nullable=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # [{"type": ..., "amount_cents": ..., "description": ...}]
    expense_items = db.Column(db.JSON, nullable=False, default=list)

    # Storage references only, never inline payloads
    session_images = db.Column(db.JSON, nullable=False, default=list)

    # Business time of the session vs system time of the row
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    line_items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        order_by="TransactionItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "kind": self.kind,
            "status": self.status,
            "customer_name": self.customer_name,
            "customer_kind": self.customer_kind,
            "employee": self.employee,
            "location": self.location,
            "session_type": self.session_type,
            "subtotal_cents": self.subtotal_cents,
            "expenses_cents": self.expenses_cents,
            "total_cents": self.total_cents,
            "expense_items": list(self.expense_items or []),
            "session_images": list(self.session_images or []),
            "timestamp": to_utc_z(self.timestamp),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
        if include_items:
            data["line_items"] = [item.to_dict() for item in self.line_items]
        return data


class TransactionItem(db.Model):
    """
    One priced entry within a transaction.

    Quantity is exactly one of weight (kg, continuous) or piece_count
    (discrete). Identity is local to the transaction: (transaction_id, position).
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "position", name="uq_transaction_items_position"),
        db.CheckConstraint(
            "(weight IS NULL AND piece_count IS NOT NULL) OR (weight IS NOT NULL AND piece_count IS NULL)",
            name="ck_transaction_items_single_quantity",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.String(64),
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    weight = db.Column(db.Numeric(12, 3), nullable=True)
    piece_count = db.Column(db.Integer, nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    images = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", back_populates="line_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "position": self.position,
            "name": self.name,
            "category": self.category,
            "weight": str(self.weight) if self.weight is not None else None,
            "piece_count": self.piece_count,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "images": list(self.images or []),
        }


class TransactionSequence(db.Model):
    """
    Single counter row per identifier prefix.

    WHY: reading the highest existing id and adding one races under
    concurrent callers. Bumping one row with UPDATE ... SET n = n + 1
    serializes allocation at the database.
    """
    __tablename__ = "transaction_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
