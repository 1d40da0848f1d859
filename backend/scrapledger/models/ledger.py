from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z


LEDGER_KINDS = ("opening", "transaction_effect", "general_expense", "adjustment")


class LedgerImmutableError(RuntimeError):
    """Raised when a flush would update or delete an existing ledger entry."""


class LedgerEntry(db.Model):
    """
    One atomic balance-affecting fact.

    Append-only: rows are never updated or deleted. A correction is a new
    offsetting entry (see ledger_service.reverse_entry).

    SIGN CONVENTION (enforced by ledger_service):
    - opening:            >= 0
    - transaction_effect: buy < 0, sell > 0 (zero allowed for free sessions)
    - general_expense:    < 0
    - adjustment:         != 0

    transaction_id is a lookup back-reference, not ownership. At most one
    transaction_effect exists per transaction (partial unique index).
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint(
            "kind IN ('opening', 'transaction_effect', 'general_expense', 'adjustment')",
            name="ck_ledger_entries_kind",
        ),
        db.Index("ix_ledger_entries_kind_occurred", "kind", "occurred_at"),
        db.Index(
            "uq_ledger_entries_transaction_effect",
            "transaction_id",
            unique=True,
            sqlite_where=db.text("kind = 'transaction_effect'"),
            postgresql_where=db.text("kind = 'transaction_effect'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    kind = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=True)
    employee = db.Column(db.String(255), nullable=True)

    transaction_id = db.Column(db.String(64), db.ForeignKey("transactions.id"), nullable=True, index=True)
    # One reversal per entry
    reverses_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True, unique=True, index=True)

    # Business vs system time; range filters use occurred_at
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "employee": self.employee,
            "transaction_id": self.transaction_id,
            "reverses_entry_id": self.reverses_entry_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(LedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is immutable; append an offsetting entry instead")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} cannot be deleted; append an offsetting entry instead")
