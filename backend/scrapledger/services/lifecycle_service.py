# Overview: Service-layer operations for the transaction lifecycle; status moves and their side effects.

"""
Transaction State Machine

    in-progress -> for-payment -> completed
          |             |
          +------> cancelled <-+       (from any non-terminal state)
          |
          +------> completed           (walk-in settlement, needs line items)

in-progress:  session being built; items may be incomplete or absent (draft)
for-payment:  items finalized, awaiting settlement; only a settlement role
              (SETTLEMENT_ROLES, "owner" by default) may complete it
completed:    terminal; sets completed_at and posts exactly ONE
              transaction_effect ledger entry for the signed total
cancelled:    terminal; never posts. An existing effect on a transaction
              being cancelled is an integrity violation and is raised.

RULES:
1. Terminal states never move again. Re-sending the current status is a
   no-op (this is what makes a retried "complete" safe).
2. The ledger effect and the status flip commit together.
3. A racing second completion hits the one-effect-per-transaction unique
   index, rolls back, retries, and then sees the completed row as a no-op.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Transaction, TRANSACTION_STATUSES
from ..time_utils import normalize_datetime, utcnow
from ..validation import ValidationError
from . import ledger_service
from .concurrency import RetryPolicy, lock_for_update
from .notifications import ledger_entry_appended, notify, transaction_status_changed
from .pricing import derive_totals


VALID_TRANSITIONS = {
    ("in-progress", "for-payment"),
    ("in-progress", "completed"),
    ("in-progress", "cancelled"),
    ("for-payment", "completed"),
    ("for-payment", "cancelled"),
}

# Transitions gated by the actor's role
SETTLEMENT_TRANSITIONS = {("for-payment", "completed")}


class LifecycleError(ValidationError):
    """
    Raised when an invalid lifecycle transition is attempted.

    This is a domain error, not a technical error.
    """
    pass


class TransitionNotAuthorized(LifecycleError):
    pass


class TransactionNotFound(LookupError):
    pass


def validate_status(status: str) -> None:
    if status not in TRANSACTION_STATUSES:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(TRANSACTION_STATUSES)}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check if a state transition is valid according to the lifecycle rules.

    Same-status is reported as allowed; update_status treats it as a no-op.
    """
    validate_status(from_status)
    validate_status(to_status)

    if from_status == to_status:
        return True
    return (from_status, to_status) in VALID_TRANSITIONS


def _settlement_roles() -> tuple[str, ...]:
    roles = current_app.config.get("SETTLEMENT_ROLES") or ("owner",)
    if isinstance(roles, str):
        roles = tuple(r.strip() for r in roles.split(",") if r.strip())
    return tuple(roles)


def _retry_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=int(current_app.config.get("SAVE_RETRY_ATTEMPTS", 3)),
        backoff_base=float(current_app.config.get("SAVE_RETRY_BACKOFF", 0.1)),
    ).with_integrity_retry()


def _complete(txn: Transaction, completed_at: datetime | None):
    """Recompute totals from stored items, stamp completion, stage the ledger effect."""
    subtotal, total = derive_totals(
        txn.kind,
        [item.line_total_cents for item in txn.line_items],
        txn.expenses_cents or 0,
    )
    if (subtotal, total) != (txn.subtotal_cents, txn.total_cents):
        current_app.logger.warning(
            "Transaction %s had stale totals (%s/%s); recomputed as %s/%s",
            txn.id, txn.subtotal_cents, txn.total_cents, subtotal, total,
        )
        txn.subtotal_cents = subtotal
        txn.total_cents = total

    txn.completed_at = normalize_datetime(completed_at) if completed_at else utcnow()
    return ledger_service.post_transaction_effect(txn)


def update_status(
    txn_id: str,
    new_status: str,
    *,
    completed_at: datetime | None = None,
    actor_role: str | None = None,
) -> Transaction:
    """
    Move a transaction to new_status. Never touches line items.

    Raises:
        TransactionNotFound: no such transaction
        LifecycleError: illegal transition (incl. completing an empty in-progress session)
        TransitionNotAuthorized: settlement attempted without a settlement role
        LedgerIntegrityError: cancelling a transaction that already has a ledger effect
    """
    validate_status(new_status)
    roles = _settlement_roles()

    def _op():
        txn = (
            lock_for_update(db.session.query(Transaction).filter_by(id=txn_id))
            .populate_existing()
            .first()
        )
        if txn is None:
            raise TransactionNotFound(f"Transaction {txn_id} not found")

        previous = txn.status
        if previous == new_status:
            return txn, previous, None

        if not can_transition(previous, new_status):
            raise LifecycleError(f"Cannot move transaction {txn_id} from {previous} to {new_status}")

        if (previous, new_status) in SETTLEMENT_TRANSITIONS and actor_role not in roles:
            raise TransitionNotAuthorized(
                f"Completing a for-payment transaction requires one of: {', '.join(roles)}"
            )

        entry = None
        if new_status == "completed":
            if previous == "in-progress" and not txn.line_items:
                raise LifecycleError(f"Transaction {txn_id} has no line items and cannot be completed")
            entry = _complete(txn, completed_at)
        elif new_status == "cancelled":
            if ledger_service.get_transaction_effect(txn_id) is not None:
                raise ledger_service.LedgerIntegrityError(
                    f"Transaction {txn_id} already has a ledger effect and cannot be cancelled"
                )

        txn.status = new_status
        db.session.commit()
        return txn, previous, entry

    try:
        txn, previous, entry = _retry_policy().run(_op)
    except (ValidationError, LookupError, ledger_service.LedgerIntegrityError):
        db.session.rollback()
        raise

    if previous == new_status:
        current_app.logger.info("Transaction %s already %s; nothing to do", txn_id, new_status)
        return txn

    current_app.logger.info("Transaction %s moved %s -> %s", txn_id, previous, new_status)
    notify(transaction_status_changed, transaction_id=txn_id, previous=previous, status=new_status)
    if entry is not None:
        notify(
            ledger_entry_appended,
            entry_id=entry.id,
            kind=entry.kind,
            amount_cents=entry.amount_cents,
        )
    return txn
