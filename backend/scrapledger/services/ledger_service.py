# Overview: Service-layer operations for the cash ledger; appends entries and folds balances.

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LedgerEntry, Transaction
from ..validation import ValidationError, validate_choice
from .notifications import ledger_entry_appended, notify
from .pricing import derive_totals, signed_total
"""
Cash Ledger Invariants (authoritative)

- Append-only: entries are never updated or deleted (enforced by ORM guards).
- current balance == sum(amount_cents) over all entries. There is no stored
  balance anywhere; every figure below is recomputed from entries on read.
- Corrections are offsetting entries (reverse_entry), never edits.
- At most one transaction_effect per transaction.
- Range filtering is inclusive on occurred_at: start <= occurred_at <= end.
"""


SUBTOTAL_KEYS = (
    "opening",
    "transaction_income",
    "transaction_expense",
    "general_expense",
    "adjustment",
)


class LedgerIntegrityError(RuntimeError):
    """Stored ledger state contradicts an invariant (e.g. an effect on a cancelled sale)."""


def _check_sign(kind: str, amount_cents: int) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")
    if kind == "opening" and amount_cents < 0:
        raise ValidationError("opening amount must be >= 0")
    if kind == "general_expense" and amount_cents >= 0:
        raise ValidationError("general_expense amount must be negative")
    if kind == "adjustment" and amount_cents == 0:
        raise ValidationError("adjustment amount must be non-zero")


def append_entry(
    *,
    kind: str,
    amount_cents: int,
    description: Optional[str] = None,
    employee: Optional[str] = None,
    transaction_id: Optional[str] = None,
    reverses_entry_id: Optional[int] = None,
    occurred_at: Optional[datetime] = None,
    commit: bool = True,
) -> LedgerEntry:
    """
    Append one ledger entry.

    - No updates of existing entries.
    - occurred_at is business time; created_at is system time (db default).
    - commit=False lets a caller write the entry in the same DB transaction
      as the domain change it records.
    """
    validate_choice("kind", kind, ("opening", "general_expense", "adjustment", "transaction_effect"))
    if kind != "transaction_effect":
        _check_sign(kind, amount_cents)

    entry = LedgerEntry(
        kind=kind,
        amount_cents=amount_cents,
        description=description,
        employee=employee,
        transaction_id=transaction_id,
        reverses_entry_id=reverses_entry_id,
        occurred_at=occurred_at,  # if None, db default applies
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing

    if commit:
        db.session.commit()
        notify(ledger_entry_appended, entry_id=entry.id, kind=kind, amount_cents=amount_cents)
    return entry


def record_opening_balance(amount_cents: int, *, employee: str | None = None,
                           description: str = "Opening balance",
                           occurred_at: datetime | None = None) -> LedgerEntry:
    return append_entry(
        kind="opening",
        amount_cents=amount_cents,
        description=description,
        employee=employee,
        occurred_at=occurred_at,
    )


def record_general_expense(amount_cents: int, *, description: str,
                           employee: str | None = None,
                           occurred_at: datetime | None = None) -> LedgerEntry:
    """Expense amounts are entered positive and stored negative."""
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("expense amount_cents must be a positive integer")
    return append_entry(
        kind="general_expense",
        amount_cents=-amount_cents,
        description=description,
        employee=employee,
        occurred_at=occurred_at,
    )


def record_adjustment(amount_cents: int, *, description: str,
                      employee: str | None = None,
                      occurred_at: datetime | None = None) -> LedgerEntry:
    return append_entry(
        kind="adjustment",
        amount_cents=amount_cents,
        description=description,
        employee=employee,
        occurred_at=occurred_at,
    )


def get_transaction_effect(transaction_id: str) -> LedgerEntry | None:
    return (
        db.session.query(LedgerEntry)
        .filter_by(transaction_id=transaction_id, kind="transaction_effect")
        .first()
    )


def post_transaction_effect(txn: Transaction, *, occurred_at: datetime | None = None) -> LedgerEntry:
    """
    Write the cash effect of a completed transaction (no commit).

    The caller (lifecycle_service) commits it together with the status flip.
    Buy sessions pay cash out (negative); sell sessions take cash in (positive).
    """
    if get_transaction_effect(txn.id) is not None:
        raise LedgerIntegrityError(f"Transaction {txn.id} already has a ledger effect")

    amount = signed_total(txn.kind, txn.total_cents)
    label = "Purchase" if txn.kind == "buy" else "Sale"
    return append_entry(
        kind="transaction_effect",
        amount_cents=amount,
        description=f"{label} transaction {txn.id}",
        employee=txn.employee,
        transaction_id=txn.id,
        occurred_at=occurred_at or txn.completed_at,
        commit=False,
    )


def reverse_entry(entry_id: int, *, reason: str, employee: str | None = None) -> LedgerEntry:
    """
    Cancel the effect of an entry by appending its negation as an adjustment.

    The original stays untouched. An entry can be reversed once.
    """
    original = db.session.get(LedgerEntry, entry_id)
    if original is None:
        raise LookupError(f"Ledger entry {entry_id} not found")
    if original.amount_cents == 0:
        raise ValidationError("A zero entry has nothing to reverse")

    already = db.session.query(LedgerEntry.id).filter_by(reverses_entry_id=entry_id).first()
    if already is not None:
        raise ValidationError(f"Ledger entry {entry_id} was already reversed by entry {already[0]}")

    try:
        return append_entry(
            kind="adjustment",
            amount_cents=-original.amount_cents,
            description=f"Reversal of entry {entry_id}: {reason}",
            employee=employee,
            transaction_id=original.transaction_id,
            reverses_entry_id=entry_id,
        )
    except IntegrityError as exc:
        # Lost a race with a concurrent reversal (unique reverses_entry_id)
        db.session.rollback()
        raise ValidationError(f"Ledger entry {entry_id} was already reversed") from exc


# =============================================================================
# Accumulator (reads only)
# =============================================================================

def _in_range(query, start: datetime | None, end: datetime | None):
    if start is not None:
        query = query.filter(LedgerEntry.occurred_at >= start)
    if end is not None:
        query = query.filter(LedgerEntry.occurred_at <= end)
    return query


def balance(start: datetime | None = None, end: datetime | None = None) -> int:
    """Sum of every entry's amount in the (inclusive) range. No caching."""
    query = db.session.query(func.coalesce(func.sum(LedgerEntry.amount_cents), 0))
    return int(_in_range(query, start, end).scalar())


def _bucket_for(kind: str, amount_cents: int) -> str:
    if kind == "transaction_effect":
        return "transaction_income" if amount_cents >= 0 else "transaction_expense"
    return kind


def fold_entries(entries: Iterable) -> dict:
    """
    Pure fold over (kind, amount_cents) pairs or LedgerEntry-like objects.

    Returns the subtotal buckets plus "balance"; the buckets always sum to
    the balance.
    """
    totals = dict.fromkeys(SUBTOTAL_KEYS, 0)
    for entry in entries:
        if isinstance(entry, tuple):
            kind, amount = entry
        else:
            kind, amount = entry.kind, entry.amount_cents
        totals[_bucket_for(kind, amount)] += amount
    totals["balance"] = sum(totals[key] for key in SUBTOTAL_KEYS)
    return totals


def subtotals(start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    Category subtotals over the range, computed by the database.

    transaction_effect entries are split by sign into income (sells) and
    expense (buys). Expense buckets are negative numbers.
    """
    bucket = case(
        (
            and_(LedgerEntry.kind == "transaction_effect", LedgerEntry.amount_cents >= 0),
            "transaction_income",
        ),
        (LedgerEntry.kind == "transaction_effect", "transaction_expense"),
        else_=LedgerEntry.kind,
    ).label("bucket")

    query = db.session.query(bucket, func.sum(LedgerEntry.amount_cents)).group_by(bucket)
    rows = _in_range(query, start, end).all()

    totals = dict.fromkeys(SUBTOTAL_KEYS, 0)
    for name, amount in rows:
        totals[name] += int(amount or 0)
    totals["balance"] = sum(totals[key] for key in SUBTOTAL_KEYS)
    return totals


def list_entries(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    kind: str | None = None,
    limit: int = 100,
) -> list[LedgerEntry]:
    query = db.session.query(LedgerEntry)
    if kind is not None:
        query = query.filter(LedgerEntry.kind == kind)
    query = _in_range(query, start, end)
    return query.order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc()).limit(limit).all()


def verify_ledger() -> list[str]:
    """
    Cross-check the ledger. Returns human-readable problems; empty means consistent.

    - SQL sum agrees with the in-memory fold
    - every completed transaction has exactly one effect matching its
      recomputed signed total
    - no cancelled transaction carries an effect
    """
    problems: list[str] = []

    rows = db.session.query(LedgerEntry.kind, LedgerEntry.amount_cents).all()
    folded = fold_entries(rows)
    summed = balance()
    if folded["balance"] != summed:
        problems.append(f"balance mismatch: fold={folded['balance']} sum={summed}")

    effects: dict[str, list[int]] = {}
    for txn_id, amount in (
        db.session.query(LedgerEntry.transaction_id, LedgerEntry.amount_cents)
        .filter(LedgerEntry.kind == "transaction_effect")
        .all()
    ):
        effects.setdefault(txn_id, []).append(amount)

    completed = db.session.query(Transaction).filter(Transaction.status == "completed").all()
    for txn in completed:
        posted = effects.get(txn.id, [])
        if len(posted) != 1:
            problems.append(f"{txn.id}: expected 1 ledger effect, found {len(posted)}")
            continue
        line_totals = [item.line_total_cents for item in txn.line_items]
        _, total = derive_totals(txn.kind, line_totals, txn.expenses_cents)
        expected = signed_total(txn.kind, total)
        if posted[0] != expected:
            problems.append(f"{txn.id}: ledger effect {posted[0]} != signed total {expected}")

    cancelled_with_effect = (
        db.session.query(Transaction.id)
        .join(LedgerEntry, and_(LedgerEntry.transaction_id == Transaction.id,
                                LedgerEntry.kind == "transaction_effect"))
        .filter(Transaction.status == "cancelled")
        .all()
    )
    for (txn_id,) in cancelled_with_effect:
        problems.append(f"{txn_id}: cancelled transaction has a ledger effect")

    return problems
