# Overview: Pure money math for transactions; no database access.

"""
Totals are always derived, never trusted from the client or the stored row:

    line_total = round_half_up(quantity * unit_price)
    subtotal   = sum(line_total)
    buy:  total = subtotal + expenses
    sell: total = subtotal - expenses

The ledger sign of a completed transaction is negative for buys (cash out)
and positive for sells (cash in).
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable


def compute_line_total(
    *,
    weight: Decimal | None,
    piece_count: int | None,
    unit_price_cents: int,
) -> int:
    quantity = Decimal(weight) if weight is not None else Decimal(piece_count or 0)
    return int((quantity * unit_price_cents).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def derive_totals(kind: str, line_totals: Iterable[int], expenses_cents: int) -> tuple[int, int]:
    """Return (subtotal_cents, total_cents) for a transaction kind."""
    subtotal = sum(line_totals)
    if kind == "buy":
        return subtotal, subtotal + expenses_cents
    if kind == "sell":
        return subtotal, subtotal - expenses_cents
    raise ValueError(f"Unknown transaction kind '{kind}'")


def signed_total(kind: str, total_cents: int) -> int:
    return -total_cents if kind == "buy" else total_cents


def sum_expense_items(expense_items: Iterable[dict]) -> int:
    return sum(int(item["amount_cents"]) for item in expense_items)
