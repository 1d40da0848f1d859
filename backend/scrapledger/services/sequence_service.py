# Overview: Service-layer operations for transaction identifiers.

"""
Transaction identifiers are "<PREFIX>-<zero padded number>", e.g. TXN-00000123.

Allocation goes through one counter row per prefix (transaction_sequences),
bumped with a single UPDATE so concurrent callers never read the same value.
The first allocation for a prefix seeds the counter from the highest
well-formed identifier already stored, so numbering continues where an
existing dataset left off.

FALLBACK: if the counter cannot be read or bumped, a timestamp-derived id
("TXN-<epoch millis>") is returned instead of blocking session creation.
Fallback ids are unique but not monotonic or fixed-width. They are skipped
when seeding the counter, and a duplicate on save is still caught by the
repository's duplicate-key retry.
"""

from __future__ import annotations

import re
import time

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Transaction, TransactionSequence
from .concurrency import run_with_retry


def format_transaction_id(prefix: str, number: int, pad: int) -> str:
    return f"{prefix}-{number:0{pad}d}"


def parse_sequence_number(identifier: str, prefix: str, pad: int | None = None) -> int | None:
    """
    Numeric part of a well-formed identifier, or None.

    With pad given, only identifiers of exactly that width count, which keeps
    timestamp fallback ids out of the sequence.
    """
    width = f"{{{pad}}}" if pad else "+"
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d{width})", identifier or "")
    if not match:
        return None
    return int(match.group(1))


def fallback_transaction_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


def _highest_existing_number(prefix: str, pad: int) -> int:
    ids = db.session.query(Transaction.id).filter(Transaction.id.like(f"{prefix}-%")).all()
    numbers = [parse_sequence_number(row[0], prefix, pad) for row in ids]
    return max((n for n in numbers if n is not None), default=0)


def _allocate_number(prefix: str, pad: int) -> int:
    stmt = (
        update(TransactionSequence)
        .where(TransactionSequence.prefix == prefix)
        .values(next_number=TransactionSequence.next_number + 1)
    )

    def _read_allocated() -> int:
        db.session.flush()
        current = (
            db.session.query(TransactionSequence.next_number)
            .filter_by(prefix=prefix)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        number = _read_allocated()
    else:
        seed = _highest_existing_number(prefix, pad) + 1
        db.session.add(TransactionSequence(prefix=prefix, next_number=seed + 1))
        try:
            db.session.flush()
            number = seed
        except IntegrityError:
            # Another caller created the counter row first
            db.session.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            number = _read_allocated()

    db.session.commit()
    return number


def next_transaction_id(prefix: str | None = None, pad: int | None = None) -> str:
    """
    Allocate the next transaction identifier.

    Called once when a buy/sell session starts; the id then stays with the
    session for every save.
    """
    prefix = prefix or current_app.config["TRANSACTION_ID_PREFIX"]
    pad = pad or current_app.config["TRANSACTION_ID_PAD"]

    try:
        number = run_with_retry(lambda: _allocate_number(prefix, pad))
    except SQLAlchemyError:
        db.session.rollback()
        fallback = fallback_transaction_id(prefix)
        current_app.logger.warning(
            "Transaction sequence unavailable; using timestamp id %s", fallback, exc_info=True
        )
        return fallback

    return format_transaction_id(prefix, number, pad)
