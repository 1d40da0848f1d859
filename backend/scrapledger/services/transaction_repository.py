# Overview: Idempotent transaction writer; upserts the header and replaces line items as one unit.

"""
Transaction Repository

save() is the correctness-critical write path:

1. validate the payload (ValidationError before any write or upload)
2. join any in-flight save of the same id (one write per id per process)
3. refuse edits of terminal transactions and illegal status moves
4. materialize attachments (failed uploads are dropped, never fatal)
5. under the bounded retry policy, in ONE database transaction:
   - lock and read the row; UPDATE sent fields or INSERT the full record
   - unless this is a draft checkpoint, replace all line items
   - recompute totals from the items that are now stored
6. after commit: refresh employee aggregates, notify listeners (best-effort)

DRAFT CHECKPOINTS: an in-progress save without items never touches stored
items. A fuller save of the same id may already have written them.

DUPLICATE KEYS: two processes inserting the same id race past the existence
check. The loser's IntegrityError rolls back, its partial items are cleared,
and the retry takes the UPDATE path against the winner's row.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Transaction, TransactionItem, TERMINAL_STATUSES
from ..validation import TransactionPayload, clean_transaction_payload
from . import employee_service
from .attachment_service import AttachmentPipeline
from .concurrency import DEFAULT_RETRY_POLICY, InFlightRegistry, RetryPolicy, lock_for_update
from .lifecycle_service import LifecycleError, can_transition
from .notifications import notify, transaction_saved
from .pricing import derive_totals
from .storage_service import build_storage_backend


# Statuses a full save may create a transaction in. Anything else goes
# through lifecycle_service.update_status.
SAVEABLE_STATUSES = ("in-progress", "for-payment")


class SaveFailedError(RuntimeError):
    """Retries exhausted. The caller must not assume the transaction was saved."""


class TransactionRepository:
    def __init__(
        self,
        pipeline: AttachmentPipeline,
        *,
        retry_policy: RetryPolicy | None = None,
        inflight: InFlightRegistry | None = None,
    ):
        self.pipeline = pipeline
        self.retry_policy = (retry_policy or DEFAULT_RETRY_POLICY).with_integrity_retry()
        self.inflight = inflight or InFlightRegistry()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, txn_id: str) -> Transaction | None:
        return db.session.get(Transaction, txn_id)

    def list_items(self, txn_id: str) -> list[TransactionItem]:
        return (
            db.session.query(TransactionItem)
            .filter_by(transaction_id=txn_id)
            .order_by(TransactionItem.position)
            .all()
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, payload) -> dict:
        """
        Persist a transaction. Returns the stored transaction (with items) as a dict.

        Concurrent calls for the same id share the first caller's write and
        its outcome; the later caller's content is not written.
        """
        cleaned = clean_transaction_payload(payload)
        return self.inflight.run(cleaned.id, lambda: self._save(cleaned))

    def delete(self, txn_id: str) -> bool:
        """Delete a transaction and its items. Completed transactions are kept for the ledger."""
        txn = lock_for_update(db.session.query(Transaction).filter_by(id=txn_id)).first()
        if txn is None:
            return False
        if txn.status == "completed":
            db.session.rollback()
            raise LifecycleError(f"Transaction {txn_id} is completed and cannot be deleted")
        db.session.delete(txn)
        db.session.commit()
        current_app.logger.info("Deleted transaction %s", txn_id)
        return True

    def _check_stored_state(self, cleaned: TransactionPayload, stored) -> None:
        if stored is None:
            if cleaned.status not in SAVEABLE_STATUSES:
                raise LifecycleError(
                    f"A new transaction must start as one of: {', '.join(SAVEABLE_STATUSES)}"
                )
            return

        status, kind = stored
        if status in TERMINAL_STATUSES:
            raise LifecycleError(f"Transaction {cleaned.id} is {status} and can no longer be edited")
        if kind != cleaned.kind:
            raise LifecycleError(f"Transaction {cleaned.id} is a {kind} session; kind cannot change")
        if cleaned.status != status and (
            cleaned.status not in SAVEABLE_STATUSES or not can_transition(status, cleaned.status)
        ):
            raise LifecycleError(
                f"Cannot move transaction {cleaned.id} from {status} to {cleaned.status} on save"
            )

    def _stored_state(self, txn_id: str):
        return db.session.query(Transaction.status, Transaction.kind).filter_by(id=txn_id).first()

    def _materialize(self, cleaned: TransactionPayload):
        session_refs = None
        if cleaned.session_images is not None:
            session_refs = self.pipeline.materialize(
                cleaned.session_images, owner=cleaned.id, slot="session"
            )

        items = None
        if cleaned.line_items is not None and not cleaned.is_draft_checkpoint:
            items = []
            for raw in cleaned.line_items:
                item = dict(raw)
                item["images"] = self.pipeline.materialize(
                    raw["images"], owner=f"{cleaned.id}-{raw['position']}", slot="item"
                )
                items.append(item)
        return session_refs, items

    def _write(self, cleaned: TransactionPayload, session_refs, items) -> Transaction:
        txn = (
            lock_for_update(db.session.query(Transaction).filter_by(id=cleaned.id))
            .populate_existing()
            .first()
        )

        if txn is None:
            self._check_stored_state(cleaned, None)
            txn = Transaction(**cleaned.header)
            if session_refs is not None:
                txn.session_images = session_refs
            db.session.add(txn)
            db.session.flush()
        else:
            self._check_stored_state(cleaned, (txn.status, txn.kind))
            # Partial update: only what the caller sent
            for key, value in cleaned.header.items():
                if key != "id":
                    setattr(txn, key, value)
            if session_refs is not None:
                txn.session_images = session_refs

        if items is not None:
            db.session.expire(txn, ["line_items"])
            db.session.query(TransactionItem).filter_by(transaction_id=cleaned.id).delete(
                synchronize_session="fetch"
            )
            db.session.add_all(TransactionItem(transaction_id=cleaned.id, **item) for item in items)
            db.session.flush()
            db.session.expire(txn, ["line_items"])
            line_totals = [item["line_total_cents"] for item in items]
        else:
            line_totals = [
                total for (total,) in db.session.query(TransactionItem.line_total_cents)
                .filter_by(transaction_id=cleaned.id)
            ]

        txn.subtotal_cents, txn.total_cents = derive_totals(
            txn.kind, line_totals, txn.expenses_cents or 0
        )
        db.session.commit()
        return txn

    def _save(self, cleaned: TransactionPayload) -> dict:
        # Fail fast before uploading anything
        self._check_stored_state(cleaned, self._stored_state(cleaned.id))

        session_refs, items = self._materialize(cleaned)

        def _discard_partial_items(attempt: int, exc: BaseException) -> None:
            if items is None or not isinstance(exc, IntegrityError):
                return
            db.session.query(TransactionItem).filter_by(transaction_id=cleaned.id).delete(
                synchronize_session=False
            )
            db.session.commit()

        try:
            txn = self.retry_policy.run(
                lambda: self._write(cleaned, session_refs, items),
                on_retry=_discard_partial_items,
            )
        except LifecycleError:
            db.session.rollback()
            raise
        except (IntegrityError, OperationalError, StaleDataError) as exc:
            current_app.logger.error(
                "Saving transaction %s failed after %d attempts: %s",
                cleaned.id, self.retry_policy.attempts, exc,
            )
            raise SaveFailedError(f"Could not save transaction {cleaned.id}") from exc

        snapshot = txn.to_dict(include_items=True)
        current_app.logger.info(
            "Saved transaction %s (%s, %d items, total %d)",
            cleaned.id, snapshot["status"], len(snapshot["line_items"]), snapshot["total_cents"],
        )

        try:
            employee_service.refresh_sessions_handled(snapshot["employee"])
        except Exception:
            db.session.rollback()
            current_app.logger.exception(
                "Refreshing sessions handled for %s failed", snapshot["employee"]
            )

        notify(transaction_saved, self, transaction_id=cleaned.id, status=snapshot["status"])
        return snapshot


def build_repository(config) -> TransactionRepository:
    """Wire a repository from app config (storage backend, upload pool, retry, dedup TTL)."""
    pipeline = AttachmentPipeline(
        build_storage_backend(config),
        timeout=float(config.get("ATTACHMENT_UPLOAD_TIMEOUT", 10.0)),
        max_workers=int(config.get("ATTACHMENT_MAX_WORKERS", 4)),
    )
    policy = RetryPolicy(
        attempts=int(config.get("SAVE_RETRY_ATTEMPTS", 3)),
        backoff_base=float(config.get("SAVE_RETRY_BACKOFF", 0.1)),
    )
    return TransactionRepository(
        pipeline,
        retry_policy=policy,
        inflight=InFlightRegistry(ttl=float(config.get("INFLIGHT_SAVE_TTL", 30.0))),
    )


def get_repository() -> TransactionRepository:
    return current_app.extensions["scrapledger.repository"]
