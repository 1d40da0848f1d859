# Overview: Pytest coverage for the cash ledger (append-only entries, folded balances).

import random
import threading
from datetime import datetime
from unittest import mock

import pytest

from scrapledger.extensions import db
from scrapledger.models import LedgerEntry, LedgerImmutableError, Transaction
from scrapledger.services import ledger_service
from scrapledger.services.lifecycle_service import update_status
from scrapledger.services.transaction_repository import get_repository
from scrapledger.validation import ValidationError


MAY_1 = datetime(2024, 5, 1, 8, 0)
MAY_2 = datetime(2024, 5, 2, 8, 0)
MAY_3 = datetime(2024, 5, 3, 8, 0)


class TestAppends:
    def test_opening_balance(self, db_session):
        entry = ledger_service.record_opening_balance(500000, employee="Ana Cruz")
        assert entry.kind == "opening"
        assert entry.amount_cents == 500000
        assert ledger_service.balance() == 500000

    def test_negative_opening_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.record_opening_balance(-1)

    def test_general_expense_is_stored_negative(self, db_session):
        entry = ledger_service.record_general_expense(2500, description="Electricity")
        assert entry.amount_cents == -2500

    @pytest.mark.parametrize("amount", [0, -100, 12.5, True, None])
    def test_general_expense_needs_positive_integer(self, db_session, amount):
        with pytest.raises(ValidationError):
            ledger_service.record_general_expense(amount, description="Bad")

    def test_zero_adjustment_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.record_adjustment(0, description="Nothing")

    def test_unknown_kind_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.append_entry(kind="balance", amount_cents=10)


class TestImmutability:
    def test_update_is_rejected(self, db_session):
        entry = ledger_service.record_opening_balance(1000)
        entry.amount_cents = 2000
        with pytest.raises(LedgerImmutableError):
            db.session.commit()
        db.session.rollback()
        assert ledger_service.balance() == 1000

    def test_delete_is_rejected(self, db_session):
        entry = ledger_service.record_opening_balance(1000)
        db.session.delete(entry)
        with pytest.raises(LedgerImmutableError):
            db.session.commit()
        db.session.rollback()
        assert ledger_service.balance() == 1000


class TestReversal:
    def test_reversal_appends_negation(self, db_session):
        expense = ledger_service.record_general_expense(2500, description="Wrong supplier")
        reversal = ledger_service.reverse_entry(expense.id, reason="entered twice")

        assert reversal.kind == "adjustment"
        assert reversal.amount_cents == 2500
        assert reversal.reverses_entry_id == expense.id
        assert ledger_service.balance() == 0
        # Original untouched
        assert db.session.get(LedgerEntry, expense.id).amount_cents == -2500

    def test_entry_reversed_once(self, db_session):
        entry = ledger_service.record_adjustment(700, description="Found cash")
        ledger_service.reverse_entry(entry.id, reason="miscounted")
        with pytest.raises(ValidationError, match="already reversed"):
            ledger_service.reverse_entry(entry.id, reason="again")

    def test_missing_entry(self, db_session):
        with pytest.raises(LookupError):
            ledger_service.reverse_entry(12345, reason="nope")

    def test_concurrent_reversals_append_once(self, file_app):
        """Both callers pass the already-reversed check; the unique index lets one through."""
        with file_app.app_context():
            entry_id = ledger_service.record_adjustment(500, description="Found cash").id
            db.session.remove()

        real_append = ledger_service.append_entry
        both_checked = threading.Barrier(2)
        reversed_ids = []
        errors = []

        def gated_append(**kwargs):
            both_checked.wait(10)
            return real_append(**kwargs)

        def worker():
            with file_app.app_context():
                try:
                    reversed_ids.append(ledger_service.reverse_entry(entry_id, reason="miscounted").id)
                except ValidationError as exc:
                    errors.append(exc)
                finally:
                    db.session.remove()

        with mock.patch.object(ledger_service, "append_entry", side_effect=gated_append):
            threads = [threading.Thread(target=worker) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(30)

        assert len(reversed_ids) == 1
        assert len(errors) == 1
        assert "already reversed" in str(errors[0])

        with file_app.app_context():
            reversals = db.session.query(LedgerEntry).filter_by(reverses_entry_id=entry_id).count()
            assert reversals == 1
            assert ledger_service.balance() == 0
            db.session.remove()


class TestAccumulator:
    def _seed(self):
        ledger_service.record_opening_balance(100000, occurred_at=MAY_1)
        ledger_service.record_general_expense(3000, description="Fuel", occurred_at=MAY_2)
        ledger_service.record_adjustment(-500, description="Short", occurred_at=MAY_3)

    def test_balance_is_sum(self, db_session):
        self._seed()
        assert ledger_service.balance() == 100000 - 3000 - 500

    def test_range_is_inclusive(self, db_session):
        self._seed()
        assert ledger_service.balance(start=MAY_2, end=MAY_2) == -3000
        assert ledger_service.balance(start=MAY_2) == -3500
        assert ledger_service.balance(end=MAY_2) == 97000

    def test_subtotals_split_effects_by_sign(self, db_session, payload_factory):
        self._seed()
        repo = get_repository()
        repo.save(payload_factory("TXN-00000007"))
        repo.save(payload_factory("TXN-00000008", kind="sell"))
        update_status("TXN-00000007", "completed", actor_role="owner")
        update_status("TXN-00000008", "completed", actor_role="owner")

        totals = ledger_service.subtotals()

        assert totals == {
            "opening": 100000,
            "transaction_income": 29000,
            "transaction_expense": -31000,
            "general_expense": -3000,
            "adjustment": -500,
            "balance": 100000 + 29000 - 31000 - 3000 - 500,
        }
        assert totals["balance"] == ledger_service.balance()

    def test_empty_ledger(self, db_session):
        assert ledger_service.balance() == 0
        assert ledger_service.subtotals()["balance"] == 0

    def test_fold_matches_sql_over_random_appends(self, db_session):
        rng = random.Random(7)
        expected = 0
        for _ in range(40):
            choice = rng.choice(["opening", "expense", "adjustment", "reverse"])
            if choice == "opening":
                amount = rng.randint(0, 50000)
                ledger_service.record_opening_balance(amount)
                expected += amount
            elif choice == "expense":
                amount = rng.randint(1, 5000)
                ledger_service.record_general_expense(amount, description="misc")
                expected -= amount
            elif choice == "adjustment":
                amount = rng.choice([-1, 1]) * rng.randint(1, 5000)
                ledger_service.record_adjustment(amount, description="count")
                expected += amount
            else:
                candidates = (
                    db.session.query(LedgerEntry)
                    .filter(LedgerEntry.amount_cents != 0, LedgerEntry.reverses_entry_id.is_(None))
                    .all()
                )
                reversed_ids = {
                    row[0] for row in db.session.query(LedgerEntry.reverses_entry_id)
                    .filter(LedgerEntry.reverses_entry_id.isnot(None))
                }
                candidates = [c for c in candidates if c.id not in reversed_ids]
                if candidates:
                    target = rng.choice(candidates)
                    ledger_service.reverse_entry(target.id, reason="test")
                    expected -= target.amount_cents

            assert ledger_service.balance() == expected

        entries = db.session.query(LedgerEntry).all()
        folded = ledger_service.fold_entries(entries)
        assert folded["balance"] == expected
        assert folded == ledger_service.subtotals()

    def test_fold_accepts_pairs(self):
        totals = ledger_service.fold_entries([
            ("opening", 1000),
            ("transaction_effect", -400),
            ("transaction_effect", 250),
            ("general_expense", -50),
        ])
        assert totals["transaction_expense"] == -400
        assert totals["transaction_income"] == 250
        assert totals["balance"] == 800


class TestVerifyLedger:
    def test_consistent_ledger(self, db_session, payload_factory):
        get_repository().save(payload_factory())
        update_status("TXN-00000007", "completed", actor_role="owner")
        assert ledger_service.verify_ledger() == []

    def test_missing_effect_reported(self, db_session, payload_factory):
        get_repository().save(payload_factory())
        txn = db.session.get(Transaction, "TXN-00000007")
        txn.status = "completed"
        db.session.commit()

        problems = ledger_service.verify_ledger()
        assert problems == ["TXN-00000007: expected 1 ledger effect, found 0"]

    def test_wrong_amount_reported(self, db_session, payload_factory):
        get_repository().save(payload_factory())
        txn = db.session.get(Transaction, "TXN-00000007")
        txn.status = "completed"
        db.session.add(LedgerEntry(kind="transaction_effect", amount_cents=-1, transaction_id=txn.id))
        db.session.commit()

        problems = ledger_service.verify_ledger()
        assert problems == ["TXN-00000007: ledger effect -1 != signed total -31000"]
