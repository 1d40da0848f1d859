# Overview: Pytest coverage for transaction identifier allocation.

import re
import threading
from unittest import mock

from sqlalchemy.exc import OperationalError

from scrapledger.extensions import db
from scrapledger.models import Transaction, TransactionSequence
from scrapledger.services import sequence_service
from scrapledger.services.sequence_service import (
    format_transaction_id,
    next_transaction_id,
    parse_sequence_number,
)


class TestFormatting:
    def test_format_is_zero_padded(self):
        assert format_transaction_id("TXN", 7, 8) == "TXN-00000007"

    def test_parse_respects_width(self):
        assert parse_sequence_number("TXN-00000123", "TXN", 8) == 123
        assert parse_sequence_number("TXN-1718000000000", "TXN", 8) is None
        assert parse_sequence_number("TXN-1718000000000", "TXN") == 1718000000000
        assert parse_sequence_number("OTHER-00000001", "TXN", 8) is None
        assert parse_sequence_number(None, "TXN", 8) is None


class TestNextTransactionId:
    def test_first_id(self, db_session):
        assert next_transaction_id() == "TXN-00000001"
        assert next_transaction_id() == "TXN-00000002"

    def test_continues_from_existing_rows(self, db_session):
        db_session.add(Transaction(id="TXN-00000041", kind="buy", status="in-progress", employee="Ana"))
        # Fallback ids never seed the counter
        db_session.add(Transaction(id="TXN-1718000000000", kind="buy", status="in-progress", employee="Ana"))
        db_session.commit()

        assert next_transaction_id() == "TXN-00000042"
        counter = db_session.query(TransactionSequence).filter_by(prefix="TXN").one()
        assert counter.next_number == 43

    def test_prefixes_are_independent(self, db_session):
        assert next_transaction_id(prefix="SELL") == "SELL-00000001"
        assert next_transaction_id() == "TXN-00000001"

    def test_falls_back_to_timestamp_id(self, db_session):
        failure = OperationalError("UPDATE transaction_sequences", {}, Exception("database is locked"))
        with mock.patch.object(sequence_service, "_allocate_number", side_effect=failure), \
                mock.patch.object(sequence_service.time, "sleep"):
            identifier = next_transaction_id()

        assert re.fullmatch(r"TXN-\d{13}", identifier)


class TestConcurrentAllocation:
    def test_threads_never_share_an_id(self, file_app):
        with file_app.app_context():
            first = next_transaction_id()
            db.session.remove()

        results = [first]
        errors = []
        lock = threading.Lock()
        start = threading.Barrier(6)

        def worker():
            with file_app.app_context():
                start.wait()
                try:
                    for _ in range(5):
                        identifier = next_transaction_id()
                        with lock:
                            results.append(identifier)
                except Exception as exc:  # surfaced below
                    errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert not errors
        assert len(results) == 31
        assert len(set(results)) == 31
        assert sorted(results) == [format_transaction_id("TXN", n, 8) for n in range(1, 32)]
