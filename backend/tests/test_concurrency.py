# Overview: Pytest coverage for retry policy and the in-flight save registry.

import threading
import time
from unittest import mock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from scrapledger.services.concurrency import InFlightRegistry, RetryPolicy


def _operational():
    return OperationalError("UPDATE x", {}, Exception("database is locked"))


def _integrity():
    return IntegrityError("INSERT x", {}, Exception("UNIQUE constraint failed"))


class TestRetryPolicy:
    def test_succeeds_after_transient_failures(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise _operational()
            return "ok"

        with mock.patch("scrapledger.services.concurrency.time.sleep") as sleep:
            assert RetryPolicy(attempts=3, backoff_base=0.1).run(op) == "ok"

        assert len(calls) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.2]

    def test_reraises_after_exhaustion(self, db_session):
        policy = RetryPolicy(attempts=2, backoff_base=0.0)
        op = mock.Mock(side_effect=_operational())
        with pytest.raises(OperationalError):
            policy.run(op)
        assert op.call_count == 2

    def test_integrity_errors_only_retried_when_enabled(self, db_session):
        op = mock.Mock(side_effect=[_integrity(), "ok"])
        with pytest.raises(IntegrityError):
            RetryPolicy(backoff_base=0.0).run(op)

        op = mock.Mock(side_effect=[_integrity(), "ok"])
        assert RetryPolicy(backoff_base=0.0).with_integrity_retry().run(op) == "ok"

    def test_on_retry_sees_each_failure(self, db_session):
        seen = []
        op = mock.Mock(side_effect=[_integrity(), _operational(), "ok"])
        policy = RetryPolicy(attempts=3, backoff_base=0.0).with_integrity_retry()

        policy.run(op, on_retry=lambda attempt, exc: seen.append((attempt, type(exc))))

        assert seen == [(0, IntegrityError), (1, OperationalError)]

    def test_other_errors_are_not_retried(self, db_session):
        op = mock.Mock(side_effect=ValueError("bad input"))
        with pytest.raises(ValueError):
            RetryPolicy(backoff_base=0.0).run(op)
        assert op.call_count == 1


class TestInFlightRegistry:
    def test_second_caller_shares_first_result(self):
        registry = InFlightRegistry(ttl=5.0)
        release = threading.Event()
        calls = []
        results = {}

        def slow():
            calls.append("first")
            release.wait(5)
            return "first-result"

        def fast():
            calls.append("second")
            return "second-result"

        owner = threading.Thread(target=lambda: results.setdefault("a", registry.run("T1", slow)))
        owner.start()
        while "T1" not in registry:
            time.sleep(0.005)

        waiter = threading.Thread(target=lambda: results.setdefault("b", registry.run("T1", fast)))
        waiter.start()
        while registry.waiting("T1") == 0:
            time.sleep(0.005)

        release.set()
        owner.join(5)
        waiter.join(5)

        assert calls == ["first"]
        assert results == {"a": "first-result", "b": "first-result"}
        assert len(registry) == 0

    def test_waiter_receives_owner_exception(self):
        registry = InFlightRegistry(ttl=5.0)
        release = threading.Event()
        errors = {}

        def failing():
            release.wait(5)
            raise RuntimeError("boom")

        def run(name, func):
            try:
                registry.run("T1", func)
            except RuntimeError as exc:
                errors[name] = str(exc)

        owner = threading.Thread(target=run, args=("a", failing))
        owner.start()
        while "T1" not in registry:
            time.sleep(0.005)
        waiter = threading.Thread(target=run, args=("b", lambda: "never"))
        waiter.start()
        while registry.waiting("T1") == 0:
            time.sleep(0.005)

        release.set()
        owner.join(5)
        waiter.join(5)

        assert errors == {"a": "boom", "b": "boom"}
        assert "T1" not in registry

    def test_different_keys_run_concurrently(self):
        registry = InFlightRegistry(ttl=5.0)
        both_inside = threading.Barrier(2, timeout=5)

        def work():
            both_inside.wait()
            return True

        results = []
        threads = [
            threading.Thread(target=lambda k=k: results.append(registry.run(k, work)))
            for k in ("T1", "T2")
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert results == [True, True]

    def test_entry_removed_after_settling(self):
        registry = InFlightRegistry()
        assert registry.run("T1", lambda: 1) == 1
        assert registry.run("T1", lambda: 2) == 2
        assert len(registry) == 0

    def test_stale_entries_expire(self):
        now = [0.0]
        registry = InFlightRegistry(ttl=30.0, clock=lambda: now[0])
        # Simulate an entry leaked by a crashed owner
        registry._entries["T1"] = (mock.Mock(), 0.0)

        now[0] = 31.0
        assert registry.run("T1", lambda: "fresh") == "fresh"
        assert "T1" not in registry
