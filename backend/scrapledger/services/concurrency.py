# Overview: Service-layer concurrency helpers: row locks, bounded retry, in-flight save dedup.

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry for concurrency-related write failures.

    Retries on OperationalError (deadlocks, locks, timeouts) and StaleDataError
    (optimistic locking conflicts) by default. The transaction repository adds
    IntegrityError so a duplicate-key race on insert converges.

    Each failed attempt rolls the session back before on_retry runs, then
    sleeps backoff_base * 2**attempt. The last failure is re-raised.
    """
    attempts: int = 3
    backoff_base: float = 0.1
    retry_on: tuple[type[BaseException], ...] = (OperationalError, StaleDataError)

    def delay(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    def with_integrity_retry(self) -> "RetryPolicy":
        return RetryPolicy(
            attempts=self.attempts,
            backoff_base=self.backoff_base,
            retry_on=self.retry_on + (IntegrityError,),
        )

    def run(
        self,
        func: Callable[[], T],
        *,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        for attempt in range(self.attempts):
            try:
                return func()
            except self.retry_on as exc:
                db.session.rollback()
                if attempt >= self.attempts - 1:
                    raise
                logger.warning(
                    "Attempt %d/%d failed with %s; retrying",
                    attempt + 1,
                    self.attempts,
                    type(exc).__name__,
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                time.sleep(self.delay(attempt))
        raise RuntimeError("RetryPolicy.run requires attempts >= 1")


DEFAULT_RETRY_POLICY = RetryPolicy()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """Execute a DB operation under the default bounded retry policy."""
    return RetryPolicy(attempts=attempts, backoff_base=backoff_base).run(func)


class InFlightRegistry:
    """
    Map of key -> completion future for work that must not run twice at once.

    The first caller for a key runs the work; callers arriving while it is in
    flight wait for the same future and receive its result or exception.
    Entries are removed when the work settles. Entries older than ttl are
    dropped on the next access, and a waiter that times out runs the work
    itself, so a leaked entry cannot block a key forever.
    """

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[Future, float]] = {}
        self._waiting: dict[str, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def waiting(self, key: str) -> int:
        """Number of callers currently blocked on the in-flight work for key."""
        with self._lock:
            return self._waiting.get(key, 0)

    def _expire_locked(self) -> None:
        now = self._clock()
        expired = [k for k, (_, started) in self._entries.items() if now - started > self._ttl]
        for key in expired:
            logger.warning("Dropping stale in-flight entry for %s", key)
            del self._entries[key]

    def run(self, key: str, func: Callable[[], T]) -> T:
        with self._lock:
            self._expire_locked()
            entry = self._entries.get(key)
            if entry is None:
                future: Future = Future()
                self._entries[key] = (future, self._clock())
                owner = True
            else:
                future = entry[0]
                owner = False
                self._waiting[key] = self._waiting.get(key, 0) + 1

        if not owner:
            logger.info("Work already in flight for %s; waiting for completion", key)
            try:
                return future.result(timeout=self._ttl)
            except FutureTimeoutError:
                logger.warning("In-flight work for %s did not settle within %.1fs", key, self._ttl)
            finally:
                with self._lock:
                    remaining = self._waiting.get(key, 1) - 1
                    if remaining:
                        self._waiting[key] = remaining
                    else:
                        self._waiting.pop(key, None)
            return self.run(key, func)

        try:
            result = func()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                current = self._entries.get(key)
                if current is not None and current[0] is future:
                    del self._entries[key]
