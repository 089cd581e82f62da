"""
Per-product mutual exclusion for ledger writes.

At most one adjustment, reservation change or divergence resolution runs
per product at a time within a process.  Different products never contend.
Acquisition is bounded by a timeout; a caller that cannot get the lock
receives the retryable LockTimeoutError instead of waiting forever.

Across processes, the product row lock (SELECT ... FOR UPDATE on
PostgreSQL, BEGIN IMMEDIATE on SQLite) and the optimistic version column
provide the same serialization.
"""

import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from stock_ledger.exceptions import LockTimeoutError
from stock_ledger.logging_config import get_logger

logger = get_logger("services.locking")

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


class ProductLockRegistry:
    """Lazily created, non-reentrant locks keyed by product id."""

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[UUID, threading.Lock] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def _lock_for(self, product_id: UUID) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[product_id] = lock
            return lock

    def is_held(self, product_id: UUID) -> bool:
        return self._lock_for(product_id).locked()

    @contextmanager
    def hold(self, product_id: UUID, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the lock for ``product_id`` for the duration of the block.

        Raises:
            LockTimeoutError: if the lock is not acquired within the timeout.
        """
        wait = self._timeout_seconds if timeout is None else timeout
        lock = self._lock_for(product_id)
        if not lock.acquire(timeout=wait):
            logger.warning(
                "stock_lock_timeout",
                extra={"product_id": str(product_id), "timeout_seconds": wait},
            )
            raise LockTimeoutError(str(product_id), wait)
        try:
            yield
        finally:
            lock.release()
