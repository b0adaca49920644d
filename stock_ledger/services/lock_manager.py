"""
ProductLockManager -- in-process per-product mutual exclusion.

Responsibility:
    Serializes the read-modify-write of each product's stock within one
    process.  Locks for a multi-product batch are acquired in sorted
    product-id order, so two batches touching the same products can never
    deadlock against each other.

Invariants enforced:
    - Per-product serialization (together with SELECT ... FOR UPDATE and
      the record's version counter, which cover other processes).

Failure modes:
    - ConcurrencyConflictError when a lock is not obtained within the
      timeout.  Locks already taken for the same call are released first.
"""

import threading
import time
from contextlib import contextmanager
from typing import Generator, Iterable
from uuid import UUID

from stock_ledger.exceptions import ConcurrencyConflictError
from stock_ledger.logging_config import get_logger

logger = get_logger("services.lock_manager")


class ProductLockManager:
    """Registry of one lock per product id."""

    def __init__(self, timeout_seconds: float = 10.0):
        self._timeout = timeout_seconds
        self._registry_lock = threading.Lock()
        self._locks: dict[UUID, threading.Lock] = {}

    def _lock_for(self, product_id: UUID) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[product_id] = lock
            return lock

    @contextmanager
    def hold(
        self,
        product_ids: Iterable[UUID],
        timeout_seconds: float | None = None,
    ) -> Generator[list[UUID], None, None]:
        """
        Hold the locks of every given product for the enclosed block.

        Yields:
            The distinct product ids, in acquisition order.

        Raises:
            ConcurrencyConflictError: A lock was not acquired in time.
        """
        ordered = sorted(set(product_ids), key=str)
        timeout = self._timeout if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + timeout
        acquired: list[threading.Lock] = []

        try:
            for product_id in ordered:
                lock = self._lock_for(product_id)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    logger.warning(
                        "product_lock_timeout",
                        extra={
                            "product_id": str(product_id),
                            "timeout_seconds": timeout,
                        },
                    )
                    raise ConcurrencyConflictError(
                        [str(p) for p in ordered],
                        reason=f"timed out after {timeout}s waiting for product lock",
                    )
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_locked(self, product_id: UUID) -> bool:
        with self._registry_lock:
            lock = self._locks.get(product_id)
        return lock is not None and lock.locked()
