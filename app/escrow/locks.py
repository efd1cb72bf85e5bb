"""
Locking helpers for settlement operations.

Two layers protect a payment while money moves:

1. ``DistributedLock``: a Redis key (SET NX EX) held for the duration of a
   release or retry, so two workers never build a transfer for the same
   payment. Contention fails fast with LockAcquisitionError.

2. ``lock_payment``: the row itself, taken with select_for_update inside the
   caller's transaction, optionally checked against an expected ``version``
   (StaleRecordError on mismatch).

Usage:
    from escrow.locks import DistributedLock, lock_payment, release_lock_key

    with DistributedLock(release_lock_key(payment_id), ttl=60):
        with transaction.atomic():
            payment = lock_payment(payment_id)
            ...
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from django.db import transaction

from django_redis import get_redis_connection

from escrow.exceptions import (
    EscrowNotFoundError,
    LockAcquisitionError,
    StaleRecordError,
)
from escrow.models import Payment

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


def release_lock_key(payment_id: Any) -> str:
    """Key shared by release and retry so they exclude each other."""
    return f"escrow:release:{payment_id}"


# =============================================================================
# Distributed Lock
# =============================================================================


class DistributedLock:
    """
    Redis lock with a TTL and an ownership token.

    Only the holder's token can delete the key, so a lock that expired and
    was re-taken by another worker is never released by the first one.

    Args:
        key: Lock name (stored as "lock:<key>")
        ttl: Seconds before Redis drops the key on its own
        blocking: Poll until ``timeout`` instead of failing at once
        timeout: Maximum wait in seconds when blocking
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 60,
        blocking: bool = False,
        timeout: float = 5.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def _try_acquire(self) -> bool:
        return bool(self._get_redis().set(self.key, self._token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        """
        Take the lock.

        Raises:
            LockAcquisitionError: Lock held elsewhere (after ``timeout`` when blocking)
        """
        self._token = uuid.uuid4().hex

        deadline = time.monotonic() + (self.timeout if self.blocking else 0)
        while True:
            if self._try_acquire():
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(self.POLL_INTERVAL)

        self._token = None
        raise LockAcquisitionError(
            f"Lock '{self.key}' is already held",
            details={"key": self.key, "blocking": self.blocking},
        )

    def release(self) -> bool:
        """Drop the lock if this instance still owns it."""
        if self._token is None:
            return False
        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


# =============================================================================
# Row Lock
# =============================================================================


def lock_payment(payment_id: Any, expected_version: int | None = None) -> Payment:
    """
    Lock a payment row for update inside the current transaction.

    Args:
        payment_id: Payment primary key
        expected_version: When given, the row must still be at this version

    Raises:
        EscrowNotFoundError: No such payment
        StaleRecordError: Row was modified since ``expected_version`` was read
        TransactionManagementError: Called outside transaction.atomic()
    """
    if not transaction.get_connection().in_atomic_block:
        raise transaction.TransactionManagementError(
            "lock_payment must run inside transaction.atomic()"
        )

    payment = Payment.objects.select_for_update().filter(pk=payment_id).first()
    if payment is None:
        raise EscrowNotFoundError(
            f"Payment {payment_id} not found",
            error_code="PAYMENT_NOT_FOUND",
            details={"payment_id": str(payment_id)},
        )

    check_version(payment, expected_version)
    return payment


def check_version(payment: Payment, expected_version: int | None) -> None:
    """
    Optimistic concurrency check against a version the caller read earlier.

    A None ``expected_version`` skips the check.

    Raises:
        StaleRecordError: Row was modified since ``expected_version`` was read
    """
    if expected_version is None or payment.version == expected_version:
        return
    raise StaleRecordError(
        f"Payment {payment.id} has been modified "
        f"(expected version {expected_version}, current {payment.version})",
        details={
            "payment_id": str(payment.id),
            "expected_version": expected_version,
            "current_version": payment.version,
        },
    )


__all__ = [
    "DistributedLock",
    "check_version",
    "lock_payment",
    "release_lock_key",
]
