"""
Retry policies shared by the charge and release paths.

A RetryPolicy says how many times an operation may be attempted and how long
to wait between attempts. Two policies are used:

- CHARGE_FALLBACK_POLICY: the charge is submitted at most twice, immediately;
  the second attempt drops the supplier split after an invalid-wallet rejection.
- transfer_retry_policy(): failed supplier transfers are rescheduled after
  1h, 2h and 4h, then left for manual handling.

Delayed policies never sleep in-process; ``schedule`` only computes the next
run time, which the Celery beat sweep picks up.

Usage:
    from escrow.retry import transfer_retry_policy

    next_retry_at = transfer_retry_policy().schedule(failures=2)
    # now + 2h, or None once attempts are exhausted
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings
from django.utils import timezone

if TYPE_CHECKING:
    from typing import Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Total attempts allowed, the first one included
        base_delay: Wait before the second attempt
        multiplier: Growth factor applied per further attempt
    """

    max_attempts: int
    base_delay: timedelta = timedelta(0)
    multiplier: int = 2

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, failures: int) -> timedelta:
        """Wait after the ``failures``-th failed attempt (1-indexed)."""
        if failures < 1:
            raise ValueError("failures must be at least 1")
        return self.base_delay * (self.multiplier ** (failures - 1))

    def can_retry(self, failures: int) -> bool:
        return failures < self.max_attempts

    def schedule(self, failures: int, now: datetime | None = None) -> datetime | None:
        """
        Next attempt time after ``failures`` failed attempts.

        Returns:
            now + delay_for(failures), or None once no attempt is left
        """
        if not self.can_retry(failures):
            return None
        return (now or timezone.now()) + self.delay_for(failures)

    def execute(
        self,
        operation: Callable[[int], T],
        retry_on: tuple[type[BaseException], ...],
    ) -> T:
        """
        Run ``operation(attempt)`` until it succeeds or attempts run out.

        Only immediate policies run inline; a delayed policy must be driven
        through ``schedule`` by a background job.

        Raises:
            ValueError: Policy has a non-zero delay
            The last ``retry_on`` exception once attempts are exhausted, or
            any other exception immediately
        """
        if self.base_delay:
            raise ValueError("Delayed retry policies cannot run inline")

        attempt = 1
        while True:
            try:
                return operation(attempt)
            except retry_on as e:
                if not self.can_retry(attempt):
                    raise
                logger.info(
                    "Retrying operation",
                    extra={
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "error": str(e),
                    },
                )
                attempt += 1


CHARGE_FALLBACK_POLICY = RetryPolicy(max_attempts=2)


def transfer_retry_policy() -> RetryPolicy:
    """Transfer policy: 1h, 2h, 4h between attempts, ESCROW_TRANSFER_MAX_ATTEMPTS retries."""
    return RetryPolicy(
        # The original attempt plus the scheduled retries
        max_attempts=settings.ESCROW_TRANSFER_MAX_ATTEMPTS + 1,
        base_delay=timedelta(hours=1),
    )


__all__ = [
    "CHARGE_FALLBACK_POLICY",
    "RetryPolicy",
    "transfer_retry_policy",
]
