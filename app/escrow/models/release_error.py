"""
EscrowReleaseError: bookkeeping for failed payout attempts.

One row is appended per failed attempt. The newest unresolved row of a
payment carries the retry schedule: ``next_retry_at`` follows the transfer
retry policy (1h, 2h, 4h) and is left null once attempts are exhausted or
the failure needs human data entry.

Usage:
    from escrow.models import EscrowReleaseError

    due = EscrowReleaseError.objects.due(now=timezone.now())
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import ReleaseErrorType


class EscrowReleaseErrorQuerySet(models.QuerySet):
    def unresolved(self):
        return self.filter(resolved_at__isnull=True)

    def due(self, now=None):
        """Unresolved errors whose retry time has come."""
        now = now or timezone.now()
        return self.unresolved().filter(next_retry_at__lte=now)

    def manual_queue(self):
        """Unresolved errors no automatic retry will pick up."""
        return self.unresolved().filter(next_retry_at__isnull=True)


class EscrowReleaseError(UUIDPrimaryKeyMixin, BaseModel):
    """
    A failed attempt to pay a supplier.

    Fields:
        error_type: missing_bank_data (needs a human) or transfer_failed
        retry_count: Failed attempts so far for the payment, this one included
        next_retry_at: When the retry sweep should try again (null = manual)
        resolved_at: Set on every open row once a later attempt succeeds
    """

    payment = models.ForeignKey(
        "escrow.Payment",
        on_delete=models.CASCADE,
        related_name="release_errors",
    )
    error_type = models.CharField(
        max_length=30,
        choices=ReleaseErrorType.choices,
        db_index=True,
    )
    message = models.TextField()
    retry_count = models.PositiveSmallIntegerField(default=1)
    next_retry_at = models.DateTimeField(null=True, blank=True, db_index=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    details = models.JSONField(default=dict, blank=True)

    objects = EscrowReleaseErrorQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Escrow Release Error"
        verbose_name_plural = "Escrow Release Errors"
        indexes = [
            models.Index(
                fields=["next_retry_at"],
                condition=Q(resolved_at__isnull=True),
                name="release_error_due_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowReleaseError({self.payment_id}, {self.error_type}, #{self.retry_count})"

    @property
    def needs_manual_handling(self) -> bool:
        return self.resolved_at is None and self.next_retry_at is None
