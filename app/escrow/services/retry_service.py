"""
Transfer retry handling.

Re-drives supplier transfers that failed, either on request (admin action,
API) or from the Celery beat sweep over EscrowReleaseError rows whose retry
time has come. A retry rebuilds the transfer exactly like a release but never
touches the delivery confirmation code.

Usage:
    from escrow.services import RetryService

    RetryService().retry(payment.id, actor=request.user)
    RetryService().retry_due()   # beat task
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db.models import F, OuterRef, Subquery
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from escrow.locks import check_version
from escrow.models import EscrowReleaseError, Payment
from escrow.services.base import EscrowService
from escrow.services.release_service import ReleaseService
from escrow.state_machines import FUNDED_PAYMENT_STATUSES

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from escrow.services.release_service import ReleaseResult


class RetryService(EscrowService):
    """Retries failed supplier transfers."""

    def __init__(self, release_service: ReleaseService | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.release_service = release_service or ReleaseService(**self.collaborators())

    def retry(
        self,
        payment_id: Any,
        actor: Any = None,
        expected_version: int | None = None,
    ) -> ServiceResult[ReleaseResult]:
        """
        Retry the supplier transfer of a funded payment.

        Preconditions: buyer funds collected (in_escrow, transfer_pending or
        completed) and no transfer pending or completed. With
        ``expected_version`` the payment must not have changed since the
        caller read it (STALE_RECORD otherwise).
        """
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            return ServiceResult.failure(
                f"Payment {payment_id} not found",
                error_code="PAYMENT_NOT_FOUND",
            )
        if not payment.is_funded:
            return ServiceResult.failure(
                "Buyer funds have not been collected for this payment",
                error_code="PAYMENT_NOT_FUNDED",
                details={"payment_id": str(payment.id), "status": payment.status},
            )
        try:
            check_version(payment, expected_version)
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        result = self.release_service.execute_transfer(
            payment.id,
            actor=actor,
            trigger="manual_retry" if actor else "scheduled_retry",
            allowed_statuses=FUNDED_PAYMENT_STATUSES,
            expected_version=expected_version,
        )

        self.get_logger().info(
            "Transfer retry finished",
            extra={
                "payment_id": str(payment.id),
                "success": result.success,
                "error_code": result.error_code,
            },
        )
        return result

    @staticmethod
    def due_errors(now: datetime | None = None):
        """Latest unresolved error per payment, when its retry time has come."""
        now = now or timezone.now()
        latest = (
            EscrowReleaseError.objects.unresolved()
            .filter(payment_id=OuterRef("payment_id"))
            .order_by("-created_at", "-retry_count")
            .values("id")[:1]
        )
        return (
            EscrowReleaseError.objects.due(now)
            .annotate(latest_id=Subquery(latest))
            .filter(id=F("latest_id"))
            .order_by("next_retry_at")
        )

    def retry_due(self, now: datetime | None = None) -> dict[str, int]:
        """
        Retry every payment whose latest release error is due.

        Returns:
            Counts: due, succeeded, failed
        """
        counts = {"due": 0, "succeeded": 0, "failed": 0}
        payment_ids = list(self.due_errors(now).values_list("payment_id", flat=True))

        for payment_id in payment_ids:
            counts["due"] += 1
            result = self.retry(payment_id)
            if result.success:
                counts["succeeded"] += 1
            else:
                counts["failed"] += 1

        self.get_logger().info("Due transfer retries finished", extra=counts)
        return counts
