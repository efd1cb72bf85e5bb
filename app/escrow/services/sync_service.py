"""
Buyer-side payment status synchronization.

Pulls a charge's status from the gateway (polling) or receives it from a
webhook and maps it onto Payment.status. Paid charges go to IN_ESCROW, never
to COMPLETED; completion only follows a confirmed supplier transfer.

Syncing is idempotent: the mapping is re-evaluated on the locked row and a
payment that is already where the gateway says it should be is left alone
(no write, no audit).

Usage:
    from escrow.services import SyncService

    result = SyncService().sync(payment.id)
    result.data.changed   # False on the second call
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.services import ServiceResult

from escrow.exceptions import EscrowNotFoundError, GatewayError
from escrow.locks import lock_payment
from escrow.models import Payment
from escrow.services.base import EscrowService
from escrow.state_machines import OPEN_PAYMENT_STATUSES, PaymentStatus
from escrow.state_machines.transitions import apply_transition

if TYPE_CHECKING:
    from typing import Any


GATEWAY_PAID_STATUSES = frozenset({"RECEIVED", "CONFIRMED", "RECEIVED_IN_CASH"})
GATEWAY_OVERDUE_STATUSES = frozenset({"OVERDUE"})
GATEWAY_CANCELLED_STATUSES = frozenset({"REFUNDED", "DELETED", "CANCELLED"})


@dataclass
class SyncOutcome:
    changed: bool
    old_status: str
    new_status: str
    gateway_status: str = ""


def map_gateway_status(internal_status: str, gateway_status: str) -> str | None:
    """
    Transition to apply for a gateway status, or None to leave the payment.

    Only open payments (pending, processing, overdue) are ever moved.
    """
    if internal_status not in OPEN_PAYMENT_STATUSES:
        return None
    gateway_status = (gateway_status or "").upper()
    if gateway_status in GATEWAY_PAID_STATUSES:
        return "mark_in_escrow"
    if gateway_status in GATEWAY_OVERDUE_STATUSES:
        if internal_status == PaymentStatus.OVERDUE:
            return None
        return "mark_overdue"
    if gateway_status in GATEWAY_CANCELLED_STATUSES:
        return "cancel"
    return None


class SyncService(EscrowService):
    """Keeps Payment.status in line with the gateway's charge status."""

    def sync(self, payment_id: Any) -> ServiceResult[SyncOutcome]:
        """
        Poll the gateway for one payment and apply the mapped status.

        Raises:
            GatewayError: Gateway unreachable or refused the lookup
        """
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            return ServiceResult.failure(
                f"Payment {payment_id} not found",
                error_code="PAYMENT_NOT_FOUND",
            )
        if payment.status not in OPEN_PAYMENT_STATUSES:
            return ServiceResult.success(
                SyncOutcome(False, payment.status, payment.status)
            )
        if not payment.gateway_charge_id:
            return ServiceResult.failure(
                "Payment has no gateway charge to sync",
                error_code="NO_GATEWAY_CHARGE",
                details={"payment_id": str(payment.id)},
            )

        charge = self.gateway.get_charge(payment.gateway_charge_id)
        return self.apply_gateway_status(payment.id, charge.status, source="poll")

    def apply_gateway_status(
        self,
        payment_id: Any,
        gateway_status: str,
        source: str = "webhook",
    ) -> ServiceResult[SyncOutcome]:
        """
        Apply a gateway charge status to a payment under a row lock.

        Args:
            payment_id: Payment primary key
            gateway_status: Gateway charge status (RECEIVED, OVERDUE, ...)
            source: "poll" or "webhook", recorded in the audit
        """
        logger = self.get_logger()

        try:
            with self.atomic():
                payment = lock_payment(payment_id)
                old_status = payment.status
                action = map_gateway_status(old_status, gateway_status)
                if action is None:
                    return ServiceResult.success(
                        SyncOutcome(False, old_status, old_status, gateway_status)
                    )

                kwargs = {}
                if action == "cancel":
                    kwargs["reason"] = f"Gateway status {gateway_status}"
                apply_transition(payment, action, **kwargs)
                payment.save()

                self.audit.record(
                    "PAYMENT_STATUS_SYNCED",
                    entity_type="payment",
                    entity_id=payment.id,
                    details={
                        "old_status": old_status,
                        "new_status": payment.status,
                        "gateway_status": gateway_status,
                        "source": source,
                    },
                )
        except EscrowNotFoundError as e:
            return ServiceResult.from_exception(e)

        logger.info(
            "Payment status synced",
            extra={
                "payment_id": str(payment.id),
                "old_status": old_status,
                "new_status": payment.status,
                "gateway_status": gateway_status,
                "source": source,
            },
        )
        return ServiceResult.success(
            SyncOutcome(True, old_status, payment.status, gateway_status)
        )

    def sync_open_payments(self, limit: int | None = None) -> dict[str, int]:
        """
        Sync every charged payment that can still move.

        Failures are logged and audited per payment; the sweep continues.

        Returns:
            Counts: checked, changed, failed
        """
        logger = self.get_logger()
        counts = {"checked": 0, "changed": 0, "failed": 0}

        payment_ids = Payment.objects.awaiting_sync().order_by("created_at").values_list(
            "id", flat=True
        )
        if limit:
            payment_ids = payment_ids[:limit]

        for payment_id in list(payment_ids):
            counts["checked"] += 1
            try:
                result = self.sync(payment_id)
            except GatewayError as e:
                counts["failed"] += 1
                logger.warning(
                    "Payment sync failed",
                    extra={"payment_id": str(payment_id), "error_code": e.error_code},
                )
                self.audit.record(
                    "PAYMENT_SYNC_FAILED",
                    entity_type="payment",
                    entity_id=payment_id,
                    details={"error": e.to_dict()},
                )
                continue

            if not result.success:
                counts["failed"] += 1
            elif result.data.changed:
                counts["changed"] += 1

        logger.info("Open payment sync finished", extra=counts)
        return counts
