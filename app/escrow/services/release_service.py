"""
Escrow release: paying the supplier once delivery is confirmed.

The service implements the same two-phase pattern as payouts:
1. Under a Redis lock and a row lock, re-check the payment, resolve the
   payout destination and move transfer_status to PENDING; commit.
2. Call the gateway create_transfer outside the transaction.
3. Success: store the transfer id and move status to TRANSFER_PENDING.
   Failure: move transfer_status to FAILED and append an EscrowReleaseError
   scheduled by the transfer retry policy (1h, 2h, 4h, then manual).

Status only reaches COMPLETED when the gateway confirms the transfer
(``confirm_transfer``, driven by the TRANSFER_DONE webhook).

Usage:
    from escrow.services import ReleaseService

    result = ReleaseService().release(payment.id, confirmation_code="ABC123")
    if result.error_code == "CODE_ALREADY_USED":
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db.models import Max
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from escrow.adapters import CreateTransferParams, IdempotencyKeyGenerator
from escrow.exceptions import (
    DuplicateOperation,
    EscrowValidationError,
    GatewayError,
    LockAcquisitionError,
    MissingPayoutDetails,
    TransferFailed,
)
from escrow.locks import DistributedLock, check_version, lock_payment, release_lock_key
from escrow.models import DeliveryConfirmation, EscrowReleaseError, Payment
from escrow.retry import transfer_retry_policy
from escrow.services.base import EscrowService
from escrow.services.destination_service import DestinationService
from escrow.state_machines import (
    NotificationPriority,
    PaymentStatus,
    ReleaseErrorType,
    TransferStatus,
)
from escrow.state_machines.transitions import apply_transition

if TYPE_CHECKING:
    from typing import Any

    from escrow.retry import RetryPolicy


# Distributed lock TTL for a release/retry (seconds)
RELEASE_LOCK_TTL = 120

# Statuses from which a first release may start
RELEASABLE_STATUSES = (PaymentStatus.IN_ESCROW, PaymentStatus.COMPLETED)


def payout_reference(payment_id: Any) -> str:
    """externalReference shared by every transfer attempt of one payout."""
    return IdempotencyKeyGenerator.generate("transfer", payment_id)


@dataclass
class ReleaseResult:
    """
    Result of a successful release.

    Attributes:
        transfer_id: Gateway transfer id
        payment: Payment (status transfer_pending, transfer_status pending)
    """

    transfer_id: str
    payment: Payment


class ReleaseService(EscrowService):
    """
    Releases escrowed funds to suppliers.

    Error Handling:
        - Precondition failures (wrong state, used code, lock contention):
          ServiceResult.failure, nothing written
        - Missing payout details: EscrowReleaseError(missing_bank_data,
          no retry), supplier notified, failure returned
        - Gateway failures: EscrowReleaseError scheduled for retry,
          supplier notified, TRANSFER_FAILED failure returned
    """

    def __init__(
        self,
        destinations: DestinationService | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.destinations = destinations or DestinationService(**self.collaborators())
        self.retry_policy = retry_policy or transfer_retry_policy()

    # =========================================================================
    # Release
    # =========================================================================

    def release(
        self,
        payment_id: Any,
        confirmation_code: str | None = None,
        actor: Any = None,
        expected_version: int | None = None,
    ) -> ServiceResult[ReleaseResult]:
        """
        Release a payment's escrow to its supplier.

        Args:
            payment_id: Payment primary key
            confirmation_code: Delivery code to consume; omitted when the code
                was already redeemed by DeliveryService
            actor: User triggering the release
            expected_version: Payment version the caller last saw; a newer row
                fails with STALE_RECORD before the code is consumed

        Returns:
            ServiceResult with ReleaseResult
        """
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            return ServiceResult.failure(
                f"Payment {payment_id} not found",
                error_code="PAYMENT_NOT_FOUND",
            )

        try:
            check_version(payment, expected_version)
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        confirmation = None
        if confirmation_code is not None:
            confirmation = DeliveryConfirmation.objects.filter(
                code=confirmation_code.strip().upper(),
                delivery__quote_id=payment.quote_id,
            ).first()
            if confirmation is None:
                return ServiceResult.failure(
                    "Confirmation code not found",
                    error_code="CODE_NOT_FOUND",
                    details={"payment_id": str(payment.id)},
                )
            if confirmation.is_used:
                return self._code_already_used(confirmation, payment)

        precondition = self._check_transferable(payment, RELEASABLE_STATUSES)
        if precondition:
            return precondition

        if confirmation is not None and not confirmation.consume(user=actor):
            confirmation.refresh_from_db(fields=["is_used"])
            if confirmation.is_used:
                return self._code_already_used(confirmation, payment)
            return ServiceResult.failure(
                "Confirmation code has expired",
                error_code="CODE_EXPIRED",
                details={
                    "code": confirmation.code,
                    "expired_at": confirmation.expires_at.isoformat(),
                },
            )

        return self.execute_transfer(
            payment.id, actor=actor, trigger="release", expected_version=expected_version
        )

    @staticmethod
    def _code_already_used(
        confirmation: DeliveryConfirmation, payment: Payment
    ) -> ServiceResult:
        return ServiceResult.from_exception(
            DuplicateOperation(
                "Confirmation code has already been used",
                error_code="CODE_ALREADY_USED",
                details={"code": confirmation.code, "payment_id": str(payment.id)},
            )
        )

    @staticmethod
    def _check_transferable(
        payment: Payment, allowed_statuses: tuple[str, ...]
    ) -> ServiceResult | None:
        if payment.transfer_status == TransferStatus.COMPLETED:
            return ServiceResult.from_exception(
                DuplicateOperation(
                    "Supplier transfer already completed",
                    error_code="TRANSFER_ALREADY_COMPLETED",
                    details={"payment_id": str(payment.id)},
                )
            )
        if payment.transfer_status == TransferStatus.PENDING:
            return ServiceResult.from_exception(
                DuplicateOperation(
                    "Supplier transfer already requested",
                    error_code="TRANSFER_ALREADY_REQUESTED",
                    details={
                        "payment_id": str(payment.id),
                        "transfer_id": payment.gateway_transfer_id,
                    },
                )
            )
        if payment.status not in allowed_statuses:
            return ServiceResult.failure(
                f"Payment in status '{payment.status}' cannot be released",
                error_code="PAYMENT_NOT_RELEASABLE",
                details={"payment_id": str(payment.id), "status": payment.status},
            )
        return None

    # =========================================================================
    # Transfer Execution
    # =========================================================================

    def execute_transfer(
        self,
        payment_id: Any,
        actor: Any = None,
        trigger: str = "release",
        allowed_statuses: tuple[str, ...] = RELEASABLE_STATUSES,
        expected_version: int | None = None,
    ) -> ServiceResult[ReleaseResult]:
        """
        Build and submit the supplier transfer for a payment.

        Shared by release and retry; takes the payment's release lock so the
        two never run concurrently for the same payment.

        Every attempt sends the same payout reference. From the second attempt
        on, a live transfer already holding that reference is adopted instead
        of sending a new one, so a timeout whose request did reach the gateway
        never pays the supplier twice.
        """
        try:
            with DistributedLock(release_lock_key(payment_id), ttl=RELEASE_LOCK_TTL):
                return self._execute_transfer_locked(
                    payment_id, actor, trigger, allowed_statuses, expected_version
                )
        except LockAcquisitionError as e:
            self.get_logger().warning(
                "Release already in progress",
                extra={"payment_id": str(payment_id), "trigger": trigger},
            )
            return ServiceResult.from_exception(e)

    def _execute_transfer_locked(
        self,
        payment_id: Any,
        actor: Any,
        trigger: str,
        allowed_statuses: tuple[str, ...],
        expected_version: int | None,
    ) -> ServiceResult[ReleaseResult]:
        logger = self.get_logger()

        # Phase 1: re-check, resolve destination, mark transfer pending
        try:
            with self.atomic():
                payment = lock_payment(payment_id, expected_version)
                precondition = self._check_transferable(payment, allowed_statuses)
                if precondition:
                    return precondition

                try:
                    destination = self.destinations.resolve(payment.supplier)
                except MissingPayoutDetails as e:
                    self._record_missing_details(payment, e, actor)
                    missing_error = e
                else:
                    missing_error = None
                    attempt = self._failure_count(payment) + 1
                    reference = payout_reference(payment.id)
                    apply_transition(payment, "begin_transfer")
                    payment.save()
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        if missing_error is not None:
            self.notifier.notify(
                payment.supplier,
                "payout_details_missing",
                "Payout details missing",
                "We could not pay you because your PIX key or bank account is "
                "incomplete. Update your payout details to receive the transfer.",
                priority=NotificationPriority.HIGH,
                metadata={
                    "payment_id": str(payment.id),
                    "missing_fields": missing_error.details.get("missing_fields", []),
                },
            )
            return ServiceResult.from_exception(missing_error)

        # Phase 2: gateway call outside the transaction
        try:
            transfer = None
            if attempt > 1:
                transfer = self.gateway.find_transfer_by_external_reference(reference)
            recovered = transfer is not None
            if transfer is None:
                transfer = self.gateway.create_transfer(
                    CreateTransferParams(
                        value=payment.supplier_net_amount,
                        destination=destination,
                        idempotency_key=reference,
                        description=f"Payment {payment.friendly_id}",
                    )
                )
        except GatewayError as e:
            return self._handle_transfer_failure(payment.id, e, actor, trigger)
        except Exception as e:
            # Leave the payout retryable, then let the caller see the bug
            self._handle_transfer_failure(
                payment.id,
                TransferFailed(
                    f"Unexpected error while requesting transfer: {type(e).__name__}",
                    error_code="TRANSFER_ERROR",
                    details={"exception": type(e).__name__},
                ),
                actor,
                trigger,
            )
            raise

        # Phase 3: record the transfer
        with self.atomic():
            payment = lock_payment(payment.id)
            payment.gateway_transfer_id = transfer.id
            if payment.status != PaymentStatus.COMPLETED:
                apply_transition(payment, "request_transfer")
            payment.save()

            EscrowReleaseError.objects.filter(payment=payment).unresolved().update(
                resolved_at=timezone.now(), next_retry_at=None
            )
            self.audit.record(
                "TRANSFER_REQUESTED",
                entity_type="payment",
                entity_id=payment.id,
                actor=actor,
                details={
                    "transfer_id": transfer.id,
                    "amount": str(payment.supplier_net_amount),
                    "destination_type": type(destination).__name__,
                    "trigger": trigger,
                    "attempt": attempt,
                    "recovered": recovered,
                },
            )

        self.notifier.notify(
            payment.supplier,
            "transfer_requested",
            "Payout on its way",
            f"R$ {payment.supplier_net_amount} for payment {payment.friendly_id} "
            "has been sent to your account.",
            metadata={"payment_id": str(payment.id), "transfer_id": transfer.id},
        )

        logger.info(
            "Supplier transfer requested",
            extra={
                "payment_id": str(payment.id),
                "transfer_id": transfer.id,
                "trigger": trigger,
                "attempt": attempt,
                "recovered": recovered,
            },
        )
        return ServiceResult.success(ReleaseResult(transfer_id=transfer.id, payment=payment))

    # =========================================================================
    # Failure Bookkeeping
    # =========================================================================

    @staticmethod
    def _failure_count(payment: Payment) -> int:
        """Failed attempts since the last successful transfer request."""
        return (
            EscrowReleaseError.objects.filter(payment=payment)
            .unresolved()
            .aggregate(count=Max("retry_count"))["count"]
            or 0
        )

    def record_failure(
        self,
        payment: Payment,
        error_type: str,
        message: str,
        details: dict[str, Any] | None = None,
        schedule: bool = True,
    ) -> EscrowReleaseError:
        """
        Append an EscrowReleaseError for a failed attempt.

        retry_count continues from the latest unresolved error; next_retry_at
        follows the retry policy, or stays null when ``schedule`` is False or
        attempts are exhausted.
        """
        retry_count = self._failure_count(payment) + 1
        next_retry_at = self.retry_policy.schedule(retry_count) if schedule else None
        return EscrowReleaseError.objects.create(
            payment=payment,
            error_type=error_type,
            message=message,
            retry_count=retry_count,
            next_retry_at=next_retry_at,
            details=details or {},
        )

    def _record_missing_details(
        self, payment: Payment, error: MissingPayoutDetails, actor: Any
    ) -> None:
        if payment.transfer_status != TransferStatus.FAILED:
            apply_transition(payment, "fail_transfer", error=error.message)
        else:
            payment.transfer_error = error.message
        payment.save()

        self.record_failure(
            payment,
            ReleaseErrorType.MISSING_BANK_DATA,
            error.message,
            details=error.details,
            schedule=False,
        )
        self.audit.record(
            "TRANSFER_FAILED",
            entity_type="payment",
            entity_id=payment.id,
            actor=actor,
            details={"reason": ReleaseErrorType.MISSING_BANK_DATA, **error.details},
        )

    def _handle_transfer_failure(
        self,
        payment_id: Any,
        error: BaseApplicationError,
        actor: Any,
        trigger: str,
    ) -> ServiceResult:
        logger = self.get_logger()

        with self.atomic():
            payment = lock_payment(payment_id)
            apply_transition(payment, "fail_transfer", error=error.message)
            payment.save()

            release_error = self.record_failure(
                payment,
                ReleaseErrorType.TRANSFER_FAILED,
                error.message,
                details={"gateway_error": error.to_dict(), "trigger": trigger},
            )
            self.audit.record(
                "TRANSFER_FAILED",
                entity_type="payment",
                entity_id=payment.id,
                actor=actor,
                details={
                    "error": error.to_dict(),
                    "retry_count": release_error.retry_count,
                    "next_retry_at": (
                        release_error.next_retry_at.isoformat()
                        if release_error.next_retry_at
                        else None
                    ),
                    "trigger": trigger,
                },
            )

        self._notify_failure(payment, release_error)
        logger.error(
            "Supplier transfer failed",
            extra={
                "payment_id": str(payment.id),
                "error_code": error.error_code,
                "retry_count": release_error.retry_count,
                "trigger": trigger,
            },
        )
        return ServiceResult.from_exception(
            TransferFailed(
                f"Transfer to supplier failed: {error.message}",
                details={
                    "payment_id": str(payment.id),
                    "retry_count": release_error.retry_count,
                    "next_retry_at": (
                        release_error.next_retry_at.isoformat()
                        if release_error.next_retry_at
                        else None
                    ),
                    "gateway_error_code": error.error_code,
                },
            )
        )

    def _notify_failure(self, payment: Payment, release_error: EscrowReleaseError) -> None:
        if release_error.next_retry_at:
            message = (
                f"The payout for payment {payment.friendly_id} failed. "
                "We will try again automatically."
            )
        else:
            message = (
                f"The payout for payment {payment.friendly_id} failed and needs "
                "attention. Our team has been notified."
            )
        self.notifier.notify(
            payment.supplier,
            "payout_failed",
            "Payout failed",
            message,
            priority=NotificationPriority.HIGH,
            metadata={
                "payment_id": str(payment.id),
                "retry_count": release_error.retry_count,
            },
        )

    # =========================================================================
    # Settlement (gateway transfer webhooks)
    # =========================================================================

    def confirm_transfer(
        self, transfer_id: str, external_reference: str = ""
    ) -> ServiceResult[Payment]:
        """
        Mark a transfer settled; the only path to status COMPLETED.

        A transfer id we never stored (its create call timed out) is matched
        through the payout reference it carries.

        Idempotent: an already completed transfer is returned unchanged.
        """
        try:
            with self.atomic():
                payment = self._lock_by_transfer(transfer_id, external_reference)
                if payment.transfer_status == TransferStatus.COMPLETED:
                    return ServiceResult.success(payment)

                if payment.transfer_status == TransferStatus.FAILED:
                    # Late success after a failure report: begin again first
                    apply_transition(payment, "begin_transfer")
                apply_transition(payment, "confirm_transfer")
                if payment.status == PaymentStatus.IN_ESCROW:
                    apply_transition(payment, "request_transfer")
                if payment.status == PaymentStatus.TRANSFER_PENDING:
                    apply_transition(payment, "complete")
                payment.save()

                EscrowReleaseError.objects.filter(payment=payment).unresolved().update(
                    resolved_at=timezone.now(), next_retry_at=None
                )
                self.audit.record(
                    "TRANSFER_COMPLETED",
                    entity_type="payment",
                    entity_id=payment.id,
                    details={"transfer_id": transfer_id},
                )
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        self.notifier.notify(
            payment.supplier,
            "payout_completed",
            "Payout completed",
            f"R$ {payment.supplier_net_amount} for payment {payment.friendly_id} "
            "reached your account.",
            metadata={"payment_id": str(payment.id), "transfer_id": transfer_id},
        )
        return ServiceResult.success(payment)

    def fail_transfer(
        self, transfer_id: str, reason: str = "", external_reference: str = ""
    ) -> ServiceResult[Payment]:
        """Record a transfer the gateway reported as failed or cancelled."""
        reason = reason or "Transfer failed at the gateway"
        try:
            with self.atomic():
                payment = self._lock_by_transfer(transfer_id, external_reference)
                if payment.transfer_status != TransferStatus.PENDING:
                    return ServiceResult.success(payment)

                apply_transition(payment, "fail_transfer", error=reason)
                payment.save()
                release_error = self.record_failure(
                    payment,
                    ReleaseErrorType.TRANSFER_FAILED,
                    reason,
                    details={"transfer_id": transfer_id, "trigger": "webhook"},
                )
                self.audit.record(
                    "TRANSFER_FAILED",
                    entity_type="payment",
                    entity_id=payment.id,
                    details={
                        "transfer_id": transfer_id,
                        "reason": reason,
                        "retry_count": release_error.retry_count,
                    },
                )
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        self._notify_failure(payment, release_error)
        return ServiceResult.success(payment)

    def _lock_by_transfer(self, transfer_id: str, external_reference: str = "") -> Payment:
        """
        Lock the payment a gateway transfer belongs to.

        Falls back to the payout reference for a transfer whose id was never
        stored, and adopts that id when the payment has none yet.
        """
        payment_id = (
            Payment.objects.filter(gateway_transfer_id=transfer_id)
            .values_list("id", flat=True)
            .first()
        )
        if payment_id is None and external_reference:
            payment_id = IdempotencyKeyGenerator.entity_id(external_reference, "transfer")
        if payment_id is None:
            raise EscrowValidationError(
                f"No payment for transfer {transfer_id}",
                error_code="TRANSFER_NOT_FOUND",
                details={"transfer_id": transfer_id},
            )

        payment = lock_payment(payment_id)
        if payment.gateway_transfer_id == transfer_id:
            return payment
        if payment.gateway_transfer_id:
            self.get_logger().error(
                "Transfer reference points at a payment with another transfer",
                extra={
                    "payment_id": str(payment.id),
                    "transfer_id": transfer_id,
                    "stored_transfer_id": payment.gateway_transfer_id,
                },
            )
            raise EscrowValidationError(
                f"No payment for transfer {transfer_id}",
                error_code="TRANSFER_NOT_FOUND",
                details={
                    "transfer_id": transfer_id,
                    "external_reference": external_reference,
                },
            )
        payment.gateway_transfer_id = transfer_id
        return payment


__all__ = [
    "RELEASABLE_STATUSES",
    "ReleaseResult",
    "ReleaseService",
    "payout_reference",
]
