"""
Delivery confirmation codes: issuing, resending and redemption.

When a delivery is scheduled the client is emailed a 6 character code.
Redeeming it marks the delivery delivered, notifies the supplier and
releases the payment's escrow.
The code is consumed with a single conditional UPDATE, so two concurrent
redemptions cannot both succeed.

Usage:
    from escrow.services import DeliveryService

    DeliveryService().issue_code(delivery.id, request.user)
    result = DeliveryService().confirm_delivery("ABC123", request.user)
    result.data["release"]["success"]
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.utils import timezone
from django.utils.html import format_html

from core.services import ServiceResult

from escrow.exceptions import DuplicateOperation
from escrow.models import Delivery, DeliveryConfirmation, Payment
from escrow.services.base import EscrowService
from escrow.services.release_service import ReleaseService
from escrow.state_machines import (
    CLOSED_CHARGE_STATUSES,
    DeliveryStatus,
    NotificationPriority,
    PanelType,
)

if TYPE_CHECKING:
    from typing import Any


# Deliveries whose code may still be issued or resent
OPEN_DELIVERY_STATUSES = (DeliveryStatus.SCHEDULED, DeliveryStatus.IN_TRANSIT)


class DeliveryService(EscrowService):
    """Issues and redeems delivery confirmation codes; redemption releases escrow."""

    def __init__(self, release_service: ReleaseService | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.release_service = release_service or ReleaseService(**self.collaborators())

    def confirm_delivery(self, code: str, user: Any) -> ServiceResult[dict[str, Any]]:
        """
        Redeem a delivery confirmation code.

        Args:
            code: Confirmation code (case-insensitive)
            user: User redeeming it; must belong to the delivery's client

        Returns:
            ServiceResult with delivery_id, payment_id and the release outcome.
            Failure codes: CODE_NOT_FOUND, CODE_ALREADY_USED, CODE_EXPIRED,
            PERMISSION_DENIED
        """
        logger = self.get_logger()
        code = (code or "").strip().upper()

        confirmation = (
            DeliveryConfirmation.objects.select_related(
                "delivery", "delivery__client", "delivery__supplier"
            )
            .filter(code=code)
            .first()
        )
        if confirmation is None:
            return ServiceResult.failure(
                "Confirmation code not found",
                error_code="CODE_NOT_FOUND",
            )
        if confirmation.is_used:
            return self._already_used(confirmation)
        if confirmation.is_expired:
            return ServiceResult.failure(
                "Confirmation code has expired",
                error_code="CODE_EXPIRED",
                details={"expired_at": confirmation.expires_at.isoformat()},
            )

        delivery = confirmation.delivery
        if not self._may_confirm(user, delivery.client):
            return ServiceResult.failure(
                "You are not allowed to confirm this delivery",
                error_code="PERMISSION_DENIED",
            )

        with self.atomic():
            if not confirmation.consume(user=user):
                return self._already_used(confirmation)

            now = timezone.now()
            delivery.status = DeliveryStatus.DELIVERED
            delivery.actual_delivery_date = now
            delivery.save(update_fields=["status", "actual_delivery_date", "updated_at"])

            self.audit.record(
                "DELIVERY_CONFIRMED",
                entity_type="delivery",
                entity_id=delivery.id,
                actor=user,
                panel_type=PanelType.CLIENT,
                details={"confirmation_id": str(confirmation.id), "quote_id": str(delivery.quote_id)},
            )

        self.notifier.notify(
            delivery.supplier,
            "delivery_confirmed",
            "Delivery confirmed",
            f"{delivery.client.name} confirmed receipt of the delivery. "
            "Your payout is being released.",
            priority=NotificationPriority.HIGH,
            metadata={"delivery_id": str(delivery.id), "quote_id": str(delivery.quote_id)},
        )

        payment = (
            Payment.objects.filter(quote_id=delivery.quote_id)
            .exclude(status__in=CLOSED_CHARGE_STATUSES)
            .first()
        )
        release: dict[str, Any] = {"attempted": False}
        if payment is not None:
            result = self.release_service.release(payment.id, actor=user)
            release = {
                "attempted": True,
                "success": result.success,
                "error_code": result.error_code,
                "transfer_id": result.data.transfer_id if result.success else None,
            }
            if not result.success:
                logger.warning(
                    "Release after delivery confirmation did not go through",
                    extra={"payment_id": str(payment.id), "error_code": result.error_code},
                )

        logger.info(
            "Delivery confirmed",
            extra={"delivery_id": str(delivery.id), "confirmation_id": str(confirmation.id)},
        )
        return ServiceResult.success(
            {
                "delivery_id": str(delivery.id),
                "confirmed_at": confirmation.confirmed_at.isoformat(),
                "payment_id": str(payment.id) if payment else None,
                "release": release,
            }
        )

    @staticmethod
    def _may_confirm(user: Any, client: Any) -> bool:
        if user is None or not getattr(user, "is_authenticated", False):
            return False
        if user.is_staff:
            return True
        return client.members.filter(pk=user.pk).exists()

    @staticmethod
    def _already_used(confirmation: DeliveryConfirmation) -> ServiceResult:
        return ServiceResult.from_exception(
            DuplicateOperation(
                "Confirmation code has already been used",
                error_code="CODE_ALREADY_USED",
                details={
                    "confirmed_at": (
                        confirmation.confirmed_at.isoformat()
                        if confirmation.confirmed_at
                        else None
                    ),
                },
            )
        )

    # =========================================================================
    # Code Issuing
    # =========================================================================

    def issue_code(self, delivery_id: Any, user: Any) -> ServiceResult[dict[str, Any]]:
        """
        Issue a fresh confirmation code and email it to the client.

        Earlier unused codes of the delivery stop working. The code is only
        ever sent to the client, never returned to the supplier asking for it.

        Returns:
            ServiceResult with delivery_id, expires_at and email_sent.
            Failure codes: DELIVERY_NOT_FOUND, PERMISSION_DENIED, DELIVERY_CLOSED
        """
        delivery = self._get_delivery(delivery_id)
        if delivery is None:
            return self._delivery_not_found(delivery_id)
        if not self._may_issue(user, delivery.supplier):
            return ServiceResult.failure(
                "You are not allowed to issue codes for this delivery",
                error_code="PERMISSION_DENIED",
            )
        if delivery.status not in OPEN_DELIVERY_STATUSES:
            return self._delivery_closed(delivery)

        with self.atomic():
            now = timezone.now()
            revoked = DeliveryConfirmation.objects.filter(
                delivery=delivery, is_used=False, expires_at__gt=now
            ).update(expires_at=now, updated_at=now)
            confirmation = DeliveryConfirmation.issue(delivery)

            self.audit.record(
                "DELIVERY_CODE_ISSUED",
                entity_type="delivery",
                entity_id=delivery.id,
                actor=user,
                panel_type=PanelType.ADMIN if user.is_staff else PanelType.SUPPLIER,
                details={
                    "confirmation_id": str(confirmation.id),
                    "expires_at": confirmation.expires_at.isoformat(),
                    "revoked_codes": revoked,
                },
            )

        email_sent = self._email_code(confirmation)
        self.get_logger().info(
            "Delivery code issued",
            extra={
                "delivery_id": str(delivery.id),
                "revoked_codes": revoked,
                "email_sent": email_sent,
            },
        )
        return ServiceResult.success(
            {
                "delivery_id": str(delivery.id),
                "expires_at": confirmation.expires_at.isoformat(),
                "email_sent": email_sent,
            }
        )

    def resend_code(self, delivery_id: Any, user: Any) -> ServiceResult[dict[str, Any]]:
        """
        Email the delivery's active confirmation code to the client again.

        Failure codes: DELIVERY_NOT_FOUND, PERMISSION_DENIED, DELIVERY_CLOSED,
        CODE_NOT_FOUND, CODE_NOT_SENT
        """
        delivery = self._get_delivery(delivery_id)
        if delivery is None:
            return self._delivery_not_found(delivery_id)
        if not self._may_confirm(user, delivery.client):
            return ServiceResult.failure(
                "You are not allowed to act on this delivery",
                error_code="PERMISSION_DENIED",
            )
        if delivery.status not in OPEN_DELIVERY_STATUSES:
            return self._delivery_closed(delivery)

        confirmation = (
            delivery.confirmations.filter(is_used=False, expires_at__gt=timezone.now())
            .order_by("-created_at")
            .first()
        )
        if confirmation is None:
            return ServiceResult.failure(
                "No active confirmation code for this delivery",
                error_code="CODE_NOT_FOUND",
                details={"delivery_id": str(delivery.id)},
            )

        email_sent = self._email_code(confirmation)
        self.audit.record(
            "DELIVERY_CODE_RESENT",
            entity_type="delivery",
            entity_id=delivery.id,
            actor=user,
            panel_type=PanelType.CLIENT,
            details={"confirmation_id": str(confirmation.id), "email_sent": email_sent},
        )
        if not email_sent:
            return ServiceResult.failure(
                "The confirmation code could not be emailed",
                error_code="CODE_NOT_SENT",
                details={"delivery_id": str(delivery.id)},
            )
        return ServiceResult.success(
            {
                "delivery_id": str(delivery.id),
                "expires_at": confirmation.expires_at.isoformat(),
                "email_sent": True,
            }
        )

    def _email_code(self, confirmation: DeliveryConfirmation) -> bool:
        delivery = confirmation.delivery
        client = delivery.client
        expires = timezone.localtime(confirmation.expires_at).strftime("%Y-%m-%d %H:%M")
        body = (
            f"Hello {client.name},\n\n"
            "Your delivery has been scheduled.\n\n"
            f"Confirmation code: {confirmation.code}\n"
            f"Valid until {expires}\n\n"
            "Only confirm receipt once you have received everything you ordered. "
            "The payment is released to the supplier as soon as you confirm.\n"
        )
        html_body = format_html(
            "<p>Hello {},</p>"
            "<p>Your delivery has been scheduled.</p>"
            "<p>Confirmation code: <strong>{}</strong><br>Valid until {}</p>"
            "<p>Only confirm receipt once you have received everything you ordered. "
            "The payment is released to the supplier as soon as you confirm.</p>",
            client.name,
            confirmation.code,
            expires,
        )
        return self.notifier.email_client(
            client,
            "Delivery confirmation code",
            body,
            html_body=html_body,
            metadata={"delivery_id": str(delivery.id), "quote_id": str(delivery.quote_id)},
        )

    @staticmethod
    def _get_delivery(delivery_id: Any) -> Delivery | None:
        return (
            Delivery.objects.select_related("client", "supplier")
            .filter(pk=delivery_id)
            .first()
        )

    @staticmethod
    def _delivery_not_found(delivery_id: Any) -> ServiceResult:
        return ServiceResult.failure(
            f"Delivery {delivery_id} not found",
            error_code="DELIVERY_NOT_FOUND",
        )

    @staticmethod
    def _delivery_closed(delivery: Delivery) -> ServiceResult:
        return ServiceResult.failure(
            f"Delivery is {delivery.status}",
            error_code="DELIVERY_CLOSED",
            details={"delivery_id": str(delivery.id), "status": delivery.status},
        )

    @staticmethod
    def _may_issue(user: Any, supplier: Any) -> bool:
        if user is None or not getattr(user, "is_authenticated", False):
            return False
        return user.is_staff or supplier.user_id == user.pk
