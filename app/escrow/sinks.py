"""
Audit and notification sinks.

Services record what they did through an AuditSink, tell suppliers about
their payouts through a NotificationSink and email clients their delivery
codes through the same sink. Both are Protocols so tests (and
other deployments) can pass any object with the same method; the defaults
write AuditLog and Notification rows.

Audit writes belong to the business transaction and propagate errors.
Notification delivery is best-effort: a failing notification is logged and
never undoes the money movement that triggered it.

Usage:
    from escrow.sinks import DatabaseAuditSink

    DatabaseAuditSink().record(
        "TRANSFER_REQUESTED",
        entity_type="payment",
        entity_id=payment.id,
        details={"transfer_id": transfer_id},
    )
"""

from __future__ import annotations

import logging
import smtplib
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.db import DatabaseError, transaction

from escrow.models import AuditLog, Notification
from escrow.state_machines import NotificationPriority, PanelType

if TYPE_CHECKING:
    from typing import Any

    from escrow.models import Client, Supplier


logger = logging.getLogger(__name__)


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class AuditSink(Protocol):
    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        details: dict[str, Any] | None = None,
        actor: Any = None,
        panel_type: str = PanelType.SYSTEM,
    ) -> None:
        """Append one audit record."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    def notify(
        self,
        supplier: Supplier,
        notification_type: str,
        title: str,
        message: str,
        priority: str = NotificationPriority.NORMAL,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Send one notification to a supplier."""
        ...

    def email_client(
        self,
        client: Client,
        subject: str,
        body: str,
        html_body: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Email a client; True when the message was handed to the mail backend."""
        ...


# =============================================================================
# Database implementations
# =============================================================================


class DatabaseAuditSink:
    """Writes AuditLog rows."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        details: dict[str, Any] | None = None,
        actor: Any = None,
        panel_type: str = PanelType.SYSTEM,
    ) -> None:
        if actor is not None and not getattr(actor, "is_authenticated", False):
            actor = None
        AuditLog.objects.create(
            action=action,
            entity_type=entity_type,
            entity_id="" if entity_id is None else str(entity_id),
            actor=actor,
            panel_type=panel_type,
            details=details or {},
        )
        logger.info(
            "Audit recorded",
            extra={
                "action": action,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
            },
        )


class DatabaseNotificationSink:
    """
    Writes Notification rows addressed to the supplier's user.

    Clients have no notification inbox; they are reached by email through
    Django's configured EMAIL_BACKEND.
    """

    def notify(
        self,
        supplier: Supplier,
        notification_type: str,
        title: str,
        message: str,
        priority: str = NotificationPriority.NORMAL,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            with transaction.atomic():
                Notification.objects.create(
                    supplier=supplier,
                    recipient_id=supplier.user_id,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    priority=priority,
                    metadata=metadata or {},
                )
        except DatabaseError:
            logger.exception(
                "Failed to store supplier notification",
                extra={
                    "supplier_id": str(supplier.pk),
                    "notification_type": notification_type,
                },
            )

    def email_client(
        self,
        client: Client,
        subject: str,
        body: str,
        html_body: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        log_context = {"client_id": str(client.pk), **(metadata or {})}
        if not client.email:
            logger.warning("Client has no email address", extra=log_context)
            return False

        message = EmailMultiAlternatives(
            subject=subject,
            body=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[client.email],
        )
        if html_body:
            message.attach_alternative(html_body, "text/html")
        try:
            sent = message.send()
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to email client", extra=log_context)
            return False

        logger.info("Client emailed", extra=log_context)
        return bool(sent)


__all__ = [
    "AuditSink",
    "DatabaseAuditSink",
    "DatabaseNotificationSink",
    "NotificationSink",
]
