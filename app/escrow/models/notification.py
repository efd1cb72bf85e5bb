"""
Notification: user-facing message for a supplier about its payouts.

Written through escrow.sinks.DatabaseNotificationSink.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import NotificationPriority


class Notification(UUIDPrimaryKeyMixin, BaseModel):
    """
    In-app notification addressed to a supplier.

    Fields:
        notification_type: Machine key, e.g. delivery_confirmed, payout_failed
        priority: Display priority in the supplier inbox
        metadata: Ids the UI links to (payment_id, delivery_id)
    """

    supplier = models.ForeignKey(
        "escrow.Supplier",
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="escrow_notifications",
    )
    notification_type = models.CharField(max_length=50, db_index=True)
    title = models.CharField(max_length=255)
    message = models.TextField()
    priority = models.CharField(
        max_length=10,
        choices=NotificationPriority.choices,
        default=NotificationPriority.NORMAL,
    )
    metadata = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Notification"
        verbose_name_plural = "Notifications"

    def __str__(self) -> str:
        return f"Notification({self.notification_type} -> {self.supplier_id})"

