"""
GatewayEvent: inbound gateway webhook tracking for idempotent processing.

Every webhook is stored before it is processed. The unique
``gateway_event_id`` lets redelivered webhooks be acknowledged without
running their handlers twice.

Usage:
    event, created = GatewayEvent.objects.get_or_create(
        gateway_event_id=payload["id"],
        defaults={"event_type": payload["event"], "payload": payload},
    )
    if not created and event.is_processed:
        return HttpResponse(status=200)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import GatewayEventStatus

MAX_EVENT_RETRIES = 5


class GatewayEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A webhook delivered by the payment gateway.

    Processing Flow:
        1. Webhook arrives, access token checked
        2. Insert/get GatewayEvent by gateway_event_id
        3. If PROCESSED -> acknowledge (duplicate)
        4. Mark PROCESSING, dispatch to the registered handler
        5. Mark PROCESSED or FAILED (Celery retries FAILED)
    """

    gateway_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Event id from the gateway (evt_xxx) or a payload digest",
    )
    event_type = models.CharField(max_length=100, db_index=True)
    payload = models.JSONField()
    status = models.CharField(
        max_length=20,
        choices=GatewayEventStatus.choices,
        default=GatewayEventStatus.PENDING,
        db_index=True,
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True, default="")
    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Gateway Event"
        verbose_name_plural = "Gateway Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="gateway_event_status_idx"),
        ]

    def __str__(self) -> str:
        return f"GatewayEvent({self.gateway_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == GatewayEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return (
            self.status == GatewayEventStatus.FAILED
            and self.retry_count < MAX_EVENT_RETRIES
        )

    # The mark_* helpers do not save; callers save after calling.

    def mark_processing(self) -> None:
        self.status = GatewayEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = GatewayEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_failed(self, error_message: str) -> None:
        self.status = GatewayEventStatus.FAILED
        self.error_message = error_message[:2000]

    def get_object_id(self, key: str) -> str | None:
        """Id of the nested payment/transfer object, e.g. key="payment"."""
        obj = self.payload.get(key) or {}
        return obj.get("id")
