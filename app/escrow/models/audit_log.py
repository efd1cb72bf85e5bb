"""
AuditLog: append-only record of every state-changing settlement operation.

Written through escrow.sinks.DatabaseAuditSink; consumed by reporting.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import PanelType


class AuditLog(UUIDPrimaryKeyMixin, BaseModel):
    """
    One audited action.

    Fields:
        action: Upper-case verb, e.g. CHARGE_CREATED, TRANSFER_FAILED
        entity_type / entity_id: What was acted upon
        actor: User who triggered it (null for system jobs and webhooks)
        panel_type: Which side of the marketplace triggered it
        details: Free-form JSON context (old/new ids, amounts, reasons)
    """

    action = models.CharField(max_length=64, db_index=True)
    entity_type = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64, db_index=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    panel_type = models.CharField(
        max_length=20,
        choices=PanelType.choices,
        default=PanelType.SYSTEM,
    )
    details = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Audit Log"
        verbose_name_plural = "Audit Logs"
        indexes = [
            models.Index(fields=["entity_type", "entity_id"], name="audit_entity_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.action} {self.entity_type}:{self.entity_id}"
