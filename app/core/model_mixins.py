"""
Reusable model mixins.

Mixins:
    UUIDPrimaryKeyMixin: UUID primary key instead of an auto-increment integer

Usage:
    class DeliveryConfirmation(UUIDPrimaryKeyMixin, BaseModel):
        code = models.CharField(max_length=12, unique=True)

Note:
    UUID keys are exposed in URLs and gateway externalReference values, so
    they must not leak record counts or ordering.
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a random UUID as primary key.

    Fields:
        id: UUIDField primary key generated with uuid4
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True
