"""
Quote, Delivery and DeliveryConfirmation models.

A Quote is the approved commercial agreement that gets charged. Once goods
ship, a Delivery is created with a single-use DeliveryConfirmation code the
buyer redeems to release escrow.

Usage:
    from escrow.models import DeliveryConfirmation

    confirmation = DeliveryConfirmation.issue(delivery)
    # buyer redeems confirmation.code -> DeliveryService.confirm_delivery()
"""

from __future__ import annotations

import secrets
import string
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import DeliveryStatus, QuoteStatus

CONFIRMATION_CODE_LENGTH = 6
CONFIRMATION_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_confirmation_code() -> str:
    """Return a random 6 character uppercase alphanumeric code."""
    return "".join(
        secrets.choice(CONFIRMATION_CODE_ALPHABET)
        for _ in range(CONFIRMATION_CODE_LENGTH)
    )


class Quote(UUIDPrimaryKeyMixin, BaseModel):
    """
    A supplier's priced answer to a client request.

    Fields:
        base_amount: Goods/services value before gateway fees and commission
        status: Only APPROVED quotes may be charged
    """

    client = models.ForeignKey(
        "escrow.Client",
        on_delete=models.PROTECT,
        related_name="quotes",
    )
    supplier = models.ForeignKey(
        "escrow.Supplier",
        on_delete=models.PROTECT,
        related_name="quotes",
    )
    description = models.CharField(max_length=255, blank=True, default="")
    base_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(
        max_length=20,
        choices=QuoteStatus.choices,
        default=QuoteStatus.DRAFT,
        db_index=True,
    )
    approved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Quote"
        verbose_name_plural = "Quotes"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(base_amount__gt=0),
                name="quote_base_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Quote({self.id}, {self.status})"

    @property
    def is_approved(self) -> bool:
        return self.status == QuoteStatus.APPROVED


class Delivery(UUIDPrimaryKeyMixin, BaseModel):
    """Shipment of an approved quote to the client."""

    quote = models.OneToOneField(
        Quote,
        on_delete=models.PROTECT,
        related_name="delivery",
    )
    client = models.ForeignKey(
        "escrow.Client",
        on_delete=models.PROTECT,
        related_name="deliveries",
    )
    supplier = models.ForeignKey(
        "escrow.Supplier",
        on_delete=models.PROTECT,
        related_name="deliveries",
    )
    status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.SCHEDULED,
        db_index=True,
    )
    scheduled_date = models.DateTimeField(null=True, blank=True)
    actual_delivery_date = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Delivery"
        verbose_name_plural = "Deliveries"

    def __str__(self) -> str:
        return f"Delivery({self.id}, {self.status})"


class DeliveryConfirmation(UUIDPrimaryKeyMixin, BaseModel):
    """
    Single-use code proving the buyer received the goods.

    A code is consumed at most once. Consumption is a single conditional
    UPDATE on ``is_used`` (see ``consume``), never a read followed by a write.

    Fields:
        code: 6 character uppercase alphanumeric token
        expires_at: Redemption deadline
        is_used: Set exactly once by ``consume``
        confirmed_by / confirmed_at: Who redeemed the code and when
    """

    delivery = models.ForeignKey(
        Delivery,
        on_delete=models.CASCADE,
        related_name="confirmations",
    )
    code = models.CharField(
        max_length=12,
        unique=True,
        default=generate_confirmation_code,
    )
    expires_at = models.DateTimeField(db_index=True)
    is_used = models.BooleanField(default=False, db_index=True)
    confirmed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Delivery Confirmation"
        verbose_name_plural = "Delivery Confirmations"

    def __str__(self) -> str:
        return f"DeliveryConfirmation({self.code}, used={self.is_used})"

    @classmethod
    def issue(cls, delivery: Delivery, ttl: timedelta | None = None) -> DeliveryConfirmation:
        """Create a fresh code for a delivery."""
        if ttl is None:
            ttl = timedelta(days=settings.ESCROW_DELIVERY_CODE_TTL_DAYS)
        return cls.objects.create(delivery=delivery, expires_at=timezone.now() + ttl)

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= timezone.now()

    def consume(self, user=None) -> bool:
        """
        Atomically mark this code used.

        Returns:
            True if this call consumed the code, False if it was already
            used or expired by the time the UPDATE ran.
        """
        now = timezone.now()
        updated = DeliveryConfirmation.objects.filter(
            pk=self.pk,
            is_used=False,
            expires_at__gt=now,
        ).update(
            is_used=True,
            confirmed_by=user,
            confirmed_at=now,
            updated_at=now,
        )
        if updated:
            self.is_used = True
            self.confirmed_by = user
            self.confirmed_at = now
        return bool(updated)
