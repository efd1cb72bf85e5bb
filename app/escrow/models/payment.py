"""
Payment model: the central escrow settlement record.

One Payment exists per approved quote (failed or cancelled attempts do not
block a new one). It tracks the buyer-facing charge through ``status`` and
the supplier payout through ``transfer_status``; both are protected
django-fsm fields changed only through escrow.state_machines.transitions.

Usage:
    from escrow.models import Payment
    from escrow.state_machines.transitions import apply_transition

    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(id=payment_id)
        apply_transition(payment, "mark_in_escrow")
        payment.save()
"""

from __future__ import annotations

import secrets
from decimal import Decimal

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import (
    CLOSED_CHARGE_STATUSES,
    FUNDED_PAYMENT_STATUSES,
    OPEN_PAYMENT_STATUSES,
    PaymentMethod,
    PaymentStatus,
    TransferStatus,
)


def generate_friendly_id() -> str:
    """Human-facing payment reference, e.g. PAY-3F9A1C07."""
    return f"PAY-{secrets.token_hex(4).upper()}"


def money_field(help_text: str = "", **kwargs) -> models.DecimalField:
    return models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text=help_text,
        **kwargs,
    )


class PaymentQuerySet(models.QuerySet):
    def open_for_quote(self, quote_id):
        """Payments that block a new charge for the quote."""
        return self.filter(quote_id=quote_id).exclude(
            status__in=CLOSED_CHARGE_STATUSES
        )

    def awaiting_sync(self):
        """Charged payments whose buyer-side status can still move."""
        return self.filter(status__in=OPEN_PAYMENT_STATUSES).exclude(
            gateway_charge_id__isnull=True
        )


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Escrowed charge for an approved quote and its supplier payout.

    Money Fields:
        base_amount: Goods/services value (pre-fees)
        gateway_payment_fee / gateway_messaging_fee: Borne by the buyer
        customer_total: base_amount + gateway fees
        platform_commission_amount: Borne by the supplier
        supplier_net_amount: base_amount - platform commission

    Invariants (also enforced as DB constraints):
        supplier_net_amount <= base_amount <= customer_total

    Concurrency:
        ``version`` increments on every save; transitions are applied on rows
        locked with select_for_update().
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    quote = models.ForeignKey(
        "escrow.Quote",
        on_delete=models.PROTECT,
        related_name="payments",
    )
    client = models.ForeignKey(
        "escrow.Client",
        on_delete=models.PROTECT,
        related_name="payments",
    )
    supplier = models.ForeignKey(
        "escrow.Supplier",
        on_delete=models.PROTECT,
        related_name="payments",
    )
    friendly_id = models.CharField(
        max_length=20,
        unique=True,
        default=generate_friendly_id,
        editable=False,
    )

    # ==========================================================================
    # Money
    # ==========================================================================

    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.UNDETERMINED,
    )
    installments = models.PositiveSmallIntegerField(default=1)
    base_amount = models.DecimalField(max_digits=12, decimal_places=2)
    gateway_payment_fee = money_field("Gateway fee for the payment method")
    gateway_messaging_fee = money_field("Flat gateway messaging fee")
    customer_total = money_field("Amount charged to the buyer")
    platform_commission_amount = money_field("Platform commission (supplier side)")
    supplier_net_amount = money_field("Amount owed to the supplier")

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    gateway_customer_id = models.CharField(max_length=100, blank=True, default="")
    gateway_charge_id = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Charge id at the gateway (pay_xxx)",
    )
    gateway_transfer_id = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Transfer id at the gateway",
    )
    invoice_url = models.URLField(max_length=500, blank=True, default="")
    split_wallet_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Wallet that received the split (blank = no split)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Buyer-side charge state (managed by FSM)",
    )
    transfer_status = FSMField(
        default=TransferStatus.NONE,
        choices=TransferStatus.choices,
        db_index=True,
        protected=True,
        help_text="Supplier payout state (managed by FSM)",
    )
    transfer_error = models.TextField(blank=True, default="")
    failure_reason = models.TextField(blank=True, default="")
    version = models.PositiveIntegerField(default=1)

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    paid_at = models.DateTimeField(null=True, blank=True)
    escrowed_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    transfer_completed_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
            models.Index(
                fields=["transfer_status", "updated_at"],
                name="payment_transfer_updated_idx",
            ),
            models.Index(fields=["supplier", "status"], name="payment_supplier_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(base_amount__gt=0),
                name="payment_base_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(supplier_net_amount__lte=F("base_amount")),
                name="payment_net_not_above_base",
            ),
            models.CheckConstraint(
                condition=Q(customer_total__gte=F("base_amount")),
                name="payment_total_not_below_base",
            ),
            models.UniqueConstraint(
                fields=["quote"],
                condition=~Q(status__in=CLOSED_CHARGE_STATUSES),
                name="payment_one_open_per_quote",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.friendly_id}, {self.status}/{self.transfer_status})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = self.pk and not self._state.adding and not kwargs.get(
            "force_insert", False
        )
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_funded(self) -> bool:
        """Buyer money has reached the gateway."""
        return self.status in FUNDED_PAYMENT_STATUSES

    @property
    def has_split(self) -> bool:
        return bool(self.split_wallet_id)

    @property
    def can_release(self) -> bool:
        """Funds collected and no payout in flight or done."""
        return self.status in (
            PaymentStatus.IN_ESCROW,
            PaymentStatus.COMPLETED,
        ) and self.transfer_status in (TransferStatus.NONE, TransferStatus.FAILED)

    # ==========================================================================
    # Status Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
    )
    def start_processing(self):
        """Charge accepted by the gateway, awaiting buyer payment."""

    @transition(
        field=status,
        source=[
            PaymentStatus.PENDING,
            PaymentStatus.PROCESSING,
            PaymentStatus.OVERDUE,
        ],
        target=PaymentStatus.IN_ESCROW,
    )
    def mark_in_escrow(self):
        """
        Buyer paid; funds are held until delivery is confirmed.

        Never goes straight to COMPLETED.
        """
        now = timezone.now()
        self.paid_at = self.paid_at or now
        self.escrowed_at = now

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.OVERDUE,
    )
    def mark_overdue(self):
        pass

    @transition(
        field=status,
        source=[
            PaymentStatus.PENDING,
            PaymentStatus.PROCESSING,
            PaymentStatus.OVERDUE,
        ],
        target=PaymentStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        self.cancelled_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        """Gateway refused the charge."""
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.IN_ESCROW, PaymentStatus.TRANSFER_PENDING],
        target=PaymentStatus.TRANSFER_PENDING,
    )
    def request_transfer(self):
        """Payout transfer accepted by the gateway, awaiting settlement."""
        self.released_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.TRANSFER_PENDING,
        target=PaymentStatus.COMPLETED,
    )
    def complete(self):
        """Gateway confirmed the supplier transfer."""
        self.completed_at = timezone.now()

    # ==========================================================================
    # Transfer Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=transfer_status,
        source=[TransferStatus.NONE, TransferStatus.FAILED],
        target=TransferStatus.PENDING,
    )
    def begin_transfer(self):
        self.transfer_error = ""

    @transition(
        field=transfer_status,
        source=TransferStatus.PENDING,
        target=TransferStatus.COMPLETED,
    )
    def confirm_transfer(self):
        self.transfer_completed_at = timezone.now()

    @transition(
        field=transfer_status,
        source=[TransferStatus.NONE, TransferStatus.PENDING],
        target=TransferStatus.FAILED,
    )
    def fail_transfer(self, error: str = ""):
        self.transfer_error = error
