import uuid
from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models

import escrow.models.payment
import escrow.models.quote


def money(help_text=""):
    return models.DecimalField(
        decimal_places=2,
        default=Decimal("0.00"),
        help_text=help_text,
        max_digits=12,
    )


def uuid_pk():
    return models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
        primary_key=True,
        serialize=False,
    )


def created_at():
    return models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )


def updated_at():
    return models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Client",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                (
                    "tax_id",
                    models.CharField(
                        blank=True, default="", help_text="CPF/CNPJ (digits only)", max_length=18
                    ),
                ),
                ("phone", models.CharField(blank=True, default="", max_length=20)),
                (
                    "gateway_customer_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Customer id at the payment gateway (cus_xxx)",
                        max_length=100,
                    ),
                ),
                (
                    "members",
                    models.ManyToManyField(
                        blank=True, related_name="escrow_clients", to=settings.AUTH_USER_MODEL
                    ),
                ),
            ],
            options={
                "verbose_name": "Client",
                "verbose_name_plural": "Clients",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Supplier",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                (
                    "tax_id",
                    models.CharField(
                        blank=True, default="", help_text="CPF/CNPJ (digits only)", max_length=18
                    ),
                ),
                ("phone", models.CharField(blank=True, default="", max_length=20)),
                (
                    "business_type",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Company size / legal form (mei, me, epp, ltda, sa)",
                        max_length=30,
                    ),
                ),
                ("specialties", models.JSONField(blank=True, default=list)),
                (
                    "declared_monthly_revenue",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True),
                ),
                (
                    "birth_date",
                    models.DateField(
                        blank=True,
                        help_text="Required by the gateway for individual (CPF) sub-accounts",
                        null=True,
                    ),
                ),
                ("address", models.CharField(blank=True, default="", max_length=255)),
                ("address_number", models.CharField(blank=True, default="", max_length=20)),
                ("province", models.CharField(blank=True, default="", max_length=100)),
                ("postal_code", models.CharField(blank=True, default="", max_length=10)),
                (
                    "gateway_account_id",
                    models.CharField(
                        blank=True, default="", help_text="Gateway sub-account id", max_length=100
                    ),
                ),
                (
                    "gateway_wallet_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Gateway wallet id that receives split proceeds",
                        max_length=100,
                    ),
                ),
                ("pix_key", models.CharField(blank=True, default="", max_length=140)),
                (
                    "pix_key_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("CPF", "CPF"),
                            ("CNPJ", "CNPJ"),
                            ("EMAIL", "E-mail"),
                            ("PHONE", "Phone"),
                            ("EVP", "Random Key"),
                        ],
                        default="",
                        max_length=10,
                    ),
                ),
                ("bank_code", models.CharField(blank=True, default="", max_length=10)),
                ("bank_agency", models.CharField(blank=True, default="", max_length=10)),
                ("bank_agency_digit", models.CharField(blank=True, default="", max_length=2)),
                ("bank_account", models.CharField(blank=True, default="", max_length=20)),
                ("bank_account_digit", models.CharField(blank=True, default="", max_length=2)),
                (
                    "bank_account_type",
                    models.CharField(blank=True, default="CONTA_CORRENTE", max_length=20),
                ),
                ("bank_holder_name", models.CharField(blank=True, default="", max_length=255)),
                ("bank_holder_tax_id", models.CharField(blank=True, default="", max_length=18)),
                ("bank_data_verified_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who receives payout notifications",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="escrow_suppliers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Supplier",
                "verbose_name_plural": "Suppliers",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Quote",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("base_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="quotes",
                        to="escrow.client",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="quotes",
                        to="escrow.supplier",
                    ),
                ),
            ],
            options={
                "verbose_name": "Quote",
                "verbose_name_plural": "Quotes",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("base_amount__gt", 0)),
                        name="quote_base_amount_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Delivery",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("scheduled", "Scheduled"),
                            ("in_transit", "In Transit"),
                            ("delivered", "Delivered"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="scheduled",
                        max_length=20,
                    ),
                ),
                ("scheduled_date", models.DateTimeField(blank=True, null=True)),
                ("actual_delivery_date", models.DateTimeField(blank=True, null=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="deliveries",
                        to="escrow.client",
                    ),
                ),
                (
                    "quote",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="delivery",
                        to="escrow.quote",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="deliveries",
                        to="escrow.supplier",
                    ),
                ),
            ],
            options={
                "verbose_name": "Delivery",
                "verbose_name_plural": "Deliveries",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="DeliveryConfirmation",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                (
                    "code",
                    models.CharField(
                        default=escrow.models.quote.generate_confirmation_code,
                        max_length=12,
                        unique=True,
                    ),
                ),
                ("expires_at", models.DateTimeField(db_index=True)),
                ("is_used", models.BooleanField(db_index=True, default=False)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "confirmed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "delivery",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="confirmations",
                        to="escrow.delivery",
                    ),
                ),
            ],
            options={
                "verbose_name": "Delivery Confirmation",
                "verbose_name_plural": "Delivery Confirmations",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                (
                    "friendly_id",
                    models.CharField(
                        default=escrow.models.payment.generate_friendly_id,
                        editable=False,
                        max_length=20,
                        unique=True,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("pix", "PIX"),
                            ("boleto", "Boleto"),
                            ("credit_card", "Credit Card"),
                            ("undetermined", "Undetermined"),
                        ],
                        default="undetermined",
                        max_length=20,
                    ),
                ),
                ("installments", models.PositiveSmallIntegerField(default=1)),
                ("base_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("gateway_payment_fee", money("Gateway fee for the payment method")),
                ("gateway_messaging_fee", money("Flat gateway messaging fee")),
                ("customer_total", money("Amount charged to the buyer")),
                ("platform_commission_amount", money("Platform commission (supplier side)")),
                ("supplier_net_amount", money("Amount owed to the supplier")),
                ("gateway_customer_id", models.CharField(blank=True, default="", max_length=100)),
                (
                    "gateway_charge_id",
                    models.CharField(
                        blank=True,
                        help_text="Charge id at the gateway (pay_xxx)",
                        max_length=100,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "gateway_transfer_id",
                    models.CharField(
                        blank=True,
                        help_text="Transfer id at the gateway",
                        max_length=100,
                        null=True,
                        unique=True,
                    ),
                ),
                ("invoice_url", models.URLField(blank=True, default="", max_length=500)),
                (
                    "split_wallet_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Wallet that received the split (blank = no split)",
                        max_length=100,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("in_escrow", "In Escrow"),
                            ("transfer_pending", "Transfer Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("overdue", "Overdue"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Buyer-side charge state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "transfer_status",
                    django_fsm.FSMField(
                        choices=[
                            ("none", "None"),
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="none",
                        help_text="Supplier payout state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("transfer_error", models.TextField(blank=True, default="")),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("version", models.PositiveIntegerField(default=1)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("escrowed_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("transfer_completed_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="escrow.client",
                    ),
                ),
                (
                    "quote",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="escrow.quote",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="escrow.supplier",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"], name="payment_status_created_idx"
                    ),
                    models.Index(
                        fields=["transfer_status", "updated_at"],
                        name="payment_transfer_updated_idx",
                    ),
                    models.Index(
                        fields=["supplier", "status"], name="payment_supplier_status_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("base_amount__gt", 0)),
                        name="payment_base_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("supplier_net_amount__lte", models.F("base_amount"))
                        ),
                        name="payment_net_not_above_base",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("customer_total__gte", models.F("base_amount"))),
                        name="payment_total_not_below_base",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("status__in", ["failed", "cancelled"]), _negated=True
                        ),
                        fields=("quote",),
                        name="payment_one_open_per_quote",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowReleaseError",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                (
                    "error_type",
                    models.CharField(
                        choices=[
                            ("missing_bank_data", "Missing Bank Data"),
                            ("transfer_failed", "Transfer Failed"),
                        ],
                        db_index=True,
                        max_length=30,
                    ),
                ),
                ("message", models.TextField()),
                ("retry_count", models.PositiveSmallIntegerField(default=1)),
                ("next_retry_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("details", models.JSONField(blank=True, default=dict)),
                (
                    "payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="release_errors",
                        to="escrow.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow Release Error",
                "verbose_name_plural": "Escrow Release Errors",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        condition=models.Q(("resolved_at__isnull", True)),
                        fields=["next_retry_at"],
                        name="release_error_due_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("action", models.CharField(db_index=True, max_length=64)),
                ("entity_type", models.CharField(max_length=64)),
                ("entity_id", models.CharField(db_index=True, max_length=64)),
                (
                    "panel_type",
                    models.CharField(
                        choices=[
                            ("client", "Client"),
                            ("supplier", "Supplier"),
                            ("admin", "Admin"),
                            ("system", "System"),
                        ],
                        default="system",
                        max_length=20,
                    ),
                ),
                ("details", models.JSONField(blank=True, default=dict)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Audit Log",
                "verbose_name_plural": "Audit Logs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["entity_type", "entity_id"], name="audit_entity_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("notification_type", models.CharField(db_index=True, max_length=50)),
                ("title", models.CharField(max_length=255)),
                ("message", models.TextField()),
                (
                    "priority",
                    models.CharField(
                        choices=[("low", "Low"), ("normal", "Normal"), ("high", "High")],
                        default="normal",
                        max_length=10,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("is_read", models.BooleanField(db_index=True, default=False)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                (
                    "recipient",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="escrow_notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="escrow.supplier",
                    ),
                ),
            ],
            options={
                "verbose_name": "Notification",
                "verbose_name_plural": "Notifications",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="GatewayEvent",
            fields=[
                ("id", uuid_pk()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                (
                    "gateway_event_id",
                    models.CharField(
                        help_text="Event id from the gateway (evt_xxx) or a payload digest",
                        max_length=255,
                        unique=True,
                    ),
                ),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("payload", models.JSONField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Gateway Event",
                "verbose_name_plural": "Gateway Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"], name="gateway_event_status_idx"
                    )
                ],
            },
        ),
    ]
