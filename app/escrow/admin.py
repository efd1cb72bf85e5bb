"""
Escrow admin configuration.

Registers the settlement models with the Django admin. Payment states are
read-only here; operators move money through the service layer, e.g. the
"Retry supplier transfer" action below.
"""

from django.contrib import admin, messages

from escrow.models import (
    AuditLog,
    Client,
    Delivery,
    DeliveryConfirmation,
    EscrowReleaseError,
    GatewayEvent,
    Notification,
    Payment,
    Quote,
    Supplier,
)
from escrow.services import RetryService

__all__ = [
    "AuditLogAdmin",
    "ClientAdmin",
    "DeliveryAdmin",
    "DeliveryConfirmationAdmin",
    "EscrowReleaseErrorAdmin",
    "GatewayEventAdmin",
    "NotificationAdmin",
    "PaymentAdmin",
    "QuoteAdmin",
    "RetryQueueFilter",
    "SupplierAdmin",
]


def retry_transfers(modeladmin, request, payment_ids) -> None:
    """Retry each payment once and report the outcome to the operator."""
    service = RetryService()
    succeeded = 0
    for payment_id in dict.fromkeys(payment_ids):
        result = service.retry(payment_id, actor=request.user)
        if result.success:
            succeeded += 1
        else:
            modeladmin.message_user(
                request,
                f"Payment {payment_id}: {result.error}",
                level=messages.WARNING,
            )
    if succeeded:
        modeladmin.message_user(request, f"Requested {succeeded} supplier transfer(s).")


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ["name", "tax_id", "email", "gateway_customer_id", "created_at"]
    search_fields = ["name", "tax_id", "email", "gateway_customer_id"]
    readonly_fields = ["id", "gateway_customer_id", "created_at", "updated_at"]
    filter_horizontal = ["members"]


@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    """
    Admin configuration for Supplier.

    Payout destination fields are shown read-only; they are written by the
    destination healer and the bank account endpoint.
    """

    list_display = [
        "name",
        "tax_id",
        "gateway_wallet_id",
        "pix_key_type",
        "bank_data_verified_at",
    ]
    list_filter = ["business_type", "pix_key_type"]
    search_fields = ["name", "tax_id", "email", "gateway_wallet_id", "gateway_account_id"]
    readonly_fields = [
        "id",
        "gateway_account_id",
        "gateway_wallet_id",
        "bank_data_verified_at",
        "created_at",
        "updated_at",
    ]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "name", "email", "tax_id", "phone", "user"),
            },
        ),
        (
            "Business",
            {
                "fields": (
                    "business_type",
                    "specialties",
                    "declared_monthly_revenue",
                    "birth_date",
                    "address",
                    "address_number",
                    "province",
                    "postal_code",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Payout Destination",
            {
                "fields": (
                    "gateway_account_id",
                    "gateway_wallet_id",
                    "pix_key",
                    "pix_key_type",
                    "bank_code",
                    "bank_agency",
                    "bank_agency_digit",
                    "bank_account",
                    "bank_account_digit",
                    "bank_account_type",
                    "bank_holder_name",
                    "bank_holder_tax_id",
                    "bank_data_verified_at",
                ),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )


@admin.register(Quote)
class QuoteAdmin(admin.ModelAdmin):
    list_display = ["id", "client", "supplier", "base_amount", "status", "approved_at"]
    list_filter = ["status"]
    search_fields = ["id", "client__name", "supplier__name", "description"]
    readonly_fields = ["id", "created_at", "updated_at"]
    date_hierarchy = "created_at"


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = ["id", "quote", "status", "scheduled_date", "actual_delivery_date"]
    list_filter = ["status"]
    search_fields = ["id", "quote__id", "client__name", "supplier__name"]
    readonly_fields = ["id", "actual_delivery_date", "created_at", "updated_at"]


@admin.register(DeliveryConfirmation)
class DeliveryConfirmationAdmin(admin.ModelAdmin):
    list_display = ["code", "delivery", "expires_at", "is_used", "confirmed_at"]
    list_filter = ["is_used"]
    search_fields = ["code", "delivery__id"]
    readonly_fields = [
        "id",
        "code",
        "is_used",
        "confirmed_by",
        "confirmed_at",
        "created_at",
        "updated_at",
    ]

    def has_change_permission(self, request, obj=None) -> bool:
        """Codes are consumed only by the delivery confirmation flow."""
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Provides visibility into charges, escrow and supplier payouts. State
    changes go through the service layer, never through admin edits.
    """

    list_display = [
        "friendly_id",
        "supplier",
        "base_amount",
        "customer_total",
        "supplier_net_amount",
        "status",
        "transfer_status",
        "split_display",
        "created_at",
    ]
    list_filter = ["status", "transfer_status", "payment_method", "created_at"]
    search_fields = [
        "id",
        "friendly_id",
        "gateway_charge_id",
        "gateway_transfer_id",
        "supplier__name",
        "client__name",
    ]
    readonly_fields = [
        "id",
        "friendly_id",
        "quote",
        "client",
        "supplier",
        "payment_method",
        "installments",
        "base_amount",
        "gateway_payment_fee",
        "gateway_messaging_fee",
        "customer_total",
        "platform_commission_amount",
        "supplier_net_amount",
        "gateway_customer_id",
        "gateway_charge_id",
        "gateway_transfer_id",
        "invoice_url",
        "split_wallet_id",
        "status",
        "transfer_status",
        "transfer_error",
        "failure_reason",
        "version",
        "paid_at",
        "escrowed_at",
        "released_at",
        "completed_at",
        "cancelled_at",
        "failed_at",
        "transfer_completed_at",
        "metadata",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["retry_transfer"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "friendly_id", "quote", "client", "supplier"),
            },
        ),
        (
            "Amounts",
            {
                "fields": (
                    "payment_method",
                    "installments",
                    "base_amount",
                    "gateway_payment_fee",
                    "gateway_messaging_fee",
                    "customer_total",
                    "platform_commission_amount",
                    "supplier_net_amount",
                ),
            },
        ),
        (
            "Gateway",
            {
                "fields": (
                    "gateway_customer_id",
                    "gateway_charge_id",
                    "gateway_transfer_id",
                    "invoice_url",
                    "split_wallet_id",
                ),
            },
        ),
        (
            "State",
            {
                "fields": (
                    "status",
                    "transfer_status",
                    "transfer_error",
                    "failure_reason",
                    "version",
                ),
            },
        ),
        (
            "State Timestamps",
            {
                "fields": (
                    "paid_at",
                    "escrowed_at",
                    "released_at",
                    "completed_at",
                    "cancelled_at",
                    "failed_at",
                    "transfer_completed_at",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def split_display(self, obj: Payment) -> bool:
        return obj.has_split

    split_display.short_description = "Split"
    split_display.boolean = True

    @admin.action(description="Retry supplier transfer")
    def retry_transfer(self, request, queryset):
        retry_transfers(self, request, queryset.values_list("id", flat=True))

    def has_add_permission(self, request) -> bool:
        """Payments are created by the charge flow only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


class RetryQueueFilter(admin.SimpleListFilter):
    """Split open release errors into the automatic and the manual queue."""

    title = "queue"
    parameter_name = "queue"

    def lookups(self, request, model_admin):
        return [("due", "Due for retry"), ("manual", "Manual")]

    def queryset(self, request, queryset):
        if self.value() == "due":
            return queryset.due()
        if self.value() == "manual":
            return queryset.manual_queue()
        return queryset


@admin.register(EscrowReleaseError)
class EscrowReleaseErrorAdmin(admin.ModelAdmin):
    """
    Admin configuration for EscrowReleaseError.

    The manual queue: rows with no next_retry_at are never retried
    automatically and wait for an operator.
    """

    list_display = [
        "payment",
        "error_type",
        "retry_count",
        "next_retry_at",
        "manual_display",
        "resolved_at",
        "created_at",
    ]
    list_filter = [RetryQueueFilter, "error_type", "created_at"]
    search_fields = ["payment__id", "payment__friendly_id", "message"]
    readonly_fields = [
        "id",
        "payment",
        "error_type",
        "message",
        "retry_count",
        "next_retry_at",
        "resolved_at",
        "details",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    actions = ["retry_transfer"]

    def manual_display(self, obj: EscrowReleaseError) -> bool:
        return obj.needs_manual_handling

    manual_display.short_description = "Manual"
    manual_display.boolean = True

    @admin.action(description="Retry supplier transfer")
    def retry_transfer(self, request, queryset):
        retry_transfers(
            self,
            request,
            queryset.filter(resolved_at__isnull=True).values_list("payment_id", flat=True),
        )

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ["action", "entity_type", "entity_id", "actor", "panel_type", "created_at"]
    list_filter = ["action", "entity_type", "panel_type"]
    search_fields = ["entity_id", "action"]
    readonly_fields = [
        "id",
        "action",
        "entity_type",
        "entity_id",
        "actor",
        "panel_type",
        "details",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for audit records."""
        return False


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ["notification_type", "supplier", "priority", "is_read", "created_at"]
    list_filter = ["notification_type", "priority", "is_read"]
    search_fields = ["supplier__name", "title"]
    readonly_fields = ["id", "created_at", "updated_at"]


@admin.register(GatewayEvent)
class GatewayEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for GatewayEvent.

    Provides visibility into webhook processing for debugging.
    """

    list_display = [
        "gateway_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type"]
    search_fields = ["gateway_event_id", "event_type"]
    readonly_fields = [
        "id",
        "gateway_event_id",
        "event_type",
        "payload",
        "status",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"

    def has_add_permission(self, request) -> bool:
        return False
