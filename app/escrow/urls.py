"""
URL configuration for the escrow app.

All routes are prefixed with /api/v1/escrow/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("escrow/", include("escrow.urls")),
    ]
"""

from django.urls import path

from escrow import views
from escrow.webhooks.views import gateway_webhook, transfer_authorization

app_name = "escrow"

urlpatterns = [
    # Fees
    path("fees/quote/", views.FeeQuoteView.as_view(), name="fee_quote"),
    # Charges
    path(
        "quotes/<uuid:quote_id>/charge/",
        views.CreateChargeView.as_view(),
        name="quote_charge",
    ),
    path(
        "payments/<uuid:payment_id>/",
        views.PaymentDetailView.as_view(),
        name="payment_detail",
    ),
    path(
        "payments/<uuid:payment_id>/sync/",
        views.SyncPaymentView.as_view(),
        name="payment_sync",
    ),
    path(
        "payments/<uuid:payment_id>/cancel/",
        views.CancelChargeView.as_view(),
        name="payment_cancel",
    ),
    # Payouts
    path(
        "payments/<uuid:payment_id>/release/",
        views.ReleasePaymentView.as_view(),
        name="payment_release",
    ),
    path(
        "payments/<uuid:payment_id>/retry-transfer/",
        views.RetryTransferView.as_view(),
        name="payment_retry_transfer",
    ),
    # Deliveries
    path(
        "deliveries/confirm/",
        views.ConfirmDeliveryView.as_view(),
        name="delivery_confirm",
    ),
    path(
        "deliveries/<uuid:delivery_id>/issue-code/",
        views.IssueDeliveryCodeView.as_view(),
        name="delivery_issue_code",
    ),
    path(
        "deliveries/<uuid:delivery_id>/resend-code/",
        views.ResendDeliveryCodeView.as_view(),
        name="delivery_resend_code",
    ),
    # Suppliers
    path(
        "suppliers/<uuid:supplier_id>/validate-destination/",
        views.ValidateDestinationView.as_view(),
        name="supplier_validate_destination",
    ),
    path(
        "suppliers/<uuid:supplier_id>/bank-account/",
        views.SupplierBankAccountView.as_view(),
        name="supplier_bank_account",
    ),
    # Gateway account
    path("balance/", views.GatewayBalanceView.as_view(), name="gateway_balance"),
    # Webhook endpoints
    path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    path(
        "webhooks/transfer-authorization/",
        transfer_authorization,
        name="transfer_authorization",
    ),
]
