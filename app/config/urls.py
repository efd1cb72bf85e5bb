"""
URL configuration for the settlement service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/escrow/                - Escrow endpoints
        fees/quote/                - Fee preview
        quotes/{id}/charge/        - Charge an approved quote
        payments/{id}/             - Payment detail
        payments/{id}/sync/        - Poll gateway status
        payments/{id}/cancel/      - Cancel an open charge
        payments/{id}/release/     - Release escrow to the supplier
        payments/{id}/retry-transfer/ - Retry a failed transfer
        deliveries/confirm/        - Redeem a delivery code
        deliveries/{id}/issue-code/ - Email the client a new code
        deliveries/{id}/resend-code/ - Email the active code again
        suppliers/{id}/validate-destination/ - Check/heal supplier wallet
        suppliers/{id}/bank-account/ - Update supplier bank account
        balance/                   - Gateway account balance (staff)
        webhooks/gateway/          - Gateway webhook endpoint (POST)
        webhooks/transfer-authorization/ - Transfer approval callback (POST)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("escrow/", include("escrow.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Escrow Settlement Admin"
admin.site.site_title = "Escrow Admin"
admin.site.index_title = "Payments, payouts and deliveries"
