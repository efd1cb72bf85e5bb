"""
Webhook handling for payment gateway events.

This module provides views and handlers for the gateway's charge and
transfer webhooks plus the synchronous transfer authorization callback.
Events are token-checked, stored idempotently, and processed
asynchronously via Celery tasks.

Usage:
    # In urls.py
    from escrow.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    ]
"""

from escrow.webhooks.handlers import dispatch_event, register_handler
from escrow.webhooks.views import gateway_webhook, transfer_authorization

__all__ = [
    "dispatch_event",
    "gateway_webhook",
    "register_handler",
    "transfer_authorization",
]
