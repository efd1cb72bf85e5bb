"""
Escrow app configuration.

This app provides the escrow settlement engine:
- Fee calculation for quotes and charges
- Buyer charges with supplier split at the payment gateway
- Status synchronization (polling and webhooks)
- Escrow release to the supplier after delivery confirmation
- Transfer retries with exponential backoff
"""

from django.apps import AppConfig


class EscrowConfig(AppConfig):
    """Configuration for the escrow application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "escrow"
    verbose_name = "Escrow"

