"""
Escrow domain models.

- Client, Supplier: Marketplace parties (Supplier embeds the payout destination)
- Quote, Delivery, DeliveryConfirmation: Commercial agreement and its delivery
- Payment: Escrowed charge and supplier payout state
- EscrowReleaseError: Failed payout attempts and their retry schedule
- AuditLog, Notification: Records behind the audit and notification sinks
- GatewayEvent: Inbound webhook idempotency
"""

from escrow.models.audit_log import AuditLog
from escrow.models.gateway_event import GatewayEvent
from escrow.models.notification import Notification
from escrow.models.parties import Client, Supplier
from escrow.models.payment import Payment
from escrow.models.quote import Delivery, DeliveryConfirmation, Quote
from escrow.models.release_error import EscrowReleaseError

__all__ = [
    "AuditLog",
    "Client",
    "Delivery",
    "DeliveryConfirmation",
    "EscrowReleaseError",
    "GatewayEvent",
    "Notification",
    "Payment",
    "Quote",
    "Supplier",
]
