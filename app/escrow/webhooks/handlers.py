"""
Webhook event handlers for gateway events.

This module provides a handler registry and implementations for
processing the gateway's charge and transfer events.

Usage:
    from escrow.webhooks.handlers import dispatch_event, register_handler

    # Register a custom handler
    @register_handler("PAYMENT_UPDATED")
    def handle_payment_updated(event: GatewayEvent) -> ServiceResult:
        ...

    # Dispatch an event to its handler
    result = dispatch_event(event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult

from escrow.models import GatewayEvent, Payment
from escrow.services import ReleaseService, SyncService


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps gateway event names to handler functions
EVENT_HANDLERS: dict[str, Callable[[GatewayEvent], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a handler for one or more gateway events.

    Args:
        event_types: Gateway event names (e.g., "PAYMENT_RECEIVED")
    """

    def decorator(func: Callable[[GatewayEvent], ServiceResult]) -> Callable:
        for event_type in event_types:
            EVENT_HANDLERS[event_type] = func
            logger.debug(f"Registered gateway event handler for {event_type}")
        return func

    return decorator


def dispatch_event(event: GatewayEvent) -> ServiceResult:
    """
    Dispatch a gateway event to the appropriate handler.

    Events without a handler are acknowledged with success so the gateway
    does not keep redelivering them.
    """
    handler = EVENT_HANDLERS.get(event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {event.event_type}",
            extra={"gateway_event_id": event.gateway_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {event.event_type} to handler",
        extra={"gateway_event_id": event.gateway_event_id},
    )
    return handler(event)


# =============================================================================
# Charge Handlers
# =============================================================================


# Event name -> charge status to apply when the payload carries none
CHARGE_EVENT_STATUSES = {
    "PAYMENT_RECEIVED": "RECEIVED",
    "PAYMENT_CONFIRMED": "CONFIRMED",
    "PAYMENT_OVERDUE": "OVERDUE",
    "PAYMENT_DELETED": "DELETED",
    "PAYMENT_REFUNDED": "REFUNDED",
}


@register_handler(*CHARGE_EVENT_STATUSES)
def handle_charge_event(event: GatewayEvent) -> ServiceResult:
    """Feed a charge status change into the status synchronizer."""
    charge_id = event.get_object_id("payment")
    if not charge_id:
        logger.error(
            f"{event.event_type}: Could not extract charge id",
            extra={"gateway_event_id": event.gateway_event_id},
        )
        return ServiceResult.failure(
            "Could not extract charge id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    payment_id = (
        Payment.objects.filter(gateway_charge_id=charge_id)
        .values_list("id", flat=True)
        .first()
    )
    if payment_id is None:
        # Charges created outside the marketplace (subscriptions, manual)
        logger.info(
            "No payment for charge, ignoring",
            extra={"charge_id": charge_id, "gateway_event_id": event.gateway_event_id},
        )
        return ServiceResult.success(None)

    # The event name is authoritative: a PAYMENT_DELETED payload may still
    # carry the last charge status.
    gateway_status = CHARGE_EVENT_STATUSES[event.event_type]
    return SyncService().apply_gateway_status(payment_id, gateway_status, source="webhook")


# =============================================================================
# Transfer Handlers
# =============================================================================


@register_handler("TRANSFER_DONE")
def handle_transfer_done(event: GatewayEvent) -> ServiceResult:
    """Supplier transfer settled: the only path to a completed payment."""
    transfer = event.payload.get("transfer") or {}
    transfer_id = transfer.get("id")
    if not transfer_id:
        return ServiceResult.failure(
            "Could not extract transfer id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )
    return ReleaseService().confirm_transfer(
        transfer_id, external_reference=transfer.get("externalReference") or ""
    )


@register_handler("TRANSFER_FAILED", "TRANSFER_CANCELLED")
def handle_transfer_failed(event: GatewayEvent) -> ServiceResult:
    """Supplier transfer failed or was cancelled at the gateway."""
    transfer = event.payload.get("transfer") or {}
    transfer_id = transfer.get("id")
    if not transfer_id:
        return ServiceResult.failure(
            "Could not extract transfer id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    reason = transfer.get("failReason") or f"Gateway reported {event.event_type}"
    return ReleaseService().fail_transfer(
        transfer_id,
        reason=reason,
        external_reference=transfer.get("externalReference") or "",
    )
