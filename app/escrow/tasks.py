"""
Celery tasks for escrow settlement.

This module provides async tasks for:
- Processing gateway webhook events
- Retrying failed webhook events
- Resetting events stuck in processing

Sync and transfer tasks live in escrow.workers and are re-exported here so
Celery autodiscovery finds them.

Usage:
    from escrow.tasks import process_gateway_event

    # Queue a webhook for async processing
    process_gateway_event.delay(str(event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.utils import timezone

from escrow.models import GatewayEvent
from escrow.models.gateway_event import MAX_EVENT_RETRIES
from escrow.state_machines import GatewayEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_EVENT_RETRIES},
    acks_late=True,
)
def process_gateway_event(self, event_id: str) -> dict:
    """
    Process a stored gateway webhook event.

    This task:
    1. Loads the GatewayEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the registered handler
    5. Marks as processed or failed

    Handlers open their own transactions; a failed handler leaves no
    partial writes behind.

    Raises:
        Exception: Re-raised to trigger Celery retry
    """
    from escrow.webhooks.handlers import dispatch_event

    if isinstance(event_id, str):
        event_id = UUID(event_id)

    try:
        event = GatewayEvent.objects.get(id=event_id)
    except GatewayEvent.DoesNotExist:
        logger.error("GatewayEvent not found", extra={"event_id": str(event_id)})
        return {"status": "not_found", "event_id": str(event_id)}

    if event.is_processed:
        logger.info(
            "GatewayEvent already processed, skipping",
            extra={"gateway_event_id": event.gateway_event_id},
        )
        return {"status": "already_processed", "event_id": str(event_id)}

    event.mark_processing()
    event.save()

    logger.info(
        f"Dispatching gateway event: {event.event_type}",
        extra={
            "gateway_event_id": event.gateway_event_id,
            "event_type": event.event_type,
            "retry_count": event.retry_count,
        },
    )

    try:
        result = dispatch_event(event)
    except Exception as e:
        event.mark_failed(f"{type(e).__name__}: {e}")
        event.save()
        logger.exception(
            "Gateway event processing failed with exception",
            extra={"gateway_event_id": event.gateway_event_id},
        )
        raise

    if result.success:
        event.mark_processed()
        event.save()
        logger.info(
            "Gateway event processed successfully",
            extra={"gateway_event_id": event.gateway_event_id},
        )
        return {
            "status": "processed",
            "event_id": str(event_id),
            "gateway_event_id": event.gateway_event_id,
        }

    error_msg = result.error or "Handler returned failure"
    event.mark_failed(error_msg)
    event.save()
    logger.warning(
        f"Gateway event handler failed: {error_msg}",
        extra={
            "gateway_event_id": event.gateway_event_id,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "handler_failed",
        "event_id": str(event_id),
        "error": error_msg,
        "error_code": result.error_code,
    }


@shared_task
def retry_failed_events() -> dict:
    """
    Periodic task re-queueing failed gateway events under the retry limit.

    Returns:
        Dict with count of events queued for retry
    """
    failed_events = GatewayEvent.objects.filter(
        status=GatewayEventStatus.FAILED,
        retry_count__lt=MAX_EVENT_RETRIES,
    ).order_by("created_at")[:100]

    queued_count = 0
    for event in failed_events:
        process_gateway_event.delay(str(event.id))
        queued_count += 1

    logger.info(
        f"Queued {queued_count} failed gateway events for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_events() -> dict:
    """
    Periodic task resetting events stuck in PROCESSING after a worker crash.

    Returns:
        Dict with count of events reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    reset_count = 0
    for event in GatewayEvent.objects.filter(
        status=GatewayEventStatus.PROCESSING,
        updated_at__lt=threshold,
    ):
        event.mark_failed("Processing timed out - reset for retry")
        event.save()
        reset_count += 1
        logger.warning(
            "Reset stuck gateway event",
            extra={"gateway_event_id": event.gateway_event_id},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================

from escrow.workers import (  # noqa: E402, F401
    release_payment,
    retry_due_transfers,
    retry_payment_transfer,
    sync_open_payments,
    sync_payment_status,
)
