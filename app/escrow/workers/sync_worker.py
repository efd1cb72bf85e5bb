"""
Status sync worker for buyer charges.

Tasks:
- sync_open_payments: Periodic sweep that polls every open charge
- sync_payment_status: Polls a single payment's charge

The webhook path (escrow.webhooks) normally moves payments first; polling
catches lost or delayed webhooks.

Usage:
    from escrow.workers import sync_payment_status

    sync_payment_status.delay(str(payment.id))
"""

from __future__ import annotations

import logging

from celery import shared_task

from escrow.exceptions import GatewayRateLimited, GatewayTimeout, GatewayUnavailable

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum payments polled per sweep
BATCH_SIZE = 200

MAX_SYNC_RETRIES = 3


# =============================================================================
# Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(GatewayRateLimited, GatewayUnavailable, GatewayTimeout),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_SYNC_RETRIES},
    acks_late=True,
)
def sync_payment_status(self, payment_id: str) -> dict:
    """
    Poll the gateway for one payment and apply the mapped status.

    Returns:
        Dict with status "synced", "unchanged" or "failed"

    Raises:
        GatewayRateLimited, GatewayUnavailable, GatewayTimeout:
            Re-raised to trigger Celery retry
    """
    from escrow.services import SyncService

    result = SyncService().sync(payment_id)

    if not result.success:
        logger.warning(
            f"Payment sync failed: {result.error}",
            extra={"payment_id": payment_id, "error_code": result.error_code},
        )
        return {
            "status": "failed",
            "payment_id": payment_id,
            "error": result.error,
            "error_code": result.error_code,
        }

    outcome = result.data
    return {
        "status": "synced" if outcome.changed else "unchanged",
        "payment_id": payment_id,
        "old_status": outcome.old_status,
        "new_status": outcome.new_status,
    }


@shared_task
def sync_open_payments(limit: int = BATCH_SIZE) -> dict:
    """
    Periodic task polling every charged payment that can still move.

    Scheduled via celery-beat every 15 minutes.

    Returns:
        Dict with checked / changed / failed counts
    """
    from escrow.services import SyncService

    logger.info("Starting open payment sync", extra={"limit": limit})
    return SyncService().sync_open_payments(limit=limit)
