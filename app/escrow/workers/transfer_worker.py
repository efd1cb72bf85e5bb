"""
Supplier transfer worker.

Tasks:
- release_payment: Releases one payment's escrow to the supplier
- retry_payment_transfer: Retries one failed transfer
- retry_due_transfers: Periodic sweep over release errors whose retry is due

Transfer failures are recorded as EscrowReleaseError rows with their own
1h/2h/4h schedule, so these tasks never use Celery's autoretry for gateway
errors; retry_due_transfers picks the failures up again.

Usage:
    from escrow.workers import release_payment

    release_payment.delay(str(payment.id))
"""

from __future__ import annotations

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


def _result_dict(result, payment_id: str) -> dict:
    if result.success:
        return {
            "status": "requested",
            "payment_id": payment_id,
            "transfer_id": result.data.transfer_id,
        }
    return {
        "status": "failed",
        "payment_id": payment_id,
        "error": result.error,
        "error_code": result.error_code,
    }


@shared_task(acks_late=True)
def release_payment(payment_id: str) -> dict:
    """
    Release escrowed funds for a payment whose delivery is confirmed.

    Returns:
        Dict with status "requested" (and transfer_id) or "failed"
    """
    from escrow.services import ReleaseService

    logger.info("Releasing payment", extra={"payment_id": payment_id})
    result = ReleaseService().release(payment_id)
    return _result_dict(result, payment_id)


@shared_task(acks_late=True)
def retry_payment_transfer(payment_id: str) -> dict:
    """Retry the supplier transfer of one funded payment."""
    from escrow.services import RetryService

    result = RetryService().retry(payment_id)
    return _result_dict(result, payment_id)


@shared_task
def retry_due_transfers() -> dict:
    """
    Periodic task retrying every transfer whose backoff has elapsed.

    Scheduled via celery-beat every 10 minutes.

    Returns:
        Dict with due / succeeded / failed counts
    """
    from escrow.services import RetryService

    logger.info("Starting due transfer retries")
    return RetryService().retry_due()
