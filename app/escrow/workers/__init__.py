"""
Workers for async escrow processing.

This module contains Celery tasks for background settlement operations:
- SyncWorker: Polls the gateway for buyer charge statuses
- TransferWorker: Releases escrow and retries failed supplier transfers

Usage:
    from escrow.workers import (
        release_payment,
        retry_due_transfers,
        retry_payment_transfer,
        sync_open_payments,
        sync_payment_status,
    )

    sync_payment_status.delay(str(payment.id))
    retry_due_transfers.delay()
"""

from escrow.workers.sync_worker import (
    sync_open_payments,
    sync_payment_status,
)
from escrow.workers.transfer_worker import (
    release_payment,
    retry_due_transfers,
    retry_payment_transfer,
)

__all__ = [
    # Sync Worker
    "sync_open_payments",
    "sync_payment_status",
    # Transfer Worker
    "release_payment",
    "retry_due_transfers",
    "retry_payment_transfer",
]
