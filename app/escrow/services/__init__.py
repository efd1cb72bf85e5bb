"""
Escrow services for charging buyers and paying suppliers.

This module provides:
- ChargeService: Issues buyer charges with a supplier split
- DestinationService: Validates and heals supplier payout wallets
- SyncService: Maps gateway charge statuses onto payments
- ReleaseService: Releases escrowed funds to the supplier
- RetryService: Re-drives failed supplier transfers
- DeliveryService: Redeems delivery codes and triggers release

Usage:
    from escrow.services import ChargeService

    result = ChargeService().create_charge(quote.id, payment_method="pix")

    from escrow.services import ReleaseService

    result = ReleaseService().release(payment.id, confirmation_code="ABC123")
"""

from escrow.services.base import EscrowService
from escrow.services.charge_service import ChargeResult, ChargeService
from escrow.services.delivery_service import DeliveryService
from escrow.services.destination_service import DestinationCheck, DestinationService
from escrow.services.release_service import ReleaseResult, ReleaseService
from escrow.services.retry_service import RetryService
from escrow.services.sync_service import SyncOutcome, SyncService, map_gateway_status

__all__ = [
    "ChargeResult",
    "ChargeService",
    "DeliveryService",
    "DestinationCheck",
    "DestinationService",
    "EscrowService",
    "ReleaseResult",
    "ReleaseService",
    "RetryService",
    "SyncOutcome",
    "SyncService",
    "map_gateway_status",
]
