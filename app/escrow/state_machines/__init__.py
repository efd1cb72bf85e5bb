"""
State machine enums and the transition helper for escrow models.

Enums live in states.py; ``apply_transition`` (transitions.py) is the one
place services change a Payment's status or transfer_status.
"""

from escrow.state_machines.states import (
    CLOSED_CHARGE_STATUSES,
    FUNDED_PAYMENT_STATUSES,
    OPEN_PAYMENT_STATUSES,
    DeliveryStatus,
    GatewayEventStatus,
    NotificationPriority,
    PanelType,
    PaymentMethod,
    PaymentStatus,
    PixKeyType,
    QuoteStatus,
    ReleaseErrorType,
    TransferStatus,
)

__all__ = [
    "CLOSED_CHARGE_STATUSES",
    "FUNDED_PAYMENT_STATUSES",
    "OPEN_PAYMENT_STATUSES",
    "DeliveryStatus",
    "GatewayEventStatus",
    "NotificationPriority",
    "PanelType",
    "PaymentMethod",
    "PaymentStatus",
    "PixKeyType",
    "QuoteStatus",
    "ReleaseErrorType",
    "TransferStatus",
]
