"""
Adapters for external services.

All payment gateway calls go through GatewayAdapter so timeouts, error
translation, idempotency references and logging are handled in one place.

Usage:
    from escrow.adapters import GatewayAdapter

    charge = GatewayAdapter.get_charge("pay_080225913252")
"""

from escrow.adapters.gateway_adapter import (
    BILLING_TYPES,
    AccountResult,
    BankAccountParams,
    ChargeResult,
    CreateAccountParams,
    CreateChargeParams,
    CreateCustomerParams,
    CreateTransferParams,
    CustomerResult,
    GatewayAdapter,
    IdempotencyKeyGenerator,
    SplitInstruction,
    TransferResult,
    is_retryable_gateway_error,
)

__all__ = [
    "AccountResult",
    "BankAccountParams",
    "BILLING_TYPES",
    "ChargeResult",
    "CreateAccountParams",
    "CreateChargeParams",
    "CreateCustomerParams",
    "CreateTransferParams",
    "CustomerResult",
    "GatewayAdapter",
    "IdempotencyKeyGenerator",
    "SplitInstruction",
    "TransferResult",
    "is_retryable_gateway_error",
]
