"""
Escrow-specific exceptions for settlement operations.

Exception Hierarchy:
    EscrowError (base for the settlement domain)
    ├── EscrowNotFoundError - Payment / quote / supplier lookup failures
    ├── EscrowValidationError - Bad input, never retried
    │   ├── MissingCustomerData - Buyer lacks data the gateway requires
    │   └── MissingPayoutDetails - Supplier has neither PIX key nor bank account
    ├── InvalidPayoutDestination - Payout wallet dead and could not be healed
    └── TransferFailed - Payout transfer failed, scheduled for retry

    GatewayError - Base for payment gateway failures (ExternalServiceError)
    ├── GatewayRejected - Request refused by the gateway (permanent)
    │   ├── GatewayInvalidWalletError - Split / transfer wallet rejected
    │   ├── GatewayNotFoundError - Referenced gateway object does not exist
    │   └── GatewayAuthenticationError - Bad API credential
    ├── GatewayRateLimited - Too many requests (transient, retry)
    ├── GatewayUnavailable - 5xx or connection failure (transient, retry)
    └── GatewayTimeout - Request timed out (transient, retry)

    DuplicateOperation - Operation already happened (inherits ConflictError)
    └── DuplicateCharge - Quote already has an open Payment
    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock contention (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from escrow.exceptions import DuplicateOperation, GatewayError

    try:
        AsaasAdapter.create_transfer(params)
    except GatewayError as e:
        if e.is_retryable:
            raise  # let Celery retry
        ...

    raise DuplicateOperation(
        "Confirmation code already used",
        error_code="CODE_ALREADY_USED",
        details={"confirmed_at": confirmation.confirmed_at.isoformat()},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Escrow Domain Exceptions
# =============================================================================


class EscrowError(BaseApplicationError):
    """Base exception for all settlement operations."""

    default_error_code: str = "ESCROW_ERROR"


class EscrowNotFoundError(NotFoundError):
    """
    Raised when a settlement entity cannot be found.

    Example:
        payment = Payment.objects.filter(id=payment_id).first()
        if not payment:
            raise EscrowNotFoundError(
                f"Payment {payment_id} not found",
                error_code="PAYMENT_NOT_FOUND",
                details={"payment_id": str(payment_id)},
            )
    """

    default_error_code: str = "NOT_FOUND"


class EscrowValidationError(ValidationError):
    """Raised when settlement input is invalid (amounts, methods, bank data)."""

    default_error_code: str = "ESCROW_VALIDATION_ERROR"


class MissingCustomerData(EscrowValidationError):
    """
    Raised when the buyer lacks data needed to create a gateway customer.

    details["missing_fields"] lists what the client record must supply.
    """

    default_error_code: str = "MISSING_CUSTOMER_DATA"


class MissingPayoutDetails(EscrowValidationError):
    """
    Raised when a supplier has no complete PIX key or bank account.

    Not retryable without human data entry; details["missing_fields"]
    names the bank fields still blank.
    """

    default_error_code: str = "MISSING_PAYOUT_DETAILS"


class InvalidPayoutDestination(EscrowError):
    """
    Raised when a payout wallet is unusable and healing failed.

    The Charge Issuer recovers from this by charging without a split.
    """

    default_error_code: str = "INVALID_PAYOUT_DESTINATION"


class TransferFailed(EscrowError):
    """
    Raised when a payout transfer could not be created.

    The failure has already been recorded as an EscrowReleaseError with its
    next retry time; details carries retry_count and next_retry_at.
    """

    default_error_code: str = "TRANSFER_FAILED"
    http_status: int = 502


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for payment gateway errors.

    Attributes:
        status_code: HTTP status returned by the gateway (None for network errors)
        gateway_code: First error code from the gateway payload
        is_retryable: Whether repeating the same request may succeed
        outcome_unknown: The request may have taken effect at the gateway
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False
    outcome_unknown: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
        gateway_code: str | None = None,
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code
        self.gateway_code = gateway_code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.gateway_code:
            result["gateway_code"] = self.gateway_code
        result["is_retryable"] = self.is_retryable
        if self.outcome_unknown:
            result["outcome_unknown"] = True
        return result


class GatewayRejected(GatewayError):
    """Raised when the gateway refuses a request (permanent)."""

    default_error_code: str = "GATEWAY_REJECTED"


class GatewayInvalidWalletError(GatewayRejected):
    """
    Raised when the gateway rejects a wallet id in a split or transfer.

    Triggers the Charge Issuer's single no-split resubmission.
    """

    default_error_code: str = "GATEWAY_INVALID_WALLET"


class GatewayNotFoundError(GatewayRejected):
    """Raised when the referenced gateway object does not exist."""

    default_error_code: str = "GATEWAY_NOT_FOUND"


class GatewayAuthenticationError(GatewayRejected):
    """Raised when the gateway API key is missing or refused."""

    default_error_code: str = "GATEWAY_AUTHENTICATION_ERROR"


class GatewayRateLimited(GatewayError):
    """Raised when the gateway throttles requests (transient, retry)."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailable(GatewayError):
    """Raised on 5xx responses and connection failures (transient, retry)."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True
    outcome_unknown: bool = True


class GatewayTimeout(GatewayError):
    """Raised when a gateway request exceeds its timeout (transient, retry)."""

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True
    outcome_unknown: bool = True


class GatewayInvalidResponse(GatewayError):
    """Raised when a 2xx answer cannot be read; the request may have succeeded."""

    default_error_code: str = "GATEWAY_INVALID_RESPONSE"
    outcome_unknown: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class DuplicateOperation(ConflictError):
    """
    Raised when an operation that must happen once is attempted again.

    Error codes used:
        CODE_ALREADY_USED: delivery confirmation code consumed earlier
        TRANSFER_ALREADY_REQUESTED: payout already in flight or done
    """

    default_error_code: str = "DUPLICATE_OPERATION"


class DuplicateCharge(DuplicateOperation):
    """Raised when a quote already has an open Payment."""

    default_error_code: str = "DUPLICATE_CHARGE"


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects a concurrent modification.

    The caller should reload the record and retry the operation.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock cannot be acquired."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a Payment transition is not allowed from its current state.

    Example:
        raise InvalidStateTransitionError(
            "Cannot release payment in 'pending' state",
            details={"current_state": "pending", "action": "request_transfer"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    # Domain
    "EscrowError",
    "EscrowNotFoundError",
    "EscrowValidationError",
    "MissingCustomerData",
    "MissingPayoutDetails",
    "InvalidPayoutDestination",
    "TransferFailed",
    # Gateway
    "GatewayError",
    "GatewayRejected",
    "GatewayInvalidWalletError",
    "GatewayNotFoundError",
    "GatewayAuthenticationError",
    "GatewayRateLimited",
    "GatewayUnavailable",
    "GatewayTimeout",
    "GatewayInvalidResponse",
    # Concurrency
    "DuplicateOperation",
    "DuplicateCharge",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
