"""
Base exception classes for application-wide error handling.

Every domain error raised by the settlement engine derives from
BaseApplicationError so that views, Celery tasks and the admin can render
it the same way: a human message, a machine-readable code and a details
dict.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Bad input, never retried (HTTP 400)
    ├── NotFoundError - Record does not exist (HTTP 404)
    ├── PermissionDeniedError - Caller may not act on the record (HTTP 403)
    ├── ConflictError - State conflicts, duplicates, stale rows (HTTP 409)
    └── ExternalServiceError - Payment gateway failures (HTTP 502)

Usage:
    from core.exceptions import ConflictError, ValidationError

    raise ValidationError("Base amount must be positive", error_code="INVALID_AMOUNT")

    raise ConflictError(
        "Payment already has a transfer in flight",
        error_code="TRANSFER_ALREADY_REQUESTED",
        details={"payment_id": str(payment.id)},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (missing fields, ids, gateway payload)
        http_status: Status code views use when rendering the error
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Supplier has no usable payout details",
                "error_code": "MISSING_PAYOUT_DETAILS",
                "details": {"missing_fields": ["bank_agency"]}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for malformed amounts, unknown payment methods, incomplete banking
    data and other input problems a retry cannot fix.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a requested record is not found."""

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Example:
        if not delivery.client.members.filter(pk=user.pk).exists():
            raise PermissionDeniedError(
                "You cannot confirm this delivery",
                error_code="PERMISSION_DENIED",
            )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current record state.

    Use for duplicates (second charge for a quote, reused confirmation code),
    invalid state transitions and optimistic locking failures.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Note:
        Log the original error for debugging but keep gateway internals
        out of client responses.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
