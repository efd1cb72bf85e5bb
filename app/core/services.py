"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with logging and transaction helpers

Pattern Comparison:
    - ServiceResult: Use for expected failures (duplicate charge, code already
      used, missing payout details)
    - Exceptions: Use for unexpected failures and for errors a Celery task
      must see to retry (gateway timeouts, database errors)

Usage:
    from core.services import BaseService, ServiceResult

    class ChargeService(BaseService):
        def create_charge(self, quote_id) -> ServiceResult[ChargeResult]:
            if Payment.objects.open_for_quote(quote_id).exists():
                return ServiceResult.failure(
                    "A payment already exists for this quote",
                    error_code="DUPLICATE_CHARGE",
                )
            ...
            return ServiceResult.success(charge)

    # In a view
    result = service.create_charge(quote_id)
    if result.success:
        return Response(ChargeSerializer(result.data).data, status=201)
    return Response(result.to_response(), status=400)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures
        details: Extra structured context (ids, timestamps, missing fields)

    Usage:
        result = ReleaseService().release(payment.id, confirmation_code="ABC123")
        if not result:
            logger.warning(result.error, extra={"code": result.error_code})
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            details: Extra structured context for the caller

        Example:
            return ServiceResult.failure(
                "Supplier bank data is incomplete",
                error_code="MISSING_PAYOUT_DETAILS",
                details={"missing_fields": ["bank_agency"]},
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            details=details,
        )

    @classmethod
    def from_exception(
        cls, exc: Exception, error_code: str | None = None
    ) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own code and details; anything else
        falls back to the exception class name.
        """
        code = error_code or getattr(exc, "error_code", None)
        return cls(
            success=False,
            error=getattr(exc, "message", str(exc)),
            error_code=code or exc.__class__.__name__.upper(),
            details=getattr(exc, "details", None) or None,
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API response format.

        Returns:
            Dict with success status and data or error details
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        if self.details:
            response["details"] = self.details
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides:
    - Logging named after the concrete service
    - Explicit transaction boundaries
    - Required-field validation returning a ServiceResult

    Design Notes:
        - Collaborators (gateway adapter, cache, sinks) are injected through
          the constructor so tests can swap them
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around Django's transaction.atomic() that makes the
        transaction boundary explicit in service code.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Convert exception to ServiceResult with logging.

        Args:
            exc: The caught exception
            context: Additional context for logging
            log_level: Logging level (default ERROR)
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=log_level >= logging.ERROR)
        return ServiceResult.from_exception(exc)

    @classmethod
    def validate_required(cls, **kwargs: Any) -> ServiceResult | None:
        """
        Validate that required fields are provided.

        Returns a failure result if any field is None or blank, None otherwise.

        Example:
            validation = cls.validate_required(name=client.name, tax_id=client.tax_id)
            if validation is not None:
                return validation
        """
        errors = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            return ServiceResult.failure(
                "Required fields missing",
                error_code="VALIDATION_ERROR",
                errors=errors,
                details={"missing_fields": sorted(errors)},
            )
        return None
