"""
Tests for ServiceResult and BaseService.

These tests verify that:
- Success and failure results render to the API response shape
- Results built from exceptions keep the application error code and details
- BaseService helpers validate required fields and open transactions
"""

from __future__ import annotations

import pytest
from django.db import transaction

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult


class ExampleService(BaseService):
    pass


# =============================================================================
# ServiceResult
# =============================================================================


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result.success
        assert bool(result) is True
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure_is_falsy(self):
        result = ServiceResult.failure("Nope", error_code="NOPE")

        assert not result
        assert result.data is None

    def test_failure_response_omits_empty_parts(self):
        result = ServiceResult.failure("Nope")

        assert result.to_response() == {"success": False, "error": "Nope"}

    def test_failure_response_with_details(self):
        result = ServiceResult.failure(
            "Supplier bank data is incomplete",
            error_code="MISSING_PAYOUT_DETAILS",
            errors={"bank_agency": ["This field is required."]},
            details={"missing_fields": ["bank_agency"]},
        )

        assert result.to_response() == {
            "success": False,
            "error": "Supplier bank data is incomplete",
            "error_code": "MISSING_PAYOUT_DETAILS",
            "errors": {"bank_agency": ["This field is required."]},
            "details": {"missing_fields": ["bank_agency"]},
        }

    def test_from_application_error(self):
        exc = ConflictError(
            "Already requested",
            error_code="TRANSFER_ALREADY_REQUESTED",
            details={"payment_id": "p1"},
        )

        result = ServiceResult.from_exception(exc)

        assert result.error == "Already requested"
        assert result.error_code == "TRANSFER_ALREADY_REQUESTED"
        assert result.details == {"payment_id": "p1"}

    def test_from_plain_exception(self):
        result = ServiceResult.from_exception(KeyError("missing"))

        assert result.error_code == "KEYERROR"
        assert result.details is None

    def test_from_exception_code_override(self):
        result = ServiceResult.from_exception(ValueError("bad"), error_code="BAD_INPUT")

        assert result.error_code == "BAD_INPUT"


# =============================================================================
# BaseService
# =============================================================================


class TestBaseService:
    def test_logger_named_after_service(self):
        assert ExampleService.get_logger().name == f"{__name__}.ExampleService"

    def test_validate_required_passes(self):
        assert ExampleService.validate_required(name="Acme", tax_id="123") is None

    def test_validate_required_reports_blank_and_none(self):
        result = ExampleService.validate_required(name="  ", tax_id=None, email="a@b.c")

        assert result is not None
        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert result.details == {"missing_fields": ["name", "tax_id"]}
        assert set(result.errors) == {"name", "tax_id"}

    def test_handle_exception_returns_failure(self):
        result = ExampleService.handle_exception(
            ConflictError("Stale", error_code="STALE_RECORD"), "Saving payment"
        )

        assert result.error_code == "STALE_RECORD"

    @pytest.mark.django_db(transaction=True)
    def test_atomic_opens_transaction(self):
        with ExampleService.atomic():
            assert transaction.get_connection().in_atomic_block
