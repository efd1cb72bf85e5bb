"""
Tests for RetryService.

Tests cover:
- Manual retry of a failed supplier transfer
- Preconditions on funding and pending transfers
- Selection of due errors (latest per payment only)
- The scheduled sweep over due errors
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from escrow.adapters import TransferResult
from escrow.exceptions import GatewayUnavailable
from escrow.models import AuditLog, EscrowReleaseError, Payment
from escrow.services import RetryService
from escrow.services.release_service import payout_reference
from escrow.state_machines import PaymentStatus, ReleaseErrorType, TransferStatus
from escrow.tests.factories import EscrowReleaseErrorFactory, PaymentFactory


def get_fresh_payment(payment):
    return Payment.objects.get(pk=payment.pk)


def failed_payment(**kwargs):
    kwargs.setdefault("status", PaymentStatus.IN_ESCROW)
    return PaymentFactory(
        transfer_status=TransferStatus.FAILED,
        transfer_error="Gateway down",
        **kwargs,
    )


@pytest.fixture
def service(mock_gateway):
    return RetryService(gateway=mock_gateway)


# =============================================================================
# Retry
# =============================================================================


@pytest.mark.django_db
class TestRetry:
    def test_manual_retry(self, service, mock_gateway, staff_user):
        payment = failed_payment()
        EscrowReleaseErrorFactory(payment=payment)

        result = service.retry(payment.id, actor=staff_user)

        assert result.success
        fresh = get_fresh_payment(payment)
        assert fresh.status == PaymentStatus.TRANSFER_PENDING
        assert fresh.transfer_status == TransferStatus.PENDING
        assert fresh.transfer_error == ""

        log = AuditLog.objects.get(action="TRANSFER_REQUESTED")
        assert log.details["trigger"] == "manual_retry"
        assert log.details["attempt"] == 2
        assert not EscrowReleaseError.objects.unresolved().exists()

    def test_scheduled_retry_trigger(self, service):
        payment = failed_payment()

        service.retry(payment.id)

        log = AuditLog.objects.get(action="TRANSFER_REQUESTED")
        assert log.details["trigger"] == "scheduled_retry"

    def test_retry_after_webhook_failure(self, service):
        """A transfer the gateway failed after acceptance can be retried."""
        payment = failed_payment(status=PaymentStatus.TRANSFER_PENDING)

        result = service.retry(payment.id)

        assert result.success
        fresh = get_fresh_payment(payment)
        assert fresh.status == PaymentStatus.TRANSFER_PENDING
        assert fresh.transfer_status == TransferStatus.PENDING

    def test_failed_retry_schedules_next(self, service, mock_gateway):
        payment = failed_payment()
        EscrowReleaseErrorFactory(payment=payment, retry_count=1)
        mock_gateway.create_transfer.side_effect = GatewayUnavailable("Still down")

        result = service.retry(payment.id)

        assert result.error_code == "TRANSFER_FAILED"
        latest = EscrowReleaseError.objects.filter(payment=payment).order_by("-retry_count").first()
        assert latest.retry_count == 2
        assert latest.next_retry_at > timezone.now() + timedelta(minutes=119)

    def test_not_found(self, service, db):
        result = service.retry("00000000-0000-0000-0000-000000000000")

        assert result.error_code == "PAYMENT_NOT_FOUND"

    def test_not_funded(self, service, mock_gateway, processing_payment):
        result = service.retry(processing_payment.id)

        assert result.error_code == "PAYMENT_NOT_FUNDED"
        mock_gateway.create_transfer.assert_not_called()

    def test_pending_transfer_not_retried(self, service, mock_gateway, transfer_pending_payment):
        result = service.retry(transfer_pending_payment.id)

        assert result.error_code == "TRANSFER_ALREADY_REQUESTED"
        mock_gateway.create_transfer.assert_not_called()

    def test_scheduled_retry_adopts_existing_transfer(self, service, mock_gateway):
        payment = failed_payment()
        EscrowReleaseErrorFactory(payment=payment)
        mock_gateway.find_transfer_by_external_reference.return_value = TransferResult(
            id="tra_already_sent", status="BANK_PROCESSING", value=Decimal("950.00")
        )

        result = service.retry(payment.id)

        assert result.success
        mock_gateway.find_transfer_by_external_reference.assert_called_once_with(
            payout_reference(payment.id)
        )
        mock_gateway.create_transfer.assert_not_called()
        assert get_fresh_payment(payment).gateway_transfer_id == "tra_already_sent"

    def test_stale_version(self, service, mock_gateway, staff_user):
        payment = failed_payment()
        seen_version = get_fresh_payment(payment).version
        get_fresh_payment(payment).save()

        result = service.retry(payment.id, actor=staff_user, expected_version=seen_version)

        assert result.error_code == "STALE_RECORD"
        mock_gateway.create_transfer.assert_not_called()


# =============================================================================
# Due Errors
# =============================================================================


@pytest.mark.django_db
class TestDueErrors:
    def test_only_latest_error_per_payment(self):
        now = timezone.now()
        payment = failed_payment()
        EscrowReleaseErrorFactory(
            payment=payment, retry_count=1, next_retry_at=now - timedelta(hours=2)
        )
        EscrowReleaseErrorFactory(
            payment=payment, retry_count=2, next_retry_at=now + timedelta(hours=1)
        )

        assert not RetryService.due_errors(now).exists()

    def test_due_error_selected(self):
        now = timezone.now()
        error = EscrowReleaseErrorFactory(
            payment=failed_payment(), next_retry_at=now - timedelta(minutes=1)
        )

        assert list(RetryService.due_errors(now)) == [error]

    def test_manual_queue_never_due(self):
        EscrowReleaseErrorFactory(
            payment=failed_payment(),
            error_type=ReleaseErrorType.MISSING_BANK_DATA,
            next_retry_at=None,
        )

        assert not RetryService.due_errors().exists()

    def test_resolved_not_due(self):
        EscrowReleaseErrorFactory(payment=failed_payment(), resolved_at=timezone.now())

        assert not RetryService.due_errors().exists()


# =============================================================================
# Sweep
# =============================================================================


@pytest.mark.django_db
class TestRetryDue:
    def test_counts(self, service, mock_gateway):
        EscrowReleaseErrorFactory(payment=failed_payment())
        EscrowReleaseErrorFactory(payment=failed_payment())
        EscrowReleaseErrorFactory(
            payment=failed_payment(), next_retry_at=timezone.now() + timedelta(hours=1)
        )
        mock_gateway.create_transfer.side_effect = [
            TransferResult(id="tra_1", status="PENDING", value=Decimal("950.00")),
            GatewayUnavailable("Gateway down"),
        ]

        counts = service.retry_due()

        assert counts == {"due": 2, "succeeded": 1, "failed": 1}
        assert mock_gateway.create_transfer.call_count == 2

    def test_nothing_due(self, service, mock_gateway, db):
        assert service.retry_due() == {"due": 0, "succeeded": 0, "failed": 0}
        mock_gateway.create_transfer.assert_not_called()
