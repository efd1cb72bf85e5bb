"""
Tests for the supplier transfer worker.

Tests cover:
- release_payment task results
- retry_payment_transfer task results
- retry_due_transfers sweep
"""

import pytest

from escrow.exceptions import GatewayUnavailable
from escrow.models import EscrowReleaseError
from escrow.state_machines import PaymentStatus, TransferStatus
from escrow.tests.factories import EscrowReleaseErrorFactory, PaymentFactory
from escrow.workers import release_payment, retry_due_transfers, retry_payment_transfer


@pytest.mark.django_db
class TestReleasePayment:
    def test_requested(self, installed_gateway, escrowed_payment):
        result = release_payment(str(escrowed_payment.id))

        assert result == {
            "status": "requested",
            "payment_id": str(escrowed_payment.id),
            "transfer_id": "tra_000000000001",
        }

    def test_gateway_failure_not_raised(self, installed_gateway, escrowed_payment):
        """Failures are scheduled as release errors, not Celery retries."""
        installed_gateway.create_transfer.side_effect = GatewayUnavailable("down")

        result = release_payment(str(escrowed_payment.id))

        assert result["status"] == "failed"
        assert result["error_code"] == "TRANSFER_FAILED"
        assert EscrowReleaseError.objects.filter(payment=escrowed_payment).exists()

    def test_not_releasable(self, installed_gateway, processing_payment):
        result = release_payment(str(processing_payment.id))

        assert result["error_code"] == "PAYMENT_NOT_RELEASABLE"
        installed_gateway.create_transfer.assert_not_called()


@pytest.mark.django_db
class TestRetryPaymentTransfer:
    def test_retry(self, installed_gateway):
        payment = PaymentFactory(
            status=PaymentStatus.IN_ESCROW, transfer_status=TransferStatus.FAILED
        )

        result = retry_payment_transfer(str(payment.id))

        assert result["status"] == "requested"

    def test_not_funded(self, installed_gateway, processing_payment):
        result = retry_payment_transfer(str(processing_payment.id))

        assert result["error_code"] == "PAYMENT_NOT_FUNDED"


@pytest.mark.django_db
class TestRetryDueTransfers:
    def test_sweep(self, installed_gateway):
        payment = PaymentFactory(
            status=PaymentStatus.IN_ESCROW, transfer_status=TransferStatus.FAILED
        )
        EscrowReleaseErrorFactory(payment=payment)

        result = retry_due_transfers()

        assert result == {"due": 1, "succeeded": 1, "failed": 0}
        installed_gateway.create_transfer.assert_called_once()
