"""
Tests for the charge status sync worker.

Tests cover:
- sync_payment_status task results and retryable errors
- sync_open_payments sweep
"""

from decimal import Decimal

import pytest

from escrow.adapters import ChargeResult
from escrow.exceptions import GatewayRejected, GatewayUnavailable
from escrow.models import Payment
from escrow.state_machines import PaymentStatus
from escrow.workers import sync_open_payments, sync_payment_status


def gateway_charge(status):
    return ChargeResult(id="pay_080225913252", status=status, value=Decimal("1001.98"))


@pytest.mark.django_db
class TestSyncPaymentStatus:
    def test_synced(self, installed_gateway, processing_payment):
        installed_gateway.get_charge.return_value = gateway_charge("RECEIVED")

        result = sync_payment_status(str(processing_payment.id))

        assert result["status"] == "synced"
        assert result["old_status"] == PaymentStatus.PROCESSING
        assert result["new_status"] == PaymentStatus.IN_ESCROW
        assert Payment.objects.get(pk=processing_payment.pk).status == PaymentStatus.IN_ESCROW

    def test_unchanged(self, installed_gateway, processing_payment):
        result = sync_payment_status(str(processing_payment.id))

        assert result["status"] == "unchanged"

    def test_not_found(self, installed_gateway, db):
        result = sync_payment_status("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "failed"
        assert result["error_code"] == "PAYMENT_NOT_FOUND"

    def test_transient_error_raised_for_retry(self, installed_gateway, processing_payment):
        installed_gateway.get_charge.side_effect = GatewayUnavailable("down")

        with pytest.raises(GatewayUnavailable):
            sync_payment_status(str(processing_payment.id))

    def test_permanent_error_not_retried(self, installed_gateway, processing_payment):
        installed_gateway.get_charge.side_effect = GatewayRejected("gone")

        with pytest.raises(GatewayRejected):
            sync_payment_status(str(processing_payment.id))

        assert GatewayRejected not in sync_payment_status.autoretry_for


@pytest.mark.django_db
class TestSyncOpenPayments:
    def test_sweep_counts(self, installed_gateway, processing_payment):
        installed_gateway.get_charge.return_value = gateway_charge("OVERDUE")

        result = sync_open_payments()

        assert result == {"checked": 1, "changed": 1, "failed": 0}
        assert Payment.objects.get(pk=processing_payment.pk).status == PaymentStatus.OVERDUE
