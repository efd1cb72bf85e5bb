"""
Tests for SyncService.

Tests cover:
- Mapping gateway charge statuses onto Payment.status
- Idempotent re-sync (no second write, no duplicate audit)
- Terminal payments left untouched
- The open payment sweep
"""

from decimal import Decimal

import pytest

from escrow.adapters import ChargeResult
from escrow.exceptions import GatewayUnavailable
from escrow.models import AuditLog, Payment
from escrow.services import SyncService, map_gateway_status
from escrow.state_machines import PaymentStatus
from escrow.tests.factories import PaymentFactory


def get_fresh_payment(payment):
    return Payment.objects.get(pk=payment.pk)


def gateway_charge(status, charge_id="pay_080225913252"):
    return ChargeResult(id=charge_id, status=status, value=Decimal("1001.98"))


@pytest.fixture
def service(mock_gateway):
    return SyncService(gateway=mock_gateway)


# =============================================================================
# Status Mapping
# =============================================================================


class TestMapGatewayStatus:
    @pytest.mark.parametrize("gateway_status", ["RECEIVED", "CONFIRMED", "RECEIVED_IN_CASH"])
    def test_paid_goes_to_escrow(self, gateway_status):
        assert map_gateway_status(PaymentStatus.PROCESSING, gateway_status) == "mark_in_escrow"

    def test_overdue(self):
        assert map_gateway_status(PaymentStatus.PROCESSING, "OVERDUE") == "mark_overdue"
        assert map_gateway_status(PaymentStatus.OVERDUE, "OVERDUE") is None

    def test_late_payment_after_overdue(self):
        assert map_gateway_status(PaymentStatus.OVERDUE, "RECEIVED") == "mark_in_escrow"

    @pytest.mark.parametrize("gateway_status", ["REFUNDED", "DELETED", "CANCELLED"])
    def test_cancelled(self, gateway_status):
        assert map_gateway_status(PaymentStatus.PENDING, gateway_status) == "cancel"

    def test_pending_is_no_change(self):
        assert map_gateway_status(PaymentStatus.PROCESSING, "PENDING") is None

    def test_lowercase_status(self):
        assert map_gateway_status(PaymentStatus.PROCESSING, "received") == "mark_in_escrow"

    @pytest.mark.parametrize(
        "status",
        [
            PaymentStatus.IN_ESCROW,
            PaymentStatus.TRANSFER_PENDING,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        ],
    )
    def test_closed_payments_never_move(self, status):
        for gateway_status in ("RECEIVED", "OVERDUE", "REFUNDED"):
            assert map_gateway_status(status, gateway_status) is None


# =============================================================================
# Sync
# =============================================================================


@pytest.mark.django_db
class TestSync:
    def test_received_moves_to_escrow(self, service, mock_gateway, processing_payment):
        mock_gateway.get_charge.return_value = gateway_charge("RECEIVED")

        result = service.sync(processing_payment.id)

        assert result.success
        assert result.data.changed is True
        assert result.data.old_status == PaymentStatus.PROCESSING
        assert result.data.new_status == PaymentStatus.IN_ESCROW
        mock_gateway.get_charge.assert_called_once_with(processing_payment.gateway_charge_id)

        payment = get_fresh_payment(processing_payment)
        assert payment.status == PaymentStatus.IN_ESCROW
        assert payment.paid_at is not None

        log = AuditLog.objects.get(action="PAYMENT_STATUS_SYNCED")
        assert log.details["source"] == "poll"
        assert log.details["gateway_status"] == "RECEIVED"

    def test_second_sync_is_a_no_op(self, service, mock_gateway, processing_payment):
        """Re-syncing without a gateway change writes nothing and audits nothing."""
        mock_gateway.get_charge.return_value = gateway_charge("CONFIRMED")

        service.sync(processing_payment.id)
        version_after_first = get_fresh_payment(processing_payment).version
        second = service.sync(processing_payment.id)

        assert second.success
        assert second.data.changed is False
        assert get_fresh_payment(processing_payment).version == version_after_first
        assert AuditLog.objects.filter(action="PAYMENT_STATUS_SYNCED").count() == 1

    def test_repeated_overdue_is_a_no_op(self, service, mock_gateway, processing_payment):
        mock_gateway.get_charge.return_value = gateway_charge("OVERDUE")

        first = service.sync(processing_payment.id)
        second = service.sync(processing_payment.id)

        assert first.data.changed is True
        assert second.data.changed is False
        assert get_fresh_payment(processing_payment).status == PaymentStatus.OVERDUE
        assert AuditLog.objects.filter(action="PAYMENT_STATUS_SYNCED").count() == 1

    def test_unchanged_pending(self, service, processing_payment):
        result = service.sync(processing_payment.id)

        assert result.data.changed is False
        assert get_fresh_payment(processing_payment).version == processing_payment.version
        assert not AuditLog.objects.exists()

    def test_gateway_cancellation(self, service, mock_gateway, processing_payment):
        mock_gateway.get_charge.return_value = gateway_charge("DELETED")

        service.sync(processing_payment.id)

        payment = get_fresh_payment(processing_payment)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.failure_reason == "Gateway status DELETED"

    def test_escrowed_payment_not_polled(self, service, mock_gateway, escrowed_payment):
        result = service.sync(escrowed_payment.id)

        assert result.success
        assert result.data.changed is False
        mock_gateway.get_charge.assert_not_called()

    def test_payment_without_charge(self, service):
        payment = PaymentFactory(status=PaymentStatus.PROCESSING, gateway_charge_id=None)

        result = service.sync(payment.id)

        assert result.error_code == "NO_GATEWAY_CHARGE"

    def test_unknown_payment(self, service):
        assert service.sync("00000000-0000-0000-0000-000000000000").error_code == (
            "PAYMENT_NOT_FOUND"
        )

    def test_gateway_error_propagates(self, service, mock_gateway, processing_payment):
        mock_gateway.get_charge.side_effect = GatewayUnavailable("down")

        with pytest.raises(GatewayUnavailable):
            service.sync(processing_payment.id)


@pytest.mark.django_db
class TestApplyGatewayStatus:
    def test_webhook_source_recorded(self, service, processing_payment):
        result = service.apply_gateway_status(processing_payment.id, "RECEIVED")

        assert result.data.changed is True
        assert AuditLog.objects.get().details["source"] == "webhook"

    def test_unknown_payment(self, service):
        result = service.apply_gateway_status("00000000-0000-0000-0000-000000000000", "RECEIVED")

        assert result.error_code == "PAYMENT_NOT_FOUND"


# =============================================================================
# Sweep
# =============================================================================


@pytest.mark.django_db
class TestSyncOpenPayments:
    def test_counts(self, service, mock_gateway):
        paid = PaymentFactory(status=PaymentStatus.PROCESSING)
        waiting = PaymentFactory(status=PaymentStatus.PROCESSING)
        broken = PaymentFactory(status=PaymentStatus.OVERDUE)
        PaymentFactory(status=PaymentStatus.IN_ESCROW)

        def get_charge(charge_id):
            if charge_id == broken.gateway_charge_id:
                raise GatewayUnavailable("down")
            if charge_id == paid.gateway_charge_id:
                return gateway_charge("RECEIVED", charge_id)
            return gateway_charge("PENDING", charge_id)

        mock_gateway.get_charge.side_effect = get_charge

        counts = service.sync_open_payments()

        assert counts == {"checked": 3, "changed": 1, "failed": 1}
        assert get_fresh_payment(paid).status == PaymentStatus.IN_ESCROW
        assert get_fresh_payment(waiting).status == PaymentStatus.PROCESSING
        assert AuditLog.objects.filter(
            action="PAYMENT_SYNC_FAILED", entity_id=str(broken.id)
        ).exists()

    def test_limit(self, service):
        PaymentFactory.create_batch(3, status=PaymentStatus.PROCESSING)

        assert service.sync_open_payments(limit=2)["checked"] == 2
