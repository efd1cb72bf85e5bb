"""
Tests for ChargeService.

Tests cover:
- Charging an approved quote with a supplier split
- Single resubmission without split after a wallet rejection
- Charging without split when the payout destination is unusable
- Duplicate, unapproved and invalid requests
- Gateway rejections and transient failures
- Gateway customer creation and caching
- Charge cancellation
"""

from decimal import Decimal

import pytest

from escrow.adapters import ChargeResult, CustomerResult
from escrow.exceptions import (
    GatewayInvalidWalletError,
    GatewayRejected,
    GatewayUnavailable,
)
from escrow.models import AuditLog, Client, Payment
from escrow.services import ChargeService
from escrow.services.charge_service import GATEWAY_CUSTOMER_CONTEXT
from escrow.state_machines import PaymentStatus, QuoteStatus
from escrow.tests.factories import PaymentFactory, QuoteFactory, SupplierFactory


def get_fresh_payment(payment_id):
    return Payment.objects.get(pk=payment_id)


@pytest.fixture
def service(mock_gateway):
    return ChargeService(gateway=mock_gateway)


# =============================================================================
# Create Charge
# =============================================================================


@pytest.mark.django_db
class TestCreateCharge:
    """Tests for the happy path of ChargeService.create_charge."""

    def test_charge_with_split(self, service, mock_gateway, approved_quote):
        """A live wallet gets the supplier's net amount as a fixed split."""
        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert result.success
        assert result.data.charge_id == "pay_080225913252"
        assert result.data.pay_url == "https://sandbox.asaas.com/i/080225913252"
        assert result.data.split_applied is True

        params = mock_gateway.create_charge.call_args[0][0]
        assert params.billing_type == "PIX"
        assert params.value == Decimal("1001.98")
        assert params.customer_id == "cus_000005219613"
        assert params.split[0].wallet_id == approved_quote.supplier.gateway_wallet_id
        assert params.split[0].fixed_value == Decimal("950.00")

        payment = get_fresh_payment(result.data.payment.id)
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.gateway_charge_id == "pay_080225913252"
        assert payment.split_wallet_id == approved_quote.supplier.gateway_wallet_id
        assert payment.customer_total == Decimal("1001.98")
        assert payment.gateway_payment_fee == Decimal("0.99")
        assert payment.gateway_messaging_fee == Decimal("0.99")
        assert payment.platform_commission_amount == Decimal("50.00")
        assert payment.supplier_net_amount == Decimal("950.00")
        assert params.external_reference == str(payment.id)

    def test_audit_entry(self, service, approved_quote, buyer_user):
        result = service.create_charge(approved_quote.id, payment_method="pix", actor=buyer_user)

        log = AuditLog.objects.get(action="CHARGE_CREATED")
        assert log.entity_id == str(result.data.payment.id)
        assert log.actor == buyer_user
        assert log.details["split_applied"] is True
        assert log.details["customer_total"] == "1001.98"

    def test_undetermined_method_charges_worst_case(self, service, mock_gateway, approved_quote):
        result = service.create_charge(approved_quote.id)

        params = mock_gateway.create_charge.call_args[0][0]
        assert params.billing_type == "UNDEFINED"
        assert result.data.payment.gateway_payment_fee == Decimal("30.39")

    def test_card_installments(self, service, mock_gateway, approved_quote):
        result = service.create_charge(
            approved_quote.id, payment_method="credit_card", installments=6
        )

        assert result.success
        assert mock_gateway.create_charge.call_args[0][0].installments == 6
        assert result.data.payment.installments == 6


# =============================================================================
# Split Fallback
# =============================================================================


@pytest.mark.django_db
class TestSplitFallback:
    """The charge always goes out, with or without the supplier split."""

    def test_wallet_rejected_resubmits_without_split(
        self, service, mock_gateway, approved_quote
    ):
        mock_gateway.create_charge.side_effect = [
            GatewayInvalidWalletError("Wallet [wal_1] inexistente", status_code=400),
            ChargeResult(
                id="pay_000000000002",
                status="PENDING",
                value=Decimal("1001.98"),
                invoice_url="https://sandbox.asaas.com/i/000000000002",
            ),
        ]

        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert result.success
        assert result.data.split_applied is False
        assert result.data.charge_id == "pay_000000000002"
        assert mock_gateway.create_charge.call_count == 2
        first, second = (c[0][0] for c in mock_gateway.create_charge.call_args_list)
        assert first.split
        assert second.split == []
        assert second.value == first.value

        payment = get_fresh_payment(result.data.payment.id)
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.split_wallet_id == ""

    def test_only_one_resubmission(self, service, mock_gateway, approved_quote):
        mock_gateway.create_charge.side_effect = GatewayInvalidWalletError(
            "Wallet inexistente", status_code=400
        )

        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert not result.success
        assert result.error_code == "GATEWAY_INVALID_WALLET"
        assert mock_gateway.create_charge.call_count == 2
        assert Payment.objects.get(quote=approved_quote).status == PaymentStatus.FAILED

    def test_supplier_without_wallet_charged_without_split(
        self, service, mock_gateway, buyer
    ):
        supplier = SupplierFactory(gateway_wallet_id="", gateway_account_id="")
        quote = QuoteFactory(client=buyer, supplier=supplier)

        result = service.create_charge(quote.id, payment_method="pix")

        assert result.success
        assert result.data.split_applied is False
        assert mock_gateway.create_charge.call_args[0][0].split == []
        mock_gateway.create_account.assert_not_called()

    def test_dead_wallet_healed_before_charge(self, service, mock_gateway, approved_quote):
        mock_gateway.get_account_by_wallet.return_value = None

        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert result.data.split_applied is True
        assert mock_gateway.create_charge.call_args[0][0].split[0].wallet_id == "wal_new"
        assert get_fresh_payment(result.data.payment.id).split_wallet_id == "wal_new"

    def test_heal_failure_charges_without_split(self, service, mock_gateway, approved_quote):
        """A destination that cannot be healed never blocks the purchase."""
        mock_gateway.get_account_by_wallet.return_value = None
        mock_gateway.create_account.side_effect = GatewayRejected(
            "CPF/CNPJ inválido", status_code=400
        )

        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert result.success
        assert result.data.split_applied is False
        assert mock_gateway.create_charge.call_args[0][0].split == []
        assert AuditLog.objects.get(action="CHARGE_CREATED").details[
            "destination_reason"
        ] == "invalid_payout_destination"

    def test_incomplete_payee_charged_without_split(self, service, mock_gateway, buyer):
        supplier = SupplierFactory(tax_id="")
        quote = QuoteFactory(client=buyer, supplier=supplier)

        result = service.create_charge(quote.id, payment_method="pix")

        assert result.success
        assert result.data.split_applied is False

    def test_gateway_outage_during_wallet_check(self, service, mock_gateway, approved_quote):
        mock_gateway.get_account_by_wallet.side_effect = GatewayUnavailable("down")

        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert result.success
        assert result.data.split_applied is False


# =============================================================================
# Rejections
# =============================================================================


@pytest.mark.django_db
class TestCreateChargeFailures:
    def test_quote_not_found(self, service):
        result = service.create_charge("00000000-0000-0000-0000-000000000000")

        assert result.error_code == "QUOTE_NOT_FOUND"

    def test_quote_not_approved(self, service, mock_gateway):
        quote = QuoteFactory(status=QuoteStatus.SENT)

        result = service.create_charge(quote.id)

        assert result.error_code == "QUOTE_NOT_APPROVED"
        mock_gateway.create_charge.assert_not_called()

    def test_duplicate_charge(self, service, mock_gateway, processing_payment):
        result = service.create_charge(processing_payment.quote_id, payment_method="pix")

        assert not result.success
        assert result.error_code == "DUPLICATE_CHARGE"
        assert result.details["payment_id"] == str(processing_payment.id)
        mock_gateway.create_charge.assert_not_called()

    def test_failed_payment_does_not_block_new_charge(self, service, approved_quote):
        PaymentFactory(quote=approved_quote, status=PaymentStatus.FAILED)

        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert result.success

    def test_invalid_payment_method(self, service):
        quote = QuoteFactory()

        result = service.create_charge(quote.id, payment_method="bitcoin")

        assert result.error_code == "INVALID_PAYMENT_METHOD"
        assert not Payment.objects.exists()

    def test_missing_customer_data(self, service, mock_gateway, supplier):
        quote = QuoteFactory(client__tax_id="", supplier=supplier)

        result = service.create_charge(quote.id, payment_method="pix")

        assert result.error_code == "MISSING_CUSTOMER_DATA"
        assert result.details["missing_fields"] == ["tax_id"]
        mock_gateway.create_customer.assert_not_called()
        assert not Payment.objects.exists()

    def test_gateway_rejection_marks_payment_failed(self, service, mock_gateway, approved_quote):
        mock_gateway.create_charge.side_effect = GatewayRejected(
            "Valor inválido", status_code=400
        )

        result = service.create_charge(approved_quote.id, payment_method="pix")

        assert result.error_code == "GATEWAY_REJECTED"
        payment = Payment.objects.get(quote=approved_quote)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Valor inválido"
        assert AuditLog.objects.filter(action="CHARGE_FAILED").count() == 1

    def test_transient_error_raises(self, service, mock_gateway, approved_quote):
        mock_gateway.create_charge.side_effect = GatewayUnavailable("Gateway service error")

        with pytest.raises(GatewayUnavailable):
            service.create_charge(approved_quote.id, payment_method="pix")

        assert Payment.objects.get(quote=approved_quote).status == PaymentStatus.FAILED


# =============================================================================
# Gateway Customer
# =============================================================================


@pytest.mark.django_db
class TestGatewayCustomer:
    def test_customer_created_once(self, service, mock_gateway, buyer, supplier):
        first = QuoteFactory(client=buyer, supplier=supplier)
        second = QuoteFactory(client=buyer, supplier=supplier)
        mock_gateway.create_charge.side_effect = [
            ChargeResult(id="pay_000000000011", status="PENDING", value=Decimal("1001.98")),
            ChargeResult(id="pay_000000000012", status="PENDING", value=Decimal("1001.98")),
        ]

        service.create_charge(first.id, payment_method="pix")
        service.create_charge(second.id, payment_method="pix")

        mock_gateway.create_customer.assert_called_once()
        assert Client.objects.get(pk=buyer.pk).gateway_customer_id == "cus_000005219613"

    def test_existing_customer_found_by_tax_id(self, service, mock_gateway, approved_quote):
        mock_gateway.find_customer_by_tax_id.return_value = CustomerResult(
            id="cus_existing", name="Cliente", tax_id="11222333000181"
        )

        service.create_charge(approved_quote.id, payment_method="pix")

        mock_gateway.create_customer.assert_not_called()
        assert mock_gateway.create_charge.call_args[0][0].customer_id == "cus_existing"

    def test_stored_customer_id_reused(self, service, mock_gateway, supplier):
        quote = QuoteFactory(client__gateway_customer_id="cus_stored", supplier=supplier)

        service.create_charge(quote.id, payment_method="pix")

        mock_gateway.find_customer_by_tax_id.assert_not_called()
        mock_gateway.create_customer.assert_not_called()

    def test_cached_customer_id_reused(self, service, mock_gateway, approved_quote):
        service.cache.set(approved_quote.client_id, GATEWAY_CUSTOMER_CONTEXT, "cus_cached")

        service.create_charge(approved_quote.id, payment_method="pix")

        mock_gateway.find_customer_by_tax_id.assert_not_called()
        assert mock_gateway.create_charge.call_args[0][0].customer_id == "cus_cached"


# =============================================================================
# Cancel Charge
# =============================================================================


@pytest.mark.django_db
class TestCancelCharge:
    def test_cancel_pending_charge(self, service, mock_gateway, processing_payment, buyer_user):
        result = service.cancel_charge(processing_payment.id, actor=buyer_user)

        assert result.success
        mock_gateway.delete_charge.assert_called_once_with(processing_payment.gateway_charge_id)
        payment = get_fresh_payment(processing_payment.id)
        assert payment.status == PaymentStatus.CANCELLED
        assert AuditLog.objects.filter(action="CHARGE_CANCELLED").count() == 1

    def test_cancel_already_deleted_at_gateway(self, service, mock_gateway, processing_payment):
        mock_gateway.get_charge.return_value = ChargeResult(
            id=processing_payment.gateway_charge_id, status="DELETED", value=Decimal("1001.98")
        )

        result = service.cancel_charge(processing_payment.id)

        assert result.success
        mock_gateway.delete_charge.assert_not_called()

    def test_paid_charge_not_cancellable(self, service, mock_gateway, processing_payment):
        mock_gateway.get_charge.return_value = ChargeResult(
            id=processing_payment.gateway_charge_id, status="RECEIVED", value=Decimal("1001.98")
        )

        result = service.cancel_charge(processing_payment.id)

        assert result.error_code == "CHARGE_NOT_CANCELLABLE"
        assert get_fresh_payment(processing_payment.id).status == PaymentStatus.PROCESSING

    def test_closed_payment(self, service):
        payment = PaymentFactory(status=PaymentStatus.CANCELLED)

        result = service.cancel_charge(payment.id)

        assert result.error_code == "PAYMENT_ALREADY_CLOSED"

    def test_escrowed_payment_cannot_be_cancelled(self, service, mock_gateway, escrowed_payment):
        mock_gateway.get_charge.return_value = ChargeResult(
            id=escrowed_payment.gateway_charge_id, status="REFUNDED", value=Decimal("1001.98")
        )

        result = service.cancel_charge(escrowed_payment.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert get_fresh_payment(escrowed_payment.id).status == PaymentStatus.IN_ESCROW
        mock_gateway.delete_charge.assert_not_called()

    def test_unknown_payment(self, service):
        result = service.cancel_charge("00000000-0000-0000-0000-000000000000")

        assert result.error_code == "PAYMENT_NOT_FOUND"
