"""
Tests for DestinationService.

Tests cover:
- Wallet liveness checks and their cache
- Healing a dead or missing wallet (recover by tax id, or create)
- Declared income and company type for new sub-accounts
- Self-service bank account updates
"""

from decimal import Decimal

import pytest

from escrow.adapters import AccountResult
from escrow.exceptions import (
    EscrowNotFoundError,
    GatewayAuthenticationError,
    GatewayInvalidWalletError,
    GatewayNotFoundError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidPayoutDestination,
)
from escrow.models import AuditLog, Supplier
from escrow.services import DestinationService
from escrow.services.destination_service import income_value_for
from escrow.tests.factories import SupplierFactory


BANK_FORM = {
    "bank_code": "237",
    "agency": "0001",
    "agency_digit": "9",
    "account_number": "123456",
    "account_digit": "7",
    "account_type": "CONTA_POUPANCA",
    "account_holder_name": "Fornecedor Teste Ltda",
    "account_holder_document": "45.723.174/0001-10",
}


@pytest.fixture
def service(mock_gateway):
    return DestinationService(gateway=mock_gateway)


# =============================================================================
# Validation
# =============================================================================


@pytest.mark.django_db
class TestValidate:
    def test_live_wallet(self, service, mock_gateway, supplier):
        check = service.validate(supplier.id)

        assert check.valid
        assert check.destination_id == supplier.gateway_wallet_id
        assert not check.healed
        mock_gateway.get_account_by_wallet.assert_called_once_with(supplier.gateway_wallet_id)

    def test_liveness_cached(self, service, mock_gateway, supplier):
        service.validate(supplier.id)
        service.validate(supplier.id)

        assert mock_gateway.get_account_by_wallet.call_count == 1

    def test_cache_ignored_after_wallet_change(self, service, mock_gateway, supplier):
        service.validate(supplier.id)
        Supplier.objects.filter(pk=supplier.pk).update(gateway_wallet_id="wal_changed")

        check = service.validate(supplier.id)

        assert check.destination_id == "wal_changed"
        assert mock_gateway.get_account_by_wallet.call_count == 2

    def test_missing_wallet_not_healed_by_default(self, service, mock_gateway):
        supplier = SupplierFactory(gateway_wallet_id="", gateway_account_id="")

        check = service.validate(supplier.id)

        assert not check.valid
        assert check.reason == "missing_wallet"
        mock_gateway.create_account.assert_not_called()

    def test_missing_wallet_healed_on_request(self, service, mock_gateway):
        supplier = SupplierFactory(gateway_wallet_id="", gateway_account_id="")

        check = service.validate(supplier.id, heal_missing=True)

        assert check.valid
        assert check.healed
        assert check.destination_id == "wal_new"
        assert Supplier.objects.get(pk=supplier.pk).gateway_wallet_id == "wal_new"

    def test_gateway_unavailable_is_not_a_dead_wallet(self, service, mock_gateway, supplier):
        mock_gateway.get_account_by_wallet.side_effect = GatewayUnavailable("down")

        check = service.validate(supplier.id)

        assert not check.valid
        assert check.reason == "gateway_unavailable"
        assert check.destination_id == supplier.gateway_wallet_id
        mock_gateway.create_account.assert_not_called()

    def test_authentication_error_raises(self, service, mock_gateway, supplier):
        mock_gateway.get_account_by_wallet.side_effect = GatewayAuthenticationError("bad key")

        with pytest.raises(GatewayAuthenticationError):
            service.validate(supplier.id)

    def test_unknown_supplier(self, service, db):
        with pytest.raises(EscrowNotFoundError) as exc_info:
            service.validate("00000000-0000-0000-0000-000000000000")

        assert exc_info.value.error_code == "SUPPLIER_NOT_FOUND"


# =============================================================================
# Healing
# =============================================================================


@pytest.mark.django_db
class TestHeal:
    @pytest.mark.parametrize(
        "side_effect,return_value",
        [
            (GatewayNotFoundError("gone"), None),
            (GatewayInvalidWalletError("invalid"), None),
            (None, None),
        ],
    )
    def test_dead_wallet_replaced(self, service, mock_gateway, supplier, side_effect, return_value):
        mock_gateway.get_account_by_wallet.side_effect = side_effect
        mock_gateway.get_account_by_wallet.return_value = return_value
        old_wallet = supplier.gateway_wallet_id

        check = service.validate(supplier.id)

        assert check.valid
        assert check.healed
        assert check.reason == "wallet_not_found"
        assert check.destination_id == "wal_new"

        stored = Supplier.objects.get(pk=supplier.pk)
        assert stored.gateway_wallet_id == "wal_new"
        assert stored.gateway_account_id == "acc_new"

        log = AuditLog.objects.get(action="PAYOUT_DESTINATION_HEALED")
        assert log.details["old_wallet_id"] == old_wallet
        assert log.details["recovered_existing"] is False

    def test_existing_account_recovered(self, service, mock_gateway, supplier):
        mock_gateway.get_account_by_wallet.return_value = None
        mock_gateway.find_account_by_tax_id.return_value = AccountResult(
            id="acc_old", wallet_id="wal_recovered"
        )

        check = service.validate(supplier.id)

        assert check.destination_id == "wal_recovered"
        mock_gateway.find_account_by_tax_id.assert_called_once_with("45723174000110")
        mock_gateway.create_account.assert_not_called()
        assert AuditLog.objects.get().details["recovered_existing"] is True

    def test_recovered_account_with_same_dead_wallet_not_reused(self, service, mock_gateway, supplier):
        mock_gateway.get_account_by_wallet.return_value = None
        mock_gateway.find_account_by_tax_id.return_value = AccountResult(
            id="acc_old", wallet_id=supplier.gateway_wallet_id
        )

        check = service.validate(supplier.id)

        assert check.destination_id == "wal_new"
        mock_gateway.create_account.assert_called_once()

    def test_healed_wallet_cached_as_alive(self, service, mock_gateway, supplier):
        mock_gateway.get_account_by_wallet.return_value = None
        service.validate(supplier.id)
        mock_gateway.get_account_by_wallet.reset_mock()

        check = service.validate(supplier.id)

        assert check.valid
        assert not check.healed
        mock_gateway.get_account_by_wallet.assert_not_called()

    def test_create_account_params(self, service, mock_gateway):
        supplier = SupplierFactory(
            gateway_wallet_id="",
            business_type="ltda",
            phone="(11) 91234-5678",
            postal_code="01310-100",
        )

        service.validate(supplier.id, heal_missing=True)

        params = mock_gateway.create_account.call_args[0][0]
        assert params.tax_id == "45723174000110"
        assert params.company_type == "LIMITED"
        assert params.income_value == Decimal("200000.00")
        assert params.phone == "11912345678"
        assert params.postal_code == "01310100"

    def test_heal_failure_raises(self, service, mock_gateway, supplier):
        mock_gateway.get_account_by_wallet.return_value = None
        mock_gateway.create_account.side_effect = GatewayRejected("Invalid data")
        old_wallet = supplier.gateway_wallet_id

        with pytest.raises(InvalidPayoutDestination) as exc_info:
            service.validate(supplier.id)

        assert exc_info.value.details["reason"] == "wallet_not_found"
        assert exc_info.value.details["gateway_error"]["error_code"] == "GATEWAY_REJECTED"
        assert Supplier.objects.get(pk=supplier.pk).gateway_wallet_id == old_wallet

    def test_heal_without_tax_id_raises(self, service, mock_gateway):
        supplier = SupplierFactory(tax_id="", gateway_wallet_id="")

        with pytest.raises(InvalidPayoutDestination):
            service.validate(supplier.id, heal_missing=True)

        mock_gateway.create_account.assert_not_called()

    def test_account_without_wallet_raises(self, service, mock_gateway, supplier):
        mock_gateway.get_account_by_wallet.return_value = None
        mock_gateway.create_account.return_value = AccountResult(id="acc_x", wallet_id="")

        with pytest.raises(InvalidPayoutDestination):
            service.validate(supplier.id)


class TestIncomeValue:
    def test_declared_revenue_wins(self):
        supplier = SupplierFactory.build(declared_monthly_revenue=Decimal("12345.00"))

        assert income_value_for(supplier) == Decimal("12345.00")

    @pytest.mark.parametrize(
        "business_type,expected",
        [("mei", Decimal("5000.00")), ("EPP", Decimal("100000.00")), ("sa", Decimal("200000.00"))],
    )
    def test_by_business_type(self, business_type, expected):
        supplier = SupplierFactory.build(business_type=business_type, declared_monthly_revenue=None)

        assert income_value_for(supplier) == expected

    def test_default_from_settings(self, settings):
        settings.ESCROW_DEFAULT_INCOME_VALUE = 7500
        supplier = SupplierFactory.build(business_type="", declared_monthly_revenue=None)

        assert income_value_for(supplier) == Decimal("7500")


# =============================================================================
# Bank Account Update
# =============================================================================


@pytest.mark.django_db
class TestUpdateBankAccount:
    def test_success(self, service, mock_gateway, supplier, user):
        result = service.update_bank_account(supplier.id, BANK_FORM, actor=user)

        assert result.success
        wallet_id, params = mock_gateway.update_account_bank_account.call_args[0]
        assert wallet_id == supplier.gateway_wallet_id
        assert params.bank_code == "237"
        assert params.account == "123456"
        assert params.holder_tax_id == "45723174000110"

        stored = Supplier.objects.get(pk=supplier.pk)
        assert stored.bank_code == "237"
        assert stored.bank_agency == "0001"
        assert stored.bank_account == "123456"
        assert stored.bank_account_type == "CONTA_POUPANCA"
        assert stored.bank_holder_tax_id == "45723174000110"
        assert stored.bank_data_verified_at is not None

        log = AuditLog.objects.get(action="SUPPLIER_BANK_DATA_UPDATED")
        assert log.details == {"bank_code": "237", "account_last_digits": "3456"}

    def test_missing_required_fields(self, service, mock_gateway, supplier):
        data = {**BANK_FORM, "agency": "  ", "account_number": None}

        result = service.update_bank_account(supplier.id, data)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.details["missing_fields"] == ["account_number", "agency"]
        mock_gateway.update_account_bank_account.assert_not_called()

    def test_supplier_without_wallet(self, service, mock_gateway):
        supplier = SupplierFactory(gateway_wallet_id="")

        result = service.update_bank_account(supplier.id, BANK_FORM)

        assert result.error_code == "SUPPLIER_WITHOUT_WALLET"
        mock_gateway.update_account_bank_account.assert_not_called()

    def test_unknown_supplier(self, service, db):
        result = service.update_bank_account("00000000-0000-0000-0000-000000000000", BANK_FORM)

        assert result.error_code == "SUPPLIER_NOT_FOUND"

    def test_gateway_rejection_keeps_old_data(self, service, mock_gateway, supplier):
        mock_gateway.update_account_bank_account.side_effect = GatewayRejected("Invalid bank")

        result = service.update_bank_account(supplier.id, BANK_FORM)

        assert result.error_code == "GATEWAY_REJECTED"
        assert Supplier.objects.get(pk=supplier.pk).bank_code == "341"
