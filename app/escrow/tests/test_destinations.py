"""
Tests for payout destination resolution.

Tests cover:
- PIX key classification (CPF, CNPJ, e-mail, phone, random key)
- PIX preferred over bank account
- Bank account fallback and missing field reporting
- Transfer payload shapes
"""

import pytest

from escrow.destinations import (
    BankAccountDestination,
    PixDestination,
    classify_pix_key,
    is_valid_cpf,
    resolve_payout_destination,
)
from escrow.exceptions import MissingPayoutDetails
from escrow.state_machines import PixKeyType
from escrow.tests.factories import SupplierFactory


# =============================================================================
# PIX Key Classification
# =============================================================================


class TestClassifyPixKey:
    @pytest.mark.parametrize(
        "key,expected",
        [
            ("529.982.247-25", (PixKeyType.CPF, "52998224725")),
            ("45.723.174/0001-10", (PixKeyType.CNPJ, "45723174000110")),
            ("Financeiro@Fornecedor.com.br", (PixKeyType.EMAIL, "financeiro@fornecedor.com.br")),
            ("+55 11 98765-4321", (PixKeyType.PHONE, "+5511987654321")),
            ("11987654321", (PixKeyType.PHONE, "+5511987654321")),
            ("1133334444", (PixKeyType.PHONE, "+551133334444")),
            (
                "123E4567-E89B-12D3-A456-426614174000",
                (PixKeyType.EVP, "123e4567-e89b-12d3-a456-426614174000"),
            ),
        ],
    )
    def test_known_key_types(self, key, expected):
        assert classify_pix_key(key) == expected

    @pytest.mark.parametrize("key", ["", "   ", "abc", "12345", "not@an", "+123", "12a45"])
    def test_unrecognised_keys(self, key):
        assert classify_pix_key(key) is None

    def test_cpf_check_digits(self):
        assert is_valid_cpf("52998224725")
        assert not is_valid_cpf("52998224726")
        assert not is_valid_cpf("11111111111")


# =============================================================================
# Resolution
# =============================================================================


class TestResolvePayoutDestination:
    def test_pix_preferred_over_bank_account(self):
        supplier = SupplierFactory.build()

        destination = resolve_payout_destination(supplier)

        assert destination == PixDestination(key="45723174000110", key_type=PixKeyType.CNPJ)

    def test_pix_only_supplier(self):
        supplier = SupplierFactory.build(
            pix_key="financeiro@fornecedor.com.br",
            pix_key_type="",
            bank_code="",
            bank_agency="",
            bank_account="",
        )

        destination = resolve_payout_destination(supplier)

        assert isinstance(destination, PixDestination)
        assert destination.key_type == PixKeyType.EMAIL

    def test_unclassifiable_key_uses_stored_type(self):
        supplier = SupplierFactory.build(pix_key="chave-antiga", pix_key_type=PixKeyType.EVP)

        destination = resolve_payout_destination(supplier)

        assert destination == PixDestination(key="chave-antiga", key_type=PixKeyType.EVP)

    def test_bank_account_fallback(self):
        supplier = SupplierFactory.build(pix_key="", pix_key_type="")

        destination = resolve_payout_destination(supplier)

        assert isinstance(destination, BankAccountDestination)
        assert destination.bank_code == "341"
        assert destination.account == "567890"
        assert destination.holder_tax_id == "45723174000110"

    def test_missing_everything(self):
        supplier = SupplierFactory.build(
            pix_key="", pix_key_type="", bank_agency="", bank_holder_name=""
        )

        with pytest.raises(MissingPayoutDetails) as exc_info:
            resolve_payout_destination(supplier)

        assert exc_info.value.details["missing_fields"] == ["pix_key", "agency", "holder_name"]
        assert exc_info.value.details["invalid_pix_key"] is False

    def test_invalid_pix_key_without_bank_account(self):
        supplier = SupplierFactory.build(pix_key="???", pix_key_type="", bank_code="")

        with pytest.raises(MissingPayoutDetails) as exc_info:
            resolve_payout_destination(supplier)

        assert exc_info.value.details["invalid_pix_key"] is True
        assert "bank_code" in exc_info.value.details["missing_fields"]


# =============================================================================
# Payloads
# =============================================================================


class TestTransferPayloads:
    def test_pix_payload(self):
        payload = PixDestination(key="52998224725", key_type=PixKeyType.CPF).to_transfer_payload()

        assert payload == {
            "operationType": "PIX",
            "pixAddressKey": "52998224725",
            "pixAddressKeyType": "CPF",
        }

    def test_bank_payload_strips_tax_id_formatting(self):
        destination = BankAccountDestination(
            bank_code="341",
            agency="1234",
            account="567890",
            account_digit="1",
            holder_name="Fornecedor Ltda",
            holder_tax_id="45.723.174/0001-10",
        )

        payload = destination.to_transfer_payload()

        assert payload["operationType"] == "TED"
        assert payload["bankAccount"]["bank"] == {"code": "341"}
        assert payload["bankAccount"]["cpfCnpj"] == "45723174000110"
        assert payload["bankAccount"]["bankAccountType"] == "CONTA_CORRENTE"
