"""
Supplier payout destinations.

A supplier is paid either by PIX key or by bank transfer (TED). The
destination is resolved once from the Supplier row into one of two frozen
dataclasses and handed to the gateway adapter, which turns it into the
transfer payload. PIX wins whenever the supplier has a usable key.

Usage:
    from escrow.destinations import resolve_payout_destination

    destination = resolve_payout_destination(supplier)
    destination.to_transfer_payload()
    # {"operationType": "PIX", "pixAddressKey": "...", "pixAddressKeyType": "CPF"}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from escrow.exceptions import MissingPayoutDetails
from escrow.state_machines import PixKeyType

if TYPE_CHECKING:
    from typing import Any

    from escrow.models import Supplier


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
EVP_RE = re.compile(
    r"^[0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Supplier attribute -> name reported when missing
REQUIRED_BANK_FIELDS = {
    "bank_code": "bank_code",
    "bank_agency": "agency",
    "bank_account": "account",
    "bank_holder_name": "holder_name",
    "bank_holder_tax_id": "holder_tax_id",
}


@dataclass(frozen=True)
class PixDestination:
    key: str
    key_type: str

    def to_transfer_payload(self) -> dict[str, Any]:
        return {
            "operationType": "PIX",
            "pixAddressKey": self.key,
            "pixAddressKeyType": self.key_type,
        }


@dataclass(frozen=True)
class BankAccountDestination:
    bank_code: str
    agency: str
    account: str
    holder_name: str
    holder_tax_id: str
    agency_digit: str = ""
    account_digit: str = ""
    account_type: str = "CONTA_CORRENTE"

    def to_transfer_payload(self) -> dict[str, Any]:
        return {
            "operationType": "TED",
            "bankAccount": {
                "bank": {"code": self.bank_code},
                "ownerName": self.holder_name,
                "cpfCnpj": only_digits(self.holder_tax_id),
                "agency": self.agency,
                "agencyDigit": self.agency_digit,
                "account": self.account,
                "accountDigit": self.account_digit,
                "bankAccountType": self.account_type,
            },
        }


PayoutDestination = PixDestination | BankAccountDestination


# =============================================================================
# PIX key classification
# =============================================================================


def only_digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def is_valid_cpf(digits: str) -> bool:
    """Check the two CPF verification digits."""
    if len(digits) != 11 or not digits.isdigit() or len(set(digits)) == 1:
        return False
    for position in (9, 10):
        total = sum(
            int(digits[i]) * (position + 1 - i) for i in range(position)
        )
        check = (total * 10) % 11 % 10
        if check != int(digits[position]):
            return False
    return True


def classify_pix_key(key: str) -> tuple[str, str] | None:
    """
    Work out the PIX key type and its normalized form.

    Returns:
        (key_type, normalized_key), or None when the key matches no type
    """
    key = (key or "").strip()
    if not key:
        return None

    if "@" in key:
        if EMAIL_RE.match(key):
            return PixKeyType.EMAIL, key.lower()
        return None

    if EVP_RE.match(key) and not key.isdigit():
        return PixKeyType.EVP, key.lower()

    digits = only_digits(key)
    if key.startswith("+"):
        if 10 <= len(digits) <= 13:
            return PixKeyType.PHONE, f"+{digits}"
        return None

    # Anything besides digits and formatting punctuation is not a key
    if re.sub(r"[\d\s.\-/()]", "", key):
        return None

    if len(digits) == 14:
        return PixKeyType.CNPJ, digits
    if len(digits) == 11:
        if is_valid_cpf(digits):
            return PixKeyType.CPF, digits
        return PixKeyType.PHONE, f"+55{digits}"
    if len(digits) in (10, 12, 13):
        return PixKeyType.PHONE, f"+{digits}" if len(digits) > 11 else f"+55{digits}"
    return None


# =============================================================================
# Resolution
# =============================================================================


def missing_bank_fields(supplier: Supplier) -> list[str]:
    return [
        label
        for attr, label in REQUIRED_BANK_FIELDS.items()
        if not (getattr(supplier, attr) or "").strip()
    ]


def resolve_payout_destination(supplier: Supplier) -> PayoutDestination:
    """
    Build the payout destination for a supplier, PIX first.

    Raises:
        MissingPayoutDetails: No usable PIX key and incomplete bank account;
            details["missing_fields"] lists what is absent
    """
    if supplier.has_pix_key:
        classified = classify_pix_key(supplier.pix_key)
        if classified is not None:
            key_type, key = classified
            return PixDestination(key=key, key_type=key_type)
        if supplier.pix_key_type:
            return PixDestination(
                key=supplier.pix_key.strip(), key_type=supplier.pix_key_type
            )

    missing = missing_bank_fields(supplier)
    if not missing:
        return BankAccountDestination(
            bank_code=supplier.bank_code,
            agency=supplier.bank_agency,
            agency_digit=supplier.bank_agency_digit,
            account=supplier.bank_account,
            account_digit=supplier.bank_account_digit,
            account_type=supplier.bank_account_type,
            holder_name=supplier.bank_holder_name,
            holder_tax_id=supplier.bank_holder_tax_id,
        )

    missing_fields = ["pix_key", *missing]
    raise MissingPayoutDetails(
        "Supplier has no PIX key and incomplete bank account details",
        details={
            "supplier_id": str(supplier.pk),
            "missing_fields": missing_fields,
            "invalid_pix_key": supplier.has_pix_key,
        },
    )


__all__ = [
    "BankAccountDestination",
    "PayoutDestination",
    "PixDestination",
    "classify_pix_key",
    "is_valid_cpf",
    "missing_bank_fields",
    "resolve_payout_destination",
]
