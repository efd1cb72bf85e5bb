"""
Payout destination validation and self-healing.

A supplier's split/payout destination is its gateway wallet. Wallets can die
(sub-account closed, environment switched, data wiped); when that happens the
service recovers an existing sub-account by tax id, or creates a new one, and
persists the new wallet. Liveness answers are cached per supplier.

Usage:
    from escrow.services import DestinationService

    check = DestinationService().validate(supplier.id)
    if check.valid:
        split_to(check.destination_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.services import ServiceResult

from escrow.adapters import BankAccountParams, CreateAccountParams
from escrow.destinations import only_digits, resolve_payout_destination
from escrow.exceptions import (
    EscrowNotFoundError,
    GatewayError,
    GatewayInvalidWalletError,
    GatewayNotFoundError,
    InvalidPayoutDestination,
)
from escrow.models import Supplier
from escrow.services.base import EscrowService
from escrow.state_machines import PanelType

if TYPE_CHECKING:
    from typing import Any

    from escrow.destinations import PayoutDestination


WALLET_LIVENESS_CONTEXT = "wallet_liveness"

# Declared monthly income by company size when the supplier declared none
INCOME_BY_BUSINESS_TYPE = {
    "mei": Decimal("5000.00"),
    "me": Decimal("20000.00"),
    "epp": Decimal("100000.00"),
    "ltda": Decimal("200000.00"),
    "sa": Decimal("200000.00"),
}

# Gateway companyType by business type (individuals send none)
COMPANY_TYPES = {
    "mei": "MEI",
    "me": "LIMITED",
    "epp": "LIMITED",
    "ltda": "LIMITED",
    "sa": "LIMITED",
}

# Self-service bank form field -> Supplier attribute
BANK_FORM_FIELDS = {
    "bank_code": "bank_code",
    "agency": "bank_agency",
    "agency_digit": "bank_agency_digit",
    "account_number": "bank_account",
    "account_digit": "bank_account_digit",
    "account_type": "bank_account_type",
    "account_holder_name": "bank_holder_name",
    "account_holder_document": "bank_holder_tax_id",
}
REQUIRED_BANK_FORM_FIELDS = (
    "bank_code",
    "agency",
    "account_number",
    "account_holder_name",
    "account_holder_document",
)


@dataclass
class DestinationCheck:
    """
    Outcome of a destination validation.

    Attributes:
        valid: The wallet exists at the gateway and may receive a split
        destination_id: Wallet id (the new one when healed)
        healed: A replacement wallet was recovered or created
        reason: Why the original wallet was unusable
    """

    valid: bool
    destination_id: str | None = None
    healed: bool = False
    reason: str = ""


def income_value_for(supplier: Supplier) -> Decimal:
    """Monthly income declared when creating a sub-account."""
    if supplier.declared_monthly_revenue and supplier.declared_monthly_revenue > 0:
        return supplier.declared_monthly_revenue
    business_type = (supplier.business_type or "").strip().lower()
    if business_type in INCOME_BY_BUSINESS_TYPE:
        return INCOME_BY_BUSINESS_TYPE[business_type]
    return Decimal(str(settings.ESCROW_DEFAULT_INCOME_VALUE))


class DestinationService(EscrowService):
    """
    Validates, heals and resolves supplier payout destinations.

    Methods:
        validate: Check (and heal) the split wallet
        resolve: Build the PIX / bank destination used for transfers
        update_bank_account: Self-service bank data update
    """

    def get_supplier(self, supplier_id: Any) -> Supplier:
        supplier = Supplier.objects.filter(pk=supplier_id).first()
        if supplier is None:
            raise EscrowNotFoundError(
                f"Supplier {supplier_id} not found",
                error_code="SUPPLIER_NOT_FOUND",
                details={"supplier_id": str(supplier_id)},
            )
        return supplier

    # =========================================================================
    # Validation / Healing
    # =========================================================================

    def validate(
        self,
        supplier_id: Any,
        heal_missing: bool = False,
        actor: Any = None,
    ) -> DestinationCheck:
        """
        Check that the supplier's wallet is alive, healing a dead one.

        Args:
            supplier_id: Supplier primary key
            heal_missing: Also create a wallet when the supplier has none
            actor: User to attribute the heal audit to

        Returns:
            DestinationCheck

        Raises:
            EscrowNotFoundError: Unknown supplier
            InvalidPayoutDestination: Healing was needed and failed
        """
        logger = self.get_logger()
        supplier = self.get_supplier(supplier_id)
        wallet_id = supplier.gateway_wallet_id

        if not wallet_id:
            if not heal_missing:
                return DestinationCheck(valid=False, reason="missing_wallet")
            return self._heal(supplier, reason="missing_wallet", actor=actor)

        try:
            alive = self._wallet_alive(supplier)
        except GatewayError as e:
            if not e.is_retryable:
                raise
            logger.warning(
                "Wallet liveness unknown, gateway unavailable",
                extra={"supplier_id": str(supplier.id), "error_code": e.error_code},
            )
            return DestinationCheck(
                valid=False, destination_id=wallet_id, reason="gateway_unavailable"
            )

        if alive:
            return DestinationCheck(valid=True, destination_id=wallet_id)

        logger.warning(
            "Supplier wallet is no longer valid",
            extra={"supplier_id": str(supplier.id), "wallet_id": wallet_id},
        )
        return self._heal(supplier, reason="wallet_not_found", actor=actor)

    def _wallet_alive(self, supplier: Supplier) -> bool:
        wallet_id = supplier.gateway_wallet_id
        cached = self.cache.get(supplier.id, WALLET_LIVENESS_CONTEXT)
        if cached is not None and cached.get("wallet_id") == wallet_id:
            return cached["alive"]

        try:
            alive = self.gateway.get_account_by_wallet(wallet_id) is not None
        except (GatewayNotFoundError, GatewayInvalidWalletError):
            alive = False

        self.cache.set(
            supplier.id,
            WALLET_LIVENESS_CONTEXT,
            {"wallet_id": wallet_id, "alive": alive},
        )
        return alive

    def _heal(self, supplier: Supplier, reason: str, actor: Any = None) -> DestinationCheck:
        logger = self.get_logger()
        old_wallet_id = supplier.gateway_wallet_id
        tax_id = only_digits(supplier.tax_id)

        if not tax_id:
            raise InvalidPayoutDestination(
                "Supplier has no tax id to recover or create a payout wallet",
                details={"supplier_id": str(supplier.id), "reason": reason},
            )

        try:
            account = self.gateway.find_account_by_tax_id(tax_id)
            recovered = (
                account is not None
                and bool(account.wallet_id)
                and account.wallet_id != old_wallet_id
            )
            if not recovered:
                account = self.gateway.create_account(
                    CreateAccountParams(
                        name=supplier.name,
                        email=supplier.email,
                        tax_id=tax_id,
                        income_value=income_value_for(supplier),
                        phone=only_digits(supplier.phone),
                        company_type=COMPANY_TYPES.get(
                            (supplier.business_type or "").strip().lower(), ""
                        ),
                        birth_date=supplier.birth_date,
                        address=supplier.address,
                        address_number=supplier.address_number,
                        province=supplier.province,
                        postal_code=only_digits(supplier.postal_code),
                    )
                )
        except GatewayError as e:
            logger.error(
                "Failed to heal payout destination",
                extra={
                    "supplier_id": str(supplier.id),
                    "reason": reason,
                    "error_code": e.error_code,
                },
            )
            raise InvalidPayoutDestination(
                f"Could not create a payout wallet: {e.message}",
                details={
                    "supplier_id": str(supplier.id),
                    "reason": reason,
                    "old_wallet_id": old_wallet_id or None,
                    "gateway_error": e.to_dict(),
                },
            ) from e

        if not account.wallet_id:
            raise InvalidPayoutDestination(
                "Gateway returned an account without a wallet",
                details={"supplier_id": str(supplier.id), "account_id": account.id},
            )

        with self.atomic():
            Supplier.objects.filter(pk=supplier.pk).update(
                gateway_wallet_id=account.wallet_id,
                gateway_account_id=account.id,
                updated_at=timezone.now(),
            )
            self.audit.record(
                "PAYOUT_DESTINATION_HEALED",
                entity_type="supplier",
                entity_id=supplier.id,
                actor=actor,
                details={
                    "old_wallet_id": old_wallet_id or None,
                    "new_wallet_id": account.wallet_id,
                    "reason": reason,
                    "recovered_existing": recovered,
                },
            )

        supplier.gateway_wallet_id = account.wallet_id
        supplier.gateway_account_id = account.id
        self.cache.set(
            supplier.id,
            WALLET_LIVENESS_CONTEXT,
            {"wallet_id": account.wallet_id, "alive": True},
        )

        logger.info(
            "Payout destination healed",
            extra={
                "supplier_id": str(supplier.id),
                "new_wallet_id": account.wallet_id,
                "recovered_existing": recovered,
            },
        )
        return DestinationCheck(
            valid=True,
            destination_id=account.wallet_id,
            healed=True,
            reason=reason,
        )

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(self, supplier: Supplier) -> PayoutDestination:
        """PIX key when usable, else complete bank account (MissingPayoutDetails otherwise)."""
        return resolve_payout_destination(supplier)

    # =========================================================================
    # Bank Account Update
    # =========================================================================

    def update_bank_account(
        self,
        supplier_id: Any,
        bank_data: dict[str, Any],
        actor: Any = None,
    ) -> ServiceResult[Supplier]:
        """
        Register new bank details with the gateway and store them.

        Args:
            supplier_id: Supplier primary key
            bank_data: bank_code, agency, account_number, account_holder_name,
                account_holder_document (required), agency_digit,
                account_digit, account_type (optional)
            actor: User performing the update

        Returns:
            ServiceResult with the updated Supplier
        """
        logger = self.get_logger()

        validation = self.validate_required(
            **{name: bank_data.get(name) for name in REQUIRED_BANK_FORM_FIELDS}
        )
        if validation is not None:
            return validation

        try:
            supplier = self.get_supplier(supplier_id)
        except EscrowNotFoundError as e:
            return ServiceResult.from_exception(e)

        if not supplier.gateway_wallet_id:
            return ServiceResult.failure(
                "Supplier has no gateway wallet to attach a bank account to",
                error_code="SUPPLIER_WITHOUT_WALLET",
                details={"supplier_id": str(supplier.id)},
            )

        holder_tax_id = only_digits(bank_data["account_holder_document"])
        try:
            self.gateway.update_account_bank_account(
                supplier.gateway_wallet_id,
                BankAccountParams(
                    bank_code=str(bank_data["bank_code"]).strip(),
                    agency=str(bank_data["agency"]).strip(),
                    agency_digit=str(bank_data.get("agency_digit") or "").strip(),
                    account=str(bank_data["account_number"]).strip(),
                    account_digit=str(bank_data.get("account_digit") or "").strip(),
                    holder_name=str(bank_data["account_holder_name"]).strip(),
                    holder_tax_id=holder_tax_id,
                    account_name=supplier.name,
                ),
            )
        except GatewayError as e:
            return self.handle_exception(e, "Bank account update rejected by gateway")

        with self.atomic():
            for form_field, attr in BANK_FORM_FIELDS.items():
                value = bank_data.get(form_field)
                if value is None:
                    continue
                value = str(value).strip()
                if attr == "bank_holder_tax_id":
                    value = holder_tax_id
                setattr(supplier, attr, value)
            supplier.bank_data_verified_at = timezone.now()
            supplier.save()

            self.audit.record(
                "SUPPLIER_BANK_DATA_UPDATED",
                entity_type="supplier",
                entity_id=supplier.id,
                actor=actor,
                panel_type=PanelType.SUPPLIER,
                details={
                    "bank_code": supplier.bank_code,
                    "account_last_digits": supplier.bank_account[-4:],
                },
            )

        logger.info(
            "Supplier bank account updated",
            extra={"supplier_id": str(supplier.id), "bank_code": supplier.bank_code},
        )
        return ServiceResult.success(supplier)
