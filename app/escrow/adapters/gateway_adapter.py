"""
Payment gateway (Asaas REST API) adapter.

This module provides the GatewayAdapter class which encapsulates every call
to the payment gateway. All gateway calls go through this adapter to ensure
consistent timeouts, error translation, idempotency references and logging.

Features:
- One bounded HTTP round trip per call (GATEWAY_TIMEOUT_SECONDS)
- HTTP and network failures translated to escrow GatewayError subclasses
- Structured logging with timing metrics; the API key is never logged
- Idempotency keys sent as the transfer externalReference

Configuration (via settings):
- GATEWAY_API_KEY: API key sent in the ``access_token`` header
- GATEWAY_ENVIRONMENT: "sandbox" or "production"
- GATEWAY_TIMEOUT_SECONDS: Request timeout (default: 10)

Usage:
    from escrow.adapters import CreateChargeParams, GatewayAdapter

    charge = GatewayAdapter.create_charge(
        CreateChargeParams(
            customer_id="cus_000005219613",
            billing_type="PIX",
            value=Decimal("1001.98"),
            due_date=date.today() + timedelta(days=3),
            external_reference=str(payment.id),
        )
    )
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import requests
from django.conf import settings

from escrow.exceptions import (
    GatewayAuthenticationError,
    GatewayError,
    GatewayInvalidResponse,
    GatewayInvalidWalletError,
    GatewayNotFoundError,
    GatewayRateLimited,
    GatewayRejected,
    GatewayTimeout,
    GatewayUnavailable,
)
from escrow.state_machines import PaymentMethod

if TYPE_CHECKING:
    from escrow.destinations import PayoutDestination


BASE_URLS = {
    "production": "https://api.asaas.com/v3",
    "sandbox": "https://sandbox.asaas.com/api/v3",
}

BILLING_TYPES = {
    PaymentMethod.PIX: "PIX",
    PaymentMethod.BOLETO: "BOLETO",
    PaymentMethod.CREDIT_CARD: "CREDIT_CARD",
    PaymentMethod.UNDETERMINED: "UNDEFINED",
}

# Transfer statuses that never moved money
DEAD_TRANSFER_STATUSES = frozenset({"FAILED", "CANCELLED"})


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateCustomerParams:
    """Buyer-side customer registration."""

    name: str
    tax_id: str
    email: str = ""
    phone: str = ""
    external_reference: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name is required")
        if not self.tax_id:
            raise ValueError("tax_id is required")


@dataclass
class CustomerResult:
    id: str
    name: str
    tax_id: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class SplitInstruction:
    """Fixed amount of a charge routed to a wallet on settlement."""

    wallet_id: str
    fixed_value: Decimal


@dataclass
class CreateChargeParams:
    """
    Parameters for creating a charge.

    Attributes:
        customer_id: Gateway customer id (cus_xxx)
        billing_type: PIX, BOLETO, CREDIT_CARD or UNDEFINED (buyer chooses)
        value: Total charged to the buyer, fees included
        due_date: Last day to pay before the charge goes overdue
        external_reference: Our payment id, echoed back in webhooks
        installments: Card installments (only sent when > 1)
        split: Optional supplier split instructions
    """

    customer_id: str
    billing_type: str
    value: Decimal
    due_date: date
    external_reference: str
    description: str = ""
    installments: int = 1
    split: list[SplitInstruction] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.value <= 0:
            raise ValueError("value must be positive")
        if not self.customer_id:
            raise ValueError("customer_id is required")

    def without_split(self) -> CreateChargeParams:
        return CreateChargeParams(
            customer_id=self.customer_id,
            billing_type=self.billing_type,
            value=self.value,
            due_date=self.due_date,
            external_reference=self.external_reference,
            description=self.description,
            installments=self.installments,
        )


@dataclass
class ChargeResult:
    """
    Result from charge operations.

    Attributes:
        id: Charge id (pay_xxx)
        status: Gateway status (PENDING, RECEIVED, CONFIRMED, OVERDUE, ...)
        invoice_url: Hosted page where the buyer pays
    """

    id: str
    status: str
    value: Decimal
    invoice_url: str = ""
    billing_type: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateAccountParams:
    """Supplier sub-account registration."""

    name: str
    email: str
    tax_id: str
    income_value: Decimal
    phone: str = ""
    company_type: str = ""
    birth_date: date | None = None
    address: str = ""
    address_number: str = ""
    province: str = ""
    postal_code: str = ""


@dataclass
class AccountResult:
    id: str
    wallet_id: str
    tax_id: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class BankAccountParams:
    bank_code: str
    agency: str
    account: str
    holder_name: str
    holder_tax_id: str
    account_name: str = ""
    agency_digit: str = ""
    account_digit: str = ""


@dataclass
class CreateTransferParams:
    """
    Parameters for paying a supplier.

    Attributes:
        value: Amount sent to the supplier (its net amount)
        destination: PIX key or bank account
        idempotency_key: Sent as externalReference so a duplicate is traceable
    """

    value: Decimal
    destination: PayoutDestination
    idempotency_key: str
    description: str = ""

    def __post_init__(self) -> None:
        if self.value <= 0:
            raise ValueError("value must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class TransferResult:
    id: str
    status: str
    value: Decimal
    external_reference: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for gateway calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Supplier transfers keep attempt=1 for the whole payout, so every
    resubmission carries the same externalReference and an earlier transfer
    whose outcome was unknown can be found again.

    Example:
        key = IdempotencyKeyGenerator.generate("transfer", payment.id)
        IdempotencyKeyGenerator.entity_id(key, "transfer")  # str(payment.id)
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"

    @classmethod
    def entity_id(cls, key: str, operation: str) -> str | None:
        """Entity id a key was generated for, or None when the key is not ours."""
        parts = (key or "").split(":")
        if len(parts) != 4 or parts[0] != operation or not parts[2].isdigit():
            return None
        if cls.generate(operation, parts[1], int(parts[2])) != key:
            return None
        return parts[1]


def is_retryable_gateway_error(error: Exception) -> bool:
    """True for transient gateway errors (rate limit, outage, timeout)."""
    if isinstance(error, GatewayError):
        return error.is_retryable
    return False


def _money(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else "0"))


# =============================================================================
# Gateway Adapter
# =============================================================================


class GatewayAdapter:
    """
    Adapter for payment gateway operations.

    All methods are classmethods; no instance state is kept, so the class is
    safe to share between Celery workers. Services receive it (or a test
    double with the same methods) through their constructor.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @staticmethod
    def base_url() -> str:
        environment = getattr(settings, "GATEWAY_ENVIRONMENT", "sandbox")
        return BASE_URLS.get(environment, BASE_URLS["sandbox"])

    @staticmethod
    def _headers() -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "access_token": settings.GATEWAY_API_KEY,
        }

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        log_context: dict[str, Any],
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Perform one HTTP call and return the decoded JSON body.

        Raises:
            GatewayError subclass for every non-2xx or network failure
        """
        logger = cls.get_logger()
        url = f"{cls.base_url()}{path}"
        timeout = getattr(settings, "GATEWAY_TIMEOUT_SECONDS", 10)

        start_time = time.time()
        logger.info("Starting gateway operation", extra=log_context)

        try:
            response = requests.request(
                method,
                url,
                headers=cls._headers(),
                json=payload,
                params=params,
                timeout=timeout,
            )
        except requests.Timeout:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Gateway request timed out",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise GatewayTimeout(
                f"Gateway did not answer within {timeout}s",
                details={"operation": log_context.get("operation")},
            ) from None
        except requests.RequestException as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Connection error to gateway",
                extra={**log_context, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise GatewayUnavailable(
                "Could not connect to the payment gateway. Please retry.",
                details={"operation": log_context.get("operation"), "error": str(e)},
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        if not response.ok:
            cls._handle_error_response(response, log_context, duration_ms)

        try:
            body = response.json() if response.content else {}
        except ValueError:
            logger.error(
                "Gateway returned a non-JSON body",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise GatewayInvalidResponse(
                "Gateway returned an invalid response format",
                status_code=response.status_code,
                details={"body": response.text[:200]},
            ) from None

        if not isinstance(body, dict):
            raise GatewayInvalidResponse(
                "Gateway returned an invalid response format",
                status_code=response.status_code,
                details={"operation": log_context.get("operation")},
            )

        logger.info(
            "Gateway operation completed",
            extra={
                **log_context,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return body

    @classmethod
    def _handle_error_response(
        cls,
        response: requests.Response,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate a non-2xx gateway response to a domain exception.

        Raises:
            GatewayRateLimited: 429
            GatewayUnavailable: 5xx
            GatewayInvalidWalletError: Error mentions a wallet
            GatewayNotFoundError: 404
            GatewayAuthenticationError: 401/403
            GatewayRejected: Any other 4xx
        """
        logger = cls.get_logger()
        status_code = response.status_code

        try:
            errors = response.json().get("errors") or []
        except (ValueError, AttributeError):
            errors = []
        first = errors[0] if errors and isinstance(errors[0], dict) else {}
        gateway_code = first.get("code")
        message = first.get("description") or f"Gateway returned HTTP {status_code}"

        context = {
            **log_context,
            "status_code": status_code,
            "gateway_code": gateway_code,
            "duration_ms": duration_ms,
        }
        details = {"operation": log_context.get("operation"), "errors": errors}
        kwargs = {
            "details": details,
            "status_code": status_code,
            "gateway_code": gateway_code,
        }

        if status_code == 429:
            logger.warning("Rate limited by gateway", extra=context)
            raise GatewayRateLimited(
                "Gateway rate limit exceeded. Please retry.", **kwargs
            )

        if status_code >= 500:
            logger.error("Gateway server error", extra=context)
            raise GatewayUnavailable("Gateway service error. Please retry.", **kwargs)

        if "wallet" in f"{gateway_code or ''} {message}".lower():
            logger.warning("Gateway rejected wallet", extra=context)
            raise GatewayInvalidWalletError(message, **kwargs)

        if status_code == 404:
            logger.warning("Gateway object not found", extra=context)
            raise GatewayNotFoundError(message, **kwargs)

        if status_code in (401, 403):
            logger.critical(
                "Gateway authentication failed - check API key", extra=context
            )
            raise GatewayAuthenticationError("Gateway authentication failed", **kwargs)

        logger.error("Gateway rejected request", extra=context)
        raise GatewayRejected(message, **kwargs)

    # =========================================================================
    # Customers
    # =========================================================================

    @classmethod
    def create_customer(cls, params: CreateCustomerParams) -> CustomerResult:
        """Register a buyer at the gateway."""
        payload: dict[str, Any] = {
            "name": params.name,
            "cpfCnpj": params.tax_id,
            "notificationDisabled": False,
        }
        if params.email:
            payload["email"] = params.email
        if params.phone:
            payload["mobilePhone"] = params.phone
        if params.external_reference:
            payload["externalReference"] = params.external_reference

        body = cls._request(
            "POST",
            "/customers",
            {"operation": "create_customer", "external_reference": params.external_reference},
            payload=payload,
        )
        return CustomerResult(
            id=body["id"],
            name=body.get("name", params.name),
            tax_id=body.get("cpfCnpj", params.tax_id),
            raw_response=body,
        )

    @classmethod
    def find_customer_by_tax_id(cls, tax_id: str) -> CustomerResult | None:
        body = cls._request(
            "GET",
            "/customers",
            {"operation": "find_customer_by_tax_id"},
            params={"cpfCnpj": tax_id},
        )
        data = body.get("data") or []
        if not data:
            return None
        customer = data[0]
        return CustomerResult(
            id=customer["id"],
            name=customer.get("name", ""),
            tax_id=customer.get("cpfCnpj", tax_id),
            raw_response=customer,
        )

    # =========================================================================
    # Charges
    # =========================================================================

    @staticmethod
    def _charge_result(body: dict[str, Any]) -> ChargeResult:
        return ChargeResult(
            id=body["id"],
            status=body.get("status", ""),
            value=_money(body.get("value")),
            invoice_url=body.get("invoiceUrl") or "",
            billing_type=body.get("billingType", ""),
            raw_response=body,
        )

    @classmethod
    def create_charge(cls, params: CreateChargeParams) -> ChargeResult:
        """
        Create a charge, optionally splitting a fixed value to supplier wallets.

        Raises:
            GatewayInvalidWalletError: A split wallet was refused
            GatewayRejected: Any other permanent refusal
        """
        payload: dict[str, Any] = {
            "customer": params.customer_id,
            "billingType": params.billing_type,
            "value": str(params.value),
            "dueDate": params.due_date.isoformat(),
            "externalReference": params.external_reference,
        }
        if params.description:
            payload["description"] = params.description
        if params.installments > 1:
            payload["installmentCount"] = params.installments
            payload["totalValue"] = str(params.value)
        if params.split:
            payload["split"] = [
                {"walletId": s.wallet_id, "fixedValue": str(s.fixed_value)}
                for s in params.split
            ]

        body = cls._request(
            "POST",
            "/payments",
            {
                "operation": "create_charge",
                "external_reference": params.external_reference,
                "billing_type": params.billing_type,
                "has_split": bool(params.split),
            },
            payload=payload,
        )
        return cls._charge_result(body)

    @classmethod
    def get_charge(cls, charge_id: str) -> ChargeResult:
        body = cls._request(
            "GET",
            f"/payments/{charge_id}",
            {"operation": "get_charge", "charge_id": charge_id},
        )
        return cls._charge_result(body)

    @classmethod
    def delete_charge(cls, charge_id: str) -> bool:
        body = cls._request(
            "DELETE",
            f"/payments/{charge_id}",
            {"operation": "delete_charge", "charge_id": charge_id},
        )
        return bool(body.get("deleted", True))

    # =========================================================================
    # Supplier Accounts
    # =========================================================================

    @staticmethod
    def _account_result(body: dict[str, Any]) -> AccountResult:
        return AccountResult(
            id=body.get("id", ""),
            wallet_id=body.get("walletId", ""),
            tax_id=body.get("cpfCnpj", ""),
            raw_response=body,
        )

    @classmethod
    def get_account_by_wallet(cls, wallet_id: str) -> AccountResult | None:
        """Look up the sub-account owning a wallet; None when it is gone."""
        body = cls._request(
            "GET",
            "/accounts",
            {"operation": "get_account_by_wallet", "wallet_id": wallet_id},
            params={"walletId": wallet_id},
        )
        data = body.get("data") or []
        if not data:
            return None
        return cls._account_result(data[0])

    @classmethod
    def find_account_by_tax_id(cls, tax_id: str) -> AccountResult | None:
        body = cls._request(
            "GET",
            "/accounts",
            {"operation": "find_account_by_tax_id"},
            params={"cpfCnpj": tax_id},
        )
        data = body.get("data") or []
        if not data:
            return None
        return cls._account_result(data[0])

    @classmethod
    def create_account(cls, params: CreateAccountParams) -> AccountResult:
        """Create a supplier sub-account and return its wallet."""
        payload: dict[str, Any] = {
            "name": params.name,
            "email": params.email,
            "cpfCnpj": params.tax_id,
            "incomeValue": str(params.income_value),
        }
        optional = {
            "mobilePhone": params.phone,
            "companyType": params.company_type,
            "birthDate": params.birth_date.isoformat() if params.birth_date else "",
            "address": params.address,
            "addressNumber": params.address_number,
            "province": params.province,
            "postalCode": params.postal_code,
        }
        payload.update({key: value for key, value in optional.items() if value})

        body = cls._request(
            "POST",
            "/accounts",
            {"operation": "create_account"},
            payload=payload,
        )
        return cls._account_result(body)

    @classmethod
    def update_account_bank_account(
        cls, wallet_id: str, params: BankAccountParams
    ) -> dict[str, Any]:
        payload = {
            "bank": {"code": params.bank_code},
            "accountName": params.account_name or params.holder_name,
            "ownerName": params.holder_name,
            "cpfCnpj": params.holder_tax_id,
            "agency": params.agency,
            "agencyDigit": params.agency_digit,
            "account": params.account,
            "accountDigit": params.account_digit,
        }
        return cls._request(
            "POST",
            f"/subaccounts/{wallet_id}/bankAccount",
            {"operation": "update_account_bank_account", "wallet_id": wallet_id},
            payload=payload,
        )

    # =========================================================================
    # Transfers
    # =========================================================================

    @staticmethod
    def _transfer_result(body: dict[str, Any], value: Any = None) -> TransferResult:
        transfer_id = body.get("id")
        try:
            amount = _money(body.get("value", value))
        except InvalidOperation:
            amount = None
        if not transfer_id or amount is None:
            raise GatewayInvalidResponse(
                "Gateway answered without a readable transfer",
                details={
                    "operation": "create_transfer",
                    "external_reference": body.get("externalReference", ""),
                },
            )
        return TransferResult(
            id=transfer_id,
            status=body.get("status", ""),
            value=amount,
            external_reference=body.get("externalReference", "") or "",
            raw_response=body,
        )

    @classmethod
    def create_transfer(cls, params: CreateTransferParams) -> TransferResult:
        """
        Send money to a supplier by PIX or TED.

        Raises:
            GatewayRejected: Destination or amount refused
            GatewayUnavailable / GatewayTimeout / GatewayRateLimited: Transient
            GatewayInvalidResponse: 2xx without a readable transfer (outcome unknown)
        """
        payload: dict[str, Any] = {
            "value": str(params.value),
            "externalReference": params.idempotency_key,
            **params.destination.to_transfer_payload(),
        }
        if params.description:
            payload["description"] = params.description

        body = cls._request(
            "POST",
            "/transfers",
            {
                "operation": "create_transfer",
                "value": str(params.value),
                "operation_type": payload["operationType"],
                "idempotency_key": params.idempotency_key,
            },
            payload=payload,
        )
        if not body.get("externalReference"):
            body = {**body, "externalReference": params.idempotency_key}
        return cls._transfer_result(body, params.value)

    @classmethod
    def find_transfer_by_external_reference(cls, reference: str) -> TransferResult | None:
        """
        Find a live transfer created with ``reference``.

        Failed and cancelled transfers are ignored; they moved no money.
        """
        body = cls._request(
            "GET",
            "/transfers",
            {"operation": "find_transfer_by_external_reference", "idempotency_key": reference},
            params={"externalReference": reference},
        )
        matches = [
            item
            for item in body.get("data") or []
            if item.get("externalReference") == reference
            and item.get("status") not in DEAD_TRANSFER_STATUSES
        ]
        if not matches:
            return None
        return cls._transfer_result(matches[0])

    @classmethod
    def get_balance(cls) -> Decimal:
        body = cls._request("GET", "/finance/balance", {"operation": "get_balance"})
        return _money(body.get("balance"))


__all__ = [
    "AccountResult",
    "BankAccountParams",
    "BILLING_TYPES",
    "ChargeResult",
    "CreateAccountParams",
    "CreateChargeParams",
    "CreateCustomerParams",
    "CreateTransferParams",
    "CustomerResult",
    "GatewayAdapter",
    "IdempotencyKeyGenerator",
    "SplitInstruction",
    "TransferResult",
    "is_retryable_gateway_error",
]
