"""
Charge issuing for approved quotes.

Turns an approved quote into a gateway charge whose buyer total carries the
gateway fees. When the supplier has a live wallet the charge also splits the
supplier's net amount to it; if the gateway refuses that wallet the charge is
resubmitted once without the split so the buyer can still pay.

Two-phase pattern (as for payouts):
1. Create the Payment row (pending) and commit; the open-payment unique
   constraint rejects a concurrent duplicate.
2. Call the gateway outside the transaction.
3. Store the charge id and move the payment to processing, or mark it
   failed so the quote can be charged again.

Usage:
    from escrow.services import ChargeService

    result = ChargeService().create_charge(quote.id, payment_method="pix")
    if result.success:
        redirect(result.data.pay_url)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import IntegrityError
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from escrow.adapters import (
    BILLING_TYPES,
    CreateChargeParams,
    CreateCustomerParams,
    SplitInstruction,
)
from escrow.destinations import only_digits
from escrow.exceptions import (
    DuplicateCharge,
    EscrowValidationError,
    GatewayError,
    GatewayInvalidWalletError,
    GatewayRejected,
    InvalidPayoutDestination,
    MissingCustomerData,
)
from escrow.fees import FeeSchedule, calculate_fees
from escrow.locks import lock_payment
from escrow.models import Client, Payment, Quote
from escrow.retry import CHARGE_FALLBACK_POLICY
from escrow.services.base import EscrowService
from escrow.services.destination_service import DestinationCheck, DestinationService
from escrow.state_machines import CLOSED_CHARGE_STATUSES, PanelType
from escrow.state_machines.transitions import apply_transition, can_apply

if TYPE_CHECKING:
    from typing import Any

    from escrow.adapters import ChargeResult as GatewayCharge
    from escrow.models import Supplier
    from escrow.retry import RetryPolicy


GATEWAY_CUSTOMER_CONTEXT = "gateway_customer"

# Gateway charge states that count as already cancelled
GATEWAY_CANCELLED_STATUSES = frozenset({"CANCELLED", "DELETED", "REFUNDED"})
# Gateway charge states that can still be deleted
GATEWAY_DELETABLE_STATUSES = frozenset({"PENDING", "OVERDUE"})

# Days the buyer has to pay before the charge goes overdue
CHARGE_DUE_DAYS = 3


@dataclass
class ChargeResult:
    """
    Result of a successful charge.

    Attributes:
        charge_id: Gateway charge id
        pay_url: Hosted page where the buyer pays
        payment: The Payment row (status processing)
        split_applied: Whether the supplier split went through
    """

    charge_id: str
    pay_url: str
    payment: Payment
    split_applied: bool = False


class ChargeService(EscrowService):
    """
    Issues and cancels buyer charges.

    Error Handling:
        - Business failures (unapproved quote, duplicate, missing data,
          gateway rejection): ServiceResult.failure
        - Transient gateway errors: payment marked failed, exception raised
          so the caller (view or task) can retry later
    """

    def __init__(
        self,
        destinations: DestinationService | None = None,
        fee_schedule: FeeSchedule | None = None,
        retry_policy: RetryPolicy = CHARGE_FALLBACK_POLICY,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.destinations = destinations or DestinationService(**self.collaborators())
        self.fee_schedule = fee_schedule
        self.retry_policy = retry_policy

    # =========================================================================
    # Create
    # =========================================================================

    def create_charge(
        self,
        quote_id: Any,
        payment_method: str = "undetermined",
        installments: int = 1,
        actor: Any = None,
    ) -> ServiceResult[ChargeResult]:
        """
        Charge an approved quote.

        Args:
            quote_id: Quote primary key
            payment_method: pix, boleto, credit_card or undetermined
            installments: Card installments (1-12)
            actor: User requesting the charge

        Returns:
            ServiceResult with ChargeResult

        Raises:
            GatewayError: Transient gateway failure (retryable)
        """
        logger = self.get_logger()

        quote = (
            Quote.objects.select_related("client", "supplier")
            .filter(pk=quote_id)
            .first()
        )
        if quote is None:
            return ServiceResult.failure(
                f"Quote {quote_id} not found",
                error_code="QUOTE_NOT_FOUND",
            )
        if not quote.is_approved:
            return ServiceResult.failure(
                "Only approved quotes can be charged",
                error_code="QUOTE_NOT_APPROVED",
                details={"quote_id": str(quote.id), "status": quote.status},
            )
        if Payment.objects.open_for_quote(quote.id).exists():
            return ServiceResult.from_exception(self._duplicate(quote))

        try:
            fees = calculate_fees(
                quote.base_amount,
                payment_method,
                installments,
                schedule=self.fee_schedule,
            )
            customer_id = self._ensure_customer(quote.client)
        except (EscrowValidationError, GatewayRejected) as e:
            return ServiceResult.from_exception(e)

        check = self._check_destination(quote.supplier, actor)
        split_wallet_id = (
            check.destination_id
            if check.valid and self._payee_complete(quote.supplier)
            else ""
        )

        # Phase 1: reserve the quote
        try:
            with self.atomic():
                payment = Payment.objects.create(
                    quote=quote,
                    client=quote.client,
                    supplier=quote.supplier,
                    payment_method=payment_method,
                    installments=installments,
                    base_amount=fees.base_amount,
                    gateway_payment_fee=fees.payment_fee,
                    gateway_messaging_fee=fees.messaging_fee,
                    customer_total=fees.customer_total,
                    platform_commission_amount=fees.platform_commission,
                    supplier_net_amount=fees.supplier_net,
                    gateway_customer_id=customer_id,
                )
        except IntegrityError:
            return ServiceResult.from_exception(self._duplicate(quote))

        params = CreateChargeParams(
            customer_id=customer_id,
            billing_type=BILLING_TYPES[payment_method],
            value=fees.customer_total,
            due_date=timezone.localdate() + timedelta(days=CHARGE_DUE_DAYS),
            external_reference=str(payment.id),
            description=quote.description or f"Quote {quote.id}",
            installments=installments,
            split=(
                [SplitInstruction(split_wallet_id, fees.supplier_net)]
                if split_wallet_id
                else []
            ),
        )

        # Phase 2: gateway call outside any transaction
        try:
            charge, split_applied = self._submit(params, payment)
        except GatewayRejected as e:
            self._mark_failed(payment.id, e)
            return ServiceResult.from_exception(e)
        except GatewayError as e:
            self._mark_failed(payment.id, e)
            raise

        # Phase 3: record the charge
        with self.atomic():
            payment = lock_payment(payment.id)
            payment.gateway_charge_id = charge.id
            payment.invoice_url = charge.invoice_url
            payment.split_wallet_id = split_wallet_id if split_applied else ""
            apply_transition(payment, "start_processing")
            payment.save()

            self.audit.record(
                "CHARGE_CREATED",
                entity_type="payment",
                entity_id=payment.id,
                actor=actor,
                panel_type=PanelType.CLIENT if actor else PanelType.SYSTEM,
                details={
                    "quote_id": str(quote.id),
                    "charge_id": charge.id,
                    "payment_method": payment_method,
                    "customer_total": str(fees.customer_total),
                    "supplier_net": str(fees.supplier_net),
                    "split_applied": split_applied,
                    "destination_reason": check.reason or None,
                },
            )

        logger.info(
            "Charge created",
            extra={
                "payment_id": str(payment.id),
                "quote_id": str(quote.id),
                "charge_id": charge.id,
                "split_applied": split_applied,
            },
        )
        return ServiceResult.success(
            ChargeResult(
                charge_id=charge.id,
                pay_url=charge.invoice_url,
                payment=payment,
                split_applied=split_applied,
            )
        )

    def _submit(
        self, params: CreateChargeParams, payment: Payment
    ) -> tuple[GatewayCharge, bool]:
        """Submit the charge, dropping the split once if its wallet is refused."""
        if not params.split:
            return self.gateway.create_charge(params), False

        attempts: list[bool] = []

        def submit(attempt: int) -> GatewayCharge:
            with_split = attempt == 1
            attempts.append(with_split)
            if not with_split:
                self.get_logger().warning(
                    "Split wallet rejected, resubmitting charge without split",
                    extra={
                        "payment_id": str(payment.id),
                        "wallet_id": params.split[0].wallet_id,
                    },
                )
            return self.gateway.create_charge(
                params if with_split else params.without_split()
            )

        charge = self.retry_policy.execute(
            submit, retry_on=(GatewayInvalidWalletError,)
        )
        return charge, attempts[-1]

    def _mark_failed(self, payment_id: Any, error: GatewayError) -> None:
        with self.atomic():
            payment = lock_payment(payment_id)
            apply_transition(payment, "fail", reason=error.message)
            payment.save()
            self.audit.record(
                "CHARGE_FAILED",
                entity_type="payment",
                entity_id=payment.id,
                details={"error": error.to_dict()},
            )
        self.get_logger().error(
            "Charge failed at gateway",
            extra={"payment_id": str(payment_id), "error_code": error.error_code},
        )

    @staticmethod
    def _duplicate(quote: Quote) -> DuplicateCharge:
        existing = Payment.objects.open_for_quote(quote.id).first()
        return DuplicateCharge(
            "A payment already exists for this quote",
            details={
                "quote_id": str(quote.id),
                "payment_id": str(existing.id) if existing else None,
            },
        )

    # =========================================================================
    # Collaborator checks
    # =========================================================================

    def _ensure_customer(self, client: Client) -> str:
        """
        Return the buyer's gateway customer id, creating it once.

        Raises:
            MissingCustomerData: Client has no name or tax id
        """
        return self.cache.get_or_set(
            client.id, GATEWAY_CUSTOMER_CONTEXT, lambda: self._customer_id(client)
        )

    def _customer_id(self, client: Client) -> str:
        """Stored customer id, or one found or created at the gateway."""
        if client.gateway_customer_id:
            return client.gateway_customer_id

        tax_id = only_digits(client.tax_id)
        missing = [
            name
            for name, value in (("name", client.name.strip()), ("tax_id", tax_id))
            if not value
        ]
        if missing:
            raise MissingCustomerData(
                "Client is missing data required by the payment gateway",
                details={"client_id": str(client.id), "missing_fields": missing},
            )

        customer = self.gateway.find_customer_by_tax_id(tax_id)
        if customer is None:
            customer = self.gateway.create_customer(
                CreateCustomerParams(
                    name=client.name,
                    tax_id=tax_id,
                    email=client.email,
                    phone=only_digits(client.phone),
                    external_reference=str(client.id),
                )
            )

        Client.objects.filter(pk=client.pk).update(
            gateway_customer_id=customer.id,
            updated_at=timezone.now(),
        )
        client.gateway_customer_id = customer.id
        return customer.id

    def _check_destination(self, supplier: Supplier, actor: Any) -> DestinationCheck:
        try:
            return self.destinations.validate(supplier.id, actor=actor)
        except (InvalidPayoutDestination, GatewayError) as e:
            self.get_logger().warning(
                "Charging without split, payout destination unusable",
                extra={
                    "supplier_id": str(supplier.id),
                    "error_code": e.error_code,
                },
            )
            return DestinationCheck(valid=False, reason=e.error_code.lower())

    @staticmethod
    def _payee_complete(supplier: Supplier) -> bool:
        return bool(supplier.name.strip() and only_digits(supplier.tax_id))

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel_charge(self, payment_id: Any, actor: Any = None) -> ServiceResult[Payment]:
        """
        Cancel an unpaid charge at the gateway and locally.

        A gateway charge already cancelled, deleted or refunded counts as
        cancelled; a paid one cannot be cancelled here.
        """
        logger = self.get_logger()

        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            return ServiceResult.failure(
                f"Payment {payment_id} not found",
                error_code="PAYMENT_NOT_FOUND",
            )
        if payment.status in CLOSED_CHARGE_STATUSES:
            return ServiceResult.failure(
                "Payment is already closed",
                error_code="PAYMENT_ALREADY_CLOSED",
                details={"status": payment.status},
            )
        if not can_apply(payment, "cancel"):
            return ServiceResult.failure(
                f"Payment in status '{payment.status}' cannot be cancelled",
                error_code="INVALID_STATE_TRANSITION",
                details={"current_state": payment.status, "action": "cancel"},
            )

        gateway_status = None
        if payment.gateway_charge_id:
            try:
                charge = self.gateway.get_charge(payment.gateway_charge_id)
                gateway_status = charge.status
                if gateway_status in GATEWAY_DELETABLE_STATUSES:
                    self.gateway.delete_charge(payment.gateway_charge_id)
                elif gateway_status not in GATEWAY_CANCELLED_STATUSES:
                    return ServiceResult.failure(
                        f"Charge cannot be cancelled in gateway status {gateway_status}",
                        error_code="CHARGE_NOT_CANCELLABLE",
                        details={"gateway_status": gateway_status},
                    )
            except GatewayRejected as e:
                return self.handle_exception(e, "Charge cancellation rejected")

        try:
            with self.atomic():
                payment = lock_payment(payment.id)
                apply_transition(payment, "cancel", reason="Cancelled by request")
                payment.save()
                self.audit.record(
                    "CHARGE_CANCELLED",
                    entity_type="payment",
                    entity_id=payment.id,
                    actor=actor,
                    panel_type=PanelType.CLIENT if actor else PanelType.SYSTEM,
                    details={
                        "charge_id": payment.gateway_charge_id,
                        "gateway_status": gateway_status,
                    },
                )
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        logger.info(
            "Charge cancelled",
            extra={"payment_id": str(payment.id), "gateway_status": gateway_status},
        )
        return ServiceResult.success(payment)
