"""
Fee calculator for escrow charges.

Pure functions, no database or gateway access. Gateway fees are borne by
the buyer and added on top of the base amount; the platform commission is
borne by the supplier and deducted from its net payout, never added to the
buyer total.

Default schedule:
    pix            0.99 flat
    boleto         1.99 flat
    credit card    2.99% + 0.49 (1x), 3.49% + 0.49 (2-6x), 3.99% + 0.49 (7-12x)
    messaging      0.99 flat, every charge
    commission     5% of the base amount

Every value is overridable through the ESCROW_FEES setting.

Usage:
    from escrow.fees import calculate_fees

    fees = calculate_fees(Decimal("1000"), "pix")
    fees.customer_total   # Decimal("1001.98")
    fees.supplier_net     # Decimal("950.00")
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings

from escrow.exceptions import EscrowValidationError
from escrow.state_machines import PaymentMethod

if TYPE_CHECKING:
    from typing import Any


CENT = Decimal("0.01")
HUNDRED = Decimal("100")
MAX_INSTALLMENTS = 12


def to_money(value: Any) -> Decimal:
    """Quantize to cents, rounding half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CardFeeTier:
    """Card fee for charges split into at most ``max_installments``."""

    max_installments: int
    percentage: Decimal
    fixed: Decimal


DEFAULT_CARD_TIERS = (
    CardFeeTier(1, Decimal("2.99"), Decimal("0.49")),
    CardFeeTier(6, Decimal("3.49"), Decimal("0.49")),
    CardFeeTier(12, Decimal("3.99"), Decimal("0.49")),
)


@dataclass(frozen=True)
class FeeSchedule:
    """
    Gateway fees and platform commission.

    Attributes:
        pix_fee / boleto_fee: Flat fees per charge
        messaging_fee: Flat notification fee added to every charge
        commission_percent: Platform commission on the base amount (0-100)
        card_tiers: Card fees by installment range, ascending
    """

    pix_fee: Decimal = Decimal("0.99")
    boleto_fee: Decimal = Decimal("1.99")
    messaging_fee: Decimal = Decimal("0.99")
    commission_percent: Decimal = Decimal("5")
    card_tiers: tuple[CardFeeTier, ...] = field(default=DEFAULT_CARD_TIERS)

    def __post_init__(self):
        for name in ("pix_fee", "boleto_fee", "messaging_fee"):
            if Decimal(getattr(self, name)) < 0:
                raise EscrowValidationError(
                    f"{name} cannot be negative",
                    error_code="INVALID_FEE_SCHEDULE",
                    details={name: str(getattr(self, name))},
                )
        if not Decimal("0") <= Decimal(self.commission_percent) <= HUNDRED:
            raise EscrowValidationError(
                "commission_percent must be between 0 and 100",
                error_code="INVALID_FEE_SCHEDULE",
                details={"commission_percent": str(self.commission_percent)},
            )
        if not self.card_tiers:
            raise EscrowValidationError(
                "At least one card fee tier is required",
                error_code="INVALID_FEE_SCHEDULE",
            )

    @classmethod
    def from_settings(cls) -> FeeSchedule:
        """Build the schedule from settings.ESCROW_FEES (missing keys keep defaults)."""
        config = getattr(settings, "ESCROW_FEES", None) or {}
        kwargs: dict[str, Any] = {}
        for key in ("pix_fee", "boleto_fee", "messaging_fee", "commission_percent"):
            if config.get(key) is not None:
                kwargs[key] = Decimal(str(config[key]))
        if config.get("card_tiers"):
            kwargs["card_tiers"] = tuple(
                CardFeeTier(
                    int(tier["max_installments"]),
                    Decimal(str(tier["percentage"])),
                    Decimal(str(tier["fixed"])),
                )
                for tier in sorted(
                    config["card_tiers"], key=lambda t: int(t["max_installments"])
                )
            )
        return cls(**kwargs)

    @property
    def commission_rate(self) -> Decimal:
        return Decimal(self.commission_percent) / HUNDRED

    def card_fee(self, base_amount: Decimal, installments: int) -> Decimal:
        tier = next(
            (t for t in self.card_tiers if installments <= t.max_installments),
            self.card_tiers[-1],
        )
        return to_money(base_amount * tier.percentage / HUNDRED + tier.fixed)

    def payment_fee(
        self, base_amount: Decimal, payment_method: str, installments: int = 1
    ) -> Decimal:
        """
        Gateway fee for a payment method.

        UNDETERMINED quotes the most expensive method (the card fee for
        normal amounts) so a displayed total never under-quotes.
        """
        if payment_method == PaymentMethod.PIX:
            return to_money(self.pix_fee)
        if payment_method == PaymentMethod.BOLETO:
            return to_money(self.boleto_fee)
        if payment_method == PaymentMethod.CREDIT_CARD:
            return self.card_fee(base_amount, installments)
        return max(
            self.card_fee(base_amount, installments),
            to_money(self.pix_fee),
            to_money(self.boleto_fee),
        )


@dataclass(frozen=True)
class FeeBreakdown:
    """Result of calculate_fees; all amounts in cents precision."""

    base_amount: Decimal
    payment_method: str
    installments: int
    payment_fee: Decimal
    messaging_fee: Decimal
    total_fees: Decimal
    customer_total: Decimal
    commission_rate: Decimal
    platform_commission: Decimal
    supplier_net: Decimal

    def as_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (amounts as strings)."""
        return {
            key: str(value) if isinstance(value, Decimal) else value
            for key, value in asdict(self).items()
        }


def _clean_base_amount(base_amount: Any) -> Decimal:
    if isinstance(base_amount, bool):
        raise EscrowValidationError(
            "Base amount must be a number",
            error_code="INVALID_AMOUNT",
            details={"base_amount": base_amount},
        )
    try:
        amount = Decimal(str(base_amount))
    except (InvalidOperation, ValueError, TypeError):
        raise EscrowValidationError(
            "Base amount must be a number",
            error_code="INVALID_AMOUNT",
            details={"base_amount": str(base_amount)},
        ) from None
    if not amount.is_finite() or to_money(amount) <= 0:
        raise EscrowValidationError(
            "Base amount must be positive",
            error_code="INVALID_AMOUNT",
            details={"base_amount": str(base_amount)},
        )
    return to_money(amount)


def calculate_fees(
    base_amount: Any,
    payment_method: str = PaymentMethod.UNDETERMINED,
    installments: int = 1,
    schedule: FeeSchedule | None = None,
) -> FeeBreakdown:
    """
    Compute fees, buyer total, commission and supplier net for a base amount.

    Args:
        base_amount: Goods/services value, positive
        payment_method: pix, boleto, credit_card or undetermined
        installments: Card installments, 1-12
        schedule: Fee schedule (defaults to FeeSchedule.from_settings())

    Returns:
        FeeBreakdown where supplier_net <= base_amount <= customer_total and
        customer_total - base_amount == payment_fee + messaging_fee

    Raises:
        EscrowValidationError: Non-positive amount, unknown method or
            installments out of range
    """
    amount = _clean_base_amount(base_amount)

    if payment_method not in PaymentMethod.values:
        raise EscrowValidationError(
            f"Unknown payment method '{payment_method}'",
            error_code="INVALID_PAYMENT_METHOD",
            details={"allowed": list(PaymentMethod.values)},
        )
    if isinstance(installments, bool) or not isinstance(installments, int):
        raise EscrowValidationError(
            "Installments must be an integer",
            error_code="INVALID_INSTALLMENTS",
        )
    if not 1 <= installments <= MAX_INSTALLMENTS:
        raise EscrowValidationError(
            f"Installments must be between 1 and {MAX_INSTALLMENTS}",
            error_code="INVALID_INSTALLMENTS",
            details={"installments": installments},
        )

    schedule = schedule or FeeSchedule.from_settings()

    payment_fee = schedule.payment_fee(amount, payment_method, installments)
    messaging_fee = to_money(schedule.messaging_fee)
    total_fees = payment_fee + messaging_fee
    commission = to_money(amount * schedule.commission_rate)

    return FeeBreakdown(
        base_amount=amount,
        payment_method=payment_method,
        installments=installments,
        payment_fee=payment_fee,
        messaging_fee=messaging_fee,
        total_fees=total_fees,
        customer_total=amount + total_fees,
        commission_rate=schedule.commission_rate,
        platform_commission=commission,
        supplier_net=amount - commission,
    )
