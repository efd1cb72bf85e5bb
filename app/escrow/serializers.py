"""
Serializers for the escrow API.

Provides:
- FeeQuoteSerializer: Fee preview query parameters
- CreateChargeSerializer: Charge request body
- PaymentSerializer: Read-only payment representation
- ReleaseRequestSerializer: Optional confirmation code for a release
- ConfirmDeliverySerializer: Delivery code redemption
- BankAccountSerializer: Supplier bank account update
- DestinationCheckSerializer: Wallet validation result
"""

from __future__ import annotations

from rest_framework import serializers

from escrow.fees import MAX_INSTALLMENTS
from escrow.models import Payment, Supplier
from escrow.state_machines import PaymentMethod


class FeeQuoteSerializer(serializers.Serializer):
    """Query parameters for GET fees/quote/."""

    base_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices,
        default=PaymentMethod.UNDETERMINED,
    )
    installments = serializers.IntegerField(
        min_value=1,
        max_value=MAX_INSTALLMENTS,
        default=1,
    )


class FeeBreakdownSerializer(serializers.Serializer):
    base_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_method = serializers.CharField()
    installments = serializers.IntegerField()
    payment_fee = serializers.DecimalField(max_digits=12, decimal_places=2)
    messaging_fee = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_fees = serializers.DecimalField(max_digits=12, decimal_places=2)
    customer_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    commission_rate = serializers.DecimalField(max_digits=6, decimal_places=4)
    platform_commission = serializers.DecimalField(max_digits=12, decimal_places=2)
    supplier_net = serializers.DecimalField(max_digits=12, decimal_places=2)


class CreateChargeSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices,
        default=PaymentMethod.UNDETERMINED,
    )
    installments = serializers.IntegerField(
        min_value=1,
        max_value=MAX_INSTALLMENTS,
        default=1,
    )


class PaymentSerializer(serializers.ModelSerializer):
    """Read-only payment representation for API responses."""

    has_split = serializers.BooleanField(read_only=True)
    can_release = serializers.BooleanField(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "friendly_id",
            "quote",
            "client",
            "supplier",
            "payment_method",
            "installments",
            "base_amount",
            "gateway_payment_fee",
            "gateway_messaging_fee",
            "customer_total",
            "platform_commission_amount",
            "supplier_net_amount",
            "gateway_charge_id",
            "gateway_transfer_id",
            "invoice_url",
            "has_split",
            "status",
            "transfer_status",
            "transfer_error",
            "paid_at",
            "escrowed_at",
            "released_at",
            "completed_at",
            "can_release",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ChargeResultSerializer(serializers.Serializer):
    charge_id = serializers.CharField()
    pay_url = serializers.CharField()
    split_applied = serializers.BooleanField()
    payment = PaymentSerializer()


class VersionedRequestSerializer(serializers.Serializer):
    version = serializers.IntegerField(
        required=False,
        min_value=1,
        help_text="Payment version last read; a newer payment answers 409 STALE_RECORD",
    )


class ReleaseRequestSerializer(VersionedRequestSerializer):
    confirmation_code = serializers.CharField(
        max_length=6,
        required=False,
        allow_blank=True,
        help_text="Delivery code to consume with the release",
    )


class ReleaseResultSerializer(serializers.Serializer):
    transfer_id = serializers.CharField()
    payment = PaymentSerializer()


class ConfirmDeliverySerializer(serializers.Serializer):
    code = serializers.CharField(
        max_length=6,
        min_length=6,
        help_text="6 character code handed over with the delivery",
    )

    def validate_code(self, value: str) -> str:
        return value.strip().upper()


class DeliveryCodeSerializer(serializers.Serializer):
    delivery_id = serializers.UUIDField()
    expires_at = serializers.DateTimeField()
    email_sent = serializers.BooleanField()


class GatewayBalanceSerializer(serializers.Serializer):
    balance = serializers.DecimalField(max_digits=14, decimal_places=2)


class SyncOutcomeSerializer(serializers.Serializer):
    changed = serializers.BooleanField()
    old_status = serializers.CharField()
    new_status = serializers.CharField()
    gateway_status = serializers.CharField()


class BankAccountSerializer(serializers.Serializer):
    """Supplier bank account update; registered with the gateway first."""

    bank_code = serializers.CharField(max_length=10)
    agency = serializers.CharField(max_length=10)
    agency_digit = serializers.CharField(max_length=2, required=False, allow_blank=True)
    account_number = serializers.CharField(max_length=20)
    account_digit = serializers.CharField(max_length=2, required=False, allow_blank=True)
    account_type = serializers.ChoiceField(
        choices=["CONTA_CORRENTE", "CONTA_POUPANCA"],
        default="CONTA_CORRENTE",
    )
    account_holder_name = serializers.CharField(max_length=255)
    account_holder_document = serializers.CharField(max_length=18)


class SupplierPayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = [
            "id",
            "name",
            "gateway_wallet_id",
            "bank_code",
            "bank_agency",
            "bank_account_type",
            "bank_holder_name",
            "bank_data_verified_at",
        ]
        read_only_fields = fields


class DestinationCheckSerializer(serializers.Serializer):
    valid = serializers.BooleanField()
    destination_id = serializers.CharField(allow_null=True)
    healed = serializers.BooleanField()
    reason = serializers.CharField(allow_blank=True)
