"""
DRF views for the escrow app.

This module provides API views for:
- Fee previews
- Charging approved quotes and cancelling open charges
- Payment status sync, release and transfer retry
- Delivery confirmation codes: issuing, resending, redemption
- Supplier payout destination checks and bank account updates
- Gateway account balance

Related files:
    - services/: ChargeService, SyncService, ReleaseService, ...
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/: Gateway webhook endpoints

Endpoints:
    GET  /api/v1/escrow/fees/quote/ - Fee preview
    POST /api/v1/escrow/quotes/<id>/charge/ - Charge an approved quote
    GET  /api/v1/escrow/payments/<id>/ - Payment detail
    POST /api/v1/escrow/payments/<id>/sync/ - Poll the gateway (staff)
    POST /api/v1/escrow/payments/<id>/cancel/ - Cancel an open charge
    POST /api/v1/escrow/payments/<id>/release/ - Release escrow (staff)
    POST /api/v1/escrow/payments/<id>/retry-transfer/ - Retry payout (staff)
    POST /api/v1/escrow/deliveries/<id>/issue-code/ - Email the client a new code
    POST /api/v1/escrow/deliveries/<id>/resend-code/ - Email the active code again
    POST /api/v1/escrow/deliveries/confirm/ - Redeem a delivery code
    POST /api/v1/escrow/suppliers/<id>/validate-destination/ - Check wallet (staff)
    PUT  /api/v1/escrow/suppliers/<id>/bank-account/ - Update bank account
    GET  /api/v1/escrow/balance/ - Gateway account balance (staff)
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from escrow.fees import FeeSchedule, calculate_fees
from escrow.models import Payment, Quote, Supplier
from escrow.serializers import (
    BankAccountSerializer,
    ChargeResultSerializer,
    ConfirmDeliverySerializer,
    CreateChargeSerializer,
    DeliveryCodeSerializer,
    DestinationCheckSerializer,
    FeeBreakdownSerializer,
    FeeQuoteSerializer,
    GatewayBalanceSerializer,
    PaymentSerializer,
    ReleaseRequestSerializer,
    ReleaseResultSerializer,
    SupplierPayoutSerializer,
    SyncOutcomeSerializer,
    VersionedRequestSerializer,
)
from escrow.services import (
    ChargeService,
    DeliveryService,
    DestinationService,
    ReleaseService,
    RetryService,
    SyncService,
)
from escrow.services.base import EscrowService

logger = logging.getLogger(__name__)


# =============================================================================
# Error Mapping
# =============================================================================

NOT_FOUND_CODES = frozenset(
    {
        "CODE_NOT_FOUND",
        "DELIVERY_NOT_FOUND",
        "PAYMENT_NOT_FOUND",
        "QUOTE_NOT_FOUND",
        "SUPPLIER_NOT_FOUND",
        "TRANSFER_NOT_FOUND",
    }
)
CONFLICT_CODES = frozenset(
    {
        "CHARGE_NOT_CANCELLABLE",
        "CODE_ALREADY_USED",
        "DELIVERY_CLOSED",
        "DUPLICATE_CHARGE",
        "INVALID_STATE_TRANSITION",
        "LOCK_ACQUISITION_FAILED",
        "PAYMENT_ALREADY_CLOSED",
        "PAYMENT_NOT_FUNDED",
        "PAYMENT_NOT_RELEASABLE",
        "STALE_RECORD",
        "TRANSFER_ALREADY_COMPLETED",
        "TRANSFER_ALREADY_REQUESTED",
    }
)
GATEWAY_CODES = frozenset(
    {
        "GATEWAY_AUTHENTICATION_ERROR",
        "GATEWAY_ERROR",
        "GATEWAY_INVALID_RESPONSE",
        "GATEWAY_INVALID_WALLET",
        "GATEWAY_NOT_FOUND",
        "GATEWAY_RATE_LIMITED",
        "GATEWAY_REJECTED",
        "GATEWAY_TIMEOUT",
        "GATEWAY_UNAVAILABLE",
        "TRANSFER_FAILED",
    }
)


def failure_status(error_code: str | None) -> int:
    """HTTP status for a failed ServiceResult."""
    if error_code in NOT_FOUND_CODES:
        return status.HTTP_404_NOT_FOUND
    if error_code in CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    if error_code in GATEWAY_CODES:
        return status.HTTP_502_BAD_GATEWAY
    if error_code == "PERMISSION_DENIED":
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_400_BAD_REQUEST


def result_response(
    result: ServiceResult,
    serializer_class=None,
    success_status: int = status.HTTP_200_OK,
) -> Response:
    """Render a ServiceResult, serializing its data on success."""
    if not result.success:
        return Response(result.to_response(), status=failure_status(result.error_code))
    data = serializer_class(result.data).data if serializer_class else result.data
    return Response({"success": True, "data": data}, status=success_status)


def error_response(exc: BaseApplicationError) -> Response:
    logger.warning(
        f"Request failed: {exc.error_code}",
        extra={"error_code": exc.error_code},
    )
    return Response({"success": False, **exc.to_dict()}, status=exc.http_status)


def forbidden() -> Response:
    return Response(
        {
            "success": False,
            "error": "You are not allowed to act on this record",
            "error_code": "PERMISSION_DENIED",
        },
        status=status.HTTP_403_FORBIDDEN,
    )


def is_client_member(user, client) -> bool:
    return user.is_staff or client.members.filter(pk=user.pk).exists()


def is_supplier_user(user, supplier) -> bool:
    return user.is_staff or supplier.user_id == user.pk


# =============================================================================
# Fees
# =============================================================================


class FeeQuoteView(APIView):
    """
    Preview the fees and payout for an amount.

    GET /api/v1/escrow/fees/quote/?base_amount=1000&payment_method=pix
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Preview fees",
        description=(
            "Gateway fees borne by the buyer, platform commission borne by the "
            "supplier, and the resulting totals."
        ),
        tags=["Escrow"],
        parameters=[FeeQuoteSerializer],
        responses={200: FeeBreakdownSerializer},
    )
    def get(self, request):
        serializer = FeeQuoteSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        try:
            breakdown = calculate_fees(
                schedule=FeeSchedule.from_settings(),
                **serializer.validated_data,
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(FeeBreakdownSerializer(breakdown).data)


# =============================================================================
# Charges
# =============================================================================


class CreateChargeView(APIView):
    """
    Charge an approved quote.

    POST /api/v1/escrow/quotes/<quote_id>/charge/

    Request body:
        {
            "payment_method": "pix",
            "installments": 1
        }
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Charge a quote",
        tags=["Escrow - Payments"],
        request=CreateChargeSerializer,
        responses={
            201: ChargeResultSerializer,
            409: OpenApiResponse(description="Quote already has an open payment"),
            502: OpenApiResponse(description="Gateway unavailable"),
        },
    )
    def post(self, request, quote_id):
        quote = Quote.objects.select_related("client").filter(pk=quote_id).first()
        if quote is not None and not is_client_member(request.user, quote.client):
            return forbidden()

        serializer = CreateChargeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = ChargeService().create_charge(
                quote_id,
                actor=request.user,
                **serializer.validated_data,
            )
        except BaseApplicationError as e:
            return error_response(e)
        return result_response(result, ChargeResultSerializer, status.HTTP_201_CREATED)


class PaymentDetailView(APIView):
    """GET /api/v1/escrow/payments/<payment_id>/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get a payment",
        tags=["Escrow - Payments"],
        responses={200: PaymentSerializer},
    )
    def get(self, request, payment_id):
        payment = (
            Payment.objects.select_related("client", "supplier")
            .filter(pk=payment_id)
            .first()
        )
        if payment is None:
            return Response(
                {"success": False, "error": "Payment not found", "error_code": "PAYMENT_NOT_FOUND"},
                status=status.HTTP_404_NOT_FOUND,
            )
        user = request.user
        if not (
            is_client_member(user, payment.client) or is_supplier_user(user, payment.supplier)
        ):
            return forbidden()
        return Response(PaymentSerializer(payment).data)


class SyncPaymentView(APIView):
    """POST /api/v1/escrow/payments/<payment_id>/sync/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Sync payment status from the gateway",
        tags=["Escrow - Payments"],
        request=None,
        responses={200: SyncOutcomeSerializer},
    )
    def post(self, request, payment_id):
        try:
            result = SyncService().sync(payment_id)
        except BaseApplicationError as e:
            return error_response(e)
        return result_response(result, SyncOutcomeSerializer)


class CancelChargeView(APIView):
    """POST /api/v1/escrow/payments/<payment_id>/cancel/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Cancel an open charge",
        tags=["Escrow - Payments"],
        request=None,
        responses={200: PaymentSerializer},
    )
    def post(self, request, payment_id):
        payment = Payment.objects.select_related("client").filter(pk=payment_id).first()
        if payment is not None and not is_client_member(request.user, payment.client):
            return forbidden()
        try:
            result = ChargeService().cancel_charge(payment_id, actor=request.user)
        except BaseApplicationError as e:
            return error_response(e)
        return result_response(result, PaymentSerializer)


# =============================================================================
# Release & Retry
# =============================================================================


class ReleasePaymentView(APIView):
    """
    Release escrowed funds to the supplier.

    POST /api/v1/escrow/payments/<payment_id>/release/

    Request body:
        {
            "confirmation_code": "ABC123",  // optional
            "version": 3                    // optional, payment version last read
        }
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Release escrow",
        tags=["Escrow - Payouts"],
        request=ReleaseRequestSerializer,
        responses={
            200: ReleaseResultSerializer,
            409: OpenApiResponse(description="Code already used or transfer in flight"),
            502: OpenApiResponse(description="Transfer failed, retry scheduled"),
        },
    )
    def post(self, request, payment_id):
        serializer = ReleaseRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        code = serializer.validated_data.get("confirmation_code") or None

        result = ReleaseService().release(
            payment_id,
            confirmation_code=code,
            actor=request.user,
            expected_version=serializer.validated_data.get("version"),
        )
        return result_response(result, ReleaseResultSerializer)


class RetryTransferView(APIView):
    """
    Retry a failed supplier transfer.

    POST /api/v1/escrow/payments/<payment_id>/retry-transfer/

    Request body (optional):
        {
            "version": 3
        }
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Retry a failed supplier transfer",
        tags=["Escrow - Payouts"],
        request=VersionedRequestSerializer,
        responses={
            200: ReleaseResultSerializer,
            409: OpenApiResponse(description="Transfer in flight or payment changed"),
        },
    )
    def post(self, request, payment_id):
        serializer = VersionedRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RetryService().retry(
            payment_id,
            actor=request.user,
            expected_version=serializer.validated_data.get("version"),
        )
        return result_response(result, ReleaseResultSerializer)


# =============================================================================
# Deliveries
# =============================================================================


class ConfirmDeliveryView(APIView):
    """
    Redeem a delivery confirmation code.

    POST /api/v1/escrow/deliveries/confirm/

    Request body:
        {
            "code": "ABC123"
        }

    Returns:
        delivery_id, confirmed_at, payment_id and the release outcome
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Confirm a delivery",
        tags=["Escrow - Deliveries"],
        request=ConfirmDeliverySerializer,
        responses={
            200: OpenApiResponse(description="Delivery confirmed"),
            409: OpenApiResponse(description="Code already used"),
        },
    )
    def post(self, request):
        serializer = ConfirmDeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DeliveryService().confirm_delivery(
            serializer.validated_data["code"],
            request.user,
        )
        return result_response(result)


class IssueDeliveryCodeView(APIView):
    """
    Issue a fresh delivery code and email it to the client.

    POST /api/v1/escrow/deliveries/<delivery_id>/issue-code/

    Earlier unused codes stop working. The code itself is never part of
    the response.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Issue a delivery confirmation code",
        tags=["Escrow - Deliveries"],
        request=None,
        responses={
            200: DeliveryCodeSerializer,
            409: OpenApiResponse(description="Delivery already closed"),
        },
    )
    def post(self, request, delivery_id):
        result = DeliveryService().issue_code(delivery_id, request.user)
        return result_response(result, DeliveryCodeSerializer)


class ResendDeliveryCodeView(APIView):
    """POST /api/v1/escrow/deliveries/<delivery_id>/resend-code/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Email the active delivery code again",
        tags=["Escrow - Deliveries"],
        request=None,
        responses={
            200: DeliveryCodeSerializer,
            404: OpenApiResponse(description="No active code"),
        },
    )
    def post(self, request, delivery_id):
        result = DeliveryService().resend_code(delivery_id, request.user)
        return result_response(result, DeliveryCodeSerializer)


# =============================================================================
# Supplier Payout Destination
# =============================================================================


class ValidateDestinationView(APIView):
    """POST /api/v1/escrow/suppliers/<supplier_id>/validate-destination/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Validate and heal a supplier wallet",
        tags=["Escrow - Suppliers"],
        request=None,
        responses={200: DestinationCheckSerializer},
    )
    def post(self, request, supplier_id):
        try:
            check = DestinationService().validate(
                supplier_id,
                heal_missing=True,
                actor=request.user,
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(DestinationCheckSerializer(check).data)


class SupplierBankAccountView(APIView):
    """
    Update a supplier's bank account.

    PUT /api/v1/escrow/suppliers/<supplier_id>/bank-account/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Update supplier bank account",
        tags=["Escrow - Suppliers"],
        request=BankAccountSerializer,
        responses={200: SupplierPayoutSerializer},
    )
    def put(self, request, supplier_id):
        supplier = Supplier.objects.filter(pk=supplier_id).first()
        if supplier is not None and not is_supplier_user(request.user, supplier):
            return forbidden()

        serializer = BankAccountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DestinationService().update_bank_account(
            supplier_id,
            serializer.validated_data,
            actor=request.user,
        )
        return result_response(result, SupplierPayoutSerializer)


# =============================================================================
# Gateway Account
# =============================================================================


class GatewayBalanceView(APIView):
    """GET /api/v1/escrow/balance/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Gateway account balance",
        tags=["Escrow - Gateway"],
        responses={200: GatewayBalanceSerializer},
    )
    def get(self, request):
        try:
            balance = EscrowService.get_gateway_adapter().get_balance()
        except BaseApplicationError as e:
            return error_response(e)
        return Response(GatewayBalanceSerializer({"balance": balance}).data)
