"""
Webhook endpoint views for the payment gateway.

gateway_webhook:
1. Checks the shared access token
2. Creates/retrieves the GatewayEvent record (idempotent)
3. Queues the event for async processing
4. Returns immediately

transfer_authorization answers the gateway's synchronous "may this
outbound transfer go ahead?" question and must respond within seconds, so
it only reads local state.

Usage:
    # In urls.py
    from escrow.webhooks.views import gateway_webhook, transfer_authorization

    urlpatterns = [
        path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    ]
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from escrow.adapters import IdempotencyKeyGenerator
from escrow.destinations import classify_pix_key
from escrow.models import GatewayEvent, Payment
from escrow.sinks import DatabaseAuditSink
from escrow.state_machines import GatewayEventStatus, TransferStatus


logger = logging.getLogger(__name__)

TOKEN_HEADER = "asaas-access-token"
VALUE_TOLERANCE = Decimal("0.01")


def _token_valid(request: HttpRequest) -> bool:
    """
    Compare the request's access token with GATEWAY_WEBHOOK_TOKEN.

    An empty setting accepts every request (local development).
    """
    expected = getattr(settings, "GATEWAY_WEBHOOK_TOKEN", "")
    if not expected:
        return True
    received = request.headers.get(TOKEN_HEADER, "")
    return hmac.compare_digest(received.encode(), expected.encode())


def _reject_unauthorized(request: HttpRequest, endpoint: str) -> HttpResponse:
    logger.warning(
        "Unauthorized webhook attempt - invalid token",
        extra={"endpoint": endpoint, "remote_addr": request.META.get("REMOTE_ADDR")},
    )
    DatabaseAuditSink().record(
        "WEBHOOK_UNAUTHORIZED_ATTEMPT",
        entity_type="webhook",
        entity_id=None,
        details={
            "endpoint": endpoint,
            "remote_addr": request.META.get("REMOTE_ADDR"),
            "token_present": bool(request.headers.get(TOKEN_HEADER)),
        },
    )
    return HttpResponse("Unauthorized", status=401)


def _parse_body(request: HttpRequest) -> dict | None:
    try:
        data = json.loads(request.body or b"{}")
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def event_identifier(payload: dict, body: bytes) -> str:
    """Gateway event id, or a digest of the body for payloads without one."""
    return payload.get("id") or f"sha256:{hashlib.sha256(body).hexdigest()}"


@csrf_exempt
@require_POST
def gateway_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue gateway webhook events.

    Idempotency:
    - GatewayEvent.gateway_event_id is unique
    - Duplicate events are acknowledged with 200 without reprocessing

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Malformed payload
        - 401: Missing or wrong access token
    """
    if not _token_valid(request):
        return _reject_unauthorized(request, "gateway")

    payload = _parse_body(request)
    if payload is None:
        logger.warning("Webhook body is not a JSON object")
        return HttpResponse("Invalid payload", status=400)

    event_type = payload.get("event")
    if not event_type:
        logger.warning("Webhook missing event name")
        return HttpResponse("Invalid event", status=400)

    gateway_event_id = event_identifier(payload, request.body)

    logger.info(
        f"Received gateway webhook: {event_type}",
        extra={"gateway_event_id": gateway_event_id, "event_type": event_type},
    )

    event, created = GatewayEvent.objects.get_or_create(
        gateway_event_id=gateway_event_id,
        defaults={
            "event_type": event_type,
            "payload": payload,
            "status": GatewayEventStatus.PENDING,
        },
    )

    if not created and event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"gateway_event_id": gateway_event_id},
        )
        return HttpResponse("Already processed", status=200)

    try:
        from escrow.tasks import process_gateway_event

        process_gateway_event.delay(str(event.id))
        logger.info(
            "Webhook queued for processing",
            extra={"gateway_event_id": gateway_event_id, "event_id": str(event.id)},
        )
    except Exception as e:
        # The stored event is picked up again on redelivery
        logger.error(
            f"Failed to queue webhook: {type(e).__name__}",
            extra={"gateway_event_id": gateway_event_id},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)


# =============================================================================
# Transfer Authorization
# =============================================================================


def _to_decimal(value) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


def _normalize_pix_key(key: str | None) -> str:
    """Same normal form the transfer was sent with (digits only, +55 phones)."""
    classified = classify_pix_key(key or "")
    if classified is not None:
        return classified[1]
    return (key or "").strip().lower()


def _payment_for_transfer(transfer: dict) -> Payment | None:
    """
    Payment a transfer pays out, by stored id or by payout reference.

    The reference covers a transfer the gateway asks about before our
    create call has returned its id.
    """
    payments = Payment.objects.select_related("supplier")
    transfer_id = transfer.get("id")
    payment = payments.filter(gateway_transfer_id=transfer_id).first() if transfer_id else None
    if payment is not None:
        return payment

    payment_id = IdempotencyKeyGenerator.entity_id(
        transfer.get("externalReference") or "", "transfer"
    )
    if payment_id is None:
        return None
    return payments.filter(pk=payment_id, gateway_transfer_id__isnull=True).first()


def evaluate_transfer(transfer: dict) -> tuple[bool, str, Payment | None]:
    """
    Decide whether an outbound transfer may be approved.

    Returns:
        (approved, reason, payment); reason is empty when approved
    """
    payment = _payment_for_transfer(transfer)
    if payment is None:
        return False, "Transfer is not registered", None

    value = _to_decimal(transfer.get("value"))
    if value is None or value <= 0:
        return False, "Transfer value must be positive", payment
    if payment.transfer_status != TransferStatus.PENDING:
        return False, f"Transfer status is {payment.transfer_status}", payment
    if abs(payment.supplier_net_amount - value) >= VALUE_TOLERANCE:
        return False, "Transfer value does not match the payout", payment

    limit = Decimal(str(settings.TRANSFER_AUTO_APPROVAL_LIMIT))
    if value > limit:
        return False, f"Value exceeds the automatic approval limit of {limit:.2f}", payment

    pix_key = transfer.get("pixAddressKey") or transfer.get("pixKey")
    expected = payment.supplier.pix_key
    if pix_key and expected and _normalize_pix_key(pix_key) != _normalize_pix_key(expected):
        return False, "PIX key does not match the supplier's", payment

    return True, "", payment


@csrf_exempt
@require_POST
def transfer_authorization(request: HttpRequest) -> HttpResponse:
    """
    Approve or reject an outbound transfer requested at the gateway.

    Always answers 200 with {"status": "APPROVED"|"REJECTED"} for a
    well-formed request so the gateway does not retry a decision.
    """
    if not _token_valid(request):
        return _reject_unauthorized(request, "transfer_authorization")

    payload = _parse_body(request)
    transfer = (payload or {}).get("transfer")
    if not isinstance(transfer, dict) or not transfer.get("id"):
        logger.warning("Transfer authorization without transfer data")
        return JsonResponse(
            {"status": "REJECTED", "refuseReason": "Invalid payload"},
            status=400,
        )

    approved, reason, payment = evaluate_transfer(transfer)
    audit = DatabaseAuditSink()
    details = {
        "transfer_id": transfer.get("id"),
        "value": str(transfer.get("value")),
        "supplier_id": str(payment.supplier_id) if payment else None,
    }

    if approved:
        audit.record(
            "TRANSFER_AUTO_APPROVED",
            entity_type="payment",
            entity_id=payment.id,
            details=details,
        )
        logger.info("Transfer auto-approved", extra=details)
        return JsonResponse({"status": "APPROVED"})

    audit.record(
        "TRANSFER_REJECTED",
        entity_type="payment",
        entity_id=payment.id if payment else None,
        details={**details, "reason": reason},
    )
    logger.warning("Transfer rejected", extra={**details, "reason": reason})
    return JsonResponse({"status": "REJECTED", "refuseReason": reason})
