"""
End-to-end settlement journeys through the public HTTP surfaces.

These tests verify that:
- A quote goes charge -> escrow -> delivery confirmation -> payout -> completed
- Webhook redeliveries along the way do not move money twice
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from django.test import Client
from rest_framework.test import APIClient

from escrow.models import AuditLog, GatewayEvent, Payment
from escrow.state_machines import GatewayEventStatus, PaymentStatus, TransferStatus
from escrow.tasks import process_gateway_event


TOKEN = "test-webhook-token"
BASE_URL = "/api/v1/escrow"


@pytest.fixture(autouse=True)
def webhook_token(settings):
    settings.GATEWAY_WEBHOOK_TOKEN = TOKEN


@pytest.fixture
def buyer_client(buyer_user):
    client = APIClient()
    client.force_authenticate(user=buyer_user)
    return client


@pytest.fixture
def gateway_client():
    return Client()


def send_webhook(client, path, payload):
    """Deliver a webhook, running the queued task inline."""
    with patch(
        "escrow.tasks.process_gateway_event.delay",
        side_effect=lambda event_id: process_gateway_event(event_id),
    ):
        return client.post(
            f"{BASE_URL}/webhooks/{path}/",
            data=json.dumps(payload),
            content_type="application/json",
            HTTP_ASAAS_ACCESS_TOKEN=TOKEN,
        )


@pytest.mark.django_db
class TestSettlementJourney:
    def test_charge_to_completed_payout(
        self, buyer_client, gateway_client, installed_gateway, approved_quote, confirmation
    ):
        # Buyer issues the charge
        response = buyer_client.post(
            f"{BASE_URL}/quotes/{approved_quote.id}/charge/",
            {"payment_method": "pix"},
            format="json",
        )
        assert response.status_code == 201
        payment = Payment.objects.get(quote=approved_quote)
        assert payment.status == PaymentStatus.PROCESSING

        # Gateway reports the PIX as received, twice
        received = {
            "id": "evt_received_1",
            "event": "PAYMENT_RECEIVED",
            "payment": {"id": "pay_080225913252", "status": "RECEIVED"},
        }
        assert send_webhook(gateway_client, "gateway", received).status_code == 200
        assert send_webhook(gateway_client, "gateway", received).status_code == 200

        payment = Payment.objects.get(pk=payment.pk)
        assert payment.status == PaymentStatus.IN_ESCROW
        assert GatewayEvent.objects.filter(gateway_event_id="evt_received_1").count() == 1

        # Buyer confirms delivery; escrow is released to the supplier
        response = buyer_client.post(
            f"{BASE_URL}/deliveries/confirm/", {"code": "abc123"}, format="json"
        )
        assert response.status_code == 200
        assert response.data["data"]["release"]["success"] is True

        payment = Payment.objects.get(pk=payment.pk)
        assert payment.status == PaymentStatus.TRANSFER_PENDING
        assert payment.gateway_transfer_id == "tra_000000000001"

        # Gateway asks whether to authorize the payout
        response = gateway_client.post(
            f"{BASE_URL}/webhooks/transfer-authorization/",
            data=json.dumps(
                {
                    "type": "TRANSFER",
                    "transfer": {
                        "id": "tra_000000000001",
                        "value": 950.00,
                        "pixAddressKey": payment.supplier.pix_key,
                    },
                }
            ),
            content_type="application/json",
            HTTP_ASAAS_ACCESS_TOKEN=TOKEN,
        )
        assert json.loads(response.content) == {"status": "APPROVED"}

        # Gateway settles the payout
        done = {
            "id": "evt_transfer_done_1",
            "event": "TRANSFER_DONE",
            "transfer": {"id": "tra_000000000001", "status": "DONE"},
        }
        assert send_webhook(gateway_client, "gateway", done).status_code == 200

        payment = Payment.objects.get(pk=payment.pk)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.transfer_status == TransferStatus.COMPLETED
        assert installed_gateway.create_transfer.call_count == 1
        assert not GatewayEvent.objects.exclude(status=GatewayEventStatus.PROCESSED).exists()
        assert AuditLog.objects.filter(entity_id=str(payment.id)).exists()

    def test_second_confirmation_does_not_pay_twice(
        self, buyer_client, installed_gateway, escrowed_payment, confirmation
    ):
        url = f"{BASE_URL}/deliveries/confirm/"

        first = buyer_client.post(url, {"code": "ABC123"}, format="json")
        second = buyer_client.post(url, {"code": "ABC123"}, format="json")

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.data["error_code"] == "CODE_ALREADY_USED"
        assert installed_gateway.create_transfer.call_count == 1
