"""
Pytest fixtures shared by every escrow test package.

Provides users, marketplace parties, payments in each settlement state, a
mocked gateway adapter and an in-memory stand-in for the Redis release lock.

Usage:
    def test_release(escrowed_payment, mock_gateway):
        result = ReleaseService(gateway=mock_gateway).release(escrowed_payment.id)
        assert result.success
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from django.core.cache import cache

from escrow.adapters import (
    AccountResult,
    ChargeResult,
    CustomerResult,
    GatewayAdapter,
    TransferResult,
)
from escrow.services.base import EscrowService
from escrow.state_machines import PaymentStatus, TransferStatus
from escrow.tests.factories import (
    ClientFactory,
    DeliveryConfirmationFactory,
    DeliveryFactory,
    PaymentFactory,
    QuoteFactory,
    SupplierFactory,
    UserFactory,
)


# =============================================================================
# Redis / Cache
# =============================================================================


class FakeRedis:
    """Just enough of redis-py for DistributedLock (SET NX EX and the release script)."""

    def __init__(self):
        self.store = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def get(self, key):
        return self.store.get(key)

    def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0


@pytest.fixture(autouse=True)
def fake_redis(mocker):
    """Route release locks to an in-memory store."""
    redis = FakeRedis()
    mocker.patch("escrow.locks.get_redis_connection", return_value=redis)
    return redis


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


# =============================================================================
# Gateway
# =============================================================================


@pytest.fixture
def mock_gateway():
    """
    Gateway adapter double answering like a healthy sandbox.

    Individual tests override return_value / side_effect as needed.
    """
    gateway = MagicMock(spec=GatewayAdapter)
    gateway.find_customer_by_tax_id.return_value = None
    gateway.create_customer.return_value = CustomerResult(
        id="cus_000005219613", name="Cliente", tax_id="11222333000181"
    )
    gateway.create_charge.return_value = ChargeResult(
        id="pay_080225913252",
        status="PENDING",
        value=Decimal("1001.98"),
        invoice_url="https://sandbox.asaas.com/i/080225913252",
        billing_type="PIX",
    )
    gateway.get_charge.return_value = ChargeResult(
        id="pay_080225913252", status="PENDING", value=Decimal("1001.98")
    )
    gateway.delete_charge.return_value = True
    gateway.get_account_by_wallet.return_value = AccountResult(
        id="acc_live", wallet_id="wal_live"
    )
    gateway.find_account_by_tax_id.return_value = None
    gateway.create_account.return_value = AccountResult(
        id="acc_new", wallet_id="wal_new"
    )
    gateway.update_account_bank_account.return_value = {"id": "bank_1"}
    gateway.create_transfer.return_value = TransferResult(
        id="tra_000000000001", status="PENDING", value=Decimal("950.00")
    )
    gateway.find_transfer_by_external_reference.return_value = None
    return gateway


@pytest.fixture
def installed_gateway(mock_gateway):
    """Make services built without arguments (views, tasks) use mock_gateway."""
    EscrowService.set_gateway_adapter(mock_gateway)
    yield mock_gateway
    EscrowService.set_gateway_adapter(None)


# =============================================================================
# Users and Parties
# =============================================================================


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    return UserFactory(is_staff=True)


@pytest.fixture
def buyer(db):
    """Client organisation with one member user."""
    client = ClientFactory()
    client.members.add(UserFactory())
    return client


@pytest.fixture
def buyer_user(buyer):
    return buyer.members.first()


@pytest.fixture
def supplier(db):
    return SupplierFactory()


@pytest.fixture
def approved_quote(db, buyer, supplier):
    return QuoteFactory(client=buyer, supplier=supplier)


# =============================================================================
# Payments by State
# =============================================================================


@pytest.fixture
def processing_payment(db, approved_quote):
    """Charge issued, buyer has not paid yet."""
    return PaymentFactory(quote=approved_quote, status=PaymentStatus.PROCESSING)


@pytest.fixture
def escrowed_payment(db, approved_quote):
    """Buyer paid; funds held until delivery is confirmed."""
    return PaymentFactory(quote=approved_quote, status=PaymentStatus.IN_ESCROW)


@pytest.fixture
def transfer_pending_payment(db, approved_quote):
    """Supplier transfer requested, awaiting the gateway's confirmation."""
    return PaymentFactory(
        quote=approved_quote,
        status=PaymentStatus.TRANSFER_PENDING,
        transfer_status=TransferStatus.PENDING,
        gateway_transfer_id="tra_000000000001",
    )


@pytest.fixture
def delivery(db, approved_quote):
    return DeliveryFactory(quote=approved_quote)


@pytest.fixture
def confirmation(db, delivery):
    """Unused delivery code ABC123."""
    return DeliveryConfirmationFactory(delivery=delivery, code="ABC123")
