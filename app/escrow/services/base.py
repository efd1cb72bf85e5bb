"""
Shared base for escrow services.

Every escrow service talks to the gateway, may cache lookups, writes audit
records and notifies suppliers. Those collaborators are passed to the
constructor; anything omitted falls back to the production default.

Usage:
    service = ChargeService(gateway=MockGateway, cache=TTLCache(backend=locmem))

    # Or swap the adapter for every service at once (tests, maintenance scripts)
    EscrowService.set_gateway_adapter(MockGateway)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService

from escrow.adapters import GatewayAdapter
from escrow.cache import TTLCache
from escrow.sinks import DatabaseAuditSink, DatabaseNotificationSink

if TYPE_CHECKING:
    from typing import Any

    from escrow.sinks import AuditSink, NotificationSink


class EscrowService(BaseService):
    """Base class wiring the gateway, cache and sinks into a service."""

    # Gateway adapter override - can be injected for testing
    _gateway_adapter: Any = None

    @classmethod
    def get_gateway_adapter(cls) -> Any:
        return cls._gateway_adapter or GatewayAdapter

    @classmethod
    def set_gateway_adapter(cls, adapter: Any) -> None:
        """Set the default gateway adapter (None restores GatewayAdapter)."""
        cls._gateway_adapter = adapter

    def __init__(
        self,
        gateway: Any = None,
        cache: TTLCache | None = None,
        audit: AuditSink | None = None,
        notifier: NotificationSink | None = None,
    ) -> None:
        self.gateway = gateway or self.get_gateway_adapter()
        self.cache = cache or TTLCache()
        self.audit = audit or DatabaseAuditSink()
        self.notifier = notifier or DatabaseNotificationSink()

    def collaborators(self) -> dict[str, Any]:
        """Constructor kwargs for building a sibling service that shares them."""
        return {
            "gateway": self.gateway,
            "cache": self.cache,
            "audit": self.audit,
            "notifier": self.notifier,
        }
