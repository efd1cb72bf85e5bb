"""
TTL cache injected into escrow services.

Wraps a Django cache backend (django-redis in deployments, LocMemCache in
tests) behind keys built from an entity id and a context name, e.g.
("<supplier_id>", "wallet_liveness"). Services receive an instance through
their constructor; nothing is cached at module level.

Usage:
    from escrow.cache import TTLCache

    cache = TTLCache(ttl=300)
    alive = cache.get_or_set(supplier.id, "wallet_liveness", check_wallet)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.cache import caches

if TYPE_CHECKING:
    from typing import Any, Callable

    from core.protocols import CacheBackend


logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    """
    Namespaced cache with a fixed time-to-live.

    Args:
        backend: Object with get/set/delete (defaults to caches["default"])
        ttl: Seconds an entry lives (defaults to ESCROW_DESTINATION_CACHE_TTL_SECONDS)
        namespace: Key prefix shared by all entries of this cache
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        ttl: int | None = None,
        namespace: str = "escrow",
    ) -> None:
        self.backend = backend if backend is not None else caches["default"]
        self.ttl = ttl if ttl is not None else settings.ESCROW_DESTINATION_CACHE_TTL_SECONDS
        self.namespace = namespace

    def make_key(self, entity_id: Any, context: str) -> str:
        return f"{self.namespace}:{context}:{entity_id}"

    def get(self, entity_id: Any, context: str, default: Any = None) -> Any:
        return self.backend.get(self.make_key(entity_id, context), default)

    def set(self, entity_id: Any, context: str, value: Any) -> None:
        self.backend.set(self.make_key(entity_id, context), value, self.ttl)

    def delete(self, entity_id: Any, context: str) -> None:
        self.backend.delete(self.make_key(entity_id, context))

    def get_or_set(
        self, entity_id: Any, context: str, producer: Callable[[], Any]
    ) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        ``None`` results are not cached so a failed lookup is retried next time.
        """
        value = self.get(entity_id, context, _MISSING)
        if value is not _MISSING:
            logger.debug(
                "TTL cache hit",
                extra={"entity_id": str(entity_id), "context": context},
            )
            return value

        value = producer()
        if value is not None:
            self.set(entity_id, context, value)
        return value
