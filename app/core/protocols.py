"""
Protocol definitions for generic infrastructure services.

Available Protocols:
    CacheBackend: The subset of Django's cache API the engine relies on

Usage:
    from core.protocols import CacheBackend

    def remember_wallet(cache: CacheBackend, supplier_id: str, alive: bool):
        cache.set(f"wallet:{supplier_id}", alive, timeout=300)

    # django.core.cache.caches["default"] (django-redis) and
    # LocMemCache both satisfy this protocol without inheritance.

Note:
    Domain-specific contracts (audit and notification sinks) live in
    escrow.sinks next to their database-backed implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


@runtime_checkable
class CacheBackend(Protocol):
    """
    Protocol for cache backends.

    Compatible with Django's cache interface.
    """

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value or default."""
        ...

    def set(self, key: str, value: Any, timeout: int | None = None) -> None:
        """Store value for timeout seconds (None means the backend default)."""
        ...

    def delete(self, key: str) -> bool:
        """Delete key, returning True if it existed."""
        ...
