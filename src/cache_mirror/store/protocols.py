# SPDX-License-Identifier: MIT
"""Protocol definition for the cache store."""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable


MessageCallback = Callable[[str, Any], Awaitable[None] | None]


@runtime_checkable
class CacheStore(Protocol):
    """TTL-keyed key-value storage with publish/subscribe.

    Values are JSON-serializable structures. Readers always receive an
    independent copy; mutating a returned value never changes the store.
    """

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store ``value`` under ``key``; ``None`` TTL means no expiry."""
        ...

    async def set_many(self, entries: list[tuple[str, Any, int | None]]) -> None:
        """Store several ``(key, value, ttl_seconds)`` entries atomically.

        Either every entry is written or, when the write fails, none is.
        """
        ...

    async def get(self, key: str) -> Any | None:
        """Return the value under ``key`` or None when absent or expired."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True when something was removed."""
        ...

    async def exists(self, key: str) -> bool:
        """Check whether ``key`` holds an unexpired value."""
        ...

    async def publish(self, channel: str, message: Any) -> int:
        """Publish ``message`` on ``channel``; returns the number of receivers."""
        ...

    def subscribe(self, channel: str, callback: MessageCallback) -> None:
        """Register ``callback(channel, message)`` for ``channel``."""
        ...

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        ...
