# SPDX-License-Identifier: MIT
"""Shared behaviour for cache store implementations."""

import inspect
import json
from collections import defaultdict
from typing import Any

from ..logging_config import get_detail_logger
from ..scheduling import Clock, SystemClock
from .protocols import MessageCallback


detail_logger = get_detail_logger()

MAX_KEY_LENGTH = 255


class CacheStoreBase:
    """Base class for cache stores: key validation, encoding and pub/sub."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self._subscribers: dict[str, list[MessageCallback]] = defaultdict(list)

    def _validate_key(self, key: str) -> None:
        """Validate a cache key.

        Raises:
            ValueError: If key is empty or too long
        """
        if not key or not key.strip():
            raise ValueError("Cache key cannot be empty")
        if len(key) > MAX_KEY_LENGTH:
            raise ValueError(
                f"Cache key exceeds maximum length ({MAX_KEY_LENGTH} characters)"
            )

    def _validate_ttl(self, ttl_seconds: int | None) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("TTL must be positive")

    @staticmethod
    def _encode(value: Any) -> str:
        return json.dumps(value, separators=(",", ":"), default=str)

    @staticmethod
    def _decode(raw: str) -> Any:
        return json.loads(raw)

    def subscribe(self, channel: str, callback: MessageCallback) -> None:
        self._subscribers[channel].append(callback)
        detail_logger.debug(f"Subscribed {callback!r} to channel '{channel}'")

    async def publish(self, channel: str, message: Any) -> int:
        """Deliver ``message`` to every subscriber of ``channel``.

        A failing subscriber is logged and does not prevent delivery to the
        others.
        """
        callbacks = list(self._subscribers.get(channel, []))
        # Subscribers get their own decoded copy
        encoded = self._encode(message)
        delivered = 0
        for callback in callbacks:
            try:
                result = callback(channel, self._decode(encoded))
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                detail_logger.exception(
                    f"Subscriber on channel '{channel}' failed: {e}"
                )

        detail_logger.debug(
            f"Published on '{channel}' to {delivered}/{len(callbacks)} subscribers"
        )
        return delivered
