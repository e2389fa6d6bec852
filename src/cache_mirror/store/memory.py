# SPDX-License-Identifier: MIT
"""In-process cache store."""

from datetime import datetime, timedelta
from typing import Any

from ..logging_config import get_detail_logger
from ..scheduling import Clock
from .base import CacheStoreBase


detail_logger = get_detail_logger()


class InMemoryCacheStore(CacheStoreBase):
    """Cache store that keeps encoded values in a dictionary.

    Values are stored JSON-encoded so callers never share mutable state with
    the store, matching the behaviour of an out-of-process store.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__(clock)
        self._data: dict[str, tuple[str, datetime | None]] = {}
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise ConnectionError("In-memory cache store is marked unavailable")

    def _live_entry(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None

        raw, expires_at = entry
        if expires_at is not None and expires_at <= self.clock.now():
            del self._data[key]
            detail_logger.debug(f"Cache entry '{key}' expired")
            return None
        return raw

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self._check_available()
        self._validate_key(key)
        self._validate_ttl(ttl_seconds)

        expires_at = (
            self.clock.now() + timedelta(seconds=ttl_seconds)
            if ttl_seconds is not None
            else None
        )
        self._data[key] = (self._encode(value), expires_at)
        detail_logger.debug(f"Stored cache entry: key='{key}', ttl={ttl_seconds}")

    async def set_many(self, entries: list[tuple[str, Any, int | None]]) -> None:
        self._check_available()
        now = self.clock.now()
        staged: dict[str, tuple[str, datetime | None]] = {}
        for key, value, ttl_seconds in entries:
            self._validate_key(key)
            self._validate_ttl(ttl_seconds)
            expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds is not None else None
            staged[key] = (self._encode(value), expires_at)

        self._data.update(staged)
        detail_logger.debug(f"Stored {len(staged)} cache entries: {', '.join(staged)}")

    async def get(self, key: str) -> Any | None:
        self._check_available()
        self._validate_key(key)
        raw = self._live_entry(key)
        return self._decode(raw) if raw is not None else None

    async def delete(self, key: str) -> bool:
        self._check_available()
        self._validate_key(key)
        return self._data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        self._check_available()
        self._validate_key(key)
        return self._live_entry(key) is not None

    async def ping(self) -> bool:
        return self.available

    def keys(self) -> list[str]:
        """Return all unexpired keys."""
        return [key for key in list(self._data) if self._live_entry(key) is not None]
