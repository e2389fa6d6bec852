# SPDX-License-Identifier: MIT
"""Process-wide synchronization state."""

import asyncio
import contextlib
from collections.abc import AsyncIterator


GLOBAL_GROUP_KEY = "__all__"


class SyncState:
    """Coordination state shared by every sync operation of one process.

    Holds the population-in-flight flag, one lock per group key so that
    overlapping resyncs of the same group are skipped, and a write lock that
    serializes read-modify-write patches of the cached collection.
    """

    def __init__(self) -> None:
        self.populating = False
        self.cache_write_lock = asyncio.Lock()
        self._group_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._group_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._group_locks[key] = lock
        return lock

    def is_group_syncing(self, group_id: str | None) -> bool:
        return self._lock_for(group_id or GLOBAL_GROUP_KEY).locked()

    @contextlib.asynccontextmanager
    async def try_group_lock(self, group_id: str | None) -> AsyncIterator[bool]:
        """Acquire the lock of a group key without waiting.

        Yields:
            True when the lock was acquired, False when another sync of the
            same key is already running
        """
        lock = self._lock_for(group_id or GLOBAL_GROUP_KEY)
        if lock.locked():
            yield False
            return

        await lock.acquire()
        try:
            yield True
        finally:
            lock.release()

    @contextlib.asynccontextmanager
    async def population(self) -> AsyncIterator[bool]:
        """Mark a population as in flight.

        Yields:
            True when this caller owns the population, False when one is
            already running
        """
        if self.populating:
            yield False
            return

        self.populating = True
        try:
            yield True
        finally:
            self.populating = False
