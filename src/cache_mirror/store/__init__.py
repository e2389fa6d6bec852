# SPDX-License-Identifier: MIT
"""Cache store implementations.

- CacheStore: protocol every store satisfies
- InMemoryCacheStore: process-local store (tests, single-process deployments)
- SqliteCacheStore: durable store on a local SQLite file
"""

from pathlib import Path

from ..config import CacheStoreConfig
from ..scheduling import Clock
from .memory import InMemoryCacheStore
from .protocols import CacheStore
from .sqlite import SqliteCacheStore


def create_cache_store(config: CacheStoreConfig, clock: Clock | None = None) -> CacheStore:
    """Build the cache store selected in configuration.

    Raises:
        ValueError: If the configured backend is unknown
    """
    if config.backend == "memory":
        return InMemoryCacheStore(clock)
    if config.backend == "sqlite":
        return SqliteCacheStore(Path(config.db_path), clock)
    raise ValueError(f"Unknown cache store backend: {config.backend}")


__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "SqliteCacheStore",
    "create_cache_store",
]
