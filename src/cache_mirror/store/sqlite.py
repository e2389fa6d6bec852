# SPDX-License-Identifier: MIT
"""SQLite-backed cache store."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any

from ..logging_config import get_detail_logger, get_status_logger
from ..scheduling import Clock
from .base import CacheStoreBase


detail_logger = get_detail_logger()
status_logger = get_status_logger()

_UPSERT_SQL = """
INSERT OR REPLACE INTO key_value_cache (key, value, expires_at, updated_at)
VALUES (?, ?, ?, ?)
"""


def init_store_database(db_path: Path) -> None:
    """Create the key-value table used by the SQLite cache store.

    Args:
        db_path: Path to the SQLite database file
    """
    conn = sqlite3.connect(db_path, timeout=30.0)
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS key_value_cache (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at TEXT,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_key_value_cache_expires ON key_value_cache(expires_at);
            """
        )
        conn.commit()
    finally:
        conn.close()


class SqliteCacheStore(CacheStoreBase):
    """Cache store persisting JSON values with TTL in SQLite.

    Publish/subscribe is delivered in-process; the table only holds values.
    """

    def __init__(self, db_path: Path, clock: Clock | None = None) -> None:
        """Initialize the store, creating the database if needed.

        Args:
            db_path: Path to the SQLite database file
            clock: Time source for TTL bookkeeping

        Raises:
            RuntimeError: If the database directory or schema cannot be created
        """
        super().__init__(clock)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            init_store_database(db_path)
        except (sqlite3.Error, OSError) as e:
            error_msg = f"Failed to initialize cache store at {db_path}"
            status_logger.error(error_msg)
            detail_logger.exception(f"{error_msg}: {e}")
            raise RuntimeError(error_msg) from e

        self.db_path = db_path
        detail_logger.debug(f"SQLite cache store ready: {db_path}")

    def _now_iso(self) -> str:
        return self.clock.now().isoformat(timespec="microseconds")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection; commit on success, roll back on error."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _row(self, key: str, value: Any, ttl_seconds: int | None) -> tuple[Any, ...]:
        self._validate_key(key)
        self._validate_ttl(ttl_seconds)

        now = self.clock.now()
        expires_at = (
            (now + timedelta(seconds=ttl_seconds)).isoformat(timespec="microseconds")
            if ttl_seconds is not None
            else None
        )
        return (key, self._encode(value), expires_at, now.isoformat())

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        row = self._row(key, value, ttl_seconds)
        detail_logger.debug(f"Storing cache entry: key='{key}', ttl={ttl_seconds}")

        with self._connect() as conn:
            conn.execute(_UPSERT_SQL, row)

    async def set_many(self, entries: list[tuple[str, Any, int | None]]) -> None:
        rows = [self._row(key, value, ttl) for key, value, ttl in entries]
        detail_logger.debug(f"Storing {len(rows)} cache entries in one transaction")

        with self._connect() as conn:
            conn.executemany(_UPSERT_SQL, rows)

    async def get(self, key: str) -> Any | None:
        self._validate_key(key)

        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT value FROM key_value_cache
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, self._now_iso()),
            )
            row = cursor.fetchone()

        if row is None:
            detail_logger.debug(f"Cache miss for key '{key}' (not found or expired)")
            return None

        detail_logger.debug(f"Cache hit for key '{key}'")
        return self._decode(row[0])

    async def delete(self, key: str) -> bool:
        self._validate_key(key)

        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM key_value_cache WHERE key = ?", (key,))
            return cursor.rowcount > 0

    async def exists(self, key: str) -> bool:
        self._validate_key(key)

        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT 1 FROM key_value_cache
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, self._now_iso()),
            )
            return cursor.fetchone() is not None

    async def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1 FROM key_value_cache LIMIT 1")
            return True
        except sqlite3.Error as e:
            detail_logger.warning(f"Cache store ping failed: {e}")
            return False

    def cleanup_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM key_value_cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._now_iso(),),
            )
            removed = cursor.rowcount

        detail_logger.info(f"Removed {removed} expired cache entries")
        return removed
