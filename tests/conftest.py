# SPDX-License-Identifier: MIT
"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from typing import Any

import pytest

from cache_mirror.config import (
    AppConfig,
    CacheStoreConfig,
    OriginConfig,
    RetryBufferConfig,
    reset_config_manager,
)
from cache_mirror.context import SyncContext
from cache_mirror.exceptions import NotFoundError, TransientOriginError
from cache_mirror.models import ListQuery
from cache_mirror.retry_buffer.buffer import RetryBuffer
from cache_mirror.retry_buffer.store import BufferStore
from cache_mirror.scheduling import ManualClock
from cache_mirror.store.memory import InMemoryCacheStore
from cache_mirror.sync_engine.engine import CacheSyncEngine
from cache_mirror.sync_engine.state import SyncState


START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeOrigin:
    """In-memory origin implementing the adapter protocol.

    ``errors`` maps a method name to an exception raised on every call;
    ``record_errors`` maps a record ID to an exception raised by
    ``get_record``; ``fail_at_offset`` makes the paged listing fail once the
    given offset is requested.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.errors: dict[str, Exception] = {}
        self.record_errors: dict[str, Exception] = {}
        self.fail_at_offset: int | None = None
        self._next_id = 1000

    def add(
        self,
        record_id: str,
        group_id: str | None = "A",
        created_at: datetime = START,
        **fields: Any,
    ) -> dict[str, Any]:
        payload = {
            "ID": record_id,
            "group_id": group_id,
            "created_at": created_at.isoformat(),
            "modified_at": created_at.isoformat(),
            **fields,
        }
        self.records[record_id] = payload
        return payload

    def add_many(self, ids: range | list[str], group_id: str | None = "A") -> None:
        for record_id in ids:
            self.add(str(record_id), group_id)

    def calls_to(self, method: str) -> list[Any]:
        return [arg for name, arg in self.calls if name == method]

    def _check(self, method: str) -> None:
        if method in self.errors:
            raise self.errors[method]

    async def list_records(self, query: ListQuery) -> list[dict[str, Any]]:
        self.calls.append(("list_records", query))
        self._check("list_records")
        if self.fail_at_offset is not None and query.offset >= self.fail_at_offset:
            raise TransientOriginError(f"Listing failed at offset {query.offset}")

        matches = [
            payload
            for payload in self.records.values()
            if (query.group_id is None or payload["group_id"] == query.group_id)
            and (
                query.created_since is None
                or datetime.fromisoformat(payload["created_at"]) >= query.created_since
            )
            and (
                query.modified_since is None
                or datetime.fromisoformat(payload["modified_at"]) >= query.modified_since
            )
        ]
        if not query.fetch_all:
            matches = matches[query.offset : query.offset + query.limit]
        if query.id_only:
            return [{"ID": payload["ID"]} for payload in matches]
        return [dict(payload) for payload in matches]

    async def get_record(self, record_id: str) -> dict[str, Any]:
        self.calls.append(("get_record", record_id))
        self._check("get_record")
        if record_id in self.record_errors:
            raise self.record_errors[record_id]
        if record_id not in self.records:
            raise NotFoundError(f"Record not found at origin: {record_id}", record_id)
        return dict(self.records[record_id])

    async def create_record(self, data: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_record", data))
        self._check("create_record")
        self._next_id += 1
        payload = {"ID": str(self._next_id), **data}
        self.records[payload["ID"]] = payload
        return dict(payload)

    async def update_record(self, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update_record", record_id))
        self._check("update_record")
        if record_id not in self.records:
            raise NotFoundError(f"Record not found at origin: {record_id}", record_id)
        self.records[record_id].update(data)
        return dict(self.records[record_id])

    async def delete_record(self, record_id: str) -> None:
        self.calls.append(("delete_record", record_id))
        self._check("delete_record")
        if record_id not in self.records:
            raise NotFoundError(f"Record not found at origin: {record_id}", record_id)
        del self.records[record_id]

    async def count_records(self, query: ListQuery | None = None) -> int:
        self.calls.append(("count_records", query))
        self._check("count_records")
        return len(self.records)


class RecordingBroadcaster:
    """Broadcast gateway remembering every event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.error: Exception | None = None

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.events.append((event_name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture(autouse=True)
def reset_global_config():
    """Keep the global config manager from leaking between tests."""
    reset_config_manager()
    yield
    reset_config_manager()


@pytest.fixture
def clock():
    """Manual clock starting at 2024-01-01 UTC."""
    return ManualClock(START)


@pytest.fixture
def store(clock):
    return InMemoryCacheStore(clock)


@pytest.fixture
def origin():
    return FakeOrigin()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def app_config(tmp_path):
    """Configuration with small pages and databases under tmp_path."""
    return AppConfig(
        origin=OriginConfig(page_size=2, timeout=5),
        cache=CacheStoreConfig(backend="memory", db_path=str(tmp_path / "cache.db")),
        retry_buffer=RetryBufferConfig(db_path=str(tmp_path / "buffer.db")),
    )


@pytest.fixture
def engine(store, origin, app_config, clock, broadcaster):
    return CacheSyncEngine(
        store,
        origin,
        state=SyncState(),
        config=app_config,
        clock=clock,
        broadcaster=broadcaster,
    )


@pytest.fixture
def buffer_store(tmp_path):
    return BufferStore(tmp_path / "buffer.db")


@pytest.fixture
def retry_buffer(buffer_store, app_config, clock):
    return RetryBuffer(buffer_store, app_config.retry_buffer, clock)


@pytest.fixture
def context(app_config, store, origin, retry_buffer, clock, broadcaster):
    return SyncContext(
        config=app_config,
        store=store,
        origin=origin,
        buffer=retry_buffer,
        clock=clock,
        broadcaster=broadcaster,
    )

