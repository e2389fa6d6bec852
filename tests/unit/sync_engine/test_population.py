# SPDX-License-Identifier: MIT
"""Tests for cache population and origin access in the sync engine."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from cache_mirror.enums import UpdateStatus
from cache_mirror.exceptions import TransientOriginError
from cache_mirror.models import ListQuery
from cache_mirror.sync_engine.engine import CacheKeys
from tests.conftest import START


class TestPopulate:
    """Test cases for CacheSyncEngine.populate."""

    @pytest.mark.asyncio
    async def test_populates_flat_collection_and_index(self, engine, origin):
        origin.add("1", "A")
        origin.add("2", "A")
        origin.add("3", "B")

        result = await engine.populate()

        assert result.status is UpdateStatus.SUCCESS
        assert result.total_records == 3
        assert result.total_groups == 2
        assert result.pages_fetched == 2
        assert {r.id for r in await engine.get_records()} == {"1", "2", "3"}
        assert await engine.get_group_index() == {"A": ["1", "2"], "B": ["3"]}

    @pytest.mark.asyncio
    async def test_requests_consecutive_pages(self, engine, origin):
        origin.add_many(range(5))

        await engine.populate()

        queries = origin.calls_to("list_records")
        assert [(q.offset, q.limit) for q in queries] == [(0, 2), (2, 2), (4, 2)]

    @pytest.mark.asyncio
    async def test_exact_multiple_needs_empty_page(self, engine, origin):
        origin.add_many(range(4))

        result = await engine.populate()

        assert result.pages_fetched == 3
        assert result.total_records == 4

    @pytest.mark.asyncio
    async def test_empty_origin(self, engine):
        result = await engine.populate()

        assert result.status is UpdateStatus.SUCCESS
        assert result.total_records == 0
        assert await engine.get_records() == []
        assert await engine.get_group_index() == {}

    @pytest.mark.asyncio
    async def test_page_cap_stops_listing(self, engine, origin):
        engine.config.origin.max_pages = 2
        origin.add_many(range(10))

        result = await engine.populate()

        assert result.pages_fetched == 2
        assert result.total_records == 4

    @pytest.mark.asyncio
    async def test_failed_page_keeps_previous_cache(self, engine, origin):
        origin.add("1", "A")
        await engine.populate()
        version_before = (await engine.get_metadata()).version

        origin.add_many(["2", "3", "4"], "B")
        origin.fail_at_offset = 2

        with pytest.raises(TransientOriginError):
            await engine.populate()

        assert [r.id for r in await engine.get_records()] == ["1"]
        assert await engine.get_group_index() == {"A": ["1"]}
        assert (await engine.get_metadata()).version == version_before
        assert not engine.state.populating

    @pytest.mark.asyncio
    async def test_failure_recorded_in_metrics(self, engine, origin):
        origin.errors["list_records"] = TransientOriginError("origin down")

        with pytest.raises(TransientOriginError):
            await engine.populate()

        metrics = await engine.metrics.get_metrics(1)
        today = metrics["2024-01-01"]
        assert today.failed_syncs == 1
        assert today.last_error == "origin down"

    @pytest.mark.asyncio
    async def test_skipped_while_population_in_flight(self, engine, origin):
        origin.add("1")
        engine.state.populating = True

        result = await engine.populate()

        assert result.status is UpdateStatus.SKIPPED
        assert result.reason == "population_in_progress"
        assert origin.calls_to("list_records") == []

    @pytest.mark.asyncio
    async def test_concurrent_populations_fetch_once(self, engine, origin):
        origin.add_many(range(3))

        first, second = await asyncio.gather(engine.populate(), engine.populate())

        statuses = sorted([first.status.value, second.status.value])
        assert statuses == ["skipped", "success"]

    @pytest.mark.asyncio
    async def test_malformed_payload_skipped(self, engine, origin):
        origin.add("1")
        origin.records["broken"] = {
            "group_id": "A",
            "created_at": START.isoformat(),
            "modified_at": START.isoformat(),
        }

        result = await engine.populate()

        assert result.total_records == 1

    @pytest.mark.asyncio
    async def test_sets_metadata_and_broadcasts(self, engine, origin, broadcaster):
        origin.add("1", "A")
        origin.add("2", "B")

        await engine.populate()

        metadata = await engine.get_metadata()
        assert metadata.version == 1
        assert metadata.timestamp == START
        assert metadata.populated_at == START
        assert broadcaster.events == [
            (
                "cache_refreshed",
                {"total_records": 2, "total_groups": 2, "timestamp": START.isoformat()},
            )
        ]

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_fail_population(
        self, engine, origin, broadcaster
    ):
        origin.add("1")
        broadcaster.error = RuntimeError("no clients")

        result = await engine.populate()

        assert result.status is UpdateStatus.SUCCESS
        assert len(await engine.get_records()) == 1

    @pytest.mark.asyncio
    async def test_failed_store_write_keeps_previous_cache(self, engine, origin, store):
        origin.add("1", "A")
        await engine.populate()
        origin.add("2", "B")

        with patch.object(
            store, "set_many", AsyncMock(side_effect=ConnectionError("store down"))
        ):
            with pytest.raises(ConnectionError):
                await engine.populate()

        assert await engine.get_record_ids() == {"1"}
        assert await engine.get_group_index() == {"A": ["1"]}
        assert not engine.state.populating

    @pytest.mark.asyncio
    async def test_collection_and_metadata_written_together(self, engine, origin, store):
        origin.add("1", "A")

        with patch.object(store, "set_many", wraps=store.set_many) as set_many:
            await engine.populate()

        set_many.assert_awaited_once()
        written = {key for key, _, _ in set_many.await_args.args[0]}
        assert written == {
            engine.keys.records,
            engine.keys.group_index,
            engine.keys.cache_timestamp,
            engine.keys.cache_version,
            engine.keys.populated_at,
        }


class TestOriginAccess:
    """Test cases for the engine's origin helpers."""

    @pytest.mark.asyncio
    async def test_call_timeout_is_transient(self, engine):
        engine.config.origin.timeout = 0.01

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(TransientOriginError, match="timed out"):
            await engine.call_origin(slow(), "slow_call")

    @pytest.mark.asyncio
    async def test_fetch_origin_ids(self, engine, origin):
        origin.add("1", "A")
        origin.add("2", "B")

        assert await engine.fetch_origin_ids() == {"1", "2"}
        assert await engine.fetch_origin_ids("B") == {"2"}
        assert origin.calls_to("list_records")[-1].id_only

    @pytest.mark.asyncio
    async def test_listing_timeout_applies_per_page(self, engine, origin):
        origin.add_many(range(9))
        engine.config.origin.timeout = 0.2
        list_page = origin.list_records

        async def slow_page(query):
            await asyncio.sleep(0.05)
            return await list_page(query)

        origin.list_records = slow_page

        # Five pages take longer than one call timeout in total
        assert len(await engine.fetch_origin_ids()) == 9
        records = await engine.fetch_records(ListQuery(limit=2, fetch_all=True))
        assert len(records) == 9

    @pytest.mark.asyncio
    async def test_fetch_all_listing_requests_pages(self, engine, origin):
        origin.add_many(range(3), "B")
        origin.add("9", "A")

        records = await engine.fetch_records(
            ListQuery(group_id="B", limit=50, fetch_all=True)
        )

        assert {r.id for r in records} == {"0", "1", "2"}
        queries = origin.calls_to("list_records")
        assert [(q.offset, q.limit) for q in queries] == [(0, 2), (2, 2)]
        assert not any(q.fetch_all for q in queries)
        assert all(q.group_id == "B" for q in queries)

    @pytest.mark.asyncio
    async def test_count_origin(self, engine, origin):
        origin.add_many(range(7))

        assert await engine.count_origin() == 7


class TestCacheKeys:
    def test_prefixed_names(self):
        keys = CacheKeys("mirror")

        assert keys.records == "mirror:records"
        assert keys.group_index == "mirror:group_index"
        assert keys.sync_timestamp == "mirror:sync:timestamp:global"
        assert keys.required == [
            "mirror:records",
            "mirror:group_index",
            "mirror:cache_timestamp",
        ]
