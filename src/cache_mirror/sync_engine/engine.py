# SPDX-License-Identifier: MIT
"""Cache synchronization engine: population and cache mutation."""

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import Any, TypeVar

from ..broadcast import BroadcastGateway, safe_broadcast
from ..config import AppConfig
from ..enums import UpdateStatus
from ..exceptions import OriginError, TransientOriginError
from ..logging_config import get_detail_logger, get_status_logger
from ..models import CacheMetadata, ListQuery, PopulationResult, Record
from ..origin.mapping import RecordMapper
from ..origin.protocols import OriginAdapter
from ..scheduling import Clock, SystemClock
from ..store.protocols import CacheStore
from .indexing import (
    GroupIndex,
    build_group_index,
    dedupe_records,
    find_index_violations,
    remove_from_index,
    upsert_into_index,
)
from .metrics import SyncMetricsRecorder
from .state import SyncState


detail_logger = get_detail_logger()
status_logger = get_status_logger()

T = TypeVar("T")


class CacheKeys:
    """Names of the cache entries owned by the engine."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.records = f"{prefix}:records"
        self.group_index = f"{prefix}:group_index"
        self.cache_timestamp = f"{prefix}:cache_timestamp"
        self.cache_version = f"{prefix}:cache_version"
        self.populated_at = f"{prefix}:populated_at"
        self.sync_timestamp = f"{prefix}:sync:timestamp:global"

    @property
    def required(self) -> list[str]:
        """Keys that must exist for the cache to be considered intact."""
        return [self.records, self.group_index, self.cache_timestamp]


class CacheSyncEngine:
    """Owns the flat collection, the group index and the cache metadata.

    Every mutation of those entries goes through this class. Mutations run
    under ``SyncState.cache_write_lock`` so interleaved patches never lose
    each other's updates, and each successful mutation bumps the cache
    timestamp and version.
    """

    def __init__(
        self,
        store: CacheStore,
        origin: OriginAdapter,
        state: SyncState | None = None,
        config: AppConfig | None = None,
        clock: Clock | None = None,
        broadcaster: BroadcastGateway | None = None,
        mapper: RecordMapper | None = None,
        metrics: SyncMetricsRecorder | None = None,
    ) -> None:
        self.store = store
        self.origin = origin
        self.state = state or SyncState()
        self.config = config or AppConfig()
        self.clock: Clock = clock or SystemClock()
        self.broadcaster = broadcaster
        self.mapper = mapper or RecordMapper(self.config.mapping)
        self.keys = CacheKeys(self.config.cache.key_prefix)
        self.metrics = metrics or SyncMetricsRecorder(
            store, self.clock, self.config.cache.key_prefix
        )
        self._last_version = 0

    # ------------------------------------------------------------------
    # Origin access
    # ------------------------------------------------------------------

    async def call_origin(self, call: Awaitable[T], description: str) -> T:
        """Await an origin call under the configured timeout.

        Raises:
            TransientOriginError: If the call does not finish in time
            OriginError: Whatever the adapter raised
        """
        timeout = self.config.origin.timeout
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransientOriginError(
                f"Origin call '{description}' timed out after {timeout}s"
            ) from e

    async def fetch_record(self, record_id: str) -> Record:
        """Fetch one record from the origin and map it."""
        payload = await self.call_origin(
            self.origin.get_record(record_id), f"get_record({record_id})"
        )
        return self.mapper.to_record(payload)

    async def fetch_records(self, query: ListQuery) -> list[Record]:
        """List records from the origin and map them, skipping malformed payloads.

        A ``fetch_all`` query is walked page by page so that the call timeout
        bounds each page rather than the whole listing.
        """
        if query.fetch_all:
            payloads, _ = await self._fetch_all_pages(query)
        else:
            payloads = await self.call_origin(
                self.origin.list_records(query), "list_records"
            )
        return self._map_payloads(payloads)

    async def fetch_origin_ids(self, group_id: str | None = None) -> set[str]:
        """Cheap ID-only listing of the origin."""
        query = ListQuery(
            group_id=group_id,
            limit=self.config.origin.page_size,
            fetch_all=True,
            id_only=True,
        )
        payloads, _ = await self._fetch_all_pages(query)
        ids: set[str] = set()
        for payload in payloads:
            try:
                ids.add(self.mapper.record_id(payload))
            except ValueError as e:
                detail_logger.warning(f"Ignoring ID-only payload without ID: {e}")
        return ids

    async def count_origin(self) -> int:
        return await self.call_origin(self.origin.count_records(), "count_records")

    def _map_payloads(self, payloads: list[dict[str, Any]]) -> list[Record]:
        records: list[Record] = []
        for payload in payloads:
            try:
                records.append(self.mapper.to_record(payload))
            except ValueError as e:
                detail_logger.warning(f"Skipping malformed origin payload: {e}")
        return records

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------

    async def populate(self) -> PopulationResult:
        """Replace the cache with a complete listing of the origin.

        Pages are fetched until a short page or the provider page cap. The
        cache is only written once every page has arrived, so a failed
        attempt leaves the previous contents untouched.

        Returns:
            PopulationResult; status ``skipped`` when a population is
            already in flight

        Raises:
            OriginError: If any page fetch fails
            Exception: Whatever the store raises when the write fails; the
                previous contents stay in place
        """
        async with self.state.population() as owned:
            if not owned:
                detail_logger.info("Population already in progress, skipping")
                return PopulationResult(
                    status=UpdateStatus.SKIPPED, reason="population_in_progress"
                )

            status_logger.info("Populating cache from origin...")
            try:
                payloads, pages = await self._fetch_all_pages()
            except OriginError as e:
                status_logger.error(f"Cache population failed: {e}")
                detail_logger.exception(f"Cache population aborted: {e}")
                await self.metrics.record("full_sync", success=False, error=str(e))
                raise

            records = dedupe_records(self._map_payloads(payloads))
            index = build_group_index(records)
            now = self.clock.now()

            try:
                async with self.state.cache_write_lock:
                    await self._write_collection(
                        [r.to_cache() for r in records],
                        index,
                        [(self.keys.populated_at, now.isoformat(), self.config.cache.metadata_ttl)],
                    )
            except Exception as e:
                status_logger.error(f"Cache population could not be stored: {e}")
                await self.metrics.record("full_sync", success=False, error=str(e))
                raise

        status_logger.info(
            f"Cache populated: {len(records)} records in {len(index)} groups"
        )
        await self.announce(
            "cache_refreshed",
            {"total_records": len(records), "total_groups": len(index)},
        )
        await self.metrics.record("full_sync", success=True, records_synced=len(records))

        return PopulationResult(
            status=UpdateStatus.SUCCESS,
            total_records=len(records),
            total_groups=len(index),
            pages_fetched=pages,
            timestamp=now,
        )

    async def _fetch_all_pages(
        self, base: ListQuery | None = None
    ) -> tuple[list[dict[str, Any]], int]:
        """Walk a listing one page at a time, each page under its own timeout."""
        page_size = self.config.origin.page_size
        max_pages = self.config.origin.max_pages
        base = base or ListQuery()
        payloads: list[dict[str, Any]] = []

        for page_number in range(max_pages):
            query = base.model_copy(
                update={
                    "offset": base.offset + page_number * page_size,
                    "limit": page_size,
                    "fetch_all": False,
                }
            )
            page = await self.call_origin(
                self.origin.list_records(query), f"list_records(page={page_number})"
            )
            payloads.extend(page)
            detail_logger.debug(f"Fetched page {page_number}: {len(page)} records")
            if len(page) < page_size:
                return payloads, page_number + 1

        status_logger.warning(
            f"Reached provider page cap ({max_pages} pages); cache may be incomplete"
        )
        return payloads, max_pages

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def _load_collection(self) -> tuple[list[dict[str, Any]], GroupIndex]:
        records = await self.store.get(self.keys.records) or []
        index = await self.store.get(self.keys.group_index) or {}
        return list(records), dict(index)

    async def _write_collection(
        self,
        records: list[dict[str, Any]],
        index: GroupIndex,
        extra: list[tuple[str, Any, int | None]] | None = None,
    ) -> None:
        """Write collection, index and metadata in one atomic store call."""
        cache = self.config.cache
        entries: list[tuple[str, Any, int | None]] = [
            (self.keys.records, records, cache.records_ttl),
            (self.keys.group_index, index, cache.group_index_ttl),
        ]
        entries.extend(await self._metadata_entries())
        entries.extend(extra or [])
        await self.store.set_many(entries)

    async def _metadata_entries(self) -> list[tuple[str, Any, int | None]]:
        stored_version = await self.store.get(self.keys.cache_version)
        version = max(int(stored_version or 0), self._last_version) + 1
        self._last_version = version

        ttl = self.config.cache.metadata_ttl
        return [
            (self.keys.cache_timestamp, self.clock.now().isoformat(), ttl),
            (self.keys.cache_version, version, ttl),
        ]

    async def _touch_metadata(self) -> None:
        await self.store.set_many(await self._metadata_entries())

    async def upsert_records(self, records: list[Record]) -> dict[str, int]:
        """Insert or replace records in the cache, never deleting.

        Returns:
            Counts of ``created`` and ``updated`` records
        """
        counts = {"created": 0, "updated": 0}
        if not records:
            return counts

        async with self.state.cache_write_lock:
            cached, index = await self._load_collection()
            position = {item["id"]: i for i, item in enumerate(cached)}

            for record in dedupe_records(records):
                previous_group = None
                if record.id in position:
                    previous_group = cached[position[record.id]].get("group_id")
                    cached[position[record.id]] = record.to_cache()
                    counts["updated"] += 1
                else:
                    position[record.id] = len(cached)
                    cached.append(record.to_cache())
                    counts["created"] += 1
                upsert_into_index(index, record, previous_group)

            await self._write_collection(cached, index)

        detail_logger.debug(
            f"Upserted {len(records)} records "
            f"({counts['created']} created, {counts['updated']} updated)"
        )
        return counts

    async def upsert_record(self, record: Record) -> str:
        """Insert or replace one record.

        Returns:
            ``"created"`` or ``"updated"``
        """
        counts = await self.upsert_records([record])
        return "created" if counts["created"] else "updated"

    async def merge_records(self, records: list[Record]) -> int:
        """Merge records into the cache without removing anything."""
        counts = await self.upsert_records(records)
        return counts["created"] + counts["updated"]

    async def remove_records(
        self, record_ids: list[str], group_hint: str | None = None
    ) -> dict[str, str | None]:
        """Remove records from the flat collection and from every bucket.

        Returns:
            Mapping of each removed record ID to the group it was indexed
            under (None when it had no group)
        """
        wanted = set(record_ids)
        if not wanted:
            return {}

        async with self.state.cache_write_lock:
            cached, index = await self._load_collection()
            removed: dict[str, str | None] = {}
            kept: list[dict[str, Any]] = []
            for item in cached:
                if item["id"] in wanted:
                    removed[item["id"]] = item.get("group_id")
                else:
                    kept.append(item)

            for record_id in wanted:
                hint = removed.get(record_id, group_hint)
                groups = remove_from_index(index, record_id, hint)
                if groups and record_id not in removed:
                    removed[record_id] = groups[0]

            if not removed:
                return {}
            await self._write_collection(kept, index)

        detail_logger.debug(f"Removed {len(removed)} records from cache")
        return removed

    async def remove_record(self, record_id: str, group_hint: str | None = None) -> bool:
        """Remove one record. Returns False when it was not cached."""
        removed = await self.remove_records([record_id], group_hint)
        return record_id in removed

    async def clear_cache(self) -> None:
        """Drop the cached collection and index."""
        async with self.state.cache_write_lock:
            await self.store.delete(self.keys.records)
            await self.store.delete(self.keys.group_index)
            await self.store.delete(self.keys.populated_at)
            await self._touch_metadata()
        status_logger.info("Cache cleared")

    async def clear_group(self, group_id: str) -> int:
        """Remove every cached record of one group.

        Returns:
            Number of records removed
        """
        async with self.state.cache_write_lock:
            cached, index = await self._load_collection()
            kept = [item for item in cached if item.get("group_id") != group_id]
            removed = len(cached) - len(kept)
            had_bucket = index.pop(group_id, None) is not None
            if not removed and not had_bucket:
                return 0
            await self._write_collection(kept, index)

        detail_logger.info(f"Cleared {removed} records of group {group_id}")
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_records(self) -> list[Record]:
        cached = await self.store.get(self.keys.records) or []
        return [Record.model_validate(item) for item in cached]

    async def get_record(self, record_id: str) -> Record | None:
        for record in await self.get_records():
            if record.id == record_id:
                return record
        return None

    async def get_group_index(self) -> GroupIndex:
        return dict(await self.store.get(self.keys.group_index) or {})

    async def get_group_records(
        self, group_id: str, filters: dict[str, Any] | None = None
    ) -> list[Record]:
        """Return the records of one group, in index order.

        Args:
            group_id: Group to read
            filters: Equality filters on status flags or data fields

        Returns:
            Matching records
        """
        index = await self.get_group_index()
        bucket = index.get(group_id, [])
        by_id = {record.id: record for record in await self.get_records()}
        records = [by_id[record_id] for record_id in bucket if record_id in by_id]
        if not filters:
            return records
        return [record for record in records if _matches(record, filters)]

    async def get_record_ids(self, group_id: str | None = None) -> set[str]:
        """IDs held by the cache, for the whole collection or one bucket."""
        if group_id is None:
            cached = await self.store.get(self.keys.records) or []
            return {item["id"] for item in cached}
        index = await self.get_group_index()
        return set(index.get(group_id, []))

    async def get_metadata(self) -> CacheMetadata:
        timestamp = await self.store.get(self.keys.cache_timestamp)
        version = await self.store.get(self.keys.cache_version)
        populated_at = await self.store.get(self.keys.populated_at)
        return CacheMetadata(
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
            version=int(version or 0),
            populated_at=datetime.fromisoformat(populated_at) if populated_at else None,
        )

    async def is_cache_valid(self) -> bool:
        """True when the collection exists and is younger than its TTL."""
        if not await self.store.exists(self.keys.records):
            return False
        metadata = await self.get_metadata()
        if metadata.timestamp is None:
            return False
        age = (self.clock.now() - metadata.timestamp).total_seconds()
        return age < self.config.cache.records_ttl

    async def get_cache_stats(self) -> dict[str, Any]:
        records = await self.get_records()
        index = await self.get_group_index()
        metadata = await self.get_metadata()
        age = (
            (self.clock.now() - metadata.timestamp).total_seconds()
            if metadata.timestamp
            else None
        )
        return {
            "total_records": len(records),
            "total_groups": len(index),
            "records_per_group": {group: len(ids) for group, ids in index.items()},
            "cache_timestamp": metadata.timestamp.isoformat() if metadata.timestamp else None,
            "cache_version": metadata.version,
            "populated_at": (
                metadata.populated_at.isoformat() if metadata.populated_at else None
            ),
            "cache_age_seconds": age,
            "is_valid": await self.is_cache_valid(),
        }

    async def check_index_integrity(self) -> list[str]:
        """Return every disagreement between the group index and the collection."""
        cached, index = await self._load_collection()
        return find_index_violations(cached, index)

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def announce(self, event_name: str, payload: dict[str, Any]) -> bool:
        return await safe_broadcast(self.broadcaster, event_name, payload, self.clock.now())


def _matches(record: Record, filters: dict[str, Any]) -> bool:
    for key, expected in filters.items():
        if key in record.status:
            if record.status[key] != bool(expected):
                return False
        elif record.data.get(key) != expected:
            return False
    return True
