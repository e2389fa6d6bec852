# SPDX-License-Identifier: MIT
"""Per-day sync metrics kept in the cache store."""

from datetime import datetime, timedelta

from ..constants import METRICS_TTL
from ..logging_config import get_detail_logger
from ..models import SyncMetrics
from ..scheduling import Clock
from ..store.protocols import CacheStore


detail_logger = get_detail_logger()


class SyncMetricsRecorder:
    """Counts syncs per day under ``<prefix>:metrics:<YYYY-MM-DD>``.

    Recording is best effort: a store failure is logged and dropped so that
    metrics never fail the sync they describe.
    """

    def __init__(self, store: CacheStore, clock: Clock, key_prefix: str) -> None:
        self.store = store
        self.clock = clock
        self.key_prefix = key_prefix

    def _key(self, day: datetime) -> str:
        return f"{self.key_prefix}:metrics:{day.strftime('%Y-%m-%d')}"

    async def record(
        self,
        sync_type: str,
        success: bool,
        records_synced: int = 0,
        group_id: str | None = None,
        error: str | None = None,
    ) -> None:
        now = self.clock.now()
        key = self._key(now)
        try:
            stored = await self.store.get(key)
            metrics = SyncMetrics.model_validate(stored) if stored else SyncMetrics()

            metrics.total_syncs += 1
            if success:
                metrics.successful_syncs += 1
            else:
                metrics.failed_syncs += 1
                metrics.last_error = error
            metrics.total_records_synced += records_synced
            metrics.by_sync_type[sync_type] = metrics.by_sync_type.get(sync_type, 0) + 1
            if group_id is not None:
                metrics.by_group[group_id] = metrics.by_group.get(group_id, 0) + 1
            metrics.last_sync = now

            await self.store.set(key, metrics.model_dump(mode="json"), METRICS_TTL)
        except Exception as e:
            detail_logger.warning(f"Failed to record sync metric '{sync_type}': {e}")

    async def get_metrics(self, days: int = 7) -> dict[str, SyncMetrics]:
        """Return the metrics of the last ``days`` days, newest first.

        Days without any recorded sync are omitted.
        """
        today = self.clock.now()
        result: dict[str, SyncMetrics] = {}
        for offset in range(days):
            day = today - timedelta(days=offset)
            stored = await self.store.get(self._key(day))
            if stored:
                result[day.strftime("%Y-%m-%d")] = SyncMetrics.model_validate(stored)
        return result
