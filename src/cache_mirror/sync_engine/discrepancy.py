# SPDX-License-Identifier: MIT
"""Discrepancy detection and the tiered resync policy.

Repairing record by record costs one origin call per differing ID. Once the
difference approaches the size of the collection a full population is both
cheaper and safer, so the repair strategy is chosen from the size of the
difference:

- no difference: nothing to do
- difference up to the threshold: targeted sync of the differing IDs
- larger difference, or no ID listing at all: full population
"""

from datetime import datetime, timedelta

from ..config import SyncConfig
from ..constants import (
    GROUP_SYNC_INTERVAL_FAST,
    GROUP_SYNC_INTERVAL_NORMAL,
    GROUP_SYNC_INTERVAL_SLOW,
    SYNC_TIMESTAMP_TTL,
)
from ..enums import ResyncStrategy, SyncPriority, UpdateStatus
from ..exceptions import NotFoundError, OriginError
from ..logging_config import get_detail_logger, get_status_logger
from ..models import DiscrepancyReport, ListQuery, Record, ResyncResult
from ..scheduling import PeriodicScheduler
from .engine import CacheSyncEngine


detail_logger = get_detail_logger()
status_logger = get_status_logger()

GROUP_SYNC_INTERVALS: dict[SyncPriority, int] = {
    SyncPriority.FAST: GROUP_SYNC_INTERVAL_FAST,
    SyncPriority.NORMAL: GROUP_SYNC_INTERVAL_NORMAL,
    SyncPriority.SLOW: GROUP_SYNC_INTERVAL_SLOW,
}


async def detect_discrepancy(
    engine: CacheSyncEngine, group_id: str | None = None
) -> DiscrepancyReport:
    """Compare cached record IDs with an ID-only listing of the origin.

    Args:
        engine: Engine owning the cache
        group_id: Restrict the comparison to one group; None compares everything

    Raises:
        OriginError: If the ID listing cannot be fetched
    """
    origin_ids = await engine.fetch_origin_ids(group_id)
    cache_ids = await engine.get_record_ids(group_id)

    report = DiscrepancyReport(
        group_id=group_id,
        origin_count=len(origin_ids),
        cache_count=len(cache_ids),
        missing_in_cache=sorted(origin_ids - cache_ids),
        extra_in_cache=sorted(cache_ids - origin_ids),
    )
    detail_logger.debug(
        f"Discrepancy for {group_id or 'all groups'}: origin={report.origin_count}, "
        f"cache={report.cache_count}, missing={len(report.missing_in_cache)}, "
        f"extra={len(report.extra_in_cache)}"
    )
    return report


def choose_strategy(report: DiscrepancyReport | None, threshold: int) -> ResyncStrategy:
    """Pick the repair tier for a discrepancy.

    A missing report means the ID listing failed, which only a full
    population can repair.
    """
    if report is None:
        return ResyncStrategy.FULL
    if report.delta == 0:
        return ResyncStrategy.NONE
    if report.delta <= threshold:
        return ResyncStrategy.TARGETED
    return ResyncStrategy.FULL


class ResyncCoordinator:
    """Applies the resync policy and runs the periodic sync jobs."""

    def __init__(
        self,
        engine: CacheSyncEngine,
        config: SyncConfig | None = None,
        scheduler: PeriodicScheduler | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or engine.config.sync
        self.scheduler = scheduler
        self._watched: dict[str, SyncPriority] = {}

    async def resync(self, group_id: str | None = None) -> ResyncResult:
        """Detect the discrepancy for a group (or everything) and repair it.

        An overlapping resync of the same group key is skipped. This method
        does not raise on origin failures; they are reported in the result.
        """
        async with self.engine.state.try_group_lock(group_id) as acquired:
            if not acquired:
                detail_logger.info(
                    f"Resync of {group_id or 'all groups'} already running, skipping"
                )
                return ResyncResult(
                    status=UpdateStatus.SKIPPED,
                    group_id=group_id,
                    reason="sync_in_progress",
                )
            return await self._resync_locked(group_id)

    async def _resync_locked(self, group_id: str | None) -> ResyncResult:
        report: DiscrepancyReport | None
        try:
            report = await detect_discrepancy(self.engine, group_id)
        except OriginError as e:
            status_logger.warning(f"ID listing failed, falling back to full population: {e}")
            report = None

        strategy = choose_strategy(report, self.config.targeted_sync_threshold)
        detail_logger.info(f"Resync strategy for {group_id or 'all groups'}: {strategy.value}")

        if strategy is ResyncStrategy.NONE:
            await self.engine.metrics.record("no_op", success=True, group_id=group_id)
            return ResyncResult(
                status=UpdateStatus.SUCCESS, strategy=strategy, group_id=group_id
            )

        if strategy is ResyncStrategy.TARGETED and report is not None:
            return await self._targeted_sync(report)

        return await self._full_sync(
            group_id, "id_listing_failed" if report is None else "delta_above_threshold"
        )

    async def _targeted_sync(self, report: DiscrepancyReport) -> ResyncResult:
        result = ResyncResult(
            status=UpdateStatus.SUCCESS,
            strategy=ResyncStrategy.TARGETED,
            group_id=report.group_id,
        )

        fetched: list[Record] = []
        for record_id in report.missing_in_cache:
            try:
                fetched.append(await self.engine.fetch_record(record_id))
            except NotFoundError:
                detail_logger.debug(f"Record {record_id} vanished before it could be fetched")
                result.vanished += 1
            except OriginError as e:
                detail_logger.warning(f"Targeted fetch of {record_id} failed: {e}")
                result.failed += 1
                result.errors.append(f"{record_id}: {e}")

        if fetched:
            await self.engine.upsert_records(fetched)
        result.fetched = len(fetched)

        if report.extra_in_cache:
            removed = await self.engine.remove_records(
                report.extra_in_cache, report.group_id
            )
            result.removed = len(removed)

        if result.failed:
            result.status = UpdateStatus.FAILED
            result.reason = f"{result.failed} record fetches failed"

        status_logger.info(
            f"Targeted sync of {report.group_id or 'all groups'}: "
            f"{result.fetched} fetched, {result.removed} removed, {result.failed} failed"
        )
        await self.engine.metrics.record(
            "targeted_sync",
            success=not result.failed,
            records_synced=result.fetched + result.removed,
            group_id=report.group_id,
            error="; ".join(result.errors) or None,
        )
        return result

    async def _full_sync(self, group_id: str | None, reason: str) -> ResyncResult:
        try:
            population = await self.engine.populate()
        except Exception as e:
            if not isinstance(e, OriginError):
                detail_logger.exception(f"Full population failed unexpectedly: {e}")
            return ResyncResult(
                status=UpdateStatus.FAILED,
                strategy=ResyncStrategy.FULL,
                group_id=group_id,
                reason=reason,
                errors=[str(e)],
            )

        return ResyncResult(
            status=population.status,
            strategy=ResyncStrategy.FULL,
            group_id=group_id,
            fetched=population.total_records,
            reason=population.reason or reason,
            population=population,
        )

    async def sync_modified_since(self) -> ResyncResult:
        """Merge every record modified since the previous run.

        The look-back starts at the stored change-detection timestamp, or at
        the configured window when none exists. The timestamp only advances
        after a successful merge.
        """
        keys = self.engine.keys
        started = self.engine.clock.now()
        stored = await self.engine.store.get(keys.sync_timestamp)
        if stored:
            since = datetime.fromisoformat(stored)
        else:
            since = started - timedelta(hours=self.config.change_detection_window_hours)

        query = ListQuery(
            modified_since=since,
            limit=self.engine.config.origin.page_size,
            fetch_all=True,
        )
        try:
            records = await self.engine.fetch_records(query)
        except OriginError as e:
            status_logger.warning(f"Change detection failed: {e}")
            await self.engine.metrics.record("change_detection", success=False, error=str(e))
            return ResyncResult(
                status=UpdateStatus.FAILED, reason="change_detection_failed", errors=[str(e)]
            )

        merged = await self.engine.merge_records(records)
        await self.engine.store.set(keys.sync_timestamp, started.isoformat(), SYNC_TIMESTAMP_TTL)
        await self.engine.metrics.record(
            "change_detection", success=True, records_synced=merged
        )
        detail_logger.info(f"Change detection merged {merged} records modified since {since}")
        return ResyncResult(status=UpdateStatus.SUCCESS, fetched=merged)

    # ------------------------------------------------------------------
    # Watched groups
    # ------------------------------------------------------------------

    @staticmethod
    def _job_name(group_id: str) -> str:
        return f"group_sync:{group_id}"

    def watch_group(
        self, group_id: str, priority: SyncPriority = SyncPriority.NORMAL
    ) -> None:
        """Resync a group periodically; re-watching changes its priority.

        Raises:
            RuntimeError: If the coordinator has no scheduler
        """
        if self.scheduler is None:
            raise RuntimeError("Group watching requires a scheduler")

        name = self._job_name(group_id)
        self.scheduler.remove_job(name)

        async def run() -> None:
            await self.resync(group_id)

        interval = GROUP_SYNC_INTERVALS[priority] * 60
        self.scheduler.add_job(name, interval, run)
        self._watched[group_id] = priority
        detail_logger.info(
            f"Watching group {group_id} ({priority.value}, every {interval}s)"
        )

    def unwatch_group(self, group_id: str) -> bool:
        if self.scheduler is not None:
            self.scheduler.remove_job(self._job_name(group_id))
        return self._watched.pop(group_id, None) is not None

    @property
    def watched_groups(self) -> dict[str, SyncPriority]:
        return dict(self._watched)

