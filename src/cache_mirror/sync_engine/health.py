# SPDX-License-Identifier: MIT
"""Health check and the escalating recovery ladder."""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from ..config import HealthConfig
from ..enums import RecoveryStepStatus, UpdateStatus
from ..exceptions import IntegrityError
from ..logging_config import get_detail_logger, get_status_logger
from ..models import HealthReport, ListQuery, RecoveryAttempt
from .engine import CacheSyncEngine


detail_logger = get_detail_logger()
status_logger = get_status_logger()


class HealthChecker:
    """Structural checks of the cache plus an optional origin count probe.

    A failing count probe only records ``probe_error``; it never makes the
    report unhealthy on its own.
    """

    def __init__(self, engine: CacheSyncEngine, config: HealthConfig | None = None) -> None:
        self.engine = engine
        self.config = config or engine.config.health

    async def check(self) -> HealthReport:
        report = HealthReport(healthy=True, checked_at=self.engine.clock.now())

        try:
            reachable = await self.engine.store.ping()
        except Exception as e:
            detail_logger.warning(f"Cache store ping raised: {e}")
            reachable = False

        if not reachable:
            report.healthy = False
            report.cache_reachable = False
            report.reasons.append("cache store unreachable")
            return report

        try:
            for key in self.engine.keys.required:
                if not await self.engine.store.exists(key):
                    report.missing_keys.append(key)
            report.cache_count = len(await self.engine.get_record_ids())
        except Exception as e:
            detail_logger.exception(f"Structural health check failed: {e}")
            report.healthy = False
            report.cache_reachable = False
            report.reasons.append(f"cache store error: {e}")
            return report

        if report.missing_keys:
            report.healthy = False
            report.reasons.append(f"missing cache keys: {', '.join(report.missing_keys)}")

        if self.config.count_probe_enabled:
            await self._probe_counts(report)

        log = detail_logger.debug if report.healthy else status_logger.warning
        log(f"Health check: {'healthy' if report.healthy else '; '.join(report.reasons)}")
        return report

    async def _probe_counts(self, report: HealthReport) -> None:
        try:
            report.origin_count = await self.engine.count_origin()
        except Exception as e:
            detail_logger.warning(f"Count probe failed, using structural checks only: {e}")
            report.probe_error = str(e)
            return

        try:
            self._verify_counts(report.cache_count or 0, report.origin_count)
        except IntegrityError as e:
            report.healthy = False
            report.reasons.append(str(e))

    def _verify_counts(self, cache_count: int, origin_count: int) -> None:
        """Raise IntegrityError when the counts differ beyond tolerance."""
        if abs(origin_count - cache_count) > self.config.tolerance:
            raise IntegrityError(cache_count, origin_count)


RecoveryStep = Callable[[], Awaitable[RecoveryAttempt]]


class RecoveryLadder:
    """Runs recovery strategies from cheapest to most expensive.

    A rung only counts as recovered once a fresh health check passes after
    it; otherwise it is recorded as failed and the next rung runs. The ladder
    never raises.
    """

    def __init__(
        self,
        engine: CacheSyncEngine,
        config: HealthConfig | None = None,
        checker: HealthChecker | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or engine.config.health
        self.checker = checker or HealthChecker(engine, self.config)
        self.attempts: list[RecoveryAttempt] = []

    @property
    def steps(self) -> list[tuple[str, RecoveryStep]]:
        return [
            ("reconstruct_from_events", self.reconstruct_from_events),
            ("lightweight_sync", self.lightweight_sync),
            ("full_population", self.full_population),
        ]

    async def recover(self, report: HealthReport | None = None) -> bool:
        """Walk the ladder.

        Args:
            report: The health report that triggered recovery, for logging

        Returns:
            True when some rung recovered the cache
        """
        if report is not None:
            status_logger.warning(f"Recovering cache: {'; '.join(report.reasons)}")

        self.attempts = []
        for name, step in self.steps:
            try:
                attempt = await step()
            except Exception as e:
                detail_logger.exception(f"Recovery step '{name}' failed: {e}")
                attempt = RecoveryAttempt(
                    step=name, status=RecoveryStepStatus.FAILED, detail=str(e)
                )

            if attempt.status is RecoveryStepStatus.RECOVERED:
                attempt = await self._verify(attempt)

            self.attempts.append(attempt)
            detail_logger.info(f"Recovery step '{name}': {attempt.status.value}")
            if attempt.status is RecoveryStepStatus.RECOVERED:
                status_logger.info(f"Cache recovered by {name}")
                return True

        status_logger.error("Cache recovery failed on every step")
        return False

    async def _verify(self, attempt: RecoveryAttempt) -> RecoveryAttempt:
        """Downgrade ``attempt`` to failed when the cache is still unhealthy."""
        report = await self.checker.check()
        if report.healthy:
            return attempt

        detail = f"still unhealthy: {'; '.join(report.reasons)}"
        if attempt.detail:
            detail = f"{attempt.detail}; {detail}"
        return attempt.model_copy(
            update={"status": RecoveryStepStatus.FAILED, "detail": detail}
        )

    async def reconstruct_from_events(self) -> RecoveryAttempt:
        """Rebuild from recently buffered change events.

        No event log is kept yet, so this rung never applies.
        """
        return RecoveryAttempt(
            step="reconstruct_from_events",
            status=RecoveryStepStatus.NOT_APPLICABLE,
            detail="no change event log available",
        )

    async def lightweight_sync(self) -> RecoveryAttempt:
        """Merge recently created records into the cache, never deleting.

        Only applies to a cache whose structure is intact; an expired or
        missing collection has nothing to merge into.
        """
        missing = [
            key for key in self.engine.keys.required if not await self.engine.store.exists(key)
        ]
        if missing:
            return RecoveryAttempt(
                step="lightweight_sync",
                status=RecoveryStepStatus.NOT_APPLICABLE,
                detail=f"missing cache keys: {', '.join(missing)}",
            )

        now = self.engine.clock.now()
        metadata = await self.engine.get_metadata()
        if metadata.populated_at is not None:
            age = (now - metadata.populated_at).total_seconds()
            if age < self.config.lightweight_min_age_seconds:
                return RecoveryAttempt(
                    step="lightweight_sync",
                    status=RecoveryStepStatus.SKIPPED,
                    detail=f"last population {int(age)}s ago",
                )

        query = ListQuery(
            created_since=now - timedelta(hours=self.config.lightweight_window_hours),
            limit=self.engine.config.origin.page_size,
            fetch_all=True,
        )
        records = await self.engine.fetch_records(query)
        merged = await self.engine.merge_records(records)
        await self.engine.metrics.record("lightweight_sync", success=True, records_synced=merged)
        return RecoveryAttempt(
            step="lightweight_sync",
            status=RecoveryStepStatus.RECOVERED,
            detail=f"merged {merged} records",
        )

    async def full_population(self) -> RecoveryAttempt:
        result = await self.engine.populate()
        if result.status is UpdateStatus.SUCCESS:
            return RecoveryAttempt(
                step="full_population",
                status=RecoveryStepStatus.RECOVERED,
                detail=f"{result.total_records} records",
            )
        return RecoveryAttempt(
            step="full_population",
            status=RecoveryStepStatus.SKIPPED,
            detail=result.reason,
        )


class HealthMonitor:
    """One scheduled health cycle: check, and recover when unhealthy."""

    def __init__(self, checker: HealthChecker, ladder: RecoveryLadder) -> None:
        self.checker = checker
        self.ladder = ladder
        self.last_report: HealthReport | None = None

    async def run_cycle(self) -> dict[str, Any]:
        report = await self.checker.check()
        self.last_report = report
        result: dict[str, Any] = {"report": report, "recovered": None, "attempts": []}
        if report.healthy:
            return result

        recovered = await self.ladder.recover(report)
        result["recovered"] = recovered
        result["attempts"] = list(self.ladder.attempts)
        if recovered:
            await self.checker.engine.announce(
                "integrity_issue_resolved",
                {
                    "reasons": report.reasons,
                    "recovered_by": self.ladder.attempts[-1].step,
                },
            )
        return result
