# SPDX-License-Identifier: MIT
"""Tests for the health check and the recovery ladder."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from cache_mirror.enums import RecoveryStepStatus
from cache_mirror.exceptions import TransientOriginError
from cache_mirror.sync_engine.health import HealthChecker, HealthMonitor, RecoveryLadder
from tests.conftest import START


@pytest.fixture
def checker(engine):
    return HealthChecker(engine)


@pytest.fixture
def ladder(engine):
    return RecoveryLadder(engine)


@pytest.fixture
def monitor(checker, ladder):
    return HealthMonitor(checker, ladder)


class TestHealthChecker:
    """Test cases for HealthChecker.check."""

    @pytest.mark.asyncio
    async def test_healthy_after_population(self, checker, engine, origin):
        origin.add_many(range(5))
        await engine.populate()

        report = await checker.check()

        assert report.healthy is True
        assert report.cache_count == 5
        assert report.origin_count == 5
        assert report.reasons == []
        assert report.checked_at == START

    @pytest.mark.asyncio
    async def test_missing_keys_unhealthy(self, checker, engine):
        report = await checker.check()

        assert report.healthy is False
        assert report.missing_keys == engine.keys.required
        assert report.cache_count == 0

    @pytest.mark.asyncio
    async def test_unreachable_store(self, checker, store):
        store.available = False

        report = await checker.check()

        assert report.healthy is False
        assert report.cache_reachable is False
        assert report.reasons == ["cache store unreachable"]

    @pytest.mark.asyncio
    async def test_ping_raising_counts_as_unreachable(self, checker, store):
        store.ping = AsyncMock(side_effect=ConnectionError("refused"))

        report = await checker.check()

        assert report.cache_reachable is False

    @pytest.mark.asyncio
    async def test_probe_error_alone_stays_healthy(self, checker, engine, origin):
        origin.add_many(range(3))
        await engine.populate()
        origin.errors["count_records"] = TransientOriginError("count endpoint down")

        report = await checker.check()

        assert report.healthy is True
        assert report.probe_error == "count endpoint down"
        assert report.origin_count is None

    @pytest.mark.asyncio
    async def test_count_within_tolerance(self, checker, engine, origin):
        origin.add_many(range(5))
        await engine.populate()
        origin.add_many(range(5, 15))

        report = await checker.check()

        assert report.healthy is True
        assert report.origin_count == 15

    @pytest.mark.asyncio
    async def test_count_beyond_tolerance(self, checker, engine, origin):
        origin.add_many(range(5))
        await engine.populate()
        origin.add_many(range(5, 16))

        report = await checker.check()

        assert report.healthy is False
        assert report.reasons == ["Cache holds 5 records but origin reports 16"]

    @pytest.mark.asyncio
    async def test_probe_disabled(self, engine, origin):
        engine.config.health.count_probe_enabled = False
        await engine.populate()

        report = await HealthChecker(engine).check()

        assert report.origin_count is None
        assert origin.calls_to("count_records") == []


class TestRecoveryLadder:
    """Test cases for RecoveryLadder.recover."""

    def test_step_order(self, ladder):
        assert [name for name, _ in ladder.steps] == [
            "reconstruct_from_events",
            "lightweight_sync",
            "full_population",
        ]

    @pytest.mark.asyncio
    async def test_lightweight_sync_merges_recent_records(self, ladder, engine, origin):
        origin.add("old", created_at=START - timedelta(hours=48))
        await engine.populate()
        await engine.store.set(
            engine.keys.populated_at, (START - timedelta(hours=2)).isoformat()
        )
        origin.add("recent", created_at=START - timedelta(hours=1))

        assert await ladder.recover() is True

        assert [a.status for a in ladder.attempts] == [
            RecoveryStepStatus.NOT_APPLICABLE,
            RecoveryStepStatus.RECOVERED,
        ]
        assert await engine.get_record_ids() == {"old", "recent"}

    @pytest.mark.asyncio
    async def test_missing_collection_goes_to_full_population(self, ladder, engine, origin):
        origin.add("recent", created_at=START - timedelta(hours=1))
        origin.add("old", created_at=START - timedelta(hours=48))

        assert await ladder.recover() is True

        assert [(a.step, a.status) for a in ladder.attempts] == [
            ("reconstruct_from_events", RecoveryStepStatus.NOT_APPLICABLE),
            ("lightweight_sync", RecoveryStepStatus.NOT_APPLICABLE),
            ("full_population", RecoveryStepStatus.RECOVERED),
        ]
        assert await engine.get_record_ids() == {"recent", "old"}

    @pytest.mark.asyncio
    async def test_expired_cache_of_old_records_fully_repopulated(
        self, ladder, engine, origin, clock
    ):
        for n in range(50):
            origin.add(str(n), created_at=START - timedelta(days=3))
        await engine.populate()
        clock.advance(2 * 3600)

        assert await ladder.recover() is True

        assert ladder.attempts[1].status is RecoveryStepStatus.NOT_APPLICABLE
        assert ladder.attempts[-1].step == "full_population"
        assert len(await engine.get_record_ids()) == 50
        assert (await ladder.checker.check()).healthy is True

    @pytest.mark.asyncio
    async def test_rung_leaving_cache_unhealthy_counts_as_failed(self, ladder, engine, origin):
        origin.add_many(range(5))
        await engine.populate()
        await engine.store.set(
            engine.keys.populated_at, (START - timedelta(hours=2)).isoformat()
        )
        for n in range(5, 20):
            origin.add(str(n), created_at=START - timedelta(hours=48))

        assert await ladder.recover() is True

        lightweight = ladder.attempts[1]
        assert lightweight.status is RecoveryStepStatus.FAILED
        assert "still unhealthy" in lightweight.detail
        assert ladder.attempts[-1].step == "full_population"
        assert len(await engine.get_record_ids()) == 20

    @pytest.mark.asyncio
    async def test_recent_population_skips_to_full(self, ladder, engine, origin):
        origin.add_many(range(3))
        await engine.populate()
        await engine.clear_group("A")

        assert await ladder.recover() is True

        assert [(a.step, a.status) for a in ladder.attempts] == [
            ("reconstruct_from_events", RecoveryStepStatus.NOT_APPLICABLE),
            ("lightweight_sync", RecoveryStepStatus.SKIPPED),
            ("full_population", RecoveryStepStatus.RECOVERED),
        ]
        assert len(await engine.get_records()) == 3

    @pytest.mark.asyncio
    async def test_old_population_allows_lightweight(self, ladder, engine, origin, clock):
        await engine.populate()
        await engine.store.set(
            engine.keys.populated_at, (START - timedelta(hours=2)).isoformat()
        )
        origin.add("1", created_at=START)

        assert await ladder.recover() is True

        assert ladder.attempts[-1].step == "lightweight_sync"

    @pytest.mark.asyncio
    async def test_never_raises(self, ladder, origin):
        origin.errors["list_records"] = TransientOriginError("down")

        assert await ladder.recover() is False

        assert [a.status for a in ladder.attempts] == [
            RecoveryStepStatus.NOT_APPLICABLE,
            RecoveryStepStatus.NOT_APPLICABLE,
            RecoveryStepStatus.FAILED,
        ]
        assert ladder.attempts[-1].detail == "down"

    @pytest.mark.asyncio
    async def test_population_in_flight_is_skipped(self, ladder, engine, origin):
        await engine.populate()
        engine.state.populating = True

        assert await ladder.recover() is False

        assert ladder.attempts[-1].status is RecoveryStepStatus.SKIPPED
        assert ladder.attempts[-1].detail == "population_in_progress"


class TestHealthMonitor:
    """Test cases for HealthMonitor.run_cycle."""

    @pytest.mark.asyncio
    async def test_healthy_cycle_does_nothing(self, monitor, engine, origin, broadcaster):
        origin.add("1")
        await engine.populate()
        broadcaster.events.clear()

        cycle = await monitor.run_cycle()

        assert cycle["report"].healthy is True
        assert cycle["recovered"] is None
        assert cycle["attempts"] == []
        assert broadcaster.events == []
        assert monitor.last_report is cycle["report"]

    @pytest.mark.asyncio
    async def test_unhealthy_cycle_recovers_and_broadcasts(
        self, monitor, origin, broadcaster
    ):
        origin.add("1", created_at=START)

        cycle = await monitor.run_cycle()

        assert cycle["report"].healthy is False
        assert cycle["recovered"] is True
        name, payload = broadcaster.events[-1]
        assert name == "integrity_issue_resolved"
        assert payload["recovered_by"] == "full_population"
        assert payload["reasons"] == cycle["report"].reasons

    @pytest.mark.asyncio
    async def test_failed_recovery_not_broadcast(self, monitor, origin, broadcaster):
        origin.errors["list_records"] = TransientOriginError("down")

        cycle = await monitor.run_cycle()

        assert cycle["recovered"] is False
        assert "integrity_issue_resolved" not in broadcaster.names()
