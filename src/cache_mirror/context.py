# SPDX-License-Identifier: MIT
"""Process context: one explicit object holding every long-lived component."""

from .broadcast import BroadcastGateway, StorePublishingBroadcaster
from .config import AppConfig, get_config_manager
from .exceptions import FatalConfigError
from .logging_config import get_detail_logger, get_status_logger
from .origin.http_adapter import HttpOriginAdapter
from .origin.protocols import OriginAdapter
from .retry_buffer.buffer import RetryBuffer
from .retry_buffer.writer import RecordWriter
from .scheduling import Clock, PeriodicScheduler, SystemClock
from .store import create_cache_store
from .store.protocols import CacheStore
from .sync_engine.discrepancy import ResyncCoordinator
from .sync_engine.engine import CacheSyncEngine
from .sync_engine.health import HealthChecker, HealthMonitor, RecoveryLadder
from .sync_engine.notifications import ChangeNotificationReceiver
from .sync_engine.state import SyncState


detail_logger = get_detail_logger()
status_logger = get_status_logger()


class SyncContext:
    """Constructed once per process and passed by handle.

    Owns the sync state (population flag, group locks, write lock), the
    scheduler and every component built on top of the engine.
    """

    def __init__(
        self,
        config: AppConfig,
        store: CacheStore,
        origin: OriginAdapter,
        buffer: RetryBuffer,
        clock: Clock | None = None,
        broadcaster: BroadcastGateway | None = None,
    ) -> None:
        self.config = config
        self.clock: Clock = clock or SystemClock()
        self.store = store
        self.origin = origin
        self.buffer = buffer
        self.state = SyncState()
        self.scheduler = PeriodicScheduler(self.clock, config.scheduler.poll_interval)

        self.engine = CacheSyncEngine(
            store,
            origin,
            state=self.state,
            config=config,
            clock=self.clock,
            broadcaster=broadcaster,
        )
        self.coordinator = ResyncCoordinator(self.engine, config.sync, self.scheduler)
        self.receiver = ChangeNotificationReceiver(self.engine)
        checker = HealthChecker(self.engine, config.health)
        self.health_monitor = HealthMonitor(
            checker, RecoveryLadder(self.engine, config.health, checker)
        )
        self.writer = RecordWriter(self.engine, buffer)

    @classmethod
    def from_config(
        cls,
        config: AppConfig | None = None,
        origin: OriginAdapter | None = None,
        store: CacheStore | None = None,
        clock: Clock | None = None,
        broadcaster: BroadcastGateway | None = None,
        buffer: RetryBuffer | None = None,
    ) -> "SyncContext":
        """Build a context, filling every missing collaborator from configuration."""
        config = config or get_config_manager().load_config()
        clock = clock or SystemClock()
        store = store or create_cache_store(config.cache, clock)
        return cls(
            config=config,
            store=store,
            origin=origin or HttpOriginAdapter(config.origin),
            buffer=buffer or RetryBuffer.from_config(config.retry_buffer, clock),
            clock=clock,
            broadcaster=broadcaster or StorePublishingBroadcaster(store),
        )

    async def drain_buffer(self) -> None:
        await self.buffer.drain(self.writer.submit_buffered)

    async def cleanup_buffer(self) -> None:
        self.buffer.cleanup_completed()

    async def run_health_cycle(self) -> None:
        await self.health_monitor.run_cycle()

    async def detect_changes(self) -> None:
        await self.coordinator.sync_modified_since()

    async def scheduled_population(self) -> None:
        await self.engine.populate()

    def register_jobs(self) -> None:
        """Register the periodic jobs; already registered jobs are kept."""
        intervals = self.config.scheduler
        jobs = [
            ("drain", intervals.drain_interval, self.drain_buffer),
            ("buffer_cleanup", intervals.buffer_cleanup_interval, self.cleanup_buffer),
            ("health_check", intervals.health_check_interval, self.run_health_cycle),
            (
                "change_detection",
                intervals.change_detection_interval,
                self.detect_changes,
            ),
        ]
        if intervals.population_interval > 0:
            jobs.append(
                ("population", intervals.population_interval, self.scheduled_population)
            )

        for name, interval, func in jobs:
            if not self.scheduler.has_job(name):
                self.scheduler.add_job(name, interval, func)

    async def start(self, run_scheduler: bool = True) -> None:
        """Verify the cache store and start the periodic jobs.

        Raises:
            FatalConfigError: If the cache store is unreachable
        """
        try:
            reachable = await self.store.ping()
        except Exception as e:
            detail_logger.exception(f"Cache store ping raised: {e}")
            reachable = False

        if not reachable:
            status_logger.error("Cache store unreachable at startup")
            raise FatalConfigError(
                f"Cache store unreachable ({self.config.cache.backend} backend)"
            )

        self.register_jobs()
        if run_scheduler:
            self.scheduler.start()
        status_logger.info("Sync context started")

    async def stop(self) -> None:
        await self.scheduler.stop()
        close = getattr(self.origin, "close", None)
        if close is not None:
            await close()
        status_logger.info("Sync context stopped")
