# SPDX-License-Identifier: MIT
"""Clock abstraction and periodic job scheduler."""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from .logging_config import get_detail_logger, get_status_logger


detail_logger = get_detail_logger()
status_logger = get_status_logger()


class Clock(Protocol):
    """Source of time for everything that schedules or timestamps."""

    def now(self) -> datetime:
        """Return the current timezone-aware time."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""
        ...


class SystemClock:
    """Wall clock backed by asyncio."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """Clock that only moves when told to.

    ``sleep`` advances the clock instead of waiting, so throttled loops run
    instantly while still observing the time they would have taken.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)

    def set(self, when: datetime) -> None:
        self._now = when

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


JobFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledJob:
    """A periodic job and its bookkeeping."""

    name: str
    interval: float
    func: JobFunc
    next_run: datetime
    runs: int = 0
    failures: int = 0
    last_run: datetime | None = None
    last_error: str | None = None


class PeriodicScheduler:
    """Runs registered coroutines at fixed intervals.

    The scheduler never owns free-running timers: ``tick()`` runs every job
    whose time has come, and ``start()`` merely calls ``tick()`` in a loop.
    Tests drive ``tick()`` directly against a ``ManualClock``.
    """

    def __init__(self, clock: Clock | None = None, poll_interval: float = 1.0) -> None:
        self.clock: Clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self._jobs: dict[str, ScheduledJob] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_job(
        self,
        name: str,
        interval_seconds: float,
        func: JobFunc,
        initial_delay: float | None = None,
    ) -> ScheduledJob:
        """Register a periodic job.

        Args:
            name: Unique job name
            interval_seconds: Time between runs
            func: Zero-argument coroutine function to run
            initial_delay: Delay before the first run; defaults to one interval

        Returns:
            The registered job

        Raises:
            ValueError: If the name is taken or the interval is not positive
        """
        if name in self._jobs:
            raise ValueError(f"Job '{name}' is already scheduled")
        if interval_seconds <= 0:
            raise ValueError("Job interval must be positive")

        delay = interval_seconds if initial_delay is None else initial_delay
        job = ScheduledJob(
            name=name,
            interval=interval_seconds,
            func=func,
            next_run=self.clock.now() + timedelta(seconds=delay),
        )
        self._jobs[name] = job
        detail_logger.debug(
            f"Scheduled job '{name}' every {interval_seconds}s (first run {job.next_run.isoformat()})"
        )
        return job

    def remove_job(self, name: str) -> bool:
        """Unregister a job. Returns False when no such job exists."""
        removed = self._jobs.pop(name, None) is not None
        if removed:
            detail_logger.debug(f"Removed job '{name}'")
        return removed

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    def get_job(self, name: str) -> ScheduledJob | None:
        return self._jobs.get(name)

    async def tick(self) -> list[str]:
        """Run every job that is due, sequentially.

        Job failures are logged and counted; they never stop the scheduler.

        Returns:
            Names of the jobs that ran
        """
        ran: list[str] = []
        for job in list(self._jobs.values()):
            now = self.clock.now()
            if job.next_run > now:
                continue

            try:
                await job.func()
                job.last_error = None
            except Exception as e:
                job.failures += 1
                job.last_error = str(e)
                detail_logger.exception(f"Scheduled job '{job.name}' failed: {e}")
                status_logger.error(f"Scheduled job '{job.name}' failed: {e}")
            finally:
                job.runs += 1
                job.last_run = now
                job.next_run = self.clock.now() + timedelta(seconds=job.interval)
            ran.append(job.name)

        return ran

    async def _run_loop(self) -> None:
        while True:
            await self.tick()
            await self.clock.sleep(self.poll_interval)

    def start(self) -> None:
        """Start the polling loop on the running event loop."""
        if self.is_running:
            status_logger.warning("Scheduler already running")
            return

        self._task = asyncio.create_task(self._run_loop())
        status_logger.info(f"Scheduler started with {len(self._jobs)} jobs")

    async def stop(self) -> None:
        """Stop the polling loop and wait for it to finish."""
        if self._task is None:
            detail_logger.debug("Scheduler not running")
            return

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        status_logger.info("Scheduler stopped")

    def get_status(self) -> dict[str, Any]:
        """Describe the scheduler and its jobs."""
        return {
            "is_running": self.is_running,
            "jobs": {
                name: {
                    "interval": job.interval,
                    "next_run": job.next_run.isoformat(),
                    "last_run": job.last_run.isoformat() if job.last_run else None,
                    "runs": job.runs,
                    "failures": job.failures,
                    "last_error": job.last_error,
                }
                for name, job in self._jobs.items()
            },
        }
