# SPDX-License-Identifier: MIT
"""Durable retry buffer for writes the origin rejected with a rate limit."""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from ..config import RetryBufferConfig
from ..enums import SubmissionStatus, UpdateStatus
from ..exceptions import RateLimitError
from ..logging_config import get_detail_logger, get_status_logger
from ..models import BufferedSubmission, DrainResult
from ..retry_utils import compute_backoff_delay
from ..scheduling import Clock, SystemClock
from .store import BufferStore


detail_logger = get_detail_logger()
status_logger = get_status_logger()

LIMIT_RESET_KEY = "limit_reset_time"

SubmitFunc = Callable[[dict[str, Any]], Awaitable[Any]]


class _NoLimit:
    """Sentinel clearing the global limit reset marker."""

    def __repr__(self) -> str:
        return "NO_LIMIT"


NO_LIMIT = _NoLimit()


class RetryBuffer:
    """Queue of deferred writes, drained on a schedule.

    Entries are retried oldest first with a fixed delay between submissions.
    A failed retry pushes the entry back with exponential backoff; once an
    entry has failed ``max_attempts`` times it stays ``failed`` until someone
    retries it by hand. While the global limit reset marker lies in the
    future nothing is submitted at all.
    """

    def __init__(
        self,
        store: BufferStore,
        config: RetryBufferConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.config = config or RetryBufferConfig()
        self.clock: Clock = clock or SystemClock()
        self._drain_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls, config: RetryBufferConfig, clock: Clock | None = None
    ) -> "RetryBuffer":
        return cls(BufferStore(Path(config.db_path)), config, clock)

    def _today(self) -> str:
        return self.clock.now().strftime("%Y-%m-%d")

    def _generate_id(self) -> str:
        millis = int(self.clock.now().timestamp() * 1000)
        return f"buf_{millis}_{uuid.uuid4().hex[:9]}"

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        payload: dict[str, Any],
        reason: str = "rate_limit",
        group_id: str | None = None,
    ) -> str:
        """Persist a deferred write.

        Returns:
            Buffer ID the caller can report as the reference of the queued write
        """
        now = self.clock.now()
        submission = BufferedSubmission(
            id=self._generate_id(),
            timestamp=now,
            submission_data=payload,
            reason=reason,
            group_id=group_id,
            attempts=0,
            max_attempts=self.config.max_attempts,
            status=SubmissionStatus.PENDING,
            next_retry_at=now,
        )
        self.store.save(submission)

        stats = {"buffered": 1, f"reason:{reason}": 1}
        if group_id is not None:
            stats[f"group:{group_id}"] = 1
        self.store.increment_stats(self._today(), stats)

        status_logger.info(f"Buffered submission {submission.id} ({reason})")
        return submission.id

    # ------------------------------------------------------------------
    # Limit reset marker
    # ------------------------------------------------------------------

    def get_limit_reset_time(self) -> datetime | None:
        value = self.store.get_state(LIMIT_RESET_KEY)
        return datetime.fromisoformat(value) if value else None

    def set_limit_reset_time(self, value: datetime | _NoLimit) -> None:
        """Set the global limit reset marker, or clear it with ``NO_LIMIT``.

        Raises:
            ValueError: For anything other than a datetime or ``NO_LIMIT``,
                including None
        """
        if value is NO_LIMIT:
            if self.store.delete_state(LIMIT_RESET_KEY):
                status_logger.info("Rate limit reset marker cleared")
            return

        if not isinstance(value, datetime):
            raise ValueError(
                f"Limit reset time must be a datetime or NO_LIMIT, got {value!r}"
            )

        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self.store.set_state(LIMIT_RESET_KEY, value.isoformat(timespec="microseconds"))
        status_logger.warning(f"Origin writes paused until {value.isoformat()}")

    def extend_limit_reset_time(self, retry_after: int | None = None) -> datetime:
        """Move the marker to ``now + retry_after``, never backwards.

        Without ``retry_after`` the configured quota window is assumed.

        Returns:
            The resulting marker
        """
        seconds = retry_after if retry_after else self.config.quota_window_seconds
        candidate = self.clock.now() + timedelta(seconds=seconds)
        current = self.get_limit_reset_time()
        if current is not None and current >= candidate:
            return current

        self.set_limit_reset_time(candidate)
        return candidate

    def is_rate_limited(self) -> bool:
        marker = self.get_limit_reset_time()
        return marker is not None and self.clock.now() < marker

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def drain(self, submit: SubmitFunc) -> DrainResult:
        """Re-submit due entries through ``submit``.

        Args:
            submit: Coroutine performing the write described by an entry's
                ``submission_data``; raising marks the attempt as failed

        Returns:
            DrainResult; status ``skipped`` when gated by the reset marker or
            when another drain is running
        """
        if self._drain_lock.locked():
            return DrainResult(status=UpdateStatus.SKIPPED, reason="drain_in_progress")

        async with self._drain_lock:
            marker = self.get_limit_reset_time()
            if marker is not None and self.clock.now() < marker:
                detail_logger.info(f"Drain gated until {marker.isoformat()}")
                return DrainResult(
                    status=UpdateStatus.SKIPPED,
                    reason=f"rate_limited_until {marker.isoformat()}",
                )

            stale = self.store.reset_processing()
            if stale:
                detail_logger.warning(f"Reset {stale} submissions left in processing")

            due = self.store.due(self.clock.now())
            if not due:
                self._clear_elapsed_marker(marker)
                return DrainResult(status=UpdateStatus.SUCCESS)

            status_logger.info(f"Draining {len(due)} buffered submissions...")
            result = DrainResult(status=UpdateStatus.SUCCESS)

            for position, submission in enumerate(due):
                if position > 0:
                    await self.clock.sleep(self.config.drain_delay_seconds)

                outcome = await self._attempt(submission, submit)
                result.processed += 1
                if outcome == "completed":
                    result.successful += 1
                elif outcome == "rate_limited":
                    result.reason = "rate_limited"
                    break
                else:
                    result.failed += 1
                    if outcome == "exhausted":
                        result.exhausted += 1
            else:
                self._clear_elapsed_marker(marker)

        self.store.increment_stats(
            self._today(),
            {
                "processed": result.processed,
                "successful": result.successful,
                "failed": result.failed,
            },
        )
        status_logger.info(
            f"Drain finished: {result.successful} succeeded, {result.failed} failed, "
            f"{result.exhausted} exhausted"
        )
        return result

    async def _attempt(self, submission: BufferedSubmission, submit: SubmitFunc) -> str:
        """Submit one entry and record the outcome.

        Returns:
            One of ``completed``, ``retry``, ``exhausted``, ``rate_limited``
        """
        started = self.clock.now()
        submission.status = SubmissionStatus.PROCESSING
        submission.last_attempt = started
        self.store.save(submission)

        try:
            outcome = await submit(submission.submission_data)
        except RateLimitError as e:
            marker = self.extend_limit_reset_time(e.retry_after)
            submission.status = SubmissionStatus.PENDING
            submission.next_retry_at = marker
            self.store.save(submission)
            status_logger.warning(
                f"Rate limited while draining {submission.id}; stopping until {marker.isoformat()}"
            )
            return "rate_limited"
        except Exception as e:
            return self._record_failure(submission, e)

        submission.status = SubmissionStatus.COMPLETED
        submission.result = outcome if isinstance(outcome, dict) else {"value": outcome}
        submission.next_retry_at = None
        self.store.save(submission)
        detail_logger.info(f"Buffered submission {submission.id} completed")
        return "completed"

    def _record_failure(self, submission: BufferedSubmission, error: Exception) -> str:
        submission.attempts += 1
        submission.result = {"error": str(error)}

        if submission.attempts >= submission.max_attempts:
            submission.status = SubmissionStatus.FAILED
            submission.next_retry_at = None
            self.store.save(submission)
            status_logger.error(
                f"Buffered submission {submission.id} failed permanently after "
                f"{submission.attempts} attempts: {error}"
            )
            return "exhausted"

        delay = compute_backoff_delay(
            submission.attempts,
            base_delay=self.config.backoff_base_seconds,
            max_delay=self.config.backoff_cap_seconds,
        )
        submission.status = SubmissionStatus.PENDING
        submission.next_retry_at = self.clock.now() + timedelta(seconds=delay)
        self.store.save(submission)
        detail_logger.warning(
            f"Buffered submission {submission.id} failed "
            f"(attempt {submission.attempts}/{submission.max_attempts}): {error}. "
            f"Retrying in {delay:.0f}s"
        )
        return "retry"

    def _clear_elapsed_marker(self, marker: datetime | None) -> None:
        if marker is not None and self.clock.now() >= marker:
            self.set_limit_reset_time(NO_LIMIT)

    # ------------------------------------------------------------------
    # Maintenance and inspection
    # ------------------------------------------------------------------

    def cleanup_completed(self) -> int:
        """Purge completed entries older than the retention window.

        Failed entries are kept for manual intervention.

        Returns:
            Number of entries removed
        """
        cutoff = self.clock.now() - timedelta(days=self.config.retention_days)
        removed = self.store.delete_completed_before(cutoff)
        if removed:
            status_logger.info(f"Removed {removed} completed buffered submissions")
        return removed

    def get_submissions(
        self, status: SubmissionStatus | None = None
    ) -> list[BufferedSubmission]:
        return self.store.list_submissions(status)

    def get_submission(self, submission_id: str) -> BufferedSubmission | None:
        return self.store.get(submission_id)

    def retry_submission(self, submission_id: str) -> bool:
        """Give a failed entry a fresh set of attempts.

        Returns:
            False when the entry does not exist or is not failed
        """
        submission = self.store.get(submission_id)
        if submission is None or submission.status is not SubmissionStatus.FAILED:
            return False

        submission.status = SubmissionStatus.PENDING
        submission.attempts = 0
        submission.next_retry_at = self.clock.now()
        self.store.save(submission)
        status_logger.info(f"Buffered submission {submission_id} queued for manual retry")
        return True

    def get_status(self) -> dict[str, Any]:
        counts = self.store.count_by_status()
        marker = self.get_limit_reset_time()
        next_retry = self.store.next_retry_at()
        return {
            "counts": counts,
            "total": sum(counts.values()),
            "limit_reset_time": marker.isoformat() if marker else None,
            "is_rate_limited": self.is_rate_limited(),
            "next_retry_at": next_retry.isoformat() if next_retry else None,
        }

    def get_stats(self, days: int = 7) -> dict[str, dict[str, Any]]:
        """Per-day buffer counters for the last ``days`` days, newest first."""
        today = self.clock.now()
        result: dict[str, dict[str, Any]] = {}
        for offset in range(days):
            day = (today - timedelta(days=offset)).strftime("%Y-%m-%d")
            raw = self.store.get_stats(day)
            if not raw:
                continue

            entry: dict[str, Any] = {"by_reason": {}, "by_group": {}}
            for metric, value in raw.items():
                if metric.startswith("reason:"):
                    entry["by_reason"][metric.split(":", 1)[1]] = value
                elif metric.startswith("group:"):
                    entry["by_group"][metric.split(":", 1)[1]] = value
                else:
                    entry[metric] = value
            result[day] = entry
        return result
