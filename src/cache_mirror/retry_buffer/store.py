# SPDX-License-Identifier: MIT
"""SQLite persistence for buffered submissions."""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from ..enums import SubmissionStatus
from ..logging_config import get_detail_logger, get_status_logger
from ..models import BufferedSubmission
from .schema import init_buffer_database


detail_logger = get_detail_logger()
status_logger = get_status_logger()

_COLUMNS = (
    "id, timestamp, submission_data, reason, group_id, attempts, max_attempts, "
    "status, next_retry_at, last_attempt, result"
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat(timespec="microseconds") if value is not None else None


class BufferStore:
    """Reads and writes buffered submissions, buffer state and daily stats."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the store, creating the database if needed.

        Raises:
            RuntimeError: If the database cannot be initialized
        """
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            init_buffer_database(db_path)
        except (sqlite3.Error, OSError) as e:
            error_msg = f"Failed to initialize retry buffer at {db_path}"
            status_logger.error(error_msg)
            detail_logger.exception(f"{error_msg}: {e}")
            raise RuntimeError(error_msg) from e

        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _to_row(submission: BufferedSubmission) -> tuple[Any, ...]:
        return (
            submission.id,
            _iso(submission.timestamp),
            json.dumps(submission.submission_data, default=str),
            submission.reason,
            submission.group_id,
            submission.attempts,
            submission.max_attempts,
            submission.status.value,
            _iso(submission.next_retry_at),
            _iso(submission.last_attempt),
            json.dumps(submission.result, default=str) if submission.result is not None else None,
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> BufferedSubmission:
        return BufferedSubmission(
            id=row["id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            submission_data=json.loads(row["submission_data"]),
            reason=row["reason"],
            group_id=row["group_id"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            status=SubmissionStatus(row["status"]),
            next_retry_at=(
                datetime.fromisoformat(row["next_retry_at"]) if row["next_retry_at"] else None
            ),
            last_attempt=(
                datetime.fromisoformat(row["last_attempt"]) if row["last_attempt"] else None
            ),
            result=json.loads(row["result"]) if row["result"] else None,
        )

    def save(self, submission: BufferedSubmission) -> None:
        """Insert or replace a submission."""
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO buffered_submissions ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._to_row(submission),
            )

    def get(self, submission_id: str) -> BufferedSubmission | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM buffered_submissions WHERE id = ?",
                (submission_id,),
            ).fetchone()
        return self._from_row(row) if row else None

    def list_submissions(
        self, status: SubmissionStatus | None = None
    ) -> list[BufferedSubmission]:
        """Return submissions, oldest first, optionally filtered by status."""
        with self._connect() as conn:
            if status is None:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM buffered_submissions ORDER BY timestamp, id"
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM buffered_submissions "
                    "WHERE status = ? ORDER BY timestamp, id",
                    (status.value,),
                ).fetchall()
        return [self._from_row(row) for row in rows]

    def due(self, now: datetime) -> list[BufferedSubmission]:
        """Pending submissions whose retry time has come, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM buffered_submissions
                WHERE status = ?
                  AND attempts < max_attempts
                  AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY timestamp, id
                """,
                (SubmissionStatus.PENDING.value, _iso(now)),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def reset_processing(self) -> int:
        """Return submissions stuck in ``processing`` to ``pending``."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE buffered_submissions SET status = ? WHERE status = ?",
                (SubmissionStatus.PENDING.value, SubmissionStatus.PROCESSING.value),
            )
            return cursor.rowcount

    def delete_completed_before(self, cutoff: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM buffered_submissions
                WHERE status = ? AND COALESCE(last_attempt, timestamp) < ?
                """,
                (SubmissionStatus.COMPLETED.value, _iso(cutoff)),
            )
            return cursor.rowcount

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in SubmissionStatus}
        with self._connect() as conn:
            for row in conn.execute(
                "SELECT status, COUNT(*) AS n FROM buffered_submissions GROUP BY status"
            ):
                counts[row["status"]] = row["n"]
        return counts

    def next_retry_at(self) -> datetime | None:
        """Earliest retry time among retryable submissions."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT MIN(next_retry_at) AS next_retry FROM buffered_submissions
                WHERE status = ? AND attempts < max_attempts
                """,
                (SubmissionStatus.PENDING.value,),
            ).fetchone()
        value = row["next_retry"] if row else None
        return datetime.fromisoformat(value) if value else None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_state(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM buffer_state WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO buffer_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def delete_state(self, key: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM buffer_state WHERE key = ?", (key,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def increment_stats(self, day: str, metrics: dict[str, int]) -> None:
        with self._connect() as conn:
            for metric, amount in metrics.items():
                conn.execute(
                    """
                    INSERT INTO buffer_stats (day, metric, value) VALUES (?, ?, ?)
                    ON CONFLICT(day, metric) DO UPDATE SET value = value + excluded.value
                    """,
                    (day, metric, amount),
                )

    def get_stats(self, day: str) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT metric, value FROM buffer_stats WHERE day = ?", (day,)
            ).fetchall()
        return {row["metric"]: row["value"] for row in rows}
