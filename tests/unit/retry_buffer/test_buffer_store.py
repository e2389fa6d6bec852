# SPDX-License-Identifier: MIT
"""Tests for the SQLite persistence of the retry buffer."""

import sqlite3
from datetime import timedelta

import pytest

from cache_mirror.enums import SubmissionStatus
from cache_mirror.models import BufferedSubmission
from cache_mirror.retry_buffer.store import BufferStore
from tests.conftest import START


def submission(submission_id, offset_seconds=0, **overrides):
    values = {
        "id": submission_id,
        "timestamp": START + timedelta(seconds=offset_seconds),
        "submission_data": {"operation": "create", "data": {"title": submission_id}},
        "reason": "rate_limit",
        "next_retry_at": START,
    }
    values.update(overrides)
    return BufferedSubmission(**values)


class TestBufferStore:
    """Test cases for BufferStore."""

    def test_creates_schema(self, buffer_store):
        with sqlite3.connect(buffer_store.db_path) as conn:
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        assert {"buffered_submissions", "buffer_state", "buffer_stats"} <= tables

    def test_save_and_get_round_trip(self, buffer_store):
        original = submission("buf_1", group_id="A", result={"error": "x"})

        buffer_store.save(original)

        assert buffer_store.get("buf_1") == original
        assert buffer_store.get("missing") is None

    def test_persists_across_instances(self, tmp_path):
        BufferStore(tmp_path / "buffer.db").save(submission("buf_1"))

        assert BufferStore(tmp_path / "buffer.db").get("buf_1") is not None

    def test_init_failure_raises_runtime_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file", encoding="utf-8")

        with pytest.raises(RuntimeError, match="Failed to initialize retry buffer"):
            BufferStore(blocker / "buffer.db")

    def test_due_oldest_first(self, buffer_store):
        buffer_store.save(submission("late", offset_seconds=20))
        buffer_store.save(submission("early", offset_seconds=10))
        buffer_store.save(
            submission("waiting", next_retry_at=START + timedelta(hours=1))
        )
        buffer_store.save(submission("done", status=SubmissionStatus.COMPLETED))
        buffer_store.save(
            submission("spent", attempts=5, max_attempts=5)
        )

        due = buffer_store.due(START)

        assert [s.id for s in due] == ["early", "late"]

    def test_reset_processing(self, buffer_store):
        buffer_store.save(submission("buf_1", status=SubmissionStatus.PROCESSING))

        assert buffer_store.reset_processing() == 1
        assert buffer_store.get("buf_1").status is SubmissionStatus.PENDING

    def test_delete_completed_before(self, buffer_store):
        buffer_store.save(
            submission("old", status=SubmissionStatus.COMPLETED, last_attempt=START)
        )
        buffer_store.save(
            submission(
                "fresh",
                status=SubmissionStatus.COMPLETED,
                last_attempt=START + timedelta(days=2),
            )
        )
        buffer_store.save(submission("failed", status=SubmissionStatus.FAILED))

        assert buffer_store.delete_completed_before(START + timedelta(days=1)) == 1
        assert {s.id for s in buffer_store.list_submissions()} == {"fresh", "failed"}

    def test_count_by_status_and_listing(self, buffer_store):
        buffer_store.save(submission("a"))
        buffer_store.save(submission("b", status=SubmissionStatus.FAILED))
        buffer_store.save(submission("c", status=SubmissionStatus.FAILED))

        counts = buffer_store.count_by_status()

        assert counts == {"pending": 1, "processing": 0, "completed": 0, "failed": 2}
        failed = buffer_store.list_submissions(SubmissionStatus.FAILED)
        assert [s.id for s in failed] == ["b", "c"]

    def test_next_retry_at(self, buffer_store):
        assert buffer_store.next_retry_at() is None

        buffer_store.save(submission("a", next_retry_at=START + timedelta(minutes=5)))
        buffer_store.save(submission("b", next_retry_at=START + timedelta(minutes=1)))

        assert buffer_store.next_retry_at() == START + timedelta(minutes=1)

    def test_state(self, buffer_store):
        assert buffer_store.get_state("k") is None

        buffer_store.set_state("k", "v1")
        buffer_store.set_state("k", "v2")

        assert buffer_store.get_state("k") == "v2"
        assert buffer_store.delete_state("k") is True
        assert buffer_store.delete_state("k") is False

    def test_stats_accumulate(self, buffer_store):
        buffer_store.increment_stats("2024-01-01", {"buffered": 1, "reason:rate_limit": 1})
        buffer_store.increment_stats("2024-01-01", {"buffered": 2})

        assert buffer_store.get_stats("2024-01-01") == {
            "buffered": 3,
            "reason:rate_limit": 1,
        }
        assert buffer_store.get_stats("2024-01-02") == {}
