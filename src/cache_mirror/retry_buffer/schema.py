# SPDX-License-Identifier: MIT
"""Database schema for the retry buffer."""

import sqlite3
from pathlib import Path

from ..enums import SubmissionStatus


def init_buffer_database(db_path: Path) -> None:
    """Initialize the retry buffer schema.

    Args:
        db_path: Path to the SQLite database file
    """
    status_values = ", ".join(f"'{s.value}'" for s in SubmissionStatus)

    with sqlite3.connect(db_path) as conn:
        conn.executescript(
            f"""
            -- Writes deferred because the origin was rate limiting
            CREATE TABLE IF NOT EXISTS buffered_submissions (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                submission_data TEXT NOT NULL,
                reason TEXT NOT NULL,
                group_id TEXT,
                attempts INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                next_retry_at TEXT,
                last_attempt TEXT,
                result TEXT,
                CHECK (status IN ({status_values})),
                CHECK (attempts >= 0)
            );

            -- Single-row settings such as the global limit reset marker
            CREATE TABLE IF NOT EXISTS buffer_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            -- Per-day counters
            CREATE TABLE IF NOT EXISTS buffer_stats (
                day TEXT NOT NULL,
                metric TEXT NOT NULL,
                value INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (day, metric)
            );

            CREATE INDEX IF NOT EXISTS idx_buffered_submissions_due
                ON buffered_submissions(status, next_retry_at);
            CREATE INDEX IF NOT EXISTS idx_buffered_submissions_timestamp
                ON buffered_submissions(timestamp);
            """
        )
