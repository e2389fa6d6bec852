# SPDX-License-Identifier: MIT
"""Logging configuration for the cache mirror.

This module provides a dual-logger system:
1. Detail Logger: Captures all debug/info logs to file only (for troubleshooting)
2. Status Logger: Outputs operator-facing progress/status to console (stderr) and file
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Logger names
DETAIL_LOGGER_NAME = "cache_mirror.detail"
STATUS_LOGGER_NAME = "cache_mirror.status"


class FlushingStreamHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Stream handler that flushes after every record."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        # Only flush if the stream is not closed
        if self.stream and not self.stream.closed:
            self.flush()


def setup_logging(log_dir: Path | None = None) -> tuple[logging.Logger, logging.Logger]:
    """Configure dual logging system with detail and status loggers.

    Detail Logger:
        - Captures all DEBUG and above messages
        - Writes to file only
        - Used for sync internals, origin calls, cache patches

    Status Logger:
        - Outputs operator-facing progress and status information
        - Writes to both stderr (console) and file
        - Used for population summaries, recovery steps, warnings and errors

    Args:
        log_dir: Directory for log file. If None, uses .cache-mirror/ in current directory

    Returns:
        Tuple of (detail_logger, status_logger)
    """
    if log_dir is None:
        log_dir = Path.cwd() / ".cache-mirror"

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "cache-mirror.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    # Shared file handler for both loggers; appends so a long-running sync
    # process keeps its history across restarts
    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(file_formatter)

    # ===== Detail Logger Setup =====
    detail_logger = logging.getLogger(DETAIL_LOGGER_NAME)
    detail_logger.setLevel(logging.DEBUG)
    detail_logger.handlers.clear()
    detail_logger.addHandler(file_handler)
    detail_logger.propagate = False

    # ===== Status Logger Setup =====
    status_logger = logging.getLogger(STATUS_LOGGER_NAME)
    status_logger.setLevel(logging.INFO)
    status_logger.handlers.clear()

    console_formatter = logging.Formatter("%(asctime)s %(message)s", datefmt="%H:%M:%S")
    console_handler = FlushingStreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(console_formatter)

    status_logger.addHandler(console_handler)
    status_logger.addHandler(file_handler)
    status_logger.propagate = False

    detail_logger.info(f"Logging initialized. Log file: {log_file}")
    detail_logger.info(f"Detail logger: {DETAIL_LOGGER_NAME}")
    detail_logger.info(f"Status logger: {STATUS_LOGGER_NAME}")

    return detail_logger, status_logger


def get_detail_logger() -> logging.Logger:
    """Get the detail logger for verbose technical logging.

    Use this logger for:
    - Origin requests and responses
    - Cache reads, writes and patches
    - Lock and scheduler state changes

    Returns:
        The detail logger instance
    """
    return logging.getLogger(DETAIL_LOGGER_NAME)


def get_status_logger() -> logging.Logger:
    """Get the status logger for operator-facing progress and status.

    Use this logger for:
    - Population and resync summaries
    - Health check results and recovery steps
    - Retry buffer drain results
    - Error messages

    Returns:
        The status logger instance
    """
    return logging.getLogger(STATUS_LOGGER_NAME)
