# SPDX-License-Identifier: MIT
"""Tests for the logging configuration module."""

import logging
from io import StringIO
from unittest.mock import patch

import pytest

from cache_mirror.logging_config import (
    DETAIL_LOGGER_NAME,
    STATUS_LOGGER_NAME,
    get_detail_logger,
    get_status_logger,
    setup_logging,
)


@pytest.fixture
def temp_log_dir(tmp_path):
    """Create a temporary directory for log files."""
    log_dir = tmp_path / "test_logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset the detail and status loggers before and after each test."""
    loggers = [logging.getLogger(DETAIL_LOGGER_NAME), logging.getLogger(STATUS_LOGGER_NAME)]
    for logger in loggers:
        for handler in logger.handlers[:]:
            handler.close()
        logger.handlers.clear()

    yield

    for logger in loggers:
        for handler in logger.handlers[:]:
            handler.close()
        logger.handlers.clear()
        logger.propagate = True


class TestSetupLogging:
    """Test cases for setup_logging function."""

    def test_setup_logging_creates_log_file(self, temp_log_dir) -> None:
        """Test that setup_logging creates a log file in the specified directory."""
        setup_logging(temp_log_dir)

        assert (temp_log_dir / "cache-mirror.log").is_file()

    def test_setup_logging_uses_default_directory_when_none(self, tmp_path) -> None:
        """Test that setup_logging uses .cache-mirror in cwd when log_dir is None."""
        with patch("pathlib.Path.cwd", return_value=tmp_path):
            setup_logging(log_dir=None)

        assert (tmp_path / ".cache-mirror" / "cache-mirror.log").exists()

    def test_detail_logger_configuration(self, temp_log_dir) -> None:
        """Test that detail logger writes to file only at DEBUG level."""
        detail_logger, _ = setup_logging(temp_log_dir)

        assert detail_logger.name == DETAIL_LOGGER_NAME
        assert detail_logger.level == logging.DEBUG
        assert detail_logger.propagate is False
        assert len(detail_logger.handlers) == 1
        assert isinstance(detail_logger.handlers[0], logging.FileHandler)

    def test_status_logger_configuration(self, temp_log_dir) -> None:
        """Test that status logger writes to console and file."""
        _, status_logger = setup_logging(temp_log_dir)

        assert status_logger.name == STATUS_LOGGER_NAME
        assert status_logger.level == logging.INFO
        assert status_logger.propagate is False
        handler_types = {type(h).__name__ for h in status_logger.handlers}
        assert handler_types == {"FlushingStreamHandler", "FileHandler"}

    def test_log_file_appends_across_setups(self, temp_log_dir) -> None:
        """Test that a restart keeps the previous log history."""
        log_file = temp_log_dir / "cache-mirror.log"

        detail_logger, _ = setup_logging(temp_log_dir)
        detail_logger.info("First message")
        for handler in detail_logger.handlers[:]:
            handler.close()

        detail_logger, _ = setup_logging(temp_log_dir)
        detail_logger.info("Second message")

        content = log_file.read_text(encoding="utf-8")
        assert "First message" in content
        assert "Second message" in content

    def test_status_logger_ignores_debug_on_console(self, temp_log_dir) -> None:
        with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            _, status_logger = setup_logging(temp_log_dir)

            status_logger.debug("hidden debug")
            status_logger.info("visible info")

            output = mock_stderr.getvalue()

        assert "hidden debug" not in output
        assert "visible info" in output
        assert DETAIL_LOGGER_NAME not in output


class TestGetLoggers:
    """Test cases for the logger accessors."""

    def test_get_detail_logger_after_setup(self, temp_log_dir) -> None:
        detail_logger, _ = setup_logging(temp_log_dir)
        assert get_detail_logger() is detail_logger

    def test_get_status_logger_after_setup(self, temp_log_dir) -> None:
        _, status_logger = setup_logging(temp_log_dir)
        assert get_status_logger() is status_logger
