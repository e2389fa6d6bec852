# SPDX-License-Identifier: MIT
"""Tests for retry utilities."""

from unittest.mock import AsyncMock, patch

import pytest

from cache_mirror.exceptions import NotFoundError, TransientOriginError
from cache_mirror.retry_utils import async_retry_with_backoff, compute_backoff_delay


class TestComputeBackoffDelay:
    """Test cases for compute_backoff_delay."""

    def test_first_failure_waits_base_delay(self):
        assert compute_backoff_delay(1) == 30.0

    def test_delay_doubles_per_failure(self):
        delays = [compute_backoff_delay(n) for n in range(1, 5)]
        assert delays == [30.0, 60.0, 120.0, 240.0]

    def test_delay_is_capped(self):
        assert compute_backoff_delay(5) == 300.0
        assert compute_backoff_delay(50) == 300.0

    def test_custom_parameters(self):
        assert compute_backoff_delay(3, base_delay=1.0, max_delay=100.0) == 4.0
        assert compute_backoff_delay(2, base_delay=1.0, exponential_base=3.0) == 3.0

    def test_attempts_below_one_rejected(self):
        with pytest.raises(ValueError, match="at least 1"):
            compute_backoff_delay(0)


class TestAsyncRetryWithBackoff:
    """Test cases for the async_retry_with_backoff decorator."""

    @pytest.mark.asyncio
    async def test_async_successful_call_no_retry(self):
        """Test that successful async calls don't trigger retries."""
        call_count = 0

        @async_retry_with_backoff(max_retries=3)
        async def async_successful_func():
            nonlocal call_count
            call_count += 1
            return "async_success"

        result = await async_successful_func()
        assert result == "async_success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_async_failure_then_success(self):
        """Test that async function succeeds after initial failures."""
        call_count = 0

        @async_retry_with_backoff(max_retries=3, initial_delay=0.01)
        async def async_flaky_func():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise TransientOriginError("Temporary error")
            return "async_success"

        with patch("cache_mirror.retry_utils.asyncio.sleep", new=AsyncMock()):
            result = await async_flaky_func()
        assert result == "async_success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_async_max_retries_exceeded(self):
        """Test that async function raises exception after max retries."""
        call_count = 0

        @async_retry_with_backoff(max_retries=2, initial_delay=0.01)
        async def async_failing_func():
            nonlocal call_count
            call_count += 1
            raise TransientOriginError("Persistent error")

        with patch("cache_mirror.retry_utils.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(TransientOriginError, match="Persistent error"):
                await async_failing_func()
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_async_specific_exceptions_only(self):
        """Test that only the configured exceptions are retried."""
        call_count = 0

        @async_retry_with_backoff(max_retries=3, exceptions=(TransientOriginError,))
        async def async_missing_func():
            nonlocal call_count
            call_count += 1
            raise NotFoundError("gone", "1")

        with pytest.raises(NotFoundError):
            await async_missing_func()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_async_exponential_backoff_delays(self):
        """Test that sleeps grow exponentially up to max_delay."""
        sleep_mock = AsyncMock()

        @async_retry_with_backoff(
            max_retries=4, initial_delay=1.0, max_delay=5.0, exponential_base=2.0
        )
        async def always_fails():
            raise TransientOriginError("down")

        with patch("cache_mirror.retry_utils.asyncio.sleep", new=sleep_mock):
            with pytest.raises(TransientOriginError):
                await always_fails()

        delays = [call.args[0] for call in sleep_mock.await_args_list]
        assert delays == [1.0, 2.0, 4.0, 5.0]
