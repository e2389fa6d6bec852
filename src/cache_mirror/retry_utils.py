# SPDX-License-Identifier: MIT
"""Retry and backoff utilities for origin calls."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from .logging_config import get_detail_logger


detail_logger = get_detail_logger()

T = TypeVar("T")


def compute_backoff_delay(
    attempts: int,
    base_delay: float = 30.0,
    max_delay: float = 300.0,
    exponential_base: float = 2.0,
) -> float:
    """Delay before the next retry of an entry that has failed ``attempts`` times.

    The first failure waits ``base_delay``; every further failure multiplies the
    delay by ``exponential_base`` until ``max_delay`` is reached.

    Args:
        attempts: Number of failed attempts so far (>= 1)
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound for the delay, in seconds
        exponential_base: Growth factor per additional failure

    Returns:
        Delay in seconds

    Raises:
        ValueError: If attempts is smaller than 1
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    return float(min(base_delay * exponential_base ** (attempts - 1), max_delay))


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator for retrying async functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff calculation
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated async function

    Example:
        >>> @async_retry_with_backoff(max_retries=3, exceptions=(TransientOriginError,))
        ... async def fetch_page():
        ...     return await session.get("/records")
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            delay = initial_delay
            attempt = 0

            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        detail_logger.debug(
                            f"{func.__name__} failed after {max_retries} retries: {e}"
                        )
                        raise

                    detail_logger.debug(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * exponential_base, max_delay)
                    attempt += 1

        return wrapper

    return decorator
