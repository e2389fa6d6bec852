# SPDX-License-Identifier: MIT
"""Retry buffer for rate-limited writes."""

from .buffer import NO_LIMIT, RetryBuffer
from .store import BufferStore
from .writer import RecordWriter, build_payload


__all__ = [
    "NO_LIMIT",
    "BufferStore",
    "RecordWriter",
    "RetryBuffer",
    "build_payload",
]
