# SPDX-License-Identifier: MIT
"""Origin platform access."""

from .http_adapter import HttpOriginAdapter
from .mapping import RecordMapper
from .protocols import OriginAdapter, RateLimitPredicate


__all__ = [
    "HttpOriginAdapter",
    "OriginAdapter",
    "RateLimitPredicate",
    "RecordMapper",
]
