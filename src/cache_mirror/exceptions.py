# SPDX-License-Identifier: MIT
"""Standard exceptions for the cache mirror."""


class CacheMirrorError(Exception):
    """Base class for all cache mirror exceptions."""


class OriginError(CacheMirrorError):
    """Base class for failures reported by the origin platform."""

    def __init__(self, message: str, record_id: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message)


class TransientOriginError(OriginError):
    """Raised on network failures and timeouts talking to the origin."""

    pass


class RateLimitError(OriginError):
    """Raised when the origin signals that its request quota is exhausted."""

    def __init__(
        self,
        message: str = "Origin rate limit exceeded",
        retry_after: int | None = None,
        record_id: str | None = None,
    ) -> None:
        self.retry_after = retry_after
        msg = f"{message}. Retry after {retry_after}s" if retry_after else message
        super().__init__(msg, record_id)


class NotFoundError(OriginError):
    """Raised when a record vanished from the origin."""

    pass


class IntegrityError(CacheMirrorError):
    """Raised when cache and origin counts disagree beyond tolerance."""

    def __init__(self, cache_count: int, origin_count: int) -> None:
        self.cache_count = cache_count
        self.origin_count = origin_count
        super().__init__(
            f"Cache holds {cache_count} records but origin reports {origin_count}"
        )


class FatalConfigError(CacheMirrorError):
    """Raised when the cache store cannot be reached at startup."""

    pass
