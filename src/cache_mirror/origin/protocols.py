# SPDX-License-Identifier: MIT
"""Protocol definitions for the origin platform."""

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from ..models import ListQuery


@runtime_checkable
class OriginAdapter(Protocol):
    """Operations the sync engine needs from the origin.

    Every method raises from the exception taxonomy in
    ``cache_mirror.exceptions``: ``RateLimitError`` when the quota is
    exhausted, ``NotFoundError`` for a vanished record,
    ``TransientOriginError`` for network problems and timeouts, and
    ``OriginError`` for anything else. Raw payloads are returned unchanged;
    ``RecordMapper`` turns them into ``Record`` objects.
    """

    async def list_records(self, query: ListQuery) -> list[dict[str, Any]]:
        """Return one page of raw records, or every page when ``query.fetch_all``.

        With ``query.id_only`` each payload only needs to carry the record ID.
        """
        ...

    async def get_record(self, record_id: str) -> dict[str, Any]:
        """Fetch one raw record by ID."""
        ...

    async def create_record(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return its raw payload."""
        ...

    async def update_record(self, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Update a record and return its raw payload."""
        ...

    async def delete_record(self, record_id: str) -> None:
        """Delete a record."""
        ...

    async def count_records(self, query: ListQuery | None = None) -> int:
        """Return the number of records matching ``query`` (all when None)."""
        ...


class RateLimitPredicate:
    """Decides whether an origin failure is a rate-limit signal.

    The origin does not document a single shape for this signal, so both the
    status codes and the message fragments are configuration.
    """

    def __init__(
        self,
        status_codes: Iterable[int] = (429,),
        markers: Iterable[str] = ("rate limit", "limit exceeded", "too many requests"),
    ) -> None:
        self.status_codes = frozenset(status_codes)
        self.markers = tuple(marker.lower() for marker in markers if marker)

    def __call__(self, status: int | None, message: str | None) -> bool:
        if status is not None and status in self.status_codes:
            return True
        if message:
            lowered = message.lower()
            return any(marker in lowered for marker in self.markers)
        return False
