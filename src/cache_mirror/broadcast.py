# SPDX-License-Identifier: MIT
"""Broadcast gateway for cache change events.

Connected clients learn about cache changes through named events
(``record_created``, ``record_updated``, ``record_deleted``, ``bulk_change``,
``cache_refreshed``, ``integrity_issue_resolved``). Delivery is
fire-and-forget: a failed broadcast never undoes the change it announces.
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .logging_config import get_detail_logger, get_status_logger
from .store.protocols import CacheStore


detail_logger = get_detail_logger()
status_logger = get_status_logger()

DEFAULT_BROADCAST_CHANNEL = "cache_mirror:events"


@runtime_checkable
class BroadcastGateway(Protocol):
    """Anything that can announce a named event."""

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> None: ...


class LoggingBroadcaster:
    """Gateway that only writes events to the detail log."""

    def __init__(self) -> None:
        self.sent: int = 0

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> None:
        self.sent += 1
        detail_logger.info(f"Broadcast '{event_name}': {payload}")


class StorePublishingBroadcaster:
    """Gateway publishing ``{"event", "data"}`` messages on a cache store channel."""

    def __init__(self, store: CacheStore, channel: str = DEFAULT_BROADCAST_CHANNEL) -> None:
        self.store = store
        self.channel = channel

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> None:
        receivers = await self.store.publish(
            self.channel, {"event": event_name, "data": payload}
        )
        detail_logger.debug(
            f"Published '{event_name}' on '{self.channel}' to {receivers} receivers"
        )


async def safe_broadcast(
    gateway: BroadcastGateway | None,
    event_name: str,
    payload: dict[str, Any],
    now: datetime,
) -> bool:
    """Broadcast an event stamped with ``now``, logging instead of raising.

    Returns:
        True when the gateway accepted the event
    """
    if gateway is None:
        return False

    message = dict(payload)
    message.setdefault("timestamp", now.isoformat())
    try:
        await gateway.broadcast(event_name, message)
        return True
    except Exception as e:
        status_logger.warning(f"Broadcast of '{event_name}' failed: {e}")
        detail_logger.exception(f"Broadcast of '{event_name}' failed: {e}")
        return False
