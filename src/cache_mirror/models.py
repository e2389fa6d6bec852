# SPDX-License-Identifier: MIT
"""Core data models for the cache mirror."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import (
    ChangeType,
    RecoveryStepStatus,
    ResyncStrategy,
    SubmissionStatus,
    UpdateStatus,
    WriteStatus,
)


# Tag identifying the cached record layout
CACHE_LAYOUT_KEY = "_layout"
CACHE_LAYOUT = "cache_mirror.record"


class Record(BaseModel):
    """A record mirrored from the origin."""

    id: str = Field(..., min_length=1, description="Unique record ID")
    group_id: str | None = Field(None, description="Owning-group foreign key")
    data: dict[str, Any] = Field(default_factory=dict, description="Mutable field bag")
    status: dict[str, bool] = Field(default_factory=dict, description="Status flags")
    created_at: datetime | None = Field(None, description="Creation time at origin")
    modified_at: datetime | None = Field(None, description="Last modification at origin")

    def to_cache(self) -> dict[str, Any]:
        """Serialize for storage in the cache store, tagged with the cache layout."""
        cached = self.model_dump(mode="json")
        cached[CACHE_LAYOUT_KEY] = CACHE_LAYOUT
        return cached


class CacheMetadata(BaseModel):
    """Metadata describing the current cache contents."""

    timestamp: datetime | None = Field(None, description="Last successful mutation")
    version: int = Field(0, ge=0, description="Version stamp, bumped per mutation")
    populated_at: datetime | None = Field(None, description="Last full population")


class ListQuery(BaseModel):
    """ID-set / time-window listing request sent to the origin."""

    group_id: str | None = None
    created_since: datetime | None = None
    modified_since: datetime | None = None
    offset: int = Field(0, ge=0)
    limit: int = Field(200, ge=1)
    fetch_all: bool = False
    id_only: bool = False


# Aliases the origin uses for change types
CHANGE_TYPE_ALIASES: dict[str, ChangeType] = {
    "create": ChangeType.CREATE,
    "created": ChangeType.CREATE,
    "record.create": ChangeType.CREATE,
    "record_created": ChangeType.CREATE,
    "edit": ChangeType.EDIT,
    "update": ChangeType.EDIT,
    "updated": ChangeType.EDIT,
    "record.update": ChangeType.EDIT,
    "record_updated": ChangeType.EDIT,
    "delete": ChangeType.DELETE,
    "deleted": ChangeType.DELETE,
    "record.delete": ChangeType.DELETE,
    "record_deleted": ChangeType.DELETE,
    "bulk": ChangeType.BULK,
    "bulk_change": ChangeType.BULK,
    "bulk_operation": ChangeType.BULK,
}


class ChangeNotification(BaseModel):
    """Normalized inbound change event."""

    change_type: ChangeType
    record_id: str | None = None
    group_id: str | None = None
    payload: dict[str, Any] | None = None

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "ChangeNotification":
        """Build a notification from an inbound event in any supported shape.

        Accepts camelCase (``changeType``, ``recordId``, ``groupId``) and
        snake_case keys as well as the origin's own event names
        (``record.update``, ``record_deleted``, ``bulk_operation``...).

        Raises:
            ValueError: If the change type is missing or unknown, or a
                per-record change carries no record ID
        """
        raw_type = _first_present(raw, "changeType", "change_type", "event_type", "event")
        if raw_type is None:
            raise ValueError("Change notification has no change type")

        change_type = CHANGE_TYPE_ALIASES.get(str(raw_type).strip().lower())
        if change_type is None:
            raise ValueError(f"Unknown change type: {raw_type}")

        record_id = _first_present(raw, "recordId", "record_id")
        group_id = _first_present(raw, "groupId", "group_id")
        payload = _first_present(raw, "payload", "record", "data")

        if change_type is not ChangeType.BULK and record_id is None:
            if isinstance(payload, dict) and payload.get("id") is not None:
                record_id = payload["id"]
            else:
                raise ValueError(f"{change_type.value} notification has no record ID")

        return cls(
            change_type=change_type,
            record_id=str(record_id) if record_id is not None else None,
            group_id=str(group_id) if group_id is not None else None,
            payload=payload if isinstance(payload, dict) and payload else None,
        )


def _first_present(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


class PopulationResult(BaseModel):
    """Result of a full population."""

    status: UpdateStatus
    total_records: int = 0
    total_groups: int = 0
    pages_fetched: int = 0
    reason: str | None = None
    timestamp: datetime | None = None


class DiscrepancyReport(BaseModel):
    """ID-level difference between origin and cache."""

    group_id: str | None = None
    origin_count: int
    cache_count: int
    missing_in_cache: list[str] = Field(default_factory=list)
    extra_in_cache: list[str] = Field(default_factory=list)

    @property
    def delta(self) -> int:
        """Combined size of the symmetric difference."""
        return len(self.missing_in_cache) + len(self.extra_in_cache)


class ResyncResult(BaseModel):
    """Result of applying the resync policy."""

    status: UpdateStatus
    strategy: ResyncStrategy | None = None
    group_id: str | None = None
    fetched: int = 0
    removed: int = 0
    vanished: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    reason: str | None = None
    population: PopulationResult | None = None


class PatchResult(BaseModel):
    """Result of applying one change notification."""

    status: UpdateStatus
    action: str
    record_id: str | None = None
    group_id: str | None = None
    error: str | None = None


class BatchSummary(BaseModel):
    """Aggregated outcome of a batch of notifications."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    bulk_resync: bool = False
    errors: list[dict[str, str]] = Field(default_factory=list)


class HealthReport(BaseModel):
    """Outcome of a health check."""

    healthy: bool
    cache_reachable: bool = True
    missing_keys: list[str] = Field(default_factory=list)
    cache_count: int | None = None
    origin_count: int | None = None
    probe_error: str | None = None
    reasons: list[str] = Field(default_factory=list)
    checked_at: datetime | None = None


class RecoveryAttempt(BaseModel):
    """One rung of the recovery ladder and how it went."""

    step: str
    status: RecoveryStepStatus
    detail: str | None = None


class BufferedSubmission(BaseModel):
    """A write deferred because the origin was rate limiting."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    timestamp: datetime
    submission_data: dict[str, Any]
    reason: str
    group_id: str | None = None
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(5, ge=1)
    status: SubmissionStatus = SubmissionStatus.PENDING
    next_retry_at: datetime | None = None
    last_attempt: datetime | None = None
    result: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the persisted camelCase layout."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DrainResult(BaseModel):
    """Outcome of one drain pass."""

    status: UpdateStatus
    processed: int = 0
    successful: int = 0
    failed: int = 0
    exhausted: int = 0
    reason: str | None = None


class WriteResult(BaseModel):
    """Outcome reported to callers of the write path."""

    status: WriteStatus
    record_id: str | None = None
    reference_id: str | None = None
    message: str = ""
    error: str | None = None


class SyncMetrics(BaseModel):
    """Per-day sync counters."""

    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_records_synced: int = 0
    by_sync_type: dict[str, int] = Field(default_factory=dict)
    by_group: dict[str, int] = Field(default_factory=dict)
    last_sync: datetime | None = None
    last_error: str | None = None
