# SPDX-License-Identifier: MIT
"""Enums for the cache mirror."""

from enum import Enum


class UpdateStatus(str, Enum):
    """Status values for sync operations."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class ChangeType(str, Enum):
    """Normalized change notification types."""

    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    BULK = "bulk"


class SubmissionStatus(str, Enum):
    """Lifecycle of a buffered submission."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WriteOperation(str, Enum):
    """Write operations that can be deferred to the retry buffer."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class WriteStatus(str, Enum):
    """Outcome reported to callers of the write path."""

    COMPLETED = "completed"
    QUEUED = "queued"
    FAILED = "failed"


class ResyncStrategy(str, Enum):
    """Repair tiers, ordered by cost."""

    NONE = "none"
    TARGETED = "targeted"
    FULL = "full"


class RecoveryStepStatus(str, Enum):
    """Outcome of a single rung of the recovery ladder."""

    RECOVERED = "recovered"
    NOT_APPLICABLE = "not_applicable"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncPriority(str, Enum):
    """Priority of a watched group; decides its periodic sync interval."""

    FAST = "fast"
    NORMAL = "normal"
    SLOW = "slow"
