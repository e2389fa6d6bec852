# SPDX-License-Identifier: MIT
"""Translation of raw origin payloads into cached records."""

from datetime import datetime, timezone
from typing import Any

from ..config import RecordMappingConfig
from ..models import CACHE_LAYOUT, CACHE_LAYOUT_KEY, Record


class RecordMapper:
    """Maps raw origin payloads onto ``Record`` using configured field names.

    The group key may be nested; ``group_field="Event_Info.ID"`` reads
    ``payload["Event_Info"]["ID"]``.
    """

    def __init__(self, config: RecordMappingConfig | None = None) -> None:
        self.config = config or RecordMappingConfig()
        self._group_path = self.config.group_field.split(".")

    def record_id(self, payload: dict[str, Any]) -> str:
        """Extract the record ID.

        Raises:
            ValueError: If the payload carries no ID
        """
        value = payload.get(self.config.id_field, payload.get("id"))
        if value is None or str(value).strip() == "":
            raise ValueError(f"Payload has no '{self.config.id_field}' field")
        return str(value)

    def group_id(self, payload: dict[str, Any]) -> str | None:
        value: Any = payload
        for part in self._group_path:
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return str(value) if value not in (None, "") else None

    def is_complete(self, payload: dict[str, Any]) -> bool:
        """Whether a payload describes a whole record rather than a partial edit.

        True for the cached layout and for payloads that carry the group
        field, even when its value is empty.
        """
        if payload.get(CACHE_LAYOUT_KEY) == CACHE_LAYOUT:
            return True
        value: Any = payload
        for part in self._group_path:
            if not isinstance(value, dict) or part not in value:
                return False
            value = value[part]
        return True

    def to_record(self, payload: dict[str, Any]) -> Record:
        """Build a ``Record`` from a raw payload.

        Payloads tagged with the cached layout (as produced by
        ``Record.to_cache``) are accepted unchanged.
        """
        if payload.get(CACHE_LAYOUT_KEY) == CACHE_LAYOUT:
            return Record.model_validate(payload)

        status = {
            name: _as_bool(payload.get(name))
            for name in self.config.status_fields
            if name in payload
        }
        return Record(
            id=self.record_id(payload),
            group_id=self.group_id(payload),
            data=dict(payload),
            status=status,
            created_at=_parse_datetime(payload.get(self.config.created_field)),
            modified_at=_parse_datetime(payload.get(self.config.modified_field)),
        )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "checked-in", "on"}
    return bool(value)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Epoch milliseconds
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
