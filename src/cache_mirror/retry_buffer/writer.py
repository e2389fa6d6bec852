# SPDX-License-Identifier: MIT
"""Write path: origin CRUD with cache patching and rate-limit buffering."""

from typing import Any

from ..enums import WriteOperation, WriteStatus
from ..exceptions import OriginError, RateLimitError
from ..logging_config import get_detail_logger, get_status_logger
from ..models import WriteResult
from ..sync_engine.engine import CacheSyncEngine
from .buffer import RetryBuffer


detail_logger = get_detail_logger()
status_logger = get_status_logger()

QUEUED_MESSAGE = "Accepted, queued for retry"


def build_payload(
    operation: WriteOperation,
    data: dict[str, Any] | None = None,
    record_id: str | None = None,
) -> dict[str, Any]:
    """Describe a write so it can be buffered and replayed."""
    payload: dict[str, Any] = {"operation": operation.value, "data": data or {}}
    if record_id is not None:
        payload["record_id"] = record_id
    return payload


class RecordWriter:
    """Performs writes against the origin and keeps the cache in step.

    A write rejected by the origin's rate limit is buffered and reported as
    ``queued`` together with the buffer ID; it is never reported as plain
    success or plain failure.
    """

    def __init__(self, engine: CacheSyncEngine, buffer: RetryBuffer) -> None:
        self.engine = engine
        self.buffer = buffer

    async def create_record(
        self, data: dict[str, Any], group_id: str | None = None
    ) -> WriteResult:
        return await self._write(build_payload(WriteOperation.CREATE, data), group_id)

    async def update_record(
        self, record_id: str, data: dict[str, Any], group_id: str | None = None
    ) -> WriteResult:
        return await self._write(
            build_payload(WriteOperation.UPDATE, data, record_id), group_id
        )

    async def delete_record(
        self, record_id: str, group_id: str | None = None
    ) -> WriteResult:
        return await self._write(
            build_payload(WriteOperation.DELETE, record_id=record_id), group_id
        )

    async def _write(self, payload: dict[str, Any], group_id: str | None) -> WriteResult:
        record_id = payload.get("record_id")
        try:
            outcome = await self.submit_buffered(payload)
        except RateLimitError as e:
            reference_id = self.buffer.enqueue(payload, reason="rate_limit", group_id=group_id)
            self.buffer.extend_limit_reset_time(e.retry_after)
            return WriteResult(
                status=WriteStatus.QUEUED,
                record_id=record_id,
                reference_id=reference_id,
                message=QUEUED_MESSAGE,
            )
        except OriginError as e:
            status_logger.error(f"Origin rejected {payload['operation']}: {e}")
            return WriteResult(
                status=WriteStatus.FAILED,
                record_id=record_id,
                message=f"{payload['operation']} failed",
                error=str(e),
            )

        return WriteResult(
            status=WriteStatus.COMPLETED,
            record_id=outcome.get("record_id"),
            message=f"{payload['operation']} completed",
        )

    async def submit_buffered(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Perform the write described by ``payload`` and patch the cache.

        This is the submit function of ``RetryBuffer.drain``.

        Raises:
            OriginError: Whatever the origin raised, including RateLimitError
            ValueError: If the payload names an unknown operation
        """
        operation = WriteOperation(payload.get("operation"))
        data = payload.get("data") or {}
        record_id = payload.get("record_id")
        origin = self.engine.origin

        if operation is WriteOperation.CREATE:
            raw = await self.engine.call_origin(origin.create_record(data), "create_record")
            record_id = await self._patch_upsert(raw, "record_created")
        elif operation is WriteOperation.UPDATE:
            if not record_id:
                raise ValueError("Update payload has no record_id")
            raw = await self.engine.call_origin(
                origin.update_record(record_id, data), f"update_record({record_id})"
            )
            await self._patch_upsert(raw, "record_updated", record_id)
        else:
            if not record_id:
                raise ValueError("Delete payload has no record_id")
            await self.engine.call_origin(
                origin.delete_record(record_id), f"delete_record({record_id})"
            )
            await self._patch_delete(record_id)

        detail_logger.info(f"Origin {operation.value} of {record_id} succeeded")
        return {"operation": operation.value, "record_id": record_id}

    async def _patch_upsert(
        self, raw: dict[str, Any], event_name: str, record_id: str | None = None
    ) -> str | None:
        """Apply the origin's answer to the cache.

        The origin already accepted the write, so a cache patch failure is
        logged and left to the next resync.
        """
        try:
            body = dict(raw)
            id_field = self.engine.mapper.config.id_field
            if record_id and body.get(id_field) is None and body.get("id") is None:
                body[id_field] = record_id
            record = self.engine.mapper.to_record(body)
            await self.engine.upsert_record(record)
        except Exception as e:
            detail_logger.exception(f"Cache patch after {event_name} failed: {e}")
            return record_id

        await self.engine.announce(
            event_name, {"record_id": record.id, "group_id": record.group_id}
        )
        return record.id

    async def _patch_delete(self, record_id: str) -> None:
        try:
            removed = await self.engine.remove_records([record_id])
        except Exception as e:
            detail_logger.exception(f"Cache patch after delete of {record_id} failed: {e}")
            return

        if record_id in removed:
            await self.engine.announce(
                "record_deleted", {"record_id": record_id, "group_id": removed[record_id]}
            )
