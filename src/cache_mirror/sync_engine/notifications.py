# SPDX-License-Identifier: MIT
"""Change notification receiver: turns inbound events into cache patches."""

from typing import Any

from ..enums import ChangeType, UpdateStatus
from ..exceptions import NotFoundError
from ..logging_config import get_detail_logger, get_status_logger
from ..models import BatchSummary, ChangeNotification, PatchResult, Record
from .engine import CacheSyncEngine


detail_logger = get_detail_logger()
status_logger = get_status_logger()

RawNotification = ChangeNotification | dict[str, Any]

BROADCAST_EVENTS = {
    ChangeType.CREATE: "record_created",
    ChangeType.EDIT: "record_updated",
    ChangeType.DELETE: "record_deleted",
    ChangeType.BULK: "bulk_change",
}


class ChangeNotificationReceiver:
    """Applies create/edit/delete/bulk notifications to the cache.

    Patches are idempotent: replaying a create or edit leaves exactly one
    copy of the record, replaying a delete is a no-op.
    """

    def __init__(self, engine: CacheSyncEngine) -> None:
        self.engine = engine

    @staticmethod
    def _normalize(notification: RawNotification) -> ChangeNotification:
        if isinstance(notification, ChangeNotification):
            return notification
        return ChangeNotification.from_raw(notification)

    async def handle(self, notification: RawNotification) -> PatchResult:
        """Apply a single notification.

        Raises:
            ValueError: If the notification cannot be normalized
            OriginError: If fetching the record body fails for a reason other
                than the record having vanished
        """
        change = self._normalize(notification)
        detail_logger.debug(
            f"Handling {change.change_type.value} notification for {change.record_id}"
        )

        if change.change_type is ChangeType.BULK:
            return await self._apply_bulk(change.group_id)
        if change.change_type is ChangeType.DELETE:
            return await self._apply_delete(change)
        return await self._apply_upsert(change)

    async def _resolve_record(self, change: ChangeNotification) -> Record:
        """Build the record a create or edit notification describes.

        A payload carrying the group field (or the cached layout) is applied
        as is. A partial payload is merged over the cached record, keeping its
        group and creation time; when nothing is cached the group hint of the
        notification is used, and failing that the record is fetched.
        """
        if change.record_id is None:
            raise ValueError(f"{change.change_type.value} notification has no record ID")
        mapper = self.engine.mapper
        payload = change.payload

        if not payload:
            record = await self.engine.fetch_record(change.record_id)
        elif mapper.is_complete(payload):
            record = mapper.to_record(self._with_id(payload, change.record_id))
        else:
            cached = await self.engine.get_record(change.record_id)
            if cached is not None:
                detail_logger.debug(f"Merging partial payload into cached {change.record_id}")
                merged = mapper.to_record(
                    self._with_id({**cached.data, **payload}, change.record_id)
                )
                record = merged.model_copy(
                    update={
                        "group_id": merged.group_id or cached.group_id,
                        "created_at": merged.created_at or cached.created_at,
                    }
                )
            elif change.group_id is not None:
                record = mapper.to_record(self._with_id(payload, change.record_id))
            else:
                detail_logger.debug(
                    f"Partial payload for uncached {change.record_id}, fetching record"
                )
                record = await self.engine.fetch_record(change.record_id)

        if record.group_id is None and change.group_id is not None:
            record = record.model_copy(update={"group_id": change.group_id})
        return record

    def _with_id(self, payload: dict[str, Any], record_id: str) -> dict[str, Any]:
        body = dict(payload)
        id_field = self.engine.mapper.config.id_field
        if body.get(id_field) is None and body.get("id") is None:
            body[id_field] = record_id
        return body

    async def _apply_upsert(self, change: ChangeNotification) -> PatchResult:
        try:
            record = await self._resolve_record(change)
        except NotFoundError:
            if change.change_type is ChangeType.EDIT:
                detail_logger.info(
                    f"Record {change.record_id} vanished before edit fetch, treating as delete"
                )
                return await self._apply_delete(change, action="implicit_delete")
            detail_logger.info(f"Created record {change.record_id} no longer exists, skipping")
            return PatchResult(
                status=UpdateStatus.SKIPPED,
                action="record_not_found",
                record_id=change.record_id,
                group_id=change.group_id,
            )

        action = await self.engine.upsert_record(record)
        await self.engine.announce(
            BROADCAST_EVENTS[change.change_type],
            {"record_id": record.id, "group_id": record.group_id},
        )
        return PatchResult(
            status=UpdateStatus.SUCCESS,
            action=action,
            record_id=record.id,
            group_id=record.group_id,
        )

    async def _apply_delete(
        self, change: ChangeNotification, action: str = "deleted"
    ) -> PatchResult:
        if change.record_id is None:
            raise ValueError("Delete notification has no record ID")
        removed = await self.engine.remove_records([change.record_id], change.group_id)
        if change.record_id not in removed:
            detail_logger.debug(f"Record {change.record_id} was not cached, nothing to delete")
            return PatchResult(
                status=UpdateStatus.SKIPPED,
                action="not_cached",
                record_id=change.record_id,
                group_id=change.group_id,
            )

        group_id = removed[change.record_id] or change.group_id
        await self.engine.announce(
            "record_deleted", {"record_id": change.record_id, "group_id": group_id}
        )
        return PatchResult(
            status=UpdateStatus.SUCCESS,
            action=action,
            record_id=change.record_id,
            group_id=group_id,
        )

    async def _apply_bulk(self, group_id: str | None) -> PatchResult:
        status_logger.info("Bulk change received, repopulating cache")
        population = await self.engine.populate()
        if population.status is UpdateStatus.SUCCESS:
            await self.engine.announce(
                "bulk_change",
                {"group_id": group_id, "total_records": population.total_records},
            )
        return PatchResult(
            status=population.status, action="bulk_resync", group_id=group_id
        )

    async def process_batch(self, notifications: list[RawNotification]) -> BatchSummary:
        """Apply a batch of notifications, isolating failures per notification.

        Any number of bulk notifications in the batch results in a single
        population after the per-record patches.
        """
        summary = BatchSummary()
        bulk_groups: list[str | None] = []

        for raw in notifications:
            summary.processed += 1
            try:
                change = self._normalize(raw)
            except ValueError as e:
                summary.failed += 1
                summary.errors.append({"record_id": _raw_id(raw), "error": str(e)})
                continue

            if change.change_type is ChangeType.BULK:
                bulk_groups.append(change.group_id)
                continue

            try:
                result = await self.handle(change)
            except Exception as e:
                detail_logger.exception(
                    f"Failed to apply {change.change_type.value} for {change.record_id}: {e}"
                )
                summary.failed += 1
                summary.errors.append(
                    {"record_id": change.record_id or "", "error": str(e)}
                )
                continue

            self._count(summary, result)

        if bulk_groups:
            summary.bulk_resync = True
            group_id = bulk_groups[0] if len(set(bulk_groups)) == 1 else None
            try:
                result = await self._apply_bulk(group_id)
                if result.status is UpdateStatus.SKIPPED:
                    summary.skipped += 1
            except Exception as e:
                detail_logger.exception(f"Bulk resync failed: {e}")
                summary.failed += 1
                summary.errors.append({"record_id": "", "error": f"bulk resync failed: {e}"})

        status_logger.info(
            f"Processed {summary.processed} notifications: {summary.created} created, "
            f"{summary.updated} updated, {summary.deleted} deleted, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        return summary

    @staticmethod
    def _count(summary: BatchSummary, result: PatchResult) -> None:
        if result.status is UpdateStatus.SKIPPED:
            summary.skipped += 1
        elif result.action == "created":
            summary.created += 1
        elif result.action == "updated":
            summary.updated += 1
        elif result.action in ("deleted", "implicit_delete"):
            summary.deleted += 1


def _raw_id(raw: RawNotification) -> str:
    if isinstance(raw, dict):
        value = raw.get("recordId", raw.get("record_id"))
        return str(value) if value is not None else ""
    return raw.record_id or ""
