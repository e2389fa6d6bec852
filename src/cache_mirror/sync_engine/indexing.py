# SPDX-License-Identifier: MIT
"""Pure helpers maintaining the group index.

The group index maps a group ID to the IDs of its records, in order of first
appearance. A record ID sits in bucket ``G`` exactly when the flat
collection holds that record with ``group_id == G``; empty buckets are
dropped.
"""

from typing import Any

from ..models import Record


GroupIndex = dict[str, list[str]]


def build_group_index(records: list[Record]) -> GroupIndex:
    """Build the index from scratch."""
    index: GroupIndex = {}
    for record in records:
        if record.group_id is None:
            continue
        bucket = index.setdefault(record.group_id, [])
        if record.id not in bucket:
            bucket.append(record.id)
    return index


def dedupe_records(records: list[Record]) -> list[Record]:
    """Collapse repeated IDs, keeping the position of the first copy and the
    content of the last."""
    by_id: dict[str, Record] = {}
    for record in records:
        by_id[record.id] = record
    return list(by_id.values())


def _discard(index: GroupIndex, group_id: str, record_id: str) -> None:
    bucket = index[group_id]
    bucket.remove(record_id)
    if not bucket:
        del index[group_id]


def remove_from_index(
    index: GroupIndex, record_id: str, group_hint: str | None = None
) -> list[str]:
    """Remove ``record_id`` from the index in place.

    The hinted bucket is checked first; when the record is not there, or no
    hint is given, every bucket is scanned.

    Returns:
        Group IDs the record was removed from
    """
    if group_hint is not None and record_id in index.get(group_hint, []):
        _discard(index, group_hint, record_id)
        return [group_hint]

    touched: list[str] = []
    for group_id in list(index):
        if record_id in index[group_id]:
            _discard(index, group_id, record_id)
            touched.append(group_id)
    return touched


def upsert_into_index(
    index: GroupIndex, record: Record, previous_group: str | None = None
) -> None:
    """Place ``record`` in its bucket, moving it out of any other bucket."""
    if previous_group != record.group_id:
        for group_id in list(index):
            if group_id == record.group_id:
                continue
            if record.id in index[group_id]:
                _discard(index, group_id, record.id)

    if record.group_id is None:
        return
    bucket = index.setdefault(record.group_id, [])
    if record.id not in bucket:
        bucket.append(record.id)


def find_index_violations(records: list[dict[str, Any]], index: GroupIndex) -> list[str]:
    """Describe every way ``index`` disagrees with the flat collection.

    Returns:
        Human-readable violations; empty when the invariant holds
    """
    violations: list[str] = []
    group_of = {record["id"]: record.get("group_id") for record in records}

    for group_id, bucket in index.items():
        if not bucket:
            violations.append(f"Empty bucket for group {group_id}")
        if len(bucket) != len(set(bucket)):
            violations.append(f"Duplicate IDs in bucket {group_id}")
        for record_id in bucket:
            if record_id not in group_of:
                violations.append(f"{record_id} indexed under {group_id} but not cached")
            elif group_of[record_id] != group_id:
                violations.append(
                    f"{record_id} indexed under {group_id} but belongs to {group_of[record_id]}"
                )

    for record_id, group_id in group_of.items():
        if group_id is not None and record_id not in index.get(group_id, []):
            violations.append(f"{record_id} missing from bucket {group_id}")

    return violations
