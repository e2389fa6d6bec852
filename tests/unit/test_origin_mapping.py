# SPDX-License-Identifier: MIT
"""Tests for record mapping and the rate-limit predicate."""

from datetime import datetime, timezone

import pytest

from cache_mirror.config import RecordMappingConfig
from cache_mirror.models import Record
from cache_mirror.origin import RateLimitPredicate, RecordMapper


class TestRecordMapper:
    """Test cases for RecordMapper."""

    def test_default_mapping(self):
        record = RecordMapper().to_record(
            {
                "ID": 12,
                "group_id": "A",
                "created_at": "2024-03-01T10:00:00Z",
                "title": "Talk",
            }
        )

        assert record.id == "12"
        assert record.group_id == "A"
        assert record.created_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert record.modified_at is None
        assert record.data["title"] == "Talk"

    def test_nested_group_field(self):
        mapper = RecordMapper(RecordMappingConfig(group_field="Event_Info.ID"))

        assert mapper.group_id({"Event_Info": {"ID": 7}}) == "7"
        assert mapper.group_id({"Event_Info": None}) is None
        assert mapper.group_id({}) is None

    def test_lowercase_id_fallback(self):
        assert RecordMapper().record_id({"id": "x"}) == "x"

    @pytest.mark.parametrize("payload", [{}, {"ID": ""}, {"ID": None}])
    def test_missing_id_rejected(self, payload):
        with pytest.raises(ValueError, match="no 'ID' field"):
            RecordMapper().record_id(payload)

    def test_status_fields_become_flags(self):
        mapper = RecordMapper(
            RecordMappingConfig(status_fields=["Approved", "Checked_In", "Paid"])
        )

        record = mapper.to_record(
            {"ID": "1", "Approved": "Yes", "Checked_In": "checked-in", "Paid": 0}
        )

        assert record.status == {"Approved": True, "Checked_In": True, "Paid": False}

    def test_epoch_milliseconds_and_naive_timestamps(self):
        record = RecordMapper().to_record(
            {
                "ID": "1",
                "created_at": 1704067200000,
                "modified_at": "2024-01-02T00:00:00",
            }
        )

        assert record.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert record.modified_at == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_unparseable_timestamp_ignored(self):
        record = RecordMapper().to_record({"ID": "1", "created_at": "yesterday"})
        assert record.created_at is None

    def test_cached_layout_accepted(self):
        cached = Record(id="5", group_id="B", data={"ID": "5"}).to_cache()

        record = RecordMapper().to_record(cached)

        assert record.id == "5"
        assert record.group_id == "B"
        assert record.data == {"ID": "5"}

    def test_origin_payload_with_id_and_data_fields_is_mapped(self):
        payload = {
            "ID": "7",
            "id": "legacy-7",
            "group_id": "A",
            "data": {"notes": "free text"},
        }

        record = RecordMapper().to_record(payload)

        assert record.id == "7"
        assert record.group_id == "A"
        assert record.data == payload


class TestRateLimitPredicate:
    """Test cases for RateLimitPredicate."""

    def test_status_code_match(self):
        assert RateLimitPredicate()(429, None)

    def test_message_marker_match(self):
        predicate = RateLimitPredicate()
        assert predicate(400, "Error: Rate Limit reached for this API key")
        assert predicate(None, "Too Many Requests")

    def test_no_match(self):
        predicate = RateLimitPredicate()
        assert not predicate(500, "Internal error")
        assert not predicate(None, None)

    def test_custom_configuration(self):
        predicate = RateLimitPredicate(status_codes=[503], markers=["quota"])

        assert predicate(503, "")
        assert predicate(400, "Daily QUOTA used up")
        assert not predicate(429, "slow down")
