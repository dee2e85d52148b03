"""Tests for usage entry validation and row mapping."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from models.tokens import encoding_for_model
from models.usage import ApiKeyUsageEntry, MAX_TEXT_LENGTH, UsageStats


def test_entry_is_immutable(make_entry):
    entry = make_entry()
    with pytest.raises(ValidationError):
        entry.status_code = 500


def test_method_is_normalized(make_entry):
    assert make_entry(method=" patch ").method == "PATCH"


def test_unsupported_method_is_rejected(make_entry):
    with pytest.raises(ValidationError):
        make_entry(method="TRACE")


def test_long_free_text_is_clipped(make_entry):
    entry = make_entry(user_agent="u" * 2000, error_message="e" * 501)
    assert len(entry.user_agent) == MAX_TEXT_LENGTH
    assert len(entry.error_message) == MAX_TEXT_LENGTH


def test_created_at_defaults_to_now_utc(make_entry):
    before = datetime.now(timezone.utc)
    entry = make_entry()
    assert entry.created_at.tzinfo is not None
    assert entry.created_at >= before


def test_to_row_maps_columns(make_entry):
    created = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    row = make_entry(ip_address="203.0.113.7", error_message="rate limited", created_at=created).to_row()
    assert row["api_key_id"] == "key_123"
    assert row["ip_address"] == "203.0.113.7"
    assert row["error_message"] == "rate limited"
    assert row["created_at"] == "2025-03-01T12:00:00+00:00"
    assert "user_agent" not in row


def test_usage_stats_parses_rpc_payload():
    stats = UsageStats.model_validate({
        "total_requests": 10,
        "successful_requests": 8,
        "failed_requests": 2,
        "avg_response_time_ms": 120,
        "requests_by_endpoint": [{"endpoint": "/v1/calls", "count": 7}],
        "requests_by_status": [{"status_group": "2xx", "count": 8}],
        "recent_errors": [{"endpoint": "/v1/calls", "status_code": 429}],
    })
    assert stats.requests_by_endpoint[0].count == 7
    assert stats.error_rate == pytest.approx(0.2)
    assert UsageStats().error_rate == 0.0


@pytest.mark.parametrize("model, encoding", [
    ("gpt-4", "cl100k_base"),
    ("gpt-4o", "o200k_base"),
    ("claude-3-haiku", "cl100k_base"),
    ("something-else", "cl100k_base"),
])
def test_encoding_for_model(model, encoding):
    assert encoding_for_model(model) == encoding
