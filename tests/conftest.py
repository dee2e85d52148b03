"""Shared fakes: a deterministic tokenizer, an in-memory usage store and a manual clock."""

import re
from typing import Any, Dict, List

import pytest

from models.usage import ApiKeyUsageEntry, UsageStats

_WORD_OR_PUNCT = re.compile(r"\w+|[^\w\s]")


class WordEncoder:
    """One token per word or punctuation mark."""

    def encode(self, text: str) -> List[str]:
        return _WORD_OR_PUNCT.findall(text)


class FakeProvider:
    def __init__(self):
        self.load_calls = 0
        self.encodings_requested: List[str] = []

    def load(self) -> None:
        self.load_calls += 1

    def get_encoding(self, encoding_name: str) -> WordEncoder:
        self.encodings_requested.append(encoding_name)
        return WordEncoder()


class BrokenProvider:
    def __init__(self):
        self.load_calls = 0

    def load(self) -> None:
        self.load_calls += 1
        raise OSError("could not download BPE ranks")

    def get_encoding(self, encoding_name: str):
        raise AssertionError("get_encoding must not be called after a failed load")


class FakeStore:
    """Records inserted rows; fails the next `fail_times` inserts."""

    def __init__(self, fail_times: int = 0, always_fail: bool = False):
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.insert_calls = 0
        self.rows: List[Dict[str, Any]] = []
        self.stats_calls: List[tuple] = []

    async def insert_many(self, rows):
        self.insert_calls += 1
        if self.always_fail or self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("supabase unreachable")
        self.rows.extend(rows)
        return len(rows)

    async def get_usage_stats(self, key_id: str, days: int = 30) -> UsageStats:
        self.stats_calls.append((key_id, days))
        return UsageStats(total_requests=3, successful_requests=2, failed_requests=1)


class ManualClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_entry():
    counter = {"n": 0}

    def _make(**overrides) -> ApiKeyUsageEntry:
        counter["n"] += 1
        fields = {
            "key_id": "key_123",
            "tenant_id": "tenant_abc",
            "endpoint": f"/v1/appointments/{counter['n']}",
            "method": "GET",
            "status_code": 200,
            "response_time_ms": 42,
        }
        fields.update(overrides)
        return ApiKeyUsageEntry(**fields)

    return _make
