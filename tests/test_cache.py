"""Tests for the persistent analysis cache."""

import json
import time

import pytest

from repo_nexus.cache import (
    CACHE_KEY_PREFIX,
    CACHE_SCHEMA_VERSION,
    CACHE_VERSION_KEY,
    PAYLOAD_REVISION,
    AnalysisCache,
    JsonFileStore,
    format_cache_age,
    satisfies,
)
from repo_nexus.errors import QuotaExceeded
from repo_nexus.records import DETAILED, SUPERFICIAL

from conftest import sample_payload

SNAPSHOT = {"id": "42", "name": "hello-world", "language": "Python", "description": ""}


class TestJsonFileStore:
    """Test the key-value store under the cache."""

    def test_set_get_remove(self, tmp_path):
        store = JsonFileStore(tmp_path / "kv")
        assert store.get_item("a") is None
        store.set_item("a", "1")
        assert store.get_item("a") == "1"
        assert store.keys() == ["a"]
        store.remove_item("a")
        assert store.get_item("a") is None
        store.remove_item("a")  # missing keys are fine

    def test_keys_on_missing_directory(self, tmp_path):
        assert JsonFileStore(tmp_path / "nope").keys() == []

    def test_quota_rejects_oversized_write(self, tmp_path):
        store = JsonFileStore(tmp_path / "kv", quota_bytes=10)
        store.set_item("small", "12345")
        with pytest.raises(QuotaExceeded):
            store.set_item("big", "x" * 50)
        assert store.get_item("big") is None

    def test_quota_counts_overwrite_once(self, tmp_path):
        store = JsonFileStore(tmp_path / "kv", quota_bytes=10)
        store.set_item("k", "12345678")
        store.set_item("k", "87654321")
        assert store.get_item("k") == "87654321"


class TestAnalysisCache:
    """Test get/put/clear/list_all and migration."""

    def test_round_trip(self, cache):
        payload = sample_payload(full_readme="# readme", detailed_description="deep")
        cache.put(42, SNAPSHOT, payload, level=DETAILED)

        record = cache.get(42)
        assert record is not None
        assert record.payload == payload
        assert record.level == DETAILED
        assert record.repo_snapshot == SNAPSHOT
        assert record.schema_version == CACHE_SCHEMA_VERSION
        assert record.payload_revision == PAYLOAD_REVISION

    def test_int_and_str_ids_share_a_key(self, cache):
        cache.put("42", SNAPSHOT, sample_payload())
        assert cache.get(42) is not None

    def test_put_stamps_cached_at(self, cache):
        before = int(time.time() * 1000)
        record = cache.put(1, SNAPSHOT, sample_payload())
        assert record.cached_at >= before

    def test_put_overwrites_regardless_of_level(self, cache):
        cache.put(1, SNAPSHOT, sample_payload(), level=DETAILED)
        cache.put(1, SNAPSHOT, sample_payload(project_pulse="newer"), level=SUPERFICIAL)
        record = cache.get(1)
        assert record.level == SUPERFICIAL
        assert record.payload.project_pulse == "newer"

    def test_missing_entry(self, cache):
        assert cache.get(404) is None

    def test_schema_mismatch_removes_entry(self, cache):
        cache.put(7, SNAPSHOT, sample_payload())
        key = f"{CACHE_KEY_PREFIX}7"
        stored = json.loads(cache.store.get_item(key))
        stored["schemaVersion"] = CACHE_SCHEMA_VERSION + 1
        cache.store.set_item(key, json.dumps(stored))

        assert cache.get(7) is None
        assert cache.store.get_item(key) is None

    def test_malformed_entry_removed(self, cache):
        key = f"{CACHE_KEY_PREFIX}9"
        cache.store.set_item(key, "{not json")
        assert cache.get(9) is None
        assert cache.store.get_item(key) is None

    def test_wrong_shape_removed(self, cache):
        key = f"{CACHE_KEY_PREFIX}9"
        cache.store.set_item(key, json.dumps({"schemaVersion": CACHE_SCHEMA_VERSION}))
        assert cache.get(9) is None
        assert cache.store.get_item(key) is None

    def test_unknown_level_removed(self, cache):
        cache.put(3, SNAPSHOT, sample_payload())
        key = f"{CACHE_KEY_PREFIX}3"
        stored = json.loads(cache.store.get_item(key))
        stored["level"] = "inventory"
        cache.store.set_item(key, json.dumps(stored))
        assert cache.get(3) is None

    def test_clear_one(self, cache):
        cache.put(1, SNAPSHOT, sample_payload())
        cache.put(2, SNAPSHOT, sample_payload())
        assert cache.clear(1) == 1
        assert cache.get(1) is None
        assert cache.get(2) is not None
        assert cache.clear(1) == 0

    def test_clear_all_keeps_version_marker(self, cache):
        cache.migrate()
        cache.put(1, SNAPSHOT, sample_payload())
        cache.put(2, SNAPSHOT, sample_payload())
        assert cache.clear() == 2
        assert cache.list_all() == []
        assert cache.store.get_item(CACHE_VERSION_KEY) == str(CACHE_SCHEMA_VERSION)

    def test_list_all_skips_invalid(self, cache):
        cache.put(1, SNAPSHOT, sample_payload())
        cache.store.set_item(f"{CACHE_KEY_PREFIX}2", "garbage")
        records = cache.list_all()
        assert len(records) == 1
        assert records[0].repo_snapshot["id"] == "42"

    def test_quota_exceeded_still_returns_record(self, tmp_path):
        cache = AnalysisCache(JsonFileStore(tmp_path / "cache", quota_bytes=20))
        record = cache.put(1, SNAPSHOT, sample_payload())
        assert record.payload.project_pulse == "Active and healthy"
        assert cache.get(1) is None

    def test_migrate_clears_older_schema(self, cache):
        cache.put(1, SNAPSHOT, sample_payload())
        cache.store.set_item(CACHE_VERSION_KEY, "0")

        assert cache.migrate() is True
        assert cache.store.get_item(f"{CACHE_KEY_PREFIX}1") is None
        assert cache.store.get_item(CACHE_VERSION_KEY) == str(CACHE_SCHEMA_VERSION)

    def test_migrate_first_run_clears(self, cache):
        cache.put(1, SNAPSHOT, sample_payload())
        assert cache.migrate() is True
        assert cache.list_all() == []

    def test_migrate_noop_when_current(self, cache):
        cache.migrate()
        cache.put(1, SNAPSHOT, sample_payload())
        assert cache.migrate() is False
        assert cache.get(1) is not None

    def test_migrate_keeps_records_from_newer_marker(self, tmp_path):
        store = JsonFileStore(tmp_path / "cache")
        store.set_item(CACHE_VERSION_KEY, str(CACHE_SCHEMA_VERSION + 1))
        cache = AnalysisCache(store)
        cache.put(1, SNAPSHOT, sample_payload())

        assert cache.migrate() is True
        assert cache.get(1) is not None


class TestHelpers:
    """Test satisfies() and format_cache_age()."""

    def test_satisfies(self, cache):
        superficial = cache.put(1, SNAPSHOT, sample_payload(), level=SUPERFICIAL)
        detailed = cache.put(2, SNAPSHOT, sample_payload(), level=DETAILED)

        assert satisfies(superficial, SUPERFICIAL)
        assert not satisfies(superficial, DETAILED)
        assert satisfies(detailed, SUPERFICIAL)
        assert satisfies(detailed, DETAILED)
        assert not satisfies(None, SUPERFICIAL)

    @pytest.mark.parametrize(
        "age_seconds,expected",
        [
            (5, "just now"),
            (60, "1 minute ago"),
            (150, "2 minutes ago"),
            (3600, "1 hour ago"),
            (3 * 86400, "3 days ago"),
        ],
    )
    def test_format_cache_age(self, age_seconds, expected):
        now = 1_700_000_000.0
        cached_at = int((now - age_seconds) * 1000)
        assert format_cache_age(cached_at, now=now) == expected
