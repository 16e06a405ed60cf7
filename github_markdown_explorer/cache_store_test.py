"""Unit tests for the two-tier cache store."""

import json

import pytest

from .cache_store import FAST_TIER_MAX_BYTES, HISTORY_LIMIT, CacheStore
from .models import ReadingHistoryEntry


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return CacheStore(tmp_path / "cache", default_ttl_seconds=60, clock=clock)


def _entry(path, owner="octo", repo="docs"):
    return ReadingHistoryEntry(owner=owner, repo=repo, path=path, ref="main", title=path)


def describe_get_and_set():

    def it_returns_none_for_missing_keys(store):
        assert store.get("api:GET:/missing:") is None

    def it_round_trips_values(store):
        store.set("k", {"name": "docs", "items": [1, 2]})
        assert store.get("k") == {"name": "docs", "items": [1, 2]}

    def it_serves_falsy_values(store):
        store.set("k", [])
        assert store.get("k") == []

    def it_expires_after_the_ttl(store, clock):
        store.set("k", "v", ttl_seconds=10)
        clock.advance(10)
        assert store.get("k") == "v"
        clock.advance(1)
        assert store.get("k") is None

    def it_evicts_expired_entries_on_access(store, clock):
        store.set("k", "v", ttl_seconds=1)
        clock.advance(5)
        store.get("k")
        assert store.stats()["total"] == 0

    def it_uses_the_default_ttl(store, clock):
        store.set("k", "v")
        clock.advance(61)
        assert store.get("k") is None


def describe_tiers():

    def it_keeps_small_records_in_the_fast_tier(store):
        store.set("small", "x" * 100)
        assert store.stats() == {"fast": 1, "bulk": 0, "total": 1}

    def it_moves_large_records_to_the_bulk_tier(store):
        store.set("large", "x" * FAST_TIER_MAX_BYTES)
        assert store.stats() == {"fast": 0, "bulk": 1, "total": 1}
        assert store.get("large") == "x" * FAST_TIER_MAX_BYTES

    def it_removes_the_stale_copy_when_a_record_changes_tier(store):
        store.set("k", "x" * FAST_TIER_MAX_BYTES)
        store.set("k", "small")
        assert store.stats() == {"fast": 1, "bulk": 0, "total": 1}
        assert store.get("k") == "small"

    def it_selects_by_threshold(store):
        assert store.select_tier(FAST_TIER_MAX_BYTES - 1).name == "fast"
        assert store.select_tier(FAST_TIER_MAX_BYTES).name == "bulk"


def describe_invalidate():

    def it_removes_matching_entries_from_both_tiers(store):
        store.set("api:GET:/repos/a/b:", "small")
        store.set("api:GET:/repos/a/b/readme:", "x" * FAST_TIER_MAX_BYTES)
        store.set("api:GET:/repos/c/d:", "other")
        assert store.invalidate("repos/a/b") == 2
        assert store.get("api:GET:/repos/a/b:") is None
        assert store.get("api:GET:/repos/a/b/readme:") is None
        assert store.get("api:GET:/repos/c/d:") == "other"
        assert store.stats()["total"] == 1

    def it_returns_zero_when_nothing_matches(store):
        store.set("k", "v")
        assert store.invalidate("nothing") == 0


def describe_conditional_headers():

    def it_returns_nothing_without_validators(store):
        store.set("k", "v")
        assert store.get_conditional_headers("k") == {}

    def it_returns_stored_validators(store):
        store.set("k", "v")
        store.update_conditional_metadata("k", etag='"abc"', last_modified="Wed, 21 Oct 2015 07:28:00 GMT")
        assert store.get_conditional_headers("k") == {
            "If-None-Match": '"abc"',
            "If-Modified-Since": "Wed, 21 Oct 2015 07:28:00 GMT",
        }

    def it_omits_absent_values(store):
        store.set("k", "v")
        store.update_conditional_metadata("k", etag='"abc"')
        assert store.get_conditional_headers("k") == {"If-None-Match": '"abc"'}

    def it_stores_validators_with_the_record(store):
        store.set("k", "v", etag='"abc"', last_modified="Wed, 21 Oct 2015 07:28:00 GMT")
        record = json.loads(store.fast.read("k"))
        assert (record["etag"], record["last_modified"]) == ('"abc"', "Wed, 21 Oct 2015 07:28:00 GMT")
        assert store.get_conditional_headers("k")["If-None-Match"] == '"abc"'

    def it_drops_validators_when_rewritten_without_them(store):
        store.set("k", "v", etag='"abc"')
        store.set("k", "w")
        assert store.get_conditional_headers("k") == {}

    def it_ignores_updates_for_unknown_keys(store):
        store.update_conditional_metadata("missing", etag='"abc"')
        assert store.get_conditional_headers("missing") == {}


def describe_reading_history():

    def it_returns_most_recent_first(store):
        store.add_to_history(_entry("a.md"))
        store.add_to_history(_entry("b.md"))
        assert [e.path for e in store.get_reading_history()] == ["b.md", "a.md"]

    def it_moves_a_revisited_document_to_the_front(store):
        store.add_to_history(_entry("a.md"))
        store.add_to_history(_entry("b.md"))
        store.add_to_history(_entry("a.md"))
        history = store.get_reading_history()
        assert [e.path for e in history] == ["a.md", "b.md"]

    def it_treats_other_repos_as_distinct(store):
        store.add_to_history(_entry("README.md", repo="one"))
        store.add_to_history(_entry("README.md", repo="two"))
        assert len(store.get_reading_history()) == 2

    def it_never_exceeds_the_limit(store):
        for i in range(HISTORY_LIMIT + 10):
            store.add_to_history(_entry(f"{i}.md"))
        history = store.get_reading_history()
        assert len(history) == HISTORY_LIMIT
        assert history[0].path == f"{HISTORY_LIMIT + 9}.md"


def describe_degraded_storage():

    def it_treats_a_corrupt_bulk_file_as_a_miss(store):
        store.set("k", "x" * FAST_TIER_MAX_BYTES)
        for path in store.bulk.cache_dir.glob("*.json"):
            path.write_text("{not json")
        assert store.get("k") is None

    def it_leaves_unreadable_bulk_files_alone_on_invalidate(store):
        store.set("api:GET:/repos/a/b:", "x" * FAST_TIER_MAX_BYTES)
        for path in store.bulk.cache_dir.glob("*.json"):
            path.write_text("{not json")
        store.invalidate("repos/a/b")
        assert store.bulk.count() == 1

    def it_degrades_to_misses_when_the_directory_is_unusable(tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = CacheStore(blocker / "cache")
        assert store.available is False
        store.set("k", "v")
        assert store.get("k") is None
        assert store.invalidate("k") == 0
        assert store.get_reading_history() == []
        assert store.stats() == {"fast": 0, "bulk": 0, "total": 0}

    def it_skips_values_that_cannot_be_serialized(store):
        store.set("k", object())
        assert store.get("k") is None
