# ==============================================================================
# Tests for the Fast Session Tiers
# ==============================================================================
"""
Unit tests for ValkeyCache conditional writes and ValkeySessionStateStore.

Tests cover:
- Key format and TTLs of cached entries
- Version fencing: stale fills never overwrite newer records or markers
- Invalidation markers hide records and are replaced by newer fills
- Contention that outlasts every WATCH retry is raised, never swallowed

All tests use fakeredis via fixtures from conftest.py.
"""

import json

import pytest
from redis.exceptions import WatchError

from attribution.base.cache import RANK_FIELD
from attribution.infrastructure.session_state import record_rank, tombstone_rank

TOKEN = "T" * 43


def _record(version: int, **fields) -> dict:
    return {"token": TOKEN, "page_id": "home", "version": version, **fields}


# ==============================================================================
# ValkeyCache.set_if_newer
# ==============================================================================


class TestSetIfNewer:
    """Tests for ValkeyCache.set_if_newer()."""

    def test_writes_when_empty(self, fake_cache, shared_redis):
        assert fake_cache.set_if_newer("k", {RANK_FIELD: 2, "v": "a"}, 60)
        assert json.loads(shared_redis.get("k"))["v"] == "a"
        assert 0 < shared_redis.ttl("k") <= 60

    def test_higher_rank_replaces(self, fake_cache):
        fake_cache.set_if_newer("k", {RANK_FIELD: 2, "v": "a"})
        assert fake_cache.set_if_newer("k", {RANK_FIELD: 3, "v": "b"})
        assert fake_cache.get("k")["v"] == "b"

    def test_equal_or_lower_rank_is_rejected(self, fake_cache):
        fake_cache.set_if_newer("k", {RANK_FIELD: 4, "v": "a"})

        assert not fake_cache.set_if_newer("k", {RANK_FIELD: 4, "v": "b"})
        assert not fake_cache.set_if_newer("k", {RANK_FIELD: 1, "v": "c"})
        assert fake_cache.get("k")["v"] == "a"

    def test_persistent_contention_raises(self, fake_cache, lose_watch_races):
        """Losing every WATCH round is an error, not a "newer value exists" answer."""
        fake_cache.set_if_newer("k", {RANK_FIELD: 2, "v": "a"})

        with lose_watch_races():
            with pytest.raises(WatchError):
                fake_cache.set_if_newer("k", {RANK_FIELD: 3, "v": "b"})

        assert fake_cache.get("k")["v"] == "a"


# ==============================================================================
# ValkeySessionStateStore
# ==============================================================================


class TestRanks:
    """Tests for the rank scale of records and invalidation markers."""

    def test_marker_sits_between_versions(self):
        assert record_rank(1) < tombstone_rank(2) < record_rank(2) < tombstone_rank(3)


class TestSessionStateStore:
    """Tests for ValkeySessionStateStore get/fill/invalidate."""

    def test_fill_then_get(self, shared, shared_redis):
        assert shared.fill_session(TOKEN, _record(1))

        assert shared.get_session(TOKEN) == _record(1)
        assert shared_redis.exists(f"attribution:shared:session:{TOKEN}")

    def test_edge_ttl_applied(self, edge, edge_redis):
        edge.fill_session(TOKEN, _record(1))
        ttl = edge_redis.ttl(f"attribution:edge:session:{TOKEN}")
        assert 0 < ttl <= 300

    def test_miss_returns_none(self, shared):
        assert shared.get_session(TOKEN) is None

    def test_stale_fill_does_not_overwrite_newer(self, shared):
        """A late fill of version 1 cannot replace a cached version 2."""
        shared.fill_session(TOKEN, _record(2, state="CONVERTED"))

        assert not shared.fill_session(TOKEN, _record(1, state="ACTIVE"))
        assert shared.get_session(TOKEN)["state"] == "CONVERTED"

    def test_invalidation_hides_older_record(self, shared):
        shared.fill_session(TOKEN, _record(1))
        shared.invalidate_session(TOKEN, 2)

        assert shared.get_session(TOKEN) is None

    def test_stale_fill_after_invalidation_is_rejected(self, shared):
        """A reader that fetched version 1 before the write cannot repopulate it."""
        shared.invalidate_session(TOKEN, 2)

        assert not shared.fill_session(TOKEN, _record(1))
        assert shared.get_session(TOKEN) is None

    def test_fill_of_committed_version_replaces_marker(self, shared):
        shared.invalidate_session(TOKEN, 2)

        assert shared.fill_session(TOKEN, _record(2))
        assert shared.get_session(TOKEN)["version"] == 2

    def test_old_invalidation_does_not_hide_newer_record(self, shared):
        shared.fill_session(TOKEN, _record(3))
        shared.invalidate_session(TOKEN, 2)

        assert shared.get_session(TOKEN)["version"] == 3

    def test_contended_invalidation_raises(self, shared, lose_watch_races):
        """A marker that could not be placed surfaces as a RedisError."""
        shared.fill_session(TOKEN, _record(1))

        with lose_watch_races():
            with pytest.raises(WatchError):
                shared.invalidate_session(TOKEN, 2)

        assert shared.get_session(TOKEN)["version"] == 1

    def test_clear_all_only_touches_own_tier(self, shared, fake_cache, shared_redis):
        shared.fill_session(TOKEN, _record(1))
        shared_redis.set("unrelated", json.dumps({"x": 1}))

        assert shared.clear_all() == 1
        assert fake_cache.get("unrelated") == {"x": 1}

    def test_ping(self, edge):
        assert edge.ping()
