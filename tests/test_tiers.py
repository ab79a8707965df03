# ==============================================================================
# Tests for the Cache Tier Coordinator
# ==============================================================================
"""
Unit tests for CacheTierCoordinator.

Tests cover:
- Read path: fastest tier first, back-filling tiers that missed
- Write path: durable first, then invalidation of every fast tier
- Degradation: fast tier failures are skipped, failed invalidations are
  recorded durably and the tier is bypassed until they are replayed
- Several coordinators over the same tiers, as in a multi-worker deployment:
  once a write returns, no worker reads an older version
- Durable failures surface as StoreUnavailable, never as "not found"
"""

from unittest.mock import patch

import psycopg2
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from attribution.core.errors import StoreUnavailable
from attribution.core.models import Session
from attribution.core.tokens import TokenIssuer
from attribution.infrastructure.tiers import CacheTierCoordinator


@pytest.fixture()
def session(coordinator, clock):
    session = Session(
        token=TokenIssuer().issue(),
        page_id="home",
        created_at=clock(),
        last_activity_at=clock(),
    )
    assert coordinator.create(session)
    return session


def _touch(coordinator, session):
    """Commit a new version of the session through the coordinator."""
    return coordinator.compare_and_set(
        session.token,
        {"version": session.version},
        {"visitor_fingerprint": f"v{session.version + 1}"},
    )


# ==============================================================================
# Read path
# ==============================================================================


class TestRead:
    """Tests for CacheTierCoordinator.read()."""

    def test_unknown_token_is_none(self, coordinator):
        assert coordinator.read("X" * 43) is None

    def test_durable_hit_fills_both_tiers(self, coordinator, session, edge, shared):
        assert edge.get_session(session.token) is None

        assert coordinator.read(session.token) == session

        assert edge.get_session(session.token)["version"] == 1
        assert shared.get_session(session.token)["version"] == 1

    def test_edge_hit_skips_durable(self, coordinator, session, repository):
        coordinator.read(session.token)

        with patch.object(repository, "get", side_effect=AssertionError("durable read")):
            assert coordinator.read(session.token) == session

    def test_shared_hit_fills_edge(self, coordinator, session, edge, edge_redis, repository):
        coordinator.read(session.token)
        edge_redis.flushall()

        with patch.object(repository, "get", side_effect=AssertionError("durable read")):
            assert coordinator.read(session.token) == session
        assert edge.get_session(session.token) is not None

    def test_edge_failure_falls_through(self, coordinator, session, edge):
        """An edge timeout is a degradation, not an error."""
        with patch.object(edge, "get_session", side_effect=RedisTimeoutError("slow")):
            assert coordinator.read(session.token) == session

    def test_all_fast_tiers_down(self, coordinator, session, edge, shared):
        with (
            patch.object(edge, "get_session", side_effect=RedisConnectionError("down")),
            patch.object(shared, "get_session", side_effect=RedisConnectionError("down")),
            patch.object(edge, "fill_session", side_effect=RedisConnectionError("down")),
            patch.object(shared, "fill_session", side_effect=RedisConnectionError("down")),
        ):
            assert coordinator.read(session.token) == session

    def test_malformed_cached_record_is_a_miss(self, coordinator, session, edge):
        edge.fill_session(session.token, {"token": session.token, "version": 9})
        assert coordinator.read(session.token) == session

    def test_durable_failure_raises_store_unavailable(self, coordinator, session, repository):
        """A durable outage is never reported as a missing session."""
        with patch.object(repository, "get", side_effect=psycopg2.OperationalError("gone")):
            with pytest.raises(StoreUnavailable) as exc_info:
                coordinator.read(session.token)
        assert exc_info.value.tier == "durable"


# ==============================================================================
# Write path
# ==============================================================================


class TestWrite:
    """Tests for compare_and_set() and link_cart() invalidation."""

    def test_create_rejects_duplicate_token(self, coordinator, session):
        assert not coordinator.create(session)

    def test_write_invalidates_cached_copies(self, coordinator, session, edge, shared):
        coordinator.read(session.token)

        updated = _touch(coordinator, session)

        assert updated.version == 2
        assert edge.get_session(session.token) is None
        assert shared.get_session(session.token) is None
        assert coordinator.read(session.token).version == 2

    def test_failed_condition_returns_none(self, coordinator, session):
        assert coordinator.compare_and_set(session.token, {"version": 7}, {"page_id": "x"}) is None

    def test_stale_fill_after_write_is_fenced(self, coordinator, session, edge):
        """A reader holding the pre-write record cannot repopulate the tier."""
        _touch(coordinator, session)

        assert not edge.fill_session(session.token, session.to_record())
        assert coordinator.read(session.token).version == 2

    def test_durable_write_failure(self, coordinator, session, repository):
        with patch.object(
            repository, "compare_and_set", side_effect=psycopg2.InterfaceError("closed")
        ):
            with pytest.raises(StoreUnavailable):
                _touch(coordinator, session)


# ==============================================================================
# Pending invalidations
# ==============================================================================


class TestPendingInvalidation:
    """Tests for invalidations that fail and are replayed later."""

    def test_failed_invalidation_bypasses_tier(self, coordinator, session, edge, shared):
        """A stale edge copy is never served while its invalidation is pending."""
        coordinator.read(session.token)

        with patch.object(edge, "invalidate_session", side_effect=RedisConnectionError("down")):
            _touch(coordinator, session)
            assert coordinator.pending_count() == 1

            # The edge still holds version 1, but the coordinator skips it
            assert edge.get_session(session.token)["version"] == 1
            assert coordinator.read(session.token).version == 2

        # Once the edge answers, the invalidation is replayed on the next read
        assert coordinator.read(session.token).version == 2
        assert coordinator.pending_count() == 0
        assert edge.get_session(session.token)["version"] == 2

    def test_replay_all_pending(self, coordinator, session, shared):
        with patch.object(shared, "invalidate_session", side_effect=RedisConnectionError("down")):
            _touch(coordinator, session)
            assert coordinator.replay_all_pending() == 1

        assert coordinator.replay_all_pending() == 0

    def test_superseded_invalidation_is_cleared_on_read(self, coordinator, session, edge):
        """An entry below the tier's current marker replays as a no-op and is dropped."""
        with patch.object(edge, "invalidate_session", side_effect=RedisConnectionError("down")):
            updated = _touch(coordinator, session)

        _touch(coordinator, updated)
        assert coordinator.pending_count() == 1

        assert coordinator.read(session.token).version == 3
        assert coordinator.pending_count() == 0

    def test_ledger_write_failure_raises(self, coordinator, session, edge, repository):
        with (
            patch.object(edge, "invalidate_session", side_effect=RedisConnectionError("down")),
            patch.object(
                repository, "record_invalidation", side_effect=psycopg2.OperationalError("gone")
            ),
        ):
            with pytest.raises(StoreUnavailable):
                _touch(coordinator, session)

    def test_ledger_lookup_failure_raises(self, coordinator, session, repository):
        coordinator.read(session.token)

        with patch.object(
            repository, "get_invalidations", side_effect=psycopg2.OperationalError("gone")
        ):
            with pytest.raises(StoreUnavailable):
                coordinator.read(session.token)


# ==============================================================================
# Several coordinators
# ==============================================================================


@pytest.fixture()
def other_worker(repository, edge, shared):
    """A second coordinator over the same tiers, as run by another worker process."""
    return CacheTierCoordinator(repository, edge=edge, shared=shared)


class TestInvalidationAcrossWorkers:
    """Failed invalidations recorded by one coordinator are honoured by the others."""

    def test_stale_shared_copy_is_not_served_by_another_worker(
        self, coordinator, other_worker, session, edge, shared, edge_redis
    ):
        other_worker.read(session.token)

        with patch.object(shared, "invalidate_session", side_effect=RedisConnectionError("down")):
            assert _touch(coordinator, session).version == 2

            # The other worker's edge copy was tombstoned but shared still holds version 1
            edge_redis.flushall()
            assert shared.get_session(session.token)["version"] == 1
            assert other_worker.read(session.token).version == 2

        assert other_worker.read(session.token).version == 2
        assert shared.get_session(session.token) is None
        assert coordinator.pending_count() == 0

    def test_fresh_sweeper_replays_invalidations_of_another_worker(
        self, coordinator, repository, session, edge, shared
    ):
        coordinator.read(session.token)
        with patch.object(shared, "invalidate_session", side_effect=RedisConnectionError("down")):
            _touch(coordinator, session)

        sweeper = CacheTierCoordinator(repository, edge=edge, shared=shared)
        assert sweeper.pending_count() == 1
        assert sweeper.replay_all_pending() == 0
        assert shared.get_session(session.token) is None

    def test_replay_skips_unknown_tiers(self, coordinator, repository, session, shared):
        with patch.object(shared, "invalidate_session", side_effect=RedisConnectionError("down")):
            _touch(coordinator, session)

        edge_only = CacheTierCoordinator(repository, edge=coordinator.tiers[0])
        assert edge_only.replay_all_pending() == 1

    def test_reads_never_go_back_after_a_write(self, coordinator, other_worker, session):
        current = session
        for _ in range(5):
            other_worker.read(session.token)
            current = _touch(coordinator, current)
            assert other_worker.read(session.token).version == current.version
            assert coordinator.read(session.token).version == current.version


class TestInvalidationUnderContention:
    """Conditional cache writes that keep losing their WATCH race."""

    def test_exhausted_retries_count_as_failed_invalidations(
        self, coordinator, other_worker, session, lose_watch_races
    ):
        other_worker.read(session.token)

        with lose_watch_races():
            assert _touch(coordinator, session).version == 2
            assert coordinator.pending_count() == 2

            # Both tiers still hold version 1 and cannot be invalidated yet
            assert other_worker.read(session.token).version == 2

        assert other_worker.read(session.token).version == 2
        assert coordinator.pending_count() == 0

    def test_stale_fill_cannot_win_after_contention(
        self, coordinator, other_worker, session, shared, lose_watch_races
    ):
        """A reader holding version 1 cannot repopulate a tier once contention ends."""
        other_worker.read(session.token)
        with lose_watch_races():
            _touch(coordinator, session)

        assert coordinator.replay_all_pending() == 0
        assert not shared.fill_session(session.token, session.to_record())
        assert other_worker.read(session.token).version == 2


# ==============================================================================
# Health
# ==============================================================================


class TestHealth:
    """Tests for CacheTierCoordinator.health()."""

    def test_all_reachable(self, coordinator):
        assert coordinator.health() == {"edge": True, "shared": True, "durable": True}

    def test_edge_down(self, coordinator, edge):
        with patch.object(edge, "ping", side_effect=RedisConnectionError("down")):
            status = coordinator.health()
        assert status["edge"] is False
        assert status["durable"] is True

    def test_without_fast_tiers(self, repository):
        coordinator = CacheTierCoordinator(repository)
        assert coordinator.health() == {"durable": True}
        assert coordinator.tiers == []
