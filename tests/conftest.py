# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- fakeredis-backed ValkeyCache instances for the edge and shared tiers
- A switch that makes every optimistic WATCH/MULTI write lose its race
- An in-memory durable repository and the coordinator over all three tiers
- A SessionManager driven by a controllable clock
- In-memory Cart and Orders collaborators, and a full Pipeline
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import fakeredis
import pytest
from redis.exceptions import WatchError

from attribution.api.dependencies import Pipeline
from attribution.core.attribution import AttributionResolver
from attribution.core.funnel import FunnelAggregator
from attribution.core.session_manager import SessionManager
from attribution.infrastructure.cache import ValkeyCache
from attribution.infrastructure.collaborators import InMemoryCartService, InMemoryOrderService
from attribution.infrastructure.repositories import InMemorySessionRepository
from attribution.infrastructure.session_state import ValkeySessionStateStore
from attribution.infrastructure.tiers import CacheTierCoordinator

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """A clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def _fake_cache(client) -> ValkeyCache:
    # Create a ValkeyCache without connecting, then swap in the fake client
    cache = ValkeyCache.__new__(ValkeyCache)
    cache._client = client
    cache._url = "redis://fake:6379"
    return cache


@pytest.fixture()
def edge_redis():
    """A clean fakeredis instance standing in for the edge tier.

    Uses decode_responses=True to match the real ValkeyCache behavior.
    """
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()
    client.close()


@pytest.fixture()
def shared_redis():
    """A clean fakeredis instance standing in for the shared tier."""
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()
    client.close()


@pytest.fixture()
def fake_cache(shared_redis):
    """A ValkeyCache with its internal client replaced by fakeredis."""
    return _fake_cache(shared_redis)


@pytest.fixture()
def lose_watch_races():
    """Returns a context manager in which every WATCH/MULTI transaction loses.

    Stands in for another client that rewrites the watched key between the
    rank check and EXEC, however many times the write is attempted.
    """

    def lose(pipe, *args, **kwargs):
        pipe.reset()
        raise WatchError("Watched variable changed.")

    return lambda: patch("redis.client.Pipeline.execute", autospec=True, side_effect=lose)


@pytest.fixture()
def edge(edge_redis):
    return ValkeySessionStateStore(_fake_cache(edge_redis), "edge", ttl_seconds=300)


@pytest.fixture()
def shared(shared_redis):
    return ValkeySessionStateStore(_fake_cache(shared_redis), "shared", ttl_seconds=30 * 86400)


@pytest.fixture()
def repository():
    return InMemorySessionRepository()


@pytest.fixture()
def coordinator(repository, edge, shared):
    return CacheTierCoordinator(repository, edge=edge, shared=shared)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def manager(coordinator, clock):
    return SessionManager(coordinator, clock=clock)


@pytest.fixture()
def cart_service():
    return InMemoryCartService()


@pytest.fixture()
def order_service():
    return InMemoryOrderService()


@pytest.fixture()
def aggregator(coordinator, cart_service, order_service):
    return FunnelAggregator(coordinator, cart_service, order_service)


@pytest.fixture()
def pipeline(manager, aggregator, cart_service, order_service):
    """A full pipeline over fakeredis tiers and the in-memory durable store."""
    return Pipeline(
        manager=manager,
        aggregator=aggregator,
        cart_service=cart_service,
        order_service=order_service,
        resolver=AttributionResolver(),
        fingerprint_salt="test-salt",
    )
