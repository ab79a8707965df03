# ==============================================================================
# Pipeline Factory
# ==============================================================================
"""
Factory functions wiring the configured tiers into a coordinator, session
manager and funnel aggregator.

The durable backend is selected by DURABLE_BACKEND (via config):
- "postgresql" (default): PostgreSQLSessionRepository
- "memory": InMemorySessionRepository (single process only)
"""

import logging
from datetime import timedelta

from attribution.base.repositories import SessionRepository
from attribution.core.session_manager import SessionManager
from attribution.infrastructure.cache import get_edge_cache, get_shared_cache
from attribution.infrastructure.session_state import ValkeySessionStateStore
from attribution.infrastructure.tiers import CacheTierCoordinator
from attribution.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


def get_repository(settings: Settings | None = None) -> SessionRepository:
    """
    Get a connected durable repository for the configured backend.

    Raises:
        ValueError: If an unknown backend is configured
    """
    settings = settings or get_settings()
    backend = settings.durable.backend

    match backend:
        case "postgresql":
            from attribution.infrastructure.repositories import PostgreSQLSessionRepository

            repository = PostgreSQLSessionRepository(settings)
        case "memory":
            from attribution.infrastructure.repositories import InMemorySessionRepository

            repository = InMemorySessionRepository()
        case _:
            raise ValueError(
                f"Unknown durable backend: '{backend}'.\n"
                "Valid options are: postgresql, memory"
            )

    repository.connect()
    return repository


def build_coordinator(settings: Settings | None = None) -> CacheTierCoordinator:
    """Build a coordinator over the configured edge, shared and durable tiers."""
    settings = settings or get_settings()
    edge = ValkeySessionStateStore(
        get_edge_cache(settings), "edge", settings.session.edge_ttl_seconds
    )
    shared = ValkeySessionStateStore(
        get_shared_cache(settings), "shared", settings.session.shared_ttl
    )
    return CacheTierCoordinator(get_repository(settings), edge=edge, shared=shared)


def build_session_manager(
    coordinator: CacheTierCoordinator, settings: Settings | None = None
) -> SessionManager:
    """Build a SessionManager with the configured horizon."""
    settings = settings or get_settings()
    return SessionManager(
        coordinator,
        horizon=timedelta(days=settings.session.inactivity_horizon_days),
        token_retry_attempts=settings.session.token_retry_attempts,
    )
