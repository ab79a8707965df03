# ==============================================================================
# Infrastructure Adapters
# ==============================================================================
"""
Adapters for external services (ports-and-adapters architecture).

This module contains the concrete implementations behind the base ports:
- cache/ - Cache adapters (Valkey/Redis)
- repositories/ - Durable tier adapters (PostgreSQL, in-memory)
- session_state.py - Fast session tiers over a Cache
- tiers.py - Cache tier coordinator
- collaborators.py - Cart and Orders service clients
- factory.py - Wiring from settings
"""

from attribution.infrastructure.cache import ValkeyCache, get_edge_cache, get_shared_cache
from attribution.infrastructure.collaborators import (
    HttpCartService,
    HttpOrderService,
    InMemoryCartService,
    InMemoryOrderService,
    get_cart_service,
    get_order_service,
)
from attribution.infrastructure.factory import (
    build_coordinator,
    build_session_manager,
    get_repository,
)
from attribution.infrastructure.repositories import (
    InMemorySessionRepository,
    PostgreSQLSessionRepository,
    check_postgresql_connection,
)
from attribution.infrastructure.session_state import ValkeySessionStateStore
from attribution.infrastructure.tiers import CacheTierCoordinator

__all__ = [
    # Cache
    "ValkeyCache",
    "get_edge_cache",
    "get_shared_cache",
    # Collaborators
    "HttpCartService",
    "HttpOrderService",
    "InMemoryCartService",
    "InMemoryOrderService",
    "get_cart_service",
    "get_order_service",
    # Factory
    "build_coordinator",
    "build_session_manager",
    "get_repository",
    # Repositories
    "InMemorySessionRepository",
    "PostgreSQLSessionRepository",
    "check_postgresql_connection",
    # Session tiers
    "ValkeySessionStateStore",
    "CacheTierCoordinator",
]
