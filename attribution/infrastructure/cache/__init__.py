# ==============================================================================
# Cache Infrastructure
# ==============================================================================
"""
Cache implementations for the ports-and-adapters architecture.

Available implementations:
- ValkeyCache: Valkey/Redis-based cache with JSON serialization
"""

from attribution.infrastructure.cache.valkey import (
    ValkeyCache,
    get_edge_cache,
    get_shared_cache,
)

__all__ = [
    "ValkeyCache",
    "get_edge_cache",
    "get_shared_cache",
]
