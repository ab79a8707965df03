# ==============================================================================
# Cache Abstract Base Class
# ==============================================================================
"""
Abstract interface for key-value caching with TTL support.

This is NOT a repository (which is the durable source of truth).
Cache is transient storage for read latency; the edge and shared session
tiers are both built on it.

Implementations: Valkey, Redis, etc.
"""

from abc import ABC, abstractmethod

# Field inside cached values used to order competing writes
RANK_FIELD = "rank"


class Cache(ABC):
    """
    Generic cache interface for key-value storage with TTL support.

    All values are stored as dicts (JSON-serializable). Implementations
    handle serialization/deserialization internally.
    """

    @abstractmethod
    def get(self, key: str) -> dict | None:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value as dict, or None if not found
        """
        ...

    @abstractmethod
    def set_if_newer(self, key: str, value: dict, ttl_seconds: int | None = None) -> bool:
        """
        Atomically set a value unless the cached one ranks at least as high.

        Ranks are read from value[RANK_FIELD]; a missing key always loses.

        Args:
            key: Cache key
            value: Value to cache, carrying an integer RANK_FIELD
            ttl_seconds: Optional time-to-live in seconds

        Returns:
            True if the value was written, False if a higher-ranked one exists

        Raises:
            The backend's transport error if contention kept the write from
            being either applied or rejected
        """
        ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Pattern to match (e.g., "session:*")

        Returns:
            Count of keys deleted
        """
        ...

    @abstractmethod
    def ping(self) -> bool:
        """Check if the cache is reachable."""
        ...
