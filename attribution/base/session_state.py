# ==============================================================================
# Session State Store Abstract Base Class
# ==============================================================================
"""
Abstract interface for one fast session tier (edge or shared).

Every tier exposes the same capability set: get, fill and invalidate.
Tiers are never written with new state directly: mutations go to the durable
repository and the fast tiers are only invalidated, then repopulated by
reads. Implementations typically wrap a Cache for storage.
"""

from abc import ABC, abstractmethod


class SessionStateStore(ABC):
    """
    A fast, TTL-bounded session tier.

    Implementations must ensure that a fill never replaces a record or an
    invalidation marker of a newer version.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Tier name used in logs and errors (e.g., "edge", "shared")."""
        ...

    @abstractmethod
    def get_session(self, token: str) -> dict | None:
        """
        Get a cached session record.

        Args:
            token: Session token

        Returns:
            Session record dict, or None on a miss or an invalidated entry
        """
        ...

    @abstractmethod
    def fill_session(self, token: str, record: dict) -> bool:
        """
        Populate the tier with a record read from a slower tier.

        Args:
            token: Session token
            record: Session record carrying its "version"

        Returns:
            True if stored, False if a newer record or invalidation is present
        """
        ...

    @abstractmethod
    def invalidate_session(self, token: str, version: int) -> None:
        """
        Invalidate any cached record older than the given version.

        Args:
            token: Session token
            version: Version just committed to the durable tier
        """
        ...

    @abstractmethod
    def clear_all(self) -> int:
        """
        Clear all session entries in this tier.

        Returns:
            Count of entries deleted
        """
        ...

    @abstractmethod
    def ping(self) -> bool:
        """Check if the tier is reachable."""
        ...
