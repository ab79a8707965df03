# ==============================================================================
# Repository Abstract Base Classes
# ==============================================================================
"""
Repository ABC for the durable tier.

The durable tier is the single mutation authority. Every mutation is a
compare-and-set: the caller names the field values it expects, and the
repository applies the change only if they still hold, incrementing the
record version. Concrete implementations live in infrastructure/repositories.

The durable tier also lists fast-tier invalidations that failed, so that
every process can tell which cached copies must not be served.

Records are plain dicts shaped like Session.to_record(); datetimes may be
returned either as datetime objects or ISO strings.
"""

from abc import ABC, abstractmethod
from datetime import datetime


class SessionRepository(ABC):
    """Durable store for sessions and cart linkages."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data store."""
        ...

    @abstractmethod
    def get(self, token: str) -> dict | None:
        """
        Fetch a session record.

        Args:
            token: Session token

        Returns:
            Session record, or None if the token is unknown
        """
        ...

    @abstractmethod
    def insert(self, record: dict) -> bool:
        """
        Insert a new session if the token is unused.

        Args:
            record: Full session record (version 1)

        Returns:
            True if inserted, False if the token already exists
        """
        ...

    @abstractmethod
    def compare_and_set(self, token: str, expected: dict, changes: dict) -> dict | None:
        """
        Apply changes only if every expected field still has the given value.

        A None in expected means the column must be NULL. The version is
        incremented on success.

        Args:
            token: Session token
            expected: Field -> value conditions
            changes: Field -> new value

        Returns:
            The updated record, or None if a condition failed or the token is unknown
        """
        ...

    @abstractmethod
    def link_cart(self, token: str, linkage: dict) -> dict | None:
        """
        Atomically set the session's cart and create the linkage row.

        Applies only while the session is ACTIVE with no cart.

        Args:
            token: Session token
            linkage: CartLinkage record

        Returns:
            The updated session record, or None if the condition failed

        Raises:
            CartAlreadyLinked: If the cart already belongs to another session
        """
        ...

    @abstractmethod
    def get_linkage(self, token: str) -> dict | None:
        """Fetch the cart linkage for a session, if any."""
        ...

    @abstractmethod
    def list_sessions(self, page_id: str, start: datetime, end: datetime) -> list[dict]:
        """
        List sessions for a page created in [start, end).

        Returns:
            Session records ordered by creation time
        """
        ...

    @abstractmethod
    def list_linkages(self, tokens: list[str]) -> dict[str, dict]:
        """
        Fetch linkages for many sessions.

        Returns:
            Dict mapping session token to linkage record (unlinked omitted)
        """
        ...

    @abstractmethod
    def list_stale(self, cutoff: datetime, limit: int) -> list[dict]:
        """
        List ACTIVE sessions whose last activity is before the cutoff.

        Returns:
            Up to `limit` session records, oldest activity first
        """
        ...

    # ==========================================================================
    # Failed cache invalidations
    # ==========================================================================

    @abstractmethod
    def record_invalidation(self, tier: str, token: str, version: int) -> None:
        """
        Remember that a fast tier still holds a copy older than `version`.

        Keeps the highest version when the tier and token are already listed.
        """
        ...

    @abstractmethod
    def get_invalidations(self, token: str) -> dict[str, int]:
        """
        Fetch the outstanding invalidations of one session.

        Returns:
            Dict mapping tier name to the version to invalidate
        """
        ...

    @abstractmethod
    def list_invalidations(self, limit: int) -> list[dict]:
        """
        List outstanding invalidations, oldest first.

        Returns:
            Up to `limit` dicts with "tier", "token" and "version"
        """
        ...

    @abstractmethod
    def clear_invalidation(self, tier: str, token: str, version: int) -> bool:
        """
        Forget an invalidation once it has been applied.

        A newer invalidation recorded in the meantime is kept.

        Returns:
            True if an entry was removed
        """
        ...

    @abstractmethod
    def count_invalidations(self) -> int:
        """Number of outstanding invalidations."""
        ...

    @abstractmethod
    def ping(self) -> bool:
        """Check if the store is reachable."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        ...
