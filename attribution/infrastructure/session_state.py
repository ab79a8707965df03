# ==============================================================================
# Session State Store Implementation (Valkey/Redis)
# ==============================================================================
"""
Valkey/Redis implementation of the SessionStateStore interface.

One instance backs one fast tier (edge or shared). Entries are JSON
envelopes under the key format:

    attribution:{tier}:session:{token}

    {"rank": int, "tombstone": bool, "record": {...} | null}

Ranks order records and invalidation markers on a single scale:
a record of version v has rank 2v, an invalidation for version v has rank
2v - 1. So an invalidation for v replaces any record older than v, a fill
of v replaces the invalidation for v, and a late fill of an older record
can never overwrite either.
"""

import logging

from attribution.base.cache import RANK_FIELD, Cache
from attribution.base.session_state import SessionStateStore

logger = logging.getLogger(__name__)


KEY_PREFIX = "attribution"


def record_rank(version: int) -> int:
    """Rank of a cached record with the given version."""
    return version * 2


def tombstone_rank(version: int) -> int:
    """Rank of the invalidation marker written after committing a version."""
    return version * 2 - 1


class ValkeySessionStateStore(SessionStateStore):
    """
    Fast session tier backed by a Cache.

    Args:
        cache: Cache implementation (usually a ValkeyCache)
        name: Tier name, also used in the key prefix
        ttl_seconds: TTL applied to records and invalidation markers
    """

    def __init__(self, cache: Cache, name: str, ttl_seconds: int):
        self._cache = cache
        self._name = name
        self._ttl = ttl_seconds

    @property
    def name(self) -> str:
        """Tier name."""
        return self._name

    @property
    def ttl_seconds(self) -> int:
        """TTL applied to entries in this tier."""
        return self._ttl

    @property
    def cache(self) -> Cache:
        """Underlying cache."""
        return self._cache

    def _key(self, token: str) -> str:
        """Generate the cache key for a session token."""
        return f"{KEY_PREFIX}:{self._name}:session:{token}"

    # ==========================================================================
    # SessionStateStore Interface Implementation
    # ==========================================================================

    def get_session(self, token: str) -> dict | None:
        """
        Get a cached session record.

        Returns:
            Record dict, or None on a miss or an invalidation marker
        """
        entry = self._cache.get(self._key(token))
        if not entry or entry.get("tombstone"):
            return None
        return entry.get("record")

    def fill_session(self, token: str, record: dict) -> bool:
        """
        Populate the tier with a record read from a slower tier.

        Returns:
            True if stored, False if a newer record or invalidation is cached
        """
        envelope = {
            RANK_FIELD: record_rank(int(record["version"])),
            "tombstone": False,
            "record": record,
        }
        stored = self._cache.set_if_newer(self._key(token), envelope, self._ttl)
        if not stored:
            logger.debug(
                "Skipped %s fill for %s... (newer entry cached)", self._name, token[:8]
            )
        return stored

    def invalidate_session(self, token: str, version: int) -> None:
        """
        Replace any cached record older than `version` with a marker.

        Raises:
            RedisError: If the marker could not be placed, including when
                contention exhausted the conditional write
        """
        envelope = {
            RANK_FIELD: tombstone_rank(version),
            "tombstone": True,
            "record": None,
        }
        self._cache.set_if_newer(self._key(token), envelope, self._ttl)

    def clear_all(self) -> int:
        """
        Clear all session entries in this tier.

        Returns:
            Count of entries deleted
        """
        return self._cache.delete_pattern(f"{KEY_PREFIX}:{self._name}:session:*")

    def ping(self) -> bool:
        """Check if the tier is reachable."""
        return self._cache.ping()
