# ==============================================================================
# Valkey Cache Implementation
# ==============================================================================
"""
Valkey/Redis implementation of the Cache interface.

Provides:
- JSON reads by key
- Ranked conditional writes (WATCH/MULTI) for version-fenced cache fills
- Pattern-based deletion

Uses JSON serialization for storing dict values.
"""

import json
import logging

import redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError
from redis.retry import Retry

from attribution.base.cache import RANK_FIELD, Cache
from attribution.utils.config import Settings, get_settings
from attribution.utils.retry import VALKEY_RETRIES

logger = logging.getLogger(__name__)

# Attempts at the optimistic WATCH loop before giving up on a fill
MAX_WATCH_ATTEMPTS = 5


def _decode(key: str, raw: str | None) -> dict | None:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to decode JSON for key %s", key)
        return None


class ValkeyCache(Cache):
    """
    Valkey/Redis implementation of the Cache interface.

    Configured with:
    - Short socket timeouts: a slow cache must fail over to the next tier
    - Automatic retries with exponential backoff for transient failures
    - Health check interval to keep connections alive

    All values are stored as JSON strings and deserialized on retrieval.
    """

    def __init__(
        self,
        url: str | None = None,
        socket_timeout: float = 2,
        retries: int | None = None,
        health_check_interval: int = 30,
    ):
        """
        Initialize Valkey cache.

        Args:
            url: Valkey/Redis connection URL. If None, uses settings.
            socket_timeout: Socket timeout in seconds (default: 2)
            retries: Number of retries for transient failures (default: from settings)
            health_check_interval: Health check interval in seconds (default: 30)
        """
        if url is None:
            settings = get_settings()
            url = settings.valkey.url

        retry_count = retries if retries is not None else VALKEY_RETRIES
        retry_strategy = Retry(ExponentialBackoff(cap=1, base=0.05), retries=retry_count)

        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            retry=retry_strategy,
            retry_on_error=[RedisTimeoutError, RedisConnectionError],
            health_check_interval=health_check_interval,
        )
        self._url = url

    @property
    def client(self) -> redis.Redis:
        """Get the underlying Redis client for advanced operations."""
        return self._client

    def get(self, key: str) -> dict | None:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value as dict, or None if not found
        """
        return _decode(key, self._client.get(key))

    def set_if_newer(self, key: str, value: dict, ttl_seconds: int | None = None) -> bool:
        """
        Set a value unless the cached one has an equal or higher rank.

        Uses an optimistic WATCH/MULTI transaction so that concurrent writers
        cannot interleave between the rank check and the write.

        Args:
            key: Cache key
            value: Value to cache, carrying an integer RANK_FIELD
            ttl_seconds: Optional time-to-live in seconds

        Returns:
            True if written, False if a higher-ranked value is present

        Raises:
            WatchError: If every attempt lost the race to another writer
        """
        rank = value[RANK_FIELD]
        json_value = json.dumps(value)

        with self._client.pipeline() as pipe:
            for _ in range(MAX_WATCH_ATTEMPTS):
                try:
                    pipe.watch(key)
                    current = _decode(key, pipe.get(key))
                    if current is not None and current.get(RANK_FIELD, -1) >= rank:
                        return False
                    pipe.multi()
                    if ttl_seconds is not None:
                        pipe.setex(key, ttl_seconds, json_value)
                    else:
                        pipe.set(key, json_value)
                    pipe.execute()
                    return True
                except WatchError:
                    continue

        logger.warning("Conditional write for key %s lost %d races", key, MAX_WATCH_ATTEMPTS)
        raise WatchError(f"Contention on {key} outlasted {MAX_WATCH_ATTEMPTS} attempts")

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Pattern to match (e.g., "session:*")

        Returns:
            Count of keys deleted
        """
        keys = list(self._client.scan_iter(pattern))
        if keys:
            return self._client.delete(*keys)
        return 0

    def ping(self) -> bool:
        """
        Check if the cache is reachable.

        Returns:
            True if ping succeeds, False otherwise
        """
        try:
            return bool(self._client.ping())
        except (RedisConnectionError, RedisTimeoutError):
            return False

    def close(self) -> None:
        """Close the connection."""
        self._client.close()


def get_shared_cache(settings: Settings | None = None) -> ValkeyCache:
    """Get a ValkeyCache for the shared tier configured from settings."""
    settings = settings or get_settings()
    return ValkeyCache(settings.valkey.url)


def get_edge_cache(settings: Settings | None = None) -> ValkeyCache:
    """Get a ValkeyCache for the edge tier configured from settings.

    The edge tier must fail fast: short socket timeout and no client retries.
    """
    settings = settings or get_settings()
    return ValkeyCache(
        settings.edge_url,
        socket_timeout=settings.edge.socket_timeout,
        retries=0,
    )
