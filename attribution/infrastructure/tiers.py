# ==============================================================================
# Cache Tier Coordinator
# ==============================================================================
"""
Single read/write interface over the edge, shared and durable tiers.

Read path:  edge -> shared -> durable, back-filling the faster tiers that
            missed on the way out.
Write path: durable first (the only mutation authority), then every faster
            tier is invalidated with a version-fenced marker. Faster tiers are
            never updated with new state; the next read repopulates them.

Failure handling:
- An edge or shared failure is a degradation event: logged, then skipped.
- A failed invalidation is recorded in the durable tier, so every process
  bypasses that tier for the token until the invalidation is replayed.
- A durable failure raises StoreUnavailable. A timeout is never reported as
  "not found".
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

import psycopg2
from pydantic import ValidationError
from redis.exceptions import RedisError

from attribution.base.repositories import SessionRepository
from attribution.base.session_state import SessionStateStore
from attribution.core.errors import StoreUnavailable
from attribution.core.models import CartLinkage, FunnelWindow, Session

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transport errors of the fast tiers
FAST_TIER_EXCEPTIONS = (RedisError, ConnectionError, TimeoutError)

# Transport errors of the durable tier
DURABLE_EXCEPTIONS = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    ConnectionError,
    TimeoutError,
)

# Outstanding invalidations replayed per sweep
REPLAY_BATCH_SIZE = 500


class CacheTierCoordinator:
    """
    Coordinates reads and invalidations across the three store tiers.

    Args:
        durable: Durable repository (authoritative)
        edge: Edge tier, or None to run without one
        shared: Shared tier, or None to run without one
    """

    def __init__(
        self,
        durable: SessionRepository,
        edge: SessionStateStore | None = None,
        shared: SessionStateStore | None = None,
    ):
        self._durable = durable
        self._tiers: list[SessionStateStore] = [t for t in (edge, shared) if t is not None]

    @property
    def durable(self) -> SessionRepository:
        """The durable repository."""
        return self._durable

    @property
    def tiers(self) -> list[SessionStateStore]:
        """Fast tiers, fastest first."""
        return list(self._tiers)

    # ==========================================================================
    # Read path
    # ==========================================================================

    def read(self, token: str) -> Session | None:
        """
        Read a session, fastest tier first.

        Returns:
            The session, or None if no tier holds it

        Raises:
            StoreUnavailable: If the durable tier failed, whether checking for
                outstanding invalidations or serving a miss
        """
        missed: list[SessionStateStore] = []
        pending = self._pending_for(token)

        for tier in self._tiers:
            version = pending.get(tier.name)
            if version is not None and not self._replay(tier, token, version):
                continue
            try:
                record = tier.get_session(token)
            except FAST_TIER_EXCEPTIONS as e:
                self._log_degraded(tier, "read", e)
                continue

            session = self._parse(tier.name, record)
            if session is not None:
                self._fill(missed, token, session)
                return session
            missed.append(tier)

        session = self.read_durable(token)
        if session is not None:
            self._fill(missed, token, session)
        return session

    def read_durable(self, token: str) -> Session | None:
        """Read a session straight from the durable tier, bypassing caches."""
        record = self._call_durable("read", lambda: self._durable.get(token))
        if record is None:
            return None
        return Session.from_record(record)

    def get_linkage(self, token: str) -> CartLinkage | None:
        """Durable lookup of a session's cart linkage."""
        record = self._call_durable("read", lambda: self._durable.get_linkage(token))
        return CartLinkage.model_validate(record) if record else None

    def list_sessions(self, page_id: str, window: FunnelWindow) -> list[dict]:
        """
        Durable scan of a page's sessions created within the window.

        Records are returned unvalidated so that aggregation can count
        inconsistent rows instead of failing on them.
        """
        return self._call_durable(
            "scan", lambda: self._durable.list_sessions(page_id, window.start, window.end)
        )

    def list_linkages(self, tokens: list[str]) -> dict[str, CartLinkage]:
        """Durable lookup of the linkages of many sessions."""
        records = self._call_durable("scan", lambda: self._durable.list_linkages(tokens))
        return {t: CartLinkage.model_validate(r) for t, r in records.items()}

    def list_stale(self, cutoff: datetime, limit: int) -> list[Session]:
        """Durable scan of ACTIVE sessions idle since before the cutoff."""
        records = self._call_durable("scan", lambda: self._durable.list_stale(cutoff, limit))
        return [Session.from_record(r) for r in records]

    # ==========================================================================
    # Write path
    # ==========================================================================

    def create(self, session: Session) -> bool:
        """
        Insert a new session into the durable tier.

        Nothing is cached for an unknown token, so no invalidation is needed.

        Returns:
            True if inserted, False if the token was already taken
        """
        record = session.to_record()
        return self._call_durable("write", lambda: self._durable.insert(record))

    def compare_and_set(self, token: str, expected: dict, changes: dict) -> Session | None:
        """
        Conditionally update a session, then invalidate the faster tiers.

        Returns:
            The updated session, or None if the condition no longer held
        """
        record = self._call_durable(
            "write", lambda: self._durable.compare_and_set(token, expected, changes)
        )
        if record is None:
            return None
        session = Session.from_record(record)
        self._invalidate(token, session.version)
        return session

    def link_cart(self, token: str, linkage: CartLinkage) -> Session | None:
        """
        Link a cart in the durable tier, then invalidate the faster tiers.

        Returns:
            The updated session, or None if the session was not ACTIVE and unlinked

        Raises:
            CartAlreadyLinked: If the cart belongs to another session
        """
        payload = linkage.to_record()
        record = self._call_durable("write", lambda: self._durable.link_cart(token, payload))
        if record is None:
            return None
        session = Session.from_record(record)
        self._invalidate(token, session.version)
        return session

    # ==========================================================================
    # Invalidation bookkeeping
    # ==========================================================================

    def _invalidate(self, token: str, version: int) -> None:
        failed: list[str] = []
        for tier in self._tiers:
            try:
                tier.invalidate_session(token, version)
            except FAST_TIER_EXCEPTIONS as e:
                self._log_degraded(tier, "invalidate", e)
                failed.append(tier.name)

        for name in failed:
            self._call_durable(
                "write", lambda: self._durable.record_invalidation(name, token, version)
            )

    def _pending_for(self, token: str) -> dict[str, int]:
        if not self._tiers:
            return {}
        return self._call_durable("read", lambda: self._durable.get_invalidations(token))

    def _replay(self, tier: SessionStateStore, token: str, version: int) -> bool:
        """
        Replay an outstanding invalidation for one token.

        Returns:
            True if the tier may be read for this token
        """
        try:
            tier.invalidate_session(token, version)
        except FAST_TIER_EXCEPTIONS as e:
            logger.debug("Pending %s invalidation for %s... still failing: %s", tier.name, token[:8], e)
            return False

        self._call_durable(
            "write", lambda: self._durable.clear_invalidation(tier.name, token, version)
        )
        logger.info("Replayed pending %s invalidation for %s...", tier.name, token[:8])
        return True

    def replay_all_pending(self, limit: int = REPLAY_BATCH_SIZE) -> int:
        """
        Retry outstanding invalidations recorded by any process.

        Returns:
            Count of invalidations still pending
        """
        tiers = {tier.name: tier for tier in self._tiers}
        entries = self._call_durable("scan", lambda: self._durable.list_invalidations(limit))
        for entry in entries:
            tier = tiers.get(entry["tier"])
            if tier is None:
                continue
            self._replay(tier, entry["token"], entry["version"])
        return self.pending_count()

    def pending_count(self) -> int:
        """Total invalidations awaiting replay."""
        return self._call_durable("read", self._durable.count_invalidations)

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _fill(self, tiers: list[SessionStateStore], token: str, session: Session) -> None:
        if not tiers:
            return
        record = session.to_record()
        for tier in tiers:
            try:
                tier.fill_session(token, record)
            except FAST_TIER_EXCEPTIONS as e:
                self._log_degraded(tier, "fill", e)

    def _parse(self, tier_name: str, record: dict | None) -> Session | None:
        if record is None:
            return None
        try:
            return Session.from_record(record)
        except ValidationError as e:
            logger.warning("Discarding malformed %s tier record: %s", tier_name, e)
            return None

    def _call_durable(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except DURABLE_EXCEPTIONS as e:
            logger.error("Durable tier %s failed: %s", operation, e)
            raise StoreUnavailable("durable", e) from e

    def _log_degraded(self, tier: SessionStateStore, operation: str, error: Exception) -> None:
        logger.warning(
            "Degraded: %s tier %s failed, falling through (%s)", tier.name, operation, error
        )

    # ==========================================================================
    # Health
    # ==========================================================================

    def health(self) -> dict[str, bool]:
        """
        Check the reachability of every tier.

        Returns:
            Dict mapping tier name to availability
        """
        status = {}
        for tier in self._tiers:
            try:
                status[tier.name] = tier.ping()
            except FAST_TIER_EXCEPTIONS:
                status[tier.name] = False
        try:
            status["durable"] = self._durable.ping()
        except DURABLE_EXCEPTIONS:
            status["durable"] = False
        return status
