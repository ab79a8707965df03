# ==============================================================================
# Session Manager
# ==============================================================================
"""
Owns the session lifecycle: create, resume, expire, link to a cart, convert.

Every operation takes the session token explicitly. All writes go through
the cache tier coordinator as compare-and-set against the durable tier.
Losing a race never triggers a blind retry: the manager re-reads durable
state and answers from what the winner wrote.

State machine:

    ACTIVE --record_conversion--> CONVERTED
    ACTIVE --horizon elapsed----> EXPIRED

The manager only ever sees sessions, None, or the errors in core.errors.
Raw store transport errors are classified by the coordinator.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from attribution.core.errors import (
    EntropySourceUnavailable,
    InvalidTransition,
    SessionAlreadyLinked,
    SessionExpired,
    SessionNotFound,
    StoreUnavailable,
)
from attribution.core.models import (
    CartLinkage,
    DeviceInfo,
    Session,
    SessionState,
    SourceAttributes,
    utcnow,
)
from attribution.core.tokens import TokenIssuer, is_well_formed

if TYPE_CHECKING:
    from attribution.infrastructure.tiers import CacheTierCoordinator

logger = logging.getLogger(__name__)
anomaly_logger = logging.getLogger("attribution.anomaly")

# Compare-and-set rounds before giving up under contention
MAX_CAS_ROUNDS = 3

DEFAULT_HORIZON = timedelta(days=30)
DEFAULT_SWEEP_LIMIT = 500

ACTIVE = SessionState.ACTIVE.value
CONVERTED = SessionState.CONVERTED.value
EXPIRED = SessionState.EXPIRED.value


def report_anomaly(reason: str, token: str, **details) -> None:
    """Log an attribution anomaly for later reconciliation."""
    extra = " ".join(f"{k}={v}" for k, v in details.items())
    anomaly_logger.warning("%s token=%s... %s", reason, token[:8], extra)


class SessionManager:
    """
    Session lifecycle operations.

    Args:
        coordinator: Cache tier coordinator fronting the three store tiers
        issuer: Token issuer (default: OS CSPRNG)
        horizon: Inactivity horizon after which a session expires
        token_retry_attempts: Fresh tokens to try if an insert collides
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        coordinator: CacheTierCoordinator,
        issuer: TokenIssuer | None = None,
        horizon: timedelta = DEFAULT_HORIZON,
        token_retry_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._coordinator = coordinator
        self._issuer = issuer or TokenIssuer()
        self._horizon = horizon
        self._token_retry_attempts = max(1, token_retry_attempts)
        self._clock = clock

    @property
    def horizon(self) -> timedelta:
        """Inactivity horizon."""
        return self._horizon

    @property
    def coordinator(self) -> CacheTierCoordinator:
        """The cache tier coordinator."""
        return self._coordinator

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def _require(self, token: str) -> Session:
        if not is_well_formed(token):
            raise SessionNotFound(token or "")
        session = self._coordinator.read(token)
        if session is None:
            raise SessionNotFound(token)
        return session

    def _require_durable(self, token: str) -> Session:
        session = self._coordinator.read_durable(token)
        if session is None:
            # A session that vanished from the durable tier mid-operation
            raise SessionNotFound(token)
        return session

    def get_session(self, token: str) -> Session:
        """
        Read a session without refreshing its activity.

        Raises:
            SessionNotFound: If no tier holds the token
        """
        return self._require(token)

    def get_linkage(self, token: str) -> CartLinkage | None:
        """Get the cart linkage of a session, if it has one."""
        self._require(token)
        return self._coordinator.get_linkage(token)

    # ==========================================================================
    # Create / resume
    # ==========================================================================

    def create_session(
        self,
        page_id: str,
        source_attributes: SourceAttributes,
        visitor_fingerprint: str | None = None,
        existing_token: str | None = None,
        device: DeviceInfo | None = None,
    ) -> Session:
        """
        Create a new ACTIVE session, or resume the one the caller presented.

        A valid, unexpired existing token returns that session with its
        original attribution; the supplied source_attributes are ignored.

        Raises:
            EntropySourceUnavailable: If no token can be issued
            StoreUnavailable: If the durable tier cannot be reached
        """
        if existing_token:
            try:
                return self.resume_session(existing_token)
            except SessionNotFound:
                logger.debug("Presented token unknown, creating a new session")
            except SessionExpired:
                logger.debug("Presented token expired, creating a new session")

        for attempt in range(1, self._token_retry_attempts + 1):
            token = self._issuer.issue()
            now = self._clock()
            session = Session(
                token=token,
                page_id=page_id,
                visitor_fingerprint=visitor_fingerprint,
                source_attributes=source_attributes,
                device=device,
                state=SessionState.ACTIVE,
                created_at=now,
                last_activity_at=now,
            )
            if self._coordinator.create(session):
                logger.info(
                    "Created session %s... page=%s source_type=%s",
                    token[:8],
                    page_id,
                    source_attributes.source_type.value,
                )
                return session
            logger.warning(
                "Token collision on attempt %d/%d", attempt, self._token_retry_attempts
            )

        raise EntropySourceUnavailable(
            f"{self._token_retry_attempts} issued tokens collided with existing sessions"
        )

    def resume_session(self, token: str) -> Session:
        """
        Resume a session and refresh its last activity.

        Raises:
            SessionNotFound: If no tier holds the token
            SessionExpired: If the session is expired or past the horizon
        """
        session = self._require(token)
        now = self._clock()
        session = self._ensure_live(session, now)
        if session.state != SessionState.ACTIVE:
            return session

        refreshed = self._coordinator.compare_and_set(
            token,
            {"state": ACTIVE, "version": session.version},
            {"last_activity_at": now},
        )
        if refreshed is not None:
            return refreshed

        # Lost the race: answer from whatever the winner committed
        return self._ensure_live(self._require_durable(token), now)

    def _expire(self, session: Session, now: datetime) -> Session:
        """Transition an ACTIVE session to EXPIRED, returning the current state."""
        expired = self._coordinator.compare_and_set(
            session.token,
            {"state": ACTIVE, "version": session.version},
            {"state": EXPIRED, "expired_at": now},
        )
        if expired is not None:
            logger.info("Expired session %s...", session.token[:8])
            return expired
        return self._require_durable(session.token)

    def _ensure_live(self, session: Session, now: datetime) -> Session:
        """
        Return the session if it is within the horizon.

        An ACTIVE session past the horizon is moved to EXPIRED first. A
        CONVERTED session past the horizon keeps its state.

        Raises:
            SessionExpired: If the session is expired or past the horizon
        """
        for _ in range(MAX_CAS_ROUNDS):
            if session.state == SessionState.EXPIRED:
                raise SessionExpired(session.token, session)
            if not session.is_past_horizon(now, self._horizon):
                return session
            if session.state == SessionState.CONVERTED:
                raise SessionExpired(session.token, session)
            session = self._expire(session, now)
        raise SessionExpired(session.token, session)

    # ==========================================================================
    # Cart linkage
    # ==========================================================================

    def _existing_linkage(self, session: Session) -> CartLinkage:
        linkage = self._coordinator.get_linkage(session.token)
        if linkage is None or linkage.cart_id != session.cart_id:
            report_anomaly("linkage_mismatch", session.token, cart_id=session.cart_id)
            return CartLinkage(
                cart_id=session.cart_id,
                session_token=session.token,
                source_type=session.source_type,
                page_id=session.page_id,
                linked_at=session.last_activity_at,
            )
        return linkage

    def ensure_linkable(self, token: str) -> CartLinkage | None:
        """
        Check, before a cart is created for it, that the session can take one.

        Returns:
            The existing linkage if the session already has a cart, else None

        Raises:
            SessionNotFound: If no tier holds the token
            SessionExpired: If the session expired before any cart was linked
            InvalidTransition: If the session converted without a cart
        """
        session = self._require(token)
        if session.cart_id is None:
            session = self._ensure_live(session, self._clock())
        if session.cart_id is not None:
            return self._existing_linkage(session)
        if session.state == SessionState.CONVERTED:
            report_anomaly("link_after_conversion", token)
            raise InvalidTransition("Cannot link a cart to a converted session", session)
        return None

    def link_cart(self, token: str, cart_id: str) -> CartLinkage:
        """
        Link a cart to a session, first write wins.

        Repeating the call with the same cart returns the existing linkage.

        Raises:
            SessionNotFound: If no tier holds the token
            SessionExpired: If the session expired before any cart was linked
            SessionAlreadyLinked: If the session is linked to a different cart
            CartAlreadyLinked: If the cart originated from another session
            InvalidTransition: If the session converted without a cart
        """
        session = self._require(token)

        for _ in range(MAX_CAS_ROUNDS):
            if session.cart_id is not None:
                linkage = self._existing_linkage(session)
                if session.cart_id == cart_id:
                    return linkage
                raise SessionAlreadyLinked(linkage)

            now = self._clock()
            session = self._ensure_live(session, now)
            if session.state == SessionState.CONVERTED:
                report_anomaly("link_after_conversion", token, cart_id=cart_id)
                raise InvalidTransition("Cannot link a cart to a converted session", session)

            linkage = CartLinkage(
                cart_id=cart_id,
                session_token=token,
                source_type=session.source_type,
                page_id=session.page_id,
                linked_at=now,
            )
            if self._coordinator.link_cart(token, linkage) is not None:
                logger.info(
                    "Linked cart %s to session %s... (%s)",
                    cart_id,
                    token[:8],
                    linkage.source_type.value,
                )
                return linkage

            session = self._require_durable(token)

        raise StoreUnavailable("durable", RuntimeError("cart linkage contention"))

    # ==========================================================================
    # Conversion
    # ==========================================================================

    def record_conversion(self, token: str, order_id: str) -> Session:
        """
        Mark a session CONVERTED with the given order.

        A duplicate delivery of the same order returns the converted session.

        Raises:
            SessionNotFound: If no tier holds the token
            InvalidTransition: If the session expired, or converted with another order
        """
        session = self._require(token)

        for _ in range(MAX_CAS_ROUNDS):
            if session.state == SessionState.CONVERTED:
                if session.order_id == order_id:
                    return session
                report_anomaly(
                    "conflicting_order",
                    token,
                    order_id=order_id,
                    existing_order_id=session.order_id,
                )
                raise InvalidTransition(
                    f"Session already converted with order {session.order_id}", session
                )

            now = self._clock()
            try:
                session = self._ensure_live(session, now)
            except SessionExpired as e:
                report_anomaly("conversion_on_expired_session", token, order_id=order_id)
                raise InvalidTransition(
                    "Cannot attribute an order to an expired session", e.session
                ) from e

            if session.cart_id is None:
                report_anomaly("conversion_without_cart_link", token, order_id=order_id)

            converted = self._coordinator.compare_and_set(
                token,
                {"state": ACTIVE, "order_id": None},
                {
                    "state": CONVERTED,
                    "order_id": order_id,
                    "converted_at": now,
                    "last_activity_at": now,
                },
            )
            if converted is not None:
                logger.info("Recorded conversion for session %s... order=%s", token[:8], order_id)
                return converted

            session = self._require_durable(token)

        raise StoreUnavailable("durable", RuntimeError("conversion contention"))

    # ==========================================================================
    # Expiry sweep
    # ==========================================================================

    def expire_stale(self, now: datetime | None = None, limit: int = DEFAULT_SWEEP_LIMIT) -> int:
        """
        Move ACTIVE sessions idle past the horizon to EXPIRED.

        Also replays any pending cache invalidations.

        Returns:
            Count of sessions expired by this sweep
        """
        now = now or self._clock()
        cutoff = now - self._horizon
        expired = 0

        for session in self._coordinator.list_stale(cutoff, limit):
            result = self._coordinator.compare_and_set(
                session.token,
                {"state": ACTIVE, "version": session.version},
                {"state": EXPIRED, "expired_at": now},
            )
            if result is not None:
                expired += 1

        pending = self._coordinator.replay_all_pending()
        logger.info("Expiry sweep: %d sessions expired, %d invalidations pending", expired, pending)
        return expired
