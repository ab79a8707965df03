# ==============================================================================
# Attribution Error Taxonomy
# ==============================================================================
"""
Exceptions raised by the attribution pipeline.

The cache tier coordinator classifies every transport failure into
StoreUnavailable before it reaches the session manager, so callers only ever
handle the exceptions below.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from attribution.core.models import CartLinkage, Session


class AttributionError(Exception):
    """Base class for all pipeline errors."""


class EntropySourceUnavailable(AttributionError):
    """The OS randomness source could not be read; no token can be issued."""


class SessionNotFound(AttributionError):
    """No tier holds the token. The caller should create a new session."""

    def __init__(self, token: str):
        super().__init__(f"Session not found: {token[:8]}...")
        self.token = token


class SessionExpired(AttributionError):
    """The session passed its inactivity horizon. The caller should start over."""

    def __init__(self, token: str, session: Session | None = None):
        super().__init__(f"Session expired: {token[:8]}...")
        self.token = token
        self.session = session


class SessionAlreadyLinked(AttributionError):
    """The session already has a different cart; the original linkage wins."""

    def __init__(self, linkage: CartLinkage):
        super().__init__(
            f"Session {linkage.session_token[:8]}... already linked to cart {linkage.cart_id}"
        )
        self.linkage = linkage


class CartAlreadyLinked(AttributionError):
    """The cart already originated from another session."""

    def __init__(self, cart_id: str):
        super().__init__(f"Cart {cart_id} is already linked to another session")
        self.cart_id = cart_id


class InvalidTransition(AttributionError):
    """A state change that the session lifecycle does not allow."""

    def __init__(self, message: str, session: Session | None = None):
        super().__init__(message)
        self.session = session


class StoreUnavailable(AttributionError):
    """A store tier could not be reached. Retry with backoff."""

    def __init__(self, tier: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"{tier} tier unavailable{detail}")
        self.tier = tier


class CollaboratorUnavailable(AttributionError):
    """The Cart or Orders service could not be reached."""

    def __init__(self, service: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"{service} service unavailable{detail}")
        self.service = service
