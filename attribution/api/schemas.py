# ==============================================================================
# API Schemas
# ==============================================================================
"""
Request and response models for the HTTP surface.

Domain models (Session, CartLinkage, SourceAttributes, FunnelSnapshot) are
returned directly where their shape is already the public contract.
"""

from typing import Literal

from pydantic import BaseModel, Field

from attribution.base.collaborators import Order
from attribution.core.models import CartLinkage, Session, SourceAttributes


class CreateSessionRequest(BaseModel):
    """Payload supplied by the page layer on a visit."""

    page_id: str = Field(..., min_length=1, description="Page being visited")
    query_params: dict[str, str | list[str]] = Field(
        default_factory=dict, description="Raw query parameters of the page request"
    )
    referrer: str | None = Field(None, description="Referer header value")
    token: str | None = Field(None, description="Session token the visitor already holds")
    funnel_id: str | None = Field(None, description="Funnel context, if the page is a funnel step")
    ip_address: str | None = Field(None, description="Client IP, used only for the fingerprint")
    user_agent: str | None = Field(None, description="User-Agent header value")


class CreateSessionResponse(BaseModel):
    """Token and attribution of the created (or resumed) session."""

    token: str
    resumed: bool = Field(..., description="True if the presented token was resumed")
    attribution: SourceAttributes
    session: Session


class LinkCartRequest(BaseModel):
    """Cart to link. Without a cart_id, one is obtained from the Cart service."""

    cart_id: str | None = Field(None, min_length=1)


class LinkCartResponse(BaseModel):
    """The authoritative linkage of the session."""

    status: Literal["linked", "already_linked"]
    linkage: CartLinkage


class ConvertRequest(BaseModel):
    """Order that completed in the session."""

    order_id: str = Field(..., min_length=1)


class SessionDetailResponse(BaseModel):
    """Session with its linkage and, when available, the order."""

    session: Session
    linkage: CartLinkage | None = None
    order: Order | None = None


class HealthResponse(BaseModel):
    """Tier availability."""

    status: Literal["ok", "degraded", "unavailable"]
    tiers: dict[str, bool]
    pending_invalidations: int | None = None


class ErrorResponse(BaseModel):
    """Error body for every non-2xx response."""

    error: str
    detail: str
