# ==============================================================================
# API Routes
# ==============================================================================
"""
HTTP endpoints exposed to the page, cart and checkout layers.

    POST /sessions                  create or resume a session
    POST /sessions/{token}/cart     link a cart (first write wins)
    POST /sessions/{token}/convert  record a conversion (duplicate tolerant)
    GET  /sessions/{token}          session, linkage and order
    GET  /funnel                    funnel snapshot for a page and window
    GET  /health                    tier availability

Handlers are plain functions: FastAPI runs them on its thread pool, and
every store call they make is blocking I/O.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import ValidationError

from attribution.api.dependencies import Pipeline, get_pipeline
from attribution.api.schemas import (
    ConvertRequest,
    CreateSessionRequest,
    CreateSessionResponse,
    HealthResponse,
    LinkCartRequest,
    LinkCartResponse,
    SessionDetailResponse,
)
from attribution.core.errors import (
    CollaboratorUnavailable,
    SessionAlreadyLinked,
    SessionExpired,
    SessionNotFound,
)
from attribution.core.models import FunnelSnapshot, FunnelWindow, Session
from attribution.core.visitor import build_fingerprint, parse_device

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Attribution"])

DEFAULT_FUNNEL_DAYS = 30


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# =============================================================================
# Sessions
# =============================================================================


@router.post("/sessions", response_model=CreateSessionResponse)
def create_session(
    body: CreateSessionRequest,
    pipeline: Pipeline = Depends(get_pipeline),
) -> CreateSessionResponse:
    """Create a session, or resume the one whose token the visitor presents."""
    if body.token:
        try:
            session = pipeline.manager.resume_session(body.token)
            return CreateSessionResponse(
                token=session.token,
                resumed=True,
                attribution=session.source_attributes,
                session=session,
            )
        except (SessionNotFound, SessionExpired) as e:
            logger.debug("Not resuming presented token: %s", e)

    attributes = pipeline.resolver.resolve(body.query_params, body.referrer, body.funnel_id)
    session = pipeline.manager.create_session(
        page_id=body.page_id,
        source_attributes=attributes,
        visitor_fingerprint=build_fingerprint(
            body.ip_address, body.user_agent, pipeline.fingerprint_salt
        ),
        device=parse_device(body.user_agent),
    )
    return CreateSessionResponse(
        token=session.token,
        resumed=False,
        attribution=session.source_attributes,
        session=session,
    )


@router.post("/sessions/{token}/cart", response_model=LinkCartResponse)
def link_cart(
    token: str,
    body: LinkCartRequest | None = None,
    pipeline: Pipeline = Depends(get_pipeline),
) -> LinkCartResponse:
    """Link a cart to the session; the first linked cart stays authoritative."""
    cart_id = body.cart_id if body else None

    if cart_id is None:
        existing = pipeline.manager.ensure_linkable(token)
        if existing is not None:
            return LinkCartResponse(status="linked", linkage=existing)
        cart_id = pipeline.cart_service.get_or_create_cart().id

    try:
        linkage = pipeline.manager.link_cart(token, cart_id)
    except SessionAlreadyLinked as e:
        return LinkCartResponse(status="already_linked", linkage=e.linkage)
    return LinkCartResponse(status="linked", linkage=linkage)


@router.post("/sessions/{token}/convert", response_model=Session)
def convert(
    token: str,
    body: ConvertRequest,
    pipeline: Pipeline = Depends(get_pipeline),
) -> Session:
    """Record the order that completed in this session."""
    return pipeline.manager.record_conversion(token, body.order_id)


@router.get("/sessions/{token}", response_model=SessionDetailResponse)
def get_session(
    token: str,
    pipeline: Pipeline = Depends(get_pipeline),
) -> SessionDetailResponse:
    """Session state with its linkage and, when visible, its order."""
    session = pipeline.manager.get_session(token)
    linkage = pipeline.manager.get_linkage(token) if session.cart_id else None

    order = None
    if session.order_id and pipeline.order_service is not None:
        try:
            order = pipeline.order_service.get_order(session.order_id)
        except CollaboratorUnavailable as e:
            logger.warning("Order enrichment skipped: %s", e)

    return SessionDetailResponse(session=session, linkage=linkage, order=order)


# =============================================================================
# Funnel
# =============================================================================


@router.get("/funnel", response_model=FunnelSnapshot)
def get_funnel(
    page_id: str = Query(..., min_length=1),
    start: datetime | None = Query(None, description="Window start (inclusive)"),
    end: datetime | None = Query(None, description="Window end (exclusive)"),
    days: int = Query(DEFAULT_FUNNEL_DAYS, ge=1, le=366, description="Trailing days when no start/end"),
    pipeline: Pipeline = Depends(get_pipeline),
) -> FunnelSnapshot:
    """Funnel counts for a page over a time window."""
    if (start is None) != (end is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="start and end must be given together",
        )

    try:
        if start is not None and end is not None:
            window = FunnelWindow(start=_as_utc(start), end=_as_utc(end))
        else:
            window = FunnelWindow.last_days(days)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="window end must be after window start",
        ) from e

    return pipeline.aggregator.compute_funnel(page_id, window)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
def health(response: Response, pipeline: Pipeline = Depends(get_pipeline)) -> HealthResponse:
    """Availability of each store tier."""
    tiers = pipeline.coordinator.health()
    if not tiers.get("durable", False):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="unavailable", tiers=tiers)

    overall = "ok" if all(tiers.values()) else "degraded"
    return HealthResponse(
        status=overall,
        tiers=tiers,
        pending_invalidations=pipeline.coordinator.pending_count(),
    )
