# ==============================================================================
# API Dependencies
# ==============================================================================
"""
The pipeline objects shared by all request handlers.

One Pipeline is built per process at startup and kept on app.state. Route
handlers receive it through FastAPI's dependency injection, so tests can
run the app against any pipeline (fakeredis tiers, in-memory durable store).
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from attribution.base.collaborators import CartService, OrderService
from attribution.core.attribution import AttributionResolver
from attribution.core.funnel import FunnelAggregator
from attribution.core.session_manager import SessionManager
from attribution.infrastructure.tiers import CacheTierCoordinator
from attribution.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Everything a request handler needs.

    Attributes:
        manager: Session lifecycle operations
        aggregator: Funnel computation
        cart_service: Cart collaborator
        order_service: Orders collaborator (display enrichment only)
        resolver: Attribution resolver
        fingerprint_salt: Salt for visitor fingerprints
    """

    manager: SessionManager
    aggregator: FunnelAggregator
    cart_service: CartService
    order_service: OrderService | None
    resolver: AttributionResolver
    fingerprint_salt: str

    @property
    def coordinator(self) -> CacheTierCoordinator:
        """The cache tier coordinator behind the manager."""
        return self.manager.coordinator

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Pipeline":
        """Wire a pipeline from configuration."""
        from attribution.infrastructure.collaborators import get_cart_service, get_order_service
        from attribution.infrastructure.factory import build_coordinator, build_session_manager

        settings = settings or get_settings()
        coordinator = build_coordinator(settings)
        cart_service = get_cart_service(settings.collaborators)
        order_service = get_order_service(settings.collaborators)
        return cls(
            manager=build_session_manager(coordinator, settings),
            aggregator=FunnelAggregator(coordinator, cart_service, order_service),
            cart_service=cart_service,
            order_service=order_service,
            resolver=AttributionResolver(settings.session.email_referrer_patterns),
            fingerprint_salt=settings.session.fingerprint_salt,
        )

    def close(self) -> None:
        """Release the durable tier connections."""
        self.coordinator.durable.close()


def get_pipeline(request: Request) -> Pipeline:
    """FastAPI dependency returning the process pipeline."""
    return request.app.state.pipeline
