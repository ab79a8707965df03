# ==============================================================================
# Funnel Aggregator
# ==============================================================================
"""
Computes funnel snapshots from committed durable state.

Each session created in the window lands in exactly one stage:

    viewed_only       no cart linked
    cart_linked       cart linked, checkout not started
    checkout_started  linked cart reports a checkout-start time
    converted         session state is CONVERTED

The session record is authoritative: a converted session counts as
converted even if the Orders service does not show the order yet. Sessions
whose stored state breaks the funnel order are counted as anomalies (and as
views) but never reclassified into a stage.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING

from attribution.base.collaborators import CartService, OrderService
from attribution.core.errors import CollaboratorUnavailable
from attribution.core.models import (
    CartLinkage,
    FunnelCounts,
    FunnelSnapshot,
    FunnelWindow,
    SessionState,
    SourceType,
    utcnow,
)

if TYPE_CHECKING:
    from attribution.infrastructure.tiers import CacheTierCoordinator

logger = logging.getLogger(__name__)
anomaly_logger = logging.getLogger("attribution.anomaly")

VIEWED_ONLY = "viewed_only"
CART_LINKED = "cart_linked"
CHECKOUT_STARTED = "checkout_started"
CONVERTED = "converted"

# Anomaly reasons
CHECKOUT_WITHOUT_CART_LINK = "checkout_without_cart_link"
LINKAGE_MISMATCH = "linkage_mismatch"
CONVERTED_WITHOUT_CART_LINK = "converted_without_cart_link"
ORDER_STATE_MISMATCH = "order_state_mismatch"


class _Classifier:
    """Classifies one funnel run, caching checkout lookups per cart."""

    def __init__(self, cart_service: CartService):
        self._cart_service = cart_service
        self._checkout: dict[str, bool | None] = {}
        self.lookup_failures = 0

    def checkout_started(self, cart_id: str) -> bool | None:
        """
        Whether the cart started checkout.

        Returns:
            True/False, or None if the Cart service could not answer
        """
        if cart_id not in self._checkout:
            try:
                started = self._cart_service.get_checkout_started_at(cart_id) is not None
            except CollaboratorUnavailable as e:
                logger.warning("Checkout lookup failed for cart %s: %s", cart_id, e)
                self.lookup_failures += 1
                started = None
            self._checkout[cart_id] = started
        return self._checkout[cart_id]

    def classify(self, record: dict, linkage: CartLinkage | None) -> tuple[str | None, str | None]:
        """
        Place a session record in a stage.

        Returns:
            (stage, None) for a consistent session, (None, reason) for an anomaly
        """
        state = record.get("state")
        order_id = record.get("order_id")
        cart_id = record.get("cart_id")
        converted = state == SessionState.CONVERTED.value

        if converted != (order_id is not None):
            return None, ORDER_STATE_MISMATCH

        if cart_id is None and linkage is not None:
            if self.checkout_started(linkage.cart_id):
                return None, CHECKOUT_WITHOUT_CART_LINK
            return None, LINKAGE_MISMATCH

        if cart_id is not None and (linkage is None or linkage.cart_id != cart_id):
            return None, LINKAGE_MISMATCH

        if converted:
            if cart_id is None:
                return None, CONVERTED_WITHOUT_CART_LINK
            return CONVERTED, None

        if cart_id is None:
            return VIEWED_ONLY, None

        # A failed lookup leaves the session at the stage it provably reached
        if self.checkout_started(cart_id):
            return CHECKOUT_STARTED, None
        return CART_LINKED, None


def _source_type(record: dict) -> SourceType:
    attrs = record.get("source_attributes") or {}
    try:
        return SourceType(attrs.get("source_type", SourceType.DIRECT.value))
    except ValueError:
        return SourceType.DIRECT


def _accumulate(counts: FunnelCounts, stage: str | None) -> None:
    counts.views += 1
    if stage in (CART_LINKED, CHECKOUT_STARTED, CONVERTED):
        counts.cart_adds += 1
    if stage in (CHECKOUT_STARTED, CONVERTED):
        counts.checkout_starts += 1
    if stage == CONVERTED:
        counts.orders += 1


class FunnelAggregator:
    """
    Builds FunnelSnapshots for a page and time window.

    Args:
        coordinator: Cache tier coordinator (only its durable reads are used)
        cart_service: Cart collaborator, for checkout-start timestamps
        order_service: Optional Orders collaborator, for the pending-orders figure
    """

    def __init__(
        self,
        coordinator: CacheTierCoordinator,
        cart_service: CartService,
        order_service: OrderService | None = None,
    ):
        self._coordinator = coordinator
        self._cart_service = cart_service
        self._order_service = order_service

    def compute_funnel(self, page_id: str, window: FunnelWindow) -> FunnelSnapshot:
        """
        Compute the funnel for sessions of a page created within the window.

        Raises:
            StoreUnavailable: If the durable tier cannot be scanned
        """
        records = self._coordinator.list_sessions(page_id, window)
        linkages = self._coordinator.list_linkages([r["token"] for r in records])

        classifier = _Classifier(self._cart_service)
        stages: Counter[str] = Counter()
        reasons: Counter[str] = Counter()
        totals = FunnelCounts()
        by_source: dict[SourceType, FunnelCounts] = {}
        converted_orders: list[str] = []

        for record in records:
            stage, reason = classifier.classify(record, linkages.get(record["token"]))
            source_counts = by_source.setdefault(_source_type(record), FunnelCounts())
            _accumulate(totals, stage)
            _accumulate(source_counts, stage)

            if reason is not None:
                reasons[reason] += 1
                anomaly_logger.warning(
                    "%s token=%s... page=%s", reason, record["token"][:8], page_id
                )
                continue

            stages[stage] += 1
            if stage == CONVERTED:
                converted_orders.append(record["order_id"])

        snapshot = FunnelSnapshot(
            page_id=page_id,
            window_start=window.start,
            window_end=window.end,
            viewed_only=stages[VIEWED_ONLY],
            cart_linked=stages[CART_LINKED],
            checkout_started=stages[CHECKOUT_STARTED],
            converted=stages[CONVERTED],
            views=totals.views,
            cart_adds=totals.cart_adds,
            checkout_starts=totals.checkout_starts,
            orders=totals.orders,
            anomalies=sum(reasons.values()),
            anomaly_reasons=dict(reasons),
            by_source_type=by_source,
            checkout_lookup_failures=classifier.lookup_failures,
            orders_pending=self._count_pending_orders(converted_orders),
            computed_at=utcnow(),
        )
        logger.info(
            "Funnel for %s: %d views, %d carts, %d checkouts, %d orders, %d anomalies",
            page_id,
            snapshot.views,
            snapshot.cart_adds,
            snapshot.checkout_starts,
            snapshot.orders,
            snapshot.anomalies,
        )
        return snapshot

    def _count_pending_orders(self, order_ids: list[str]) -> int | None:
        """Converted sessions whose order the Orders service does not show yet."""
        if self._order_service is None:
            return None
        pending = 0
        try:
            for order_id in order_ids:
                if self._order_service.get_order(order_id) is None:
                    pending += 1
        except CollaboratorUnavailable as e:
            logger.warning("Orders service unavailable, skipping pending count: %s", e)
            return None
        return pending
