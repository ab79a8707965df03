# ==============================================================================
# Base Abstract Classes
# ==============================================================================
"""
Abstract base classes defining the ports of the ports-and-adapters architecture.

- Cache: generic key-value cache with TTL and ranked writes
- SessionStateStore: one fast session tier (edge or shared)
- SessionRepository: the durable tier, the only mutation authority
- CartService / OrderService: external collaborators
"""

from attribution.base.cache import RANK_FIELD, Cache
from attribution.base.collaborators import Cart, CartService, Order, OrderService
from attribution.base.repositories import SessionRepository
from attribution.base.session_state import SessionStateStore

__all__ = [
    "RANK_FIELD",
    "Cache",
    "Cart",
    "CartService",
    "Order",
    "OrderService",
    "SessionRepository",
    "SessionStateStore",
]
