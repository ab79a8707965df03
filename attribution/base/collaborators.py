# ==============================================================================
# External Collaborator Interfaces
# ==============================================================================
"""
Contracts for the services this pipeline consumes but does not own.

- CartService: cart creation and checkout progress
- OrderService: order lookup, used only to enrich displays

Neither service is ever the source of truth for funnel counts.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel


class Cart(BaseModel):
    """The subset of a cart this pipeline reads."""

    id: str
    checkout_started_at: datetime | None = None


class Order(BaseModel):
    """The subset of an order this pipeline reads."""

    id: str
    status: str | None = None
    total: float | None = None
    currency: str | None = None
    created_at: datetime | None = None


class CartService(ABC):
    """Cart collaborator."""

    @abstractmethod
    def get_or_create_cart(self, cart_id: str | None = None) -> Cart:
        """
        Fetch a cart, creating a new one when no id is given.

        Raises:
            CollaboratorUnavailable: If the service cannot be reached
        """
        ...

    @abstractmethod
    def get_checkout_started_at(self, cart_id: str) -> datetime | None:
        """
        Get when checkout started for a cart.

        Returns:
            Timestamp, or None if checkout has not started

        Raises:
            CollaboratorUnavailable: If the service cannot be reached
        """
        ...


class OrderService(ABC):
    """Orders collaborator."""

    @abstractmethod
    def get_order(self, order_id: str) -> Order | None:
        """
        Fetch an order.

        Returns:
            Order, or None if it is not (yet) visible

        Raises:
            CollaboratorUnavailable: If the service cannot be reached
        """
        ...
