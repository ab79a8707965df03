# ==============================================================================
# Collaborator Clients
# ==============================================================================
"""
HTTP clients for the Cart and Orders services.

Includes light retry logic (3 attempts, ~3 seconds) for connection errors
and timeouts on GET requests. Once retries are exhausted, or on any error
status other than 404, the failure is raised as CollaboratorUnavailable.
A 404 means "no such cart/order" and is answered with None.

When no service URL is configured, the in-memory implementations are used
(local development and tests).
"""

import logging
import threading
import uuid
from datetime import datetime

import requests

from attribution.base.collaborators import Cart, CartService, Order, OrderService
from attribution.core.errors import CollaboratorUnavailable
from attribution.utils.config import CollaboratorSettings, get_settings
from attribution.utils.retry import HTTP_RETRY_EXCEPTIONS, retry_light

logger = logging.getLogger(__name__)


class _HttpClient:
    """Thin requests.Session wrapper shared by both services."""

    def __init__(self, service: str, base_url: str, settings: CollaboratorSettings):
        self._service = service
        self._base_url = base_url.rstrip("/")
        self._timeout = settings.timeout_seconds
        self._session = requests.Session()
        if settings.api_key:
            self._session.headers["Authorization"] = f"Bearer {settings.api_key}"

    def _send(self, method: str, path: str, json: dict | None = None) -> requests.Response:
        return self._session.request(
            method, f"{self._base_url}{path}", json=json, timeout=self._timeout
        )

    @retry_light(HTTP_RETRY_EXCEPTIONS, logger)
    def _send_with_retry(self, method: str, path: str, json: dict | None = None) -> requests.Response:
        return self._send(method, path, json)

    def request(self, method: str, path: str, json: dict | None = None) -> dict | None:
        """
        Send a request and decode the JSON body.

        Only GET requests are retried; a timed-out POST may have been applied.

        Returns:
            Decoded body, or None on 404

        Raises:
            CollaboratorUnavailable: On transport failure, any non-404 error
                status, or a body that is not JSON
        """
        send = self._send_with_retry if method == "GET" else self._send
        try:
            response = send(method, path, json)
        except requests.exceptions.RequestException as e:
            raise CollaboratorUnavailable(self._service, e) from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise CollaboratorUnavailable(
                self._service, RuntimeError(f"HTTP {response.status_code}")
            )
        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorUnavailable(self._service, e) from e

    def close(self) -> None:
        self._session.close()


class HttpCartService(CartService):
    """Cart collaborator over HTTP (GET/POST {base}/carts)."""

    def __init__(self, base_url: str, settings: CollaboratorSettings | None = None):
        self._client = _HttpClient("cart", base_url, settings or get_settings().collaborators)

    def get_or_create_cart(self, cart_id: str | None = None) -> Cart:
        if cart_id is not None:
            data = self._client.request("GET", f"/carts/{cart_id}")
            if data is not None:
                return Cart.model_validate(data)
        body = {"id": cart_id} if cart_id else {}
        data = self._client.request("POST", "/carts", json=body)
        if data is None:
            raise CollaboratorUnavailable("cart", RuntimeError("cart creation returned 404"))
        return Cart.model_validate(data)

    def get_checkout_started_at(self, cart_id: str) -> datetime | None:
        data = self._client.request("GET", f"/carts/{cart_id}")
        if data is None:
            return None
        return Cart.model_validate(data).checkout_started_at


class HttpOrderService(OrderService):
    """Orders collaborator over HTTP (GET {base}/orders/{id})."""

    def __init__(self, base_url: str, settings: CollaboratorSettings | None = None):
        self._client = _HttpClient("orders", base_url, settings or get_settings().collaborators)

    def get_order(self, order_id: str) -> Order | None:
        data = self._client.request("GET", f"/orders/{order_id}")
        return Order.model_validate(data) if data is not None else None


class InMemoryCartService(CartService):
    """Process-local cart store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._carts: dict[str, Cart] = {}

    def get_or_create_cart(self, cart_id: str | None = None) -> Cart:
        with self._lock:
            cart_id = cart_id or uuid.uuid4().hex
            if cart_id not in self._carts:
                self._carts[cart_id] = Cart(id=cart_id)
            return self._carts[cart_id]

    def start_checkout(self, cart_id: str, started_at: datetime) -> None:
        """Record that checkout started for a cart."""
        with self._lock:
            self._carts[cart_id] = Cart(id=cart_id, checkout_started_at=started_at)

    def get_checkout_started_at(self, cart_id: str) -> datetime | None:
        with self._lock:
            cart = self._carts.get(cart_id)
            return cart.checkout_started_at if cart else None


class InMemoryOrderService(OrderService):
    """Process-local order store."""

    def __init__(self):
        self._orders: dict[str, Order] = {}

    def add_order(self, order: Order) -> None:
        self._orders[order.id] = order

    def get_order(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)


def get_cart_service(settings: CollaboratorSettings | None = None) -> CartService:
    """Get the configured Cart collaborator."""
    settings = settings or get_settings().collaborators
    if settings.cart_api_url:
        return HttpCartService(settings.cart_api_url, settings)
    logger.info("COLLAB_CART_API_URL not set, using in-memory cart service")
    return InMemoryCartService()


def get_order_service(settings: CollaboratorSettings | None = None) -> OrderService:
    """Get the configured Orders collaborator."""
    settings = settings or get_settings().collaborators
    if settings.orders_api_url:
        return HttpOrderService(settings.orders_api_url, settings)
    logger.info("COLLAB_ORDERS_API_URL not set, using in-memory order service")
    return InMemoryOrderService()
