# ==============================================================================
# Tests for the HTTP API
# ==============================================================================
"""
Tests for the FastAPI application, run in-process with TestClient.

The app is built around the `pipeline` fixture from conftest.py, so every
request goes through fakeredis tiers and the in-memory durable store.
"""

from datetime import timedelta
from unittest.mock import patch

import psycopg2
import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from attribution.api.app import create_app
from attribution.base.collaborators import Order

USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)


@pytest.fixture()
def client(pipeline):
    with TestClient(create_app(pipeline)) as client:
        yield client


def _create(client, **payload) -> dict:
    body = {"page_id": "home", **payload}
    response = client.post("/sessions", json=body)
    assert response.status_code == 200, response.text
    return response.json()


# ==============================================================================
# POST /sessions
# ==============================================================================


class TestCreateSession:
    """Tests for POST /sessions."""

    def test_campaign_visit(self, client):
        data = _create(
            client,
            query_params={"utm_source": "google", "utm_campaign": "fall_sale"},
            ip_address="203.0.113.7",
            user_agent=USER_AGENT,
        )

        assert data["resumed"] is False
        assert len(data["token"]) == 43
        assert data["attribution"]["source_type"] == "LANDING_PAGE"
        assert data["attribution"]["campaign"] == "fall_sale"
        assert data["session"]["state"] == "ACTIVE"
        assert data["session"]["device"]["device_type"] == "mobile"
        assert len(data["session"]["visitor_fingerprint"]) == 64

    def test_email_visit(self, client):
        data = _create(client, referrer="https://mail.example.com/click")
        assert data["attribution"]["source_type"] == "EMAIL"

    def test_resume_keeps_attribution(self, client):
        first = _create(client, query_params={"utm_campaign": "fall_sale"})

        second = _create(client, token=first["token"], referrer="https://mail.example.com/click")

        assert second["resumed"] is True
        assert second["token"] == first["token"]
        assert second["attribution"]["source_type"] == "LANDING_PAGE"

    def test_unknown_token_starts_new_session(self, client):
        data = _create(client, token="Z" * 43)
        assert data["resumed"] is False
        assert data["token"] != "Z" * 43

    def test_expired_token_starts_new_session(self, client, clock):
        first = _create(client)
        clock.advance(days=31)

        second = _create(client, token=first["token"])

        assert second["resumed"] is False
        assert second["token"] != first["token"]

    def test_page_id_required(self, client):
        assert client.post("/sessions", json={}).status_code == 422


# ==============================================================================
# POST /sessions/{token}/cart
# ==============================================================================


class TestLinkCart:
    """Tests for POST /sessions/{token}/cart."""

    def test_link_given_cart(self, client):
        token = _create(client, query_params={"utm_campaign": "x"})["token"]

        response = client.post(f"/sessions/{token}/cart", json={"cart_id": "cart-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "linked"
        assert data["linkage"]["cart_id"] == "cart-1"
        assert data["linkage"]["source_type"] == "LANDING_PAGE"

    def test_link_obtains_cart_from_service(self, client, cart_service):
        token = _create(client)["token"]

        first = client.post(f"/sessions/{token}/cart").json()
        second = client.post(f"/sessions/{token}/cart").json()

        cart_id = first["linkage"]["cart_id"]
        assert cart_service.get_checkout_started_at(cart_id) is None
        assert second == first

    def test_second_cart_reports_original(self, client):
        token = _create(client)["token"]
        client.post(f"/sessions/{token}/cart", json={"cart_id": "cart-1"})

        response = client.post(f"/sessions/{token}/cart", json={"cart_id": "cart-2"})

        assert response.status_code == 200
        assert response.json()["status"] == "already_linked"
        assert response.json()["linkage"]["cart_id"] == "cart-1"

    def test_cart_owned_by_other_session(self, client):
        a = _create(client)["token"]
        b = _create(client)["token"]
        client.post(f"/sessions/{a}/cart", json={"cart_id": "cart-1"})

        response = client.post(f"/sessions/{b}/cart", json={"cart_id": "cart-1"})

        assert response.status_code == 409
        assert response.json()["error"] == "CartAlreadyLinked"

    def test_unknown_session(self, client):
        response = client.post(f"/sessions/{'Q' * 43}/cart", json={"cart_id": "cart-1"})

        assert response.status_code == 404
        assert response.json()["error"] == "SessionNotFound"

    def test_expired_session(self, client, clock):
        token = _create(client)["token"]
        clock.advance(days=31)

        response = client.post(f"/sessions/{token}/cart", json={"cart_id": "cart-1"})

        assert response.status_code == 410

    def test_expired_session_gets_no_cart(self, client, clock, cart_service):
        token = _create(client)["token"]
        clock.advance(days=31)

        response = client.post(f"/sessions/{token}/cart")

        assert response.status_code == 410
        assert cart_service._carts == {}

    def test_converted_session_gets_no_cart(self, client, cart_service):
        token = _create(client)["token"]
        client.post(f"/sessions/{token}/convert", json={"order_id": "order-1"})

        response = client.post(f"/sessions/{token}/cart")

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransition"
        assert cart_service._carts == {}


# ==============================================================================
# POST /sessions/{token}/convert and GET /sessions/{token}
# ==============================================================================


class TestConvert:
    """Tests for POST /sessions/{token}/convert."""

    def test_convert_and_repeat(self, client):
        token = _create(client)["token"]
        client.post(f"/sessions/{token}/cart", json={"cart_id": "cart-1"})

        first = client.post(f"/sessions/{token}/convert", json={"order_id": "order-1"})
        second = client.post(f"/sessions/{token}/convert", json={"order_id": "order-1"})

        assert first.status_code == 200
        assert first.json()["state"] == "CONVERTED"
        assert second.status_code == 200
        assert second.json() == first.json()

    def test_conflicting_order(self, client):
        token = _create(client)["token"]
        client.post(f"/sessions/{token}/convert", json={"order_id": "order-1"})

        response = client.post(f"/sessions/{token}/convert", json={"order_id": "order-2"})

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransition"

    def test_expired_session(self, client, clock):
        token = _create(client)["token"]
        clock.advance(days=31)

        response = client.post(f"/sessions/{token}/convert", json={"order_id": "order-1"})

        assert response.status_code == 409


class TestGetSession:
    """Tests for GET /sessions/{token}."""

    def test_detail_with_order(self, client, order_service):
        token = _create(client)["token"]
        client.post(f"/sessions/{token}/cart", json={"cart_id": "cart-1"})
        client.post(f"/sessions/{token}/convert", json={"order_id": "order-1"})
        order_service.add_order(Order(id="order-1", status="paid", total=42.5, currency="USD"))

        data = client.get(f"/sessions/{token}").json()

        assert data["session"]["order_id"] == "order-1"
        assert data["linkage"]["cart_id"] == "cart-1"
        assert data["order"]["total"] == 42.5

    def test_order_not_yet_visible(self, client):
        token = _create(client)["token"]
        client.post(f"/sessions/{token}/convert", json={"order_id": "order-1"})

        data = client.get(f"/sessions/{token}").json()

        assert data["session"]["state"] == "CONVERTED"
        assert data["order"] is None

    def test_durable_outage_is_503(self, client, repository):
        with patch.object(repository, "get", side_effect=psycopg2.OperationalError("down")):
            response = client.get(f"/sessions/{'Q' * 43}")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "2"
        assert response.json()["error"] == "StoreUnavailable"


# ==============================================================================
# GET /funnel and GET /health
# ==============================================================================


class TestFunnel:
    """Tests for GET /funnel."""

    def test_explicit_window(self, client, clock, cart_service):
        for i in range(4):
            token = _create(client)["token"]
            if i < 2:
                client.post(f"/sessions/{token}/cart", json={"cart_id": f"cart-{i}"})
            if i == 0:
                cart_service.start_checkout("cart-0", clock.now)
                client.post(f"/sessions/{token}/convert", json={"order_id": "order-0"})

        response = client.get(
            "/funnel",
            params={
                "page_id": "home",
                "start": (clock.now - timedelta(hours=1)).isoformat(),
                "end": (clock.now + timedelta(hours=1)).isoformat(),
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert (data["views"], data["cart_adds"], data["checkout_starts"], data["orders"]) == (
            4,
            2,
            1,
            1,
        )
        assert data["conversion_rate"] == pytest.approx(25.0)

    def test_trailing_days_default(self, client):
        response = client.get("/funnel", params={"page_id": "home"})
        assert response.status_code == 200
        assert response.json()["views"] == 0

    def test_lone_start_rejected(self, client, clock):
        response = client.get("/funnel", params={"page_id": "home", "start": clock.now.isoformat()})
        assert response.status_code == 422

    def test_reversed_window_rejected(self, client, clock):
        response = client.get(
            "/funnel",
            params={
                "page_id": "home",
                "start": clock.now.isoformat(),
                "end": (clock.now - timedelta(days=1)).isoformat(),
            },
        )
        assert response.status_code == 422

    def test_page_id_required(self, client):
        assert client.get("/funnel").status_code == 422


class TestHealth:
    """Tests for GET /health."""

    def test_all_ok(self, client):
        data = client.get("/health").json()

        assert data["status"] == "ok"
        assert data["tiers"] == {"edge": True, "shared": True, "durable": True}
        assert data["pending_invalidations"] == 0

    def test_edge_down_is_degraded(self, client, edge):
        with patch.object(edge, "ping", side_effect=RedisConnectionError("down")):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_durable_down_is_503(self, client, repository):
        with patch.object(repository, "ping", return_value=False):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"
