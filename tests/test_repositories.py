# ==============================================================================
# Tests for the In-Memory Durable Repository
# ==============================================================================
"""
Unit tests for InMemorySessionRepository.

The in-memory store backs DURABLE_BACKEND=memory and every other test
module, so its compare-and-set semantics must match the PostgreSQL one.
"""

from datetime import datetime, timedelta, timezone

import pytest

from attribution.core.errors import CartAlreadyLinked

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(token: str, page_id: str = "home", created_at: datetime = T0, **fields) -> dict:
    return {
        "token": token,
        "page_id": page_id,
        "state": "ACTIVE",
        "cart_id": None,
        "order_id": None,
        "created_at": created_at.isoformat(),
        "last_activity_at": created_at.isoformat(),
        "version": 1,
        **fields,
    }


def _linkage(token: str, cart_id: str) -> dict:
    return {
        "cart_id": cart_id,
        "session_token": token,
        "source_type": "DIRECT",
        "page_id": "home",
        "linked_at": (T0 + timedelta(minutes=5)).isoformat(),
    }


class TestInsertAndGet:
    """Tests for insert() and get()."""

    def test_insert_then_get(self, repository):
        assert repository.insert(_record("a"))
        assert repository.get("a")["page_id"] == "home"

    def test_duplicate_token_rejected(self, repository):
        repository.insert(_record("a"))
        assert not repository.insert(_record("a", page_id="other"))
        assert repository.get("a")["page_id"] == "home"

    def test_returned_records_are_copies(self, repository):
        repository.insert(_record("a"))
        repository.get("a")["state"] = "CONVERTED"
        assert repository.get("a")["state"] == "ACTIVE"


class TestCompareAndSet:
    """Tests for compare_and_set()."""

    def test_matching_condition_applies_and_bumps_version(self, repository):
        repository.insert(_record("a"))

        updated = repository.compare_and_set(
            "a", {"state": "ACTIVE", "version": 1}, {"state": "EXPIRED"}
        )

        assert updated["state"] == "EXPIRED"
        assert updated["version"] == 2

    def test_stale_condition_is_rejected(self, repository):
        repository.insert(_record("a"))
        repository.compare_and_set("a", {"version": 1}, {"visitor_fingerprint": "x"})

        assert repository.compare_and_set("a", {"version": 1}, {"visitor_fingerprint": "y"}) is None
        assert repository.get("a")["visitor_fingerprint"] == "x"

    def test_none_matches_null(self, repository):
        repository.insert(_record("a"))
        assert repository.compare_and_set("a", {"order_id": None}, {"order_id": "o"}) is not None
        assert repository.compare_and_set("a", {"order_id": None}, {"order_id": "p"}) is None

    def test_unknown_token(self, repository):
        assert repository.compare_and_set("missing", {}, {"state": "EXPIRED"}) is None


class TestLinkCart:
    """Tests for link_cart()."""

    def test_links_and_records_linkage(self, repository):
        repository.insert(_record("a"))

        updated = repository.link_cart("a", _linkage("a", "cart-1"))

        assert updated["cart_id"] == "cart-1"
        assert updated["version"] == 2
        assert repository.get_linkage("a")["cart_id"] == "cart-1"

    def test_second_link_is_rejected(self, repository):
        repository.insert(_record("a"))
        repository.link_cart("a", _linkage("a", "cart-1"))

        assert repository.link_cart("a", _linkage("a", "cart-2")) is None
        assert repository.get_linkage("a")["cart_id"] == "cart-1"

    def test_cart_of_another_session(self, repository):
        repository.insert(_record("a"))
        repository.insert(_record("b"))
        repository.link_cart("a", _linkage("a", "cart-1"))

        with pytest.raises(CartAlreadyLinked):
            repository.link_cart("b", _linkage("b", "cart-1"))
        assert repository.get("b")["cart_id"] is None

    def test_inactive_session_is_rejected(self, repository):
        repository.insert(_record("a", state="EXPIRED"))
        assert repository.link_cart("a", _linkage("a", "cart-1")) is None


class TestScans:
    """Tests for list_sessions(), list_linkages() and list_stale()."""

    def test_list_sessions_filters_page_and_window(self, repository):
        repository.insert(_record("a"))
        repository.insert(_record("b", created_at=T0 + timedelta(days=1)))
        repository.insert(_record("c", page_id="pricing"))

        found = repository.list_sessions("home", T0, T0 + timedelta(days=1))

        assert [r["token"] for r in found] == ["a"]

    def test_list_linkages(self, repository):
        repository.insert(_record("a"))
        repository.insert(_record("b"))
        repository.link_cart("a", _linkage("a", "cart-1"))

        assert set(repository.list_linkages(["a", "b", "zzz"])) == {"a"}

    def test_list_stale_oldest_first(self, repository):
        repository.insert(_record("new", created_at=T0 + timedelta(days=2)))
        repository.insert(_record("old", created_at=T0))
        repository.insert(_record("mid", created_at=T0 + timedelta(days=1)))
        repository.insert(_record("done", created_at=T0, state="CONVERTED", order_id="o"))

        stale = repository.list_stale(T0 + timedelta(days=3), limit=2)

        assert [r["token"] for r in stale] == ["old", "mid"]
