# ==============================================================================
# In-Memory Repository Implementation
# ==============================================================================
"""
Process-local implementation of SessionRepository.

Suitable for local development (DURABLE_BACKEND=memory) and tests. All
operations hold one lock, so compare-and-set has the same linearizable
behaviour as the PostgreSQL row-level conditional update.
"""

import copy
import logging
import threading
from datetime import datetime

from attribution.base.repositories import SessionRepository
from attribution.core.errors import CartAlreadyLinked

logger = logging.getLogger(__name__)


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class InMemorySessionRepository(SessionRepository):
    """Thread-safe dict-backed durable store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, dict] = {}
        self._linkages: dict[str, dict] = {}
        self._cart_owners: dict[str, str] = {}
        self._invalidations: dict[tuple[str, str], int] = {}

    def connect(self) -> None:
        """Nothing to connect to."""
        logger.info("InMemorySessionRepository ready")

    def get(self, token: str) -> dict | None:
        with self._lock:
            record = self._sessions.get(token)
            return copy.deepcopy(record) if record else None

    def insert(self, record: dict) -> bool:
        with self._lock:
            if record["token"] in self._sessions:
                return False
            self._sessions[record["token"]] = copy.deepcopy(record)
            return True

    def _matches(self, record: dict, expected: dict) -> bool:
        return all(record.get(field) == value for field, value in expected.items())

    def compare_and_set(self, token: str, expected: dict, changes: dict) -> dict | None:
        with self._lock:
            record = self._sessions.get(token)
            if record is None or not self._matches(record, expected):
                return None
            record.update(copy.deepcopy(changes))
            record["version"] = record["version"] + 1
            return copy.deepcopy(record)

    def link_cart(self, token: str, linkage: dict) -> dict | None:
        with self._lock:
            record = self._sessions.get(token)
            if record is None or not self._matches(record, {"cart_id": None, "state": "ACTIVE"}):
                return None
            owner = self._cart_owners.get(linkage["cart_id"])
            if owner is not None and owner != token:
                raise CartAlreadyLinked(linkage["cart_id"])

            record["cart_id"] = linkage["cart_id"]
            record["last_activity_at"] = copy.deepcopy(linkage["linked_at"])
            record["version"] = record["version"] + 1
            self._linkages[token] = copy.deepcopy(linkage)
            self._cart_owners[linkage["cart_id"]] = token
            return copy.deepcopy(record)

    def get_linkage(self, token: str) -> dict | None:
        with self._lock:
            linkage = self._linkages.get(token)
            return copy.deepcopy(linkage) if linkage else None

    def list_sessions(self, page_id: str, start: datetime, end: datetime) -> list[dict]:
        with self._lock:
            matches = [
                copy.deepcopy(r)
                for r in self._sessions.values()
                if r["page_id"] == page_id and start <= _as_datetime(r["created_at"]) < end
            ]
        return sorted(matches, key=lambda r: _as_datetime(r["created_at"]))

    def list_linkages(self, tokens: list[str]) -> dict[str, dict]:
        with self._lock:
            return {t: copy.deepcopy(self._linkages[t]) for t in tokens if t in self._linkages}

    def list_stale(self, cutoff: datetime, limit: int) -> list[dict]:
        with self._lock:
            stale = [
                copy.deepcopy(r)
                for r in self._sessions.values()
                if r["state"] == "ACTIVE" and _as_datetime(r["last_activity_at"]) < cutoff
            ]
        stale.sort(key=lambda r: _as_datetime(r["last_activity_at"]))
        return stale[:limit]

    def record_invalidation(self, tier: str, token: str, version: int) -> None:
        with self._lock:
            key = (tier, token)
            self._invalidations[key] = max(version, self._invalidations.get(key, 0))

    def get_invalidations(self, token: str) -> dict[str, int]:
        with self._lock:
            return {tier: v for (tier, t), v in self._invalidations.items() if t == token}

    def list_invalidations(self, limit: int) -> list[dict]:
        with self._lock:
            entries = list(self._invalidations.items())[:limit]
        return [{"tier": tier, "token": token, "version": v} for (tier, token), v in entries]

    def clear_invalidation(self, tier: str, token: str, version: int) -> bool:
        with self._lock:
            key = (tier, token)
            if self._invalidations.get(key, version + 1) > version:
                return False
            del self._invalidations[key]
            return True

    def count_invalidations(self) -> int:
        with self._lock:
            return len(self._invalidations)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        """Nothing to release."""
        logger.info("InMemorySessionRepository closed")
