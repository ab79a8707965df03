# ==============================================================================
# Durable Tier Repository Adapters
# ==============================================================================
"""
Adapters implementing SessionRepository from base/repositories.py.

Currently supported:
- PostgreSQL (postgresql.py)
- In-memory (memory.py), for local development and tests
"""

from attribution.infrastructure.repositories.memory import InMemorySessionRepository
from attribution.infrastructure.repositories.postgresql import (
    PostgreSQLSessionRepository,
    check_postgresql_connection,
)

__all__ = [
    "InMemorySessionRepository",
    "PostgreSQLSessionRepository",
    "check_postgresql_connection",
]
