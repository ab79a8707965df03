# ==============================================================================
# PostgreSQL Repository Implementation
# ==============================================================================
"""
PostgreSQL implementation of the SessionRepository interface.

Every mutation is a single conditional statement (or, for cart linkage, a
single transaction), so the database row lock is what serializes concurrent
writers to one session:

- insert: INSERT ... ON CONFLICT (token) DO NOTHING
- compare_and_set: UPDATE ... WHERE <expected> ... RETURNING *
- link_cart: conditional UPDATE plus the cart_linkages INSERT, atomically
- record_invalidation: INSERT ... ON CONFLICT keeping the highest version

Transport failures (psycopg2.OperationalError, InterfaceError) propagate to
the caller; the cache tier coordinator turns them into StoreUnavailable.
"""

import logging
from contextlib import contextmanager
from datetime import datetime

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from attribution.base.repositories import SessionRepository
from attribution.core.errors import CartAlreadyLinked
from attribution.utils.config import Settings, get_settings
from attribution.utils.db import POSTGRES_RETRY_EXCEPTIONS
from attribution.utils.retry import retry_light

logger = logging.getLogger(__name__)

# Connection timeout
CONNECT_TIMEOUT = 10

# Pool bounds (the API runs sync handlers on a thread pool)
POOL_MIN_CONNECTIONS = 1
POOL_MAX_CONNECTIONS = 10

# Columns that may appear in a compare-and-set, with their SQL casts
SESSION_COLUMNS = {
    "page_id": "",
    "visitor_fingerprint": "",
    "source_attributes": "",
    "device": "",
    "cart_id": "",
    "state": "session_state",
    "order_id": "",
    "created_at": "",
    "last_activity_at": "",
    "converted_at": "",
    "expired_at": "",
    "version": "",
}

JSON_COLUMNS = {"source_attributes", "device"}


def _add_connect_timeout(conn_string: str) -> str:
    """Add connect_timeout to connection string if not present."""
    if "connect_timeout" not in conn_string:
        separator = "&" if "?" in conn_string else "?"
        return f"{conn_string}{separator}connect_timeout={CONNECT_TIMEOUT}"
    return conn_string


def _adapt(column: str, value):
    if column in JSON_COLUMNS and value is not None:
        return Json(value)
    return value


def _row_to_record(row: dict | None) -> dict | None:
    """Shape a sessions row like Session.to_record()."""
    if row is None:
        return None
    record = dict(row)
    # source_type is a denormalized copy of source_attributes.source_type
    record.pop("source_type", None)
    return record


class PostgreSQLSessionRepository(SessionRepository):
    """
    PostgreSQL implementation of SessionRepository.

    Uses a ThreadedConnectionPool so concurrent request handlers each run
    their conditional statements on their own connection.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the session repository.

        Args:
            settings: Application settings. If None, uses get_settings().
        """
        self._settings = settings or get_settings()
        self._pool: ThreadedConnectionPool | None = None
        self._schema = self._settings.postgres.schema_name

    @property
    def schema(self) -> str:
        """Get the database schema name."""
        return self._schema

    def connect(self) -> None:
        """Establish the connection pool."""
        conn_string = _add_connect_timeout(self._settings.postgres.connection_string)
        self._pool = ThreadedConnectionPool(
            POOL_MIN_CONNECTIONS, POOL_MAX_CONNECTIONS, conn_string
        )
        logger.info("PostgreSQLSessionRepository connected (schema=%s)", self._schema)

    @contextmanager
    def _cursor(self):
        """Yield a dict cursor inside a transaction, committing on success."""
        if self._pool is None:
            raise RuntimeError("PostgreSQL connection not established. Call connect() first.")

        conn = self._pool.getconn()
        broken = False
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except POSTGRES_RETRY_EXCEPTIONS:
            broken = True
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn, close=broken or bool(conn.closed))

    # ==========================================================================
    # Reads
    # ==========================================================================

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def get(self, token: str) -> dict | None:
        with self._cursor() as cur:
            cur.execute(f"SELECT * FROM {self._schema}.sessions WHERE token = %s", (token,))
            return _row_to_record(cur.fetchone())

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def get_linkage(self, token: str) -> dict | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT * FROM {self._schema}.cart_linkages WHERE session_token = %s",
                (token,),
            )
            row = cur.fetchone()
            return dict(row) if row else None

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def list_sessions(self, page_id: str, start: datetime, end: datetime) -> list[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT * FROM {self._schema}.sessions
                WHERE page_id = %s AND created_at >= %s AND created_at < %s
                ORDER BY created_at
                """,
                (page_id, start, end),
            )
            return [_row_to_record(row) for row in cur.fetchall()]

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def list_linkages(self, tokens: list[str]) -> dict[str, dict]:
        if not tokens:
            return {}
        with self._cursor() as cur:
            cur.execute(
                f"SELECT * FROM {self._schema}.cart_linkages WHERE session_token = ANY(%s)",
                (list(tokens),),
            )
            return {row["session_token"]: dict(row) for row in cur.fetchall()}

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def list_stale(self, cutoff: datetime, limit: int) -> list[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT * FROM {self._schema}.sessions
                WHERE state = 'ACTIVE' AND last_activity_at < %s
                ORDER BY last_activity_at
                LIMIT %s
                """,
                (cutoff, limit),
            )
            return [_row_to_record(row) for row in cur.fetchall()]

    # ==========================================================================
    # Conditional writes
    # ==========================================================================

    def insert(self, record: dict) -> bool:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {self._schema}.sessions (
                    token, page_id, visitor_fingerprint, source_attributes,
                    source_type, device, cart_id, state, order_id,
                    created_at, last_activity_at, converted_at, expired_at, version
                ) VALUES (
                    %(token)s, %(page_id)s, %(visitor_fingerprint)s, %(source_attributes)s,
                    %(source_type)s::{self._schema}.source_type, %(device)s, %(cart_id)s,
                    %(state)s::{self._schema}.session_state, %(order_id)s,
                    %(created_at)s, %(last_activity_at)s, %(converted_at)s,
                    %(expired_at)s, %(version)s
                )
                ON CONFLICT (token) DO NOTHING
                """,
                {
                    **record,
                    "source_attributes": Json(record["source_attributes"]),
                    "source_type": record["source_attributes"]["source_type"],
                    "device": _adapt("device", record.get("device")),
                },
            )
            inserted = cur.rowcount == 1
        if not inserted:
            logger.debug("Token %s... already present, insert skipped", record["token"][:8])
        return inserted

    def compare_and_set(self, token: str, expected: dict, changes: dict) -> dict | None:
        unknown = (set(expected) | set(changes)) - set(SESSION_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown session columns: {sorted(unknown)}")

        set_clauses = []
        params: list = []
        for column, value in changes.items():
            cast = SESSION_COLUMNS[column]
            suffix = f"::{self._schema}.{cast}" if cast else ""
            set_clauses.append(f"{column} = %s{suffix}")
            params.append(_adapt(column, value))
        set_clauses.append("version = version + 1")

        where_clauses = ["token = %s"]
        params.append(token)
        for column, value in expected.items():
            if value is None:
                where_clauses.append(f"{column} IS NULL")
            else:
                where_clauses.append(f"{column} = %s")
                params.append(_adapt(column, value))

        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._schema}.sessions
                SET {", ".join(set_clauses)}
                WHERE {" AND ".join(where_clauses)}
                RETURNING *
                """,
                params,
            )
            return _row_to_record(cur.fetchone())

    def link_cart(self, token: str, linkage: dict) -> dict | None:
        try:
            with self._cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE {self._schema}.sessions
                    SET cart_id = %s, last_activity_at = %s, version = version + 1
                    WHERE token = %s AND cart_id IS NULL AND state = 'ACTIVE'
                    RETURNING *
                    """,
                    (linkage["cart_id"], linkage["linked_at"], token),
                )
                row = cur.fetchone()
                if row is None:
                    return None
                cur.execute(
                    f"""
                    INSERT INTO {self._schema}.cart_linkages
                        (cart_id, session_token, source_type, page_id, linked_at)
                    VALUES (%s, %s, %s::{self._schema}.source_type, %s, %s)
                    """,
                    (
                        linkage["cart_id"],
                        linkage["session_token"],
                        linkage["source_type"],
                        linkage["page_id"],
                        linkage["linked_at"],
                    ),
                )
                return _row_to_record(row)
        except pg_errors.UniqueViolation as e:
            raise CartAlreadyLinked(linkage["cart_id"]) from e

    # ==========================================================================
    # Failed cache invalidations
    # ==========================================================================

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def record_invalidation(self, tier: str, token: str, version: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {self._schema}.cache_invalidations (tier, token, version)
                VALUES (%s, %s, %s)
                ON CONFLICT (tier, token) DO UPDATE
                SET version = GREATEST({self._schema}.cache_invalidations.version, EXCLUDED.version)
                """,
                (tier, token, version),
            )

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def get_invalidations(self, token: str) -> dict[str, int]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT tier, version FROM {self._schema}.cache_invalidations WHERE token = %s",
                (token,),
            )
            return {row["tier"]: row["version"] for row in cur.fetchall()}

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def list_invalidations(self, limit: int) -> list[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT tier, token, version FROM {self._schema}.cache_invalidations
                ORDER BY recorded_at
                LIMIT %s
                """,
                (limit,),
            )
            return [dict(row) for row in cur.fetchall()]

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def clear_invalidation(self, tier: str, token: str, version: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                f"""
                DELETE FROM {self._schema}.cache_invalidations
                WHERE tier = %s AND token = %s AND version <= %s
                """,
                (tier, token, version),
            )
            return cur.rowcount == 1

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def count_invalidations(self) -> int:
        with self._cursor() as cur:
            cur.execute(f"SELECT count(*) AS pending FROM {self._schema}.cache_invalidations")
            return cur.fetchone()["pending"]

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def ping(self) -> bool:
        try:
            with self._cursor() as cur:
                cur.execute("SELECT 1")
                return cur.fetchone() is not None
        except (psycopg2.Error, RuntimeError):
            return False

    def close(self) -> None:
        """Close all pooled connections."""
        if self._pool:
            try:
                self._pool.closeall()
                logger.info("PostgreSQLSessionRepository connection closed")
            except psycopg2.Error as e:
                logger.warning("Error closing connection: %s", e)
            finally:
                self._pool = None


def check_postgresql_connection(settings: Settings | None = None) -> bool:
    """
    Check if PostgreSQL is reachable.

    Args:
        settings: Application settings. If None, uses get_settings().

    Returns:
        True if connection successful, False otherwise
    """
    try:
        settings = settings or get_settings()
        conn_string = _add_connect_timeout(settings.postgres.connection_string)
        conn = psycopg2.connect(conn_string)
        conn.close()
        return True
    except psycopg2.Error:
        return False
