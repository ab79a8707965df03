# ==============================================================================
# Database Utilities
# ==============================================================================
"""
Database utility functions for the durable tier.

Provides schema initialization and reset helpers.
Includes retry logic with exponential backoff for network resilience.
"""

import logging
from pathlib import Path

import psycopg2
from jinja2 import Template

from attribution.utils.config import get_settings
from attribution.utils.paths import get_init_sql_path
from attribution.utils.retry import retry_standard

logger = logging.getLogger(__name__)

POSTGRES_RETRY_EXCEPTIONS = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
)


def get_schema_file() -> Path | None:
    """Get the schema init.sql path, or None if not found."""
    path = get_init_sql_path()
    if path.exists():
        return path
    cwd_path = Path.cwd() / "schema" / "init.sql"
    if cwd_path.exists():
        return cwd_path
    return None


def render_schema_sql(schema_name: str) -> str:
    """Render the schema SQL template with the given schema name."""
    schema_file = get_schema_file()
    if not schema_file:
        raise RuntimeError(
            "Schema file (schema/init.sql) not found. "
            "Make sure you're running from the project root."
        )

    template = Template(schema_file.read_text())
    return template.render(schema_name=schema_name)


@retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
def ensure_database_exists() -> None:
    """
    Ensure the target database exists, creating it if needed.

    Connects to the 'postgres' maintenance database to check and create
    the target database.

    Raises:
        RuntimeError: If database creation fails
    """
    settings = get_settings()
    pg = settings.postgres
    admin_conn_string = (
        f"postgresql://{pg.user}:{pg.password}@{pg.host}:{pg.port}/postgres"
        f"?sslmode={pg.sslmode}"
    )

    try:
        # CREATE DATABASE cannot run inside a transaction
        conn = psycopg2.connect(admin_conn_string, connect_timeout=5)
        conn.autocommit = True
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (pg.database,))
                if cur.fetchone() is None:
                    logger.info("Creating database '%s'...", pg.database)
                    cur.execute(f'CREATE DATABASE "{pg.database}"')
                    logger.info("Database '%s' created.", pg.database)
        finally:
            conn.close()
    except psycopg2.Error as e:
        raise RuntimeError(f"Failed to ensure database exists: {e}") from e


@retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
def check_schema_exists() -> bool:
    """Check if the sessions table exists in the configured schema."""
    settings = get_settings()
    with psycopg2.connect(settings.postgres.connection_string, connect_timeout=5) as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_schema = %s
                    AND table_name = 'sessions'
                )
                """,
                (settings.postgres.schema_name,),
            )
            result = cur.fetchone()
            return bool(result[0]) if result else False


def ensure_schema() -> None:
    """
    Ensure database schema exists, initializing if needed.

    Idempotent and safe to call multiple times.

    Raises:
        RuntimeError: If schema file not found or initialization fails
    """
    ensure_database_exists()

    if check_schema_exists():
        return

    settings = get_settings()
    schema_name = settings.postgres.schema_name

    logger.info("Initializing database schema '%s'...", schema_name)

    try:
        schema_sql = render_schema_sql(schema_name)
        with psycopg2.connect(settings.postgres.connection_string) as conn:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
        logger.info("Database schema '%s' initialized.", schema_name)
    except psycopg2.Error as e:
        raise RuntimeError(f"Failed to initialize schema: {e}") from e


def reset_schema() -> None:
    """
    Drop and recreate the database schema.

    WARNING: This deletes all session and linkage data!
    """
    settings = get_settings()
    schema_name = settings.postgres.schema_name

    try:
        schema_sql = render_schema_sql(schema_name)
        with psycopg2.connect(settings.postgres.connection_string) as conn:
            with conn.cursor() as cur:
                cur.execute(f"DROP SCHEMA IF EXISTS {schema_name} CASCADE")
                cur.execute(schema_sql)
            conn.commit()
    except psycopg2.Error as e:
        raise RuntimeError(f"Failed to reset schema: {e}") from e
