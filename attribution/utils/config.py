# ==============================================================================
# Application Configuration
# ==============================================================================
"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables, with support for
.env files via python-dotenv.
"""

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file before any settings are instantiated
load_dotenv()


# Referrer patterns (matched against "host/path") that identify an email click
DEFAULT_EMAIL_REFERRER_PATTERNS = [
    r"^(mail|email|webmail|newsletter|click|links?)\.",
    r"\.(mail|email)\.",
    r"^mail\.google\.com",
    r"^outlook\.(live|office|office365)\.com",
    r"^mail\.yahoo\.com",
    r"/(ls/)?click(/|$|\?)",
    r"/track/click",
]


class SessionSettings(BaseSettings):
    """Session lifecycle and cache tier policy.

    The inactivity horizon and both cache TTLs are tunable policy, not
    correctness invariants.
    """

    model_config = SettingsConfigDict(env_prefix="SESSION_")

    inactivity_horizon_days: int = Field(
        default=30, description="Days since last activity before a session expires"
    )
    edge_ttl_seconds: int = Field(default=300, description="TTL for edge tier entries")
    shared_ttl_seconds: Optional[int] = Field(
        default=None, description="TTL for shared tier entries (defaults to the horizon)"
    )
    fingerprint_salt: str = Field(
        default="change-me", description="Salt mixed into visitor fingerprints"
    )
    email_referrer_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EMAIL_REFERRER_PATTERNS),
        description="Regexes matched against referrer host/path to detect email clicks",
    )
    token_retry_attempts: int = Field(
        default=3, description="New tokens to try when an issued token collides"
    )

    @property
    def inactivity_horizon_seconds(self) -> int:
        """Inactivity horizon in seconds."""
        return self.inactivity_horizon_days * 24 * 60 * 60

    @property
    def shared_ttl(self) -> int:
        """Effective shared tier TTL in seconds."""
        if self.shared_ttl_seconds is not None:
            return self.shared_ttl_seconds
        return self.inactivity_horizon_seconds


class ValkeySettings(BaseSettings):
    """Valkey (Redis-compatible) connection settings for the shared tier."""

    model_config = SettingsConfigDict(env_prefix="VALKEY_")

    host: str = Field(default="localhost", description="Valkey host")
    port: int = Field(default=6379, description="Valkey port")
    password: Optional[str] = Field(default=None, description="Valkey password")
    db: int = Field(default=0, description="Valkey database number")
    ssl: bool = Field(default=False, description="Use SSL/TLS connection")

    @property
    def url(self) -> str:
        """Build Valkey connection URL."""
        scheme = "rediss" if self.ssl else "redis"
        if self.password:
            return f"{scheme}://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


class EdgeSettings(BaseSettings):
    """Edge tier connection settings.

    The edge tier is a Valkey instance colocated with the edge nodes. When no
    URL is given it falls back to a separate database on the shared host.
    """

    model_config = SettingsConfigDict(env_prefix="EDGE_")

    url: Optional[str] = Field(default=None, description="Edge Valkey URL")
    db: int = Field(default=1, description="Database number when sharing the Valkey host")
    socket_timeout: float = Field(
        default=0.5, description="Socket timeout in seconds (edge must fail fast)"
    )


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings for the durable tier."""

    model_config = SettingsConfigDict(env_prefix="PG_")

    host: str = Field(default="localhost", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="postgres", description="PostgreSQL username")
    password: str = Field(default="postgres", description="PostgreSQL password")
    database: str = Field(default="attribution", description="Database name")
    schema_name: str = Field(default="attribution", description="Schema name")
    sslmode: str = Field(default="prefer", description="SSL mode")

    @property
    def connection_string(self) -> str:
        """Build PostgreSQL connection string."""
        return (
            f"postgresql://{self.user}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}?sslmode={self.sslmode}"
        )


class DurableSettings(BaseSettings):
    """Durable tier backend selection."""

    model_config = SettingsConfigDict(env_prefix="DURABLE_")

    backend: Literal["postgresql", "memory"] = Field(
        default="postgresql",
        description="Durable store implementation (postgresql, memory)",
    )


class CollaboratorSettings(BaseSettings):
    """HTTP endpoints of the Cart and Orders services."""

    model_config = SettingsConfigDict(env_prefix="COLLAB_")

    cart_api_url: Optional[str] = Field(default=None, description="Cart service base URL")
    orders_api_url: Optional[str] = Field(default=None, description="Orders service base URL")
    api_key: Optional[str] = Field(default=None, description="Bearer token for both services")
    timeout_seconds: float = Field(default=5.0, description="Per-request timeout")


class ApiSettings(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    workers: int = Field(default=1, description="Uvicorn worker processes")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    # Nested settings
    session: SessionSettings = Field(default_factory=SessionSettings)
    valkey: ValkeySettings = Field(default_factory=ValkeySettings)
    edge: EdgeSettings = Field(default_factory=EdgeSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    durable: DurableSettings = Field(default_factory=DurableSettings)
    collaborators: CollaboratorSettings = Field(default_factory=CollaboratorSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    # General settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def edge_url(self) -> str:
        """Resolve the edge tier URL, defaulting to another db on the shared host."""
        if self.edge.url:
            return self.edge.url
        shared = self.valkey
        scheme = "rediss" if shared.ssl else "redis"
        auth = f":{shared.password}@" if shared.password else ""
        return f"{scheme}://{auth}{shared.host}:{shared.port}/{self.edge.db}"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    """
    return Settings()
