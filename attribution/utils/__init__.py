# ==============================================================================
# Attribution Pipeline Utilities
# ==============================================================================
"""
Shared utilities for the attribution pipeline.

This module exports configuration, logging and schema helpers for use
throughout the pipeline.
"""

from attribution.utils.config import (
    ApiSettings,
    CollaboratorSettings,
    DurableSettings,
    EdgeSettings,
    PostgresSettings,
    SessionSettings,
    Settings,
    ValkeySettings,
    get_settings,
)
from attribution.utils.db import (
    ensure_schema,
    reset_schema,
)
from attribution.utils.log import configure_logging

__all__ = [
    # Config
    "ApiSettings",
    "CollaboratorSettings",
    "DurableSettings",
    "EdgeSettings",
    "PostgresSettings",
    "SessionSettings",
    "Settings",
    "ValkeySettings",
    "get_settings",
    # Database
    "ensure_schema",
    "reset_schema",
    # Logging
    "configure_logging",
]
