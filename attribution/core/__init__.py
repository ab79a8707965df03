# ==============================================================================
# Core Domain Logic
# ==============================================================================
"""
Domain logic of the attribution pipeline.

This module contains:
- Domain models (Session, CartLinkage, SourceAttributes, FunnelSnapshot)
- Error taxonomy
- Token issuing, attribution resolution and visitor context (pure)
- Session lifecycle and funnel aggregation, written against the
  cache tier coordinator rather than any concrete store
"""

from attribution.core.attribution import AttributionResolver, resolve
from attribution.core.errors import (
    AttributionError,
    CartAlreadyLinked,
    CollaboratorUnavailable,
    EntropySourceUnavailable,
    InvalidTransition,
    SessionAlreadyLinked,
    SessionExpired,
    SessionNotFound,
    StoreUnavailable,
)
from attribution.core.funnel import FunnelAggregator
from attribution.core.models import (
    CartLinkage,
    DeviceInfo,
    FunnelCounts,
    FunnelSnapshot,
    FunnelWindow,
    Session,
    SessionState,
    SourceAttributes,
    SourceType,
)
from attribution.core.session_manager import SessionManager
from attribution.core.tokens import TokenIssuer

__all__ = [
    "AttributionError",
    "AttributionResolver",
    "CartAlreadyLinked",
    "CartLinkage",
    "CollaboratorUnavailable",
    "DeviceInfo",
    "EntropySourceUnavailable",
    "FunnelAggregator",
    "FunnelCounts",
    "FunnelSnapshot",
    "FunnelWindow",
    "InvalidTransition",
    "SessionAlreadyLinked",
    "SessionExpired",
    "SessionManager",
    "SessionNotFound",
    "SessionState",
    "SourceAttributes",
    "SourceType",
    "StoreUnavailable",
    "TokenIssuer",
    "resolve",
]
