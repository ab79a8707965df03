# ==============================================================================
# Session Attribution Pipeline
# ==============================================================================
"""
Tracks anonymous visitor sessions, links each to at most one cart, and
attributes orders back to the traffic source that started the session.
"""

__version__ = "0.1.0"
