# ==============================================================================
# Version Utilities
# ==============================================================================
"""
Utilities for retrieving package versions.
"""

from importlib.metadata import PackageNotFoundError, version


def get_attribution_version() -> str:
    """
    Get the session-attribution package version.

    Returns:
        Version string (e.g., "0.1.0")
    """
    try:
        return version("session-attribution")
    except PackageNotFoundError:
        return "0.1.0"
