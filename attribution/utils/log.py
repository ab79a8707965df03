# ==============================================================================
# Logging Setup
# ==============================================================================
"""
Process-wide logging configuration for entry points.

Library modules only ever call logging.getLogger(__name__); handlers and
levels are set once here by the server or CLI.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = {
    "urllib3": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
}


def configure_logging(level: str | int = "INFO") -> None:
    """
    Configure root logging.

    Args:
        level: Level name or number for the root logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    # Anomalies are always reported, whatever the root level
    logging.getLogger("attribution.anomaly").setLevel(logging.WARNING)
