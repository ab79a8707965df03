# ==============================================================================
# CLI Commands Module
# ==============================================================================
"""
CLI commands for the attribution pipeline.

Commands are organized into separate modules for maintainability:
- shared.py: Common utilities, constants, and box drawing helpers
- serve.py: HTTP API server
- status.py: Store tier health
- funnel.py: Funnel report for a page
- session.py: Session inspection and expiry sweep
- db.py: Schema initialization and reset
"""

from attribution.cli.shared import (
    BOX_WIDTH,
    B,
    Box,
    C,
    Colors,
    I,
    Icons,
    get_pipeline,
)

__all__ = [
    "BOX_WIDTH",
    "B",
    "Box",
    "C",
    "Colors",
    "I",
    "Icons",
    "get_pipeline",
]
