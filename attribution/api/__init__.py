# ==============================================================================
# HTTP Surface
# ==============================================================================
"""
FastAPI application exposing the pipeline to the page, cart and checkout layers.
"""

from attribution.api.app import create_app
from attribution.api.dependencies import Pipeline, get_pipeline

__all__ = [
    "Pipeline",
    "create_app",
    "get_pipeline",
]
