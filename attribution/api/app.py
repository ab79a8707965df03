# ==============================================================================
# FastAPI Application
# ==============================================================================
"""
Application factory for the attribution HTTP service.

Maps the pipeline's error taxonomy onto HTTP:

    SessionNotFound           404  caller creates a new session
    SessionExpired            410  caller creates a new session
    InvalidTransition         409  attribution lost, order completes elsewhere
    CartAlreadyLinked         409
    StoreUnavailable          503  retry with backoff (Retry-After)
    CollaboratorUnavailable   503  retry with backoff (Retry-After)
    EntropySourceUnavailable  500
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from attribution.api.dependencies import Pipeline
from attribution.api.routes import router
from attribution.api.schemas import ErrorResponse
from attribution.core.errors import (
    AttributionError,
    CartAlreadyLinked,
    CollaboratorUnavailable,
    EntropySourceUnavailable,
    InvalidTransition,
    SessionExpired,
    SessionNotFound,
    StoreUnavailable,
)
from attribution.utils.versions import get_attribution_version

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 2

STATUS_CODES: dict[type[AttributionError], int] = {
    SessionNotFound: 404,
    SessionExpired: 410,
    InvalidTransition: 409,
    CartAlreadyLinked: 409,
    StoreUnavailable: 503,
    CollaboratorUnavailable: 503,
    EntropySourceUnavailable: 500,
}


def _status_for(exc: AttributionError) -> int:
    for error_type, code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return 500


async def attribution_error_handler(request: Request, exc: AttributionError) -> JSONResponse:
    """Translate pipeline errors into JSON error responses."""
    code = _status_for(exc)
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if code == 503 else None
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %d (%s)", request.method, request.url.path, code, exc)
    return JSONResponse(
        status_code=code,
        content=ErrorResponse(error=type(exc).__name__, detail=str(exc)).model_dump(),
        headers=headers,
    )


def create_app(pipeline: Pipeline | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        pipeline: Pre-built pipeline. If None, one is wired from settings at
            startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = pipeline is None
        app.state.pipeline = pipeline or Pipeline.from_settings()
        logger.info("Attribution API started")
        try:
            yield
        finally:
            if owned:
                app.state.pipeline.close()
            logger.info("Attribution API stopped")

    app = FastAPI(
        title="Session Attribution API",
        description="Session lifecycle, cart linkage and funnel attribution.",
        version=get_attribution_version(),
        lifespan=lifespan,
    )
    if pipeline is not None:
        app.state.pipeline = pipeline

    app.add_exception_handler(AttributionError, attribution_error_handler)
    app.include_router(router)
    return app
