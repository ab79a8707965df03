# ==============================================================================
# Serve Command
# ==============================================================================
"""
Runs the attribution HTTP API under uvicorn.
"""

from typing import Annotated, Optional

import typer

from attribution.cli.shared import C, I
from attribution.utils.config import get_settings
from attribution.utils.log import configure_logging


def serve(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind address")] = None,
    port: Annotated[Optional[int], typer.Option("--port", help="Bind port")] = None,
    workers: Annotated[
        Optional[int], typer.Option("--workers", "-w", help="Worker processes")
    ] = None,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Start the HTTP API.

    Defaults come from API_HOST, API_PORT and API_WORKERS.

    Examples:
        attribution serve
        attribution serve --port 9000 --workers 4
    """
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)

    host = host or settings.api.host
    port = port or settings.api.port
    workers = workers or settings.api.workers

    print(f"{C.BRIGHT_GREEN}{I.CHECK} Serving on {C.WHITE}http://{host}:{port}{C.RESET}")
    uvicorn.run(
        "attribution.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        workers=workers if not reload else 1,
        reload=reload,
        log_config=None,
    )
