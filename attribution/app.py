# ==============================================================================
# Attribution Pipeline CLI
# ==============================================================================
"""
Command-line interface for the session attribution pipeline.

Usage:
    attribution --help
    attribution serve
    attribution status
    attribution funnel --page-id home --days 7
    attribution session show <token>
    attribution session expire
    attribution db init
    attribution db reset -y
"""

import logging
import os

import typer

from attribution.utils.config import get_settings
from attribution.utils.log import configure_logging

# ==============================================================================
# App Configuration
# ==============================================================================
# Set consistent terminal width for help output formatting
if "COLUMNS" not in os.environ:
    os.environ["COLUMNS"] = "115"

app = typer.Typer(
    name="attribution",
    help="Session-cart attribution pipeline CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Session-cart attribution pipeline CLI."""
    configure_logging(logging.DEBUG if verbose else get_settings().log_level)


# Serve command is imported from attribution.cli.serve
from attribution.cli.serve import serve

app.command("serve")(serve)

# Status command is imported from attribution.cli.status
from attribution.cli.status import show_status

app.command("status")(show_status)

# Funnel command is imported from attribution.cli.funnel
from attribution.cli.funnel import show_funnel

app.command("funnel")(show_funnel)

session_app = typer.Typer(
    help="Session inspection and maintenance",
    no_args_is_help=True,
)
app.add_typer(session_app, name="session")

# Register session commands from cli.session module
from attribution.cli.session import session_expire, session_show

session_app.command("show")(session_show)
session_app.command("expire")(session_expire)

db_app = typer.Typer(
    help="Database schema operations",
    no_args_is_help=True,
)
app.add_typer(db_app, name="db")

# Register db commands from cli.db module
from attribution.cli.db import db_init, db_reset

db_app.command("init")(db_init)
db_app.command("reset")(db_reset)


# ==============================================================================
# Entry Point
# ==============================================================================


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
