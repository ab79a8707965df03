# ==============================================================================
# Database Commands
# ==============================================================================
"""
Durable tier schema commands for the attribution CLI.
"""

from typing import Annotated

import typer

from attribution.cli.shared import C, I
from attribution.utils.config import get_settings


# ==============================================================================
# Commands
# ==============================================================================


def db_init() -> None:
    """Create the database and schema if they do not exist.

    Idempotent and safe to run repeatedly.

    Examples:
        attribution db init
    """
    from attribution.utils.db import ensure_schema

    schema_name = get_settings().postgres.schema_name
    print(f"  Initializing schema '{C.WHITE}{schema_name}{C.RESET}'...")
    try:
        ensure_schema()
    except RuntimeError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)
    print(f"{C.BRIGHT_GREEN}{I.CHECK} Schema ready{C.RESET}")


def db_reset(
    confirm: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Drop and recreate the schema, and clear both cache tiers.

    Examples:
        attribution db reset       # With confirmation prompt
        attribution db reset -y    # Skip confirmation
    """
    from attribution.infrastructure.cache import get_edge_cache, get_shared_cache
    from attribution.infrastructure.session_state import ValkeySessionStateStore
    from attribution.utils.db import reset_schema

    settings = get_settings()

    if not confirm:
        typer.confirm(
            "This will DELETE all sessions and cart linkages. Are you sure?",
            abort=True,
        )
        print()

    print(f"  Resetting PostgreSQL schema '{C.WHITE}{settings.postgres.schema_name}{C.RESET}'...")
    try:
        reset_schema()
    except RuntimeError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)
    print(f"{C.BRIGHT_GREEN}{I.CHECK} PostgreSQL schema reset{C.RESET}")

    tiers = [
        ValkeySessionStateStore(
            get_edge_cache(settings), "edge", settings.session.edge_ttl_seconds
        ),
        ValkeySessionStateStore(
            get_shared_cache(settings), "shared", settings.session.shared_ttl
        ),
    ]
    for tier in tiers:
        if not tier.ping():
            print(f"{C.BRIGHT_YELLOW}{I.WARN} {tier.name} tier unreachable, not cleared{C.RESET}")
            continue
        deleted = tier.clear_all()
        print(
            f"{C.BRIGHT_GREEN}{I.CHECK} {tier.name} tier cleared "
            f"({C.WHITE}{deleted}{C.BRIGHT_GREEN} entries){C.RESET}"
        )
