# ==============================================================================
# Session Commands
# ==============================================================================
"""
Session inspection and maintenance commands for the attribution CLI.
"""

import json
from typing import Annotated

import typer

from attribution.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    get_pipeline,
)
from attribution.core.errors import AttributionError, SessionNotFound
from attribution.core.session_manager import DEFAULT_SWEEP_LIMIT


def _fmt(value) -> str:
    if value is None:
        return f"{C.DIM}-{C.RESET}"
    return str(value)


# ==============================================================================
# Commands
# ==============================================================================


def session_show(
    token: Annotated[str, typer.Argument(help="Session token")],
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Show a session, its attribution and its cart linkage.

    Reads from the durable tier, bypassing the caches.

    Examples:
        attribution session show <token>
        attribution session show <token> --json
    """
    pipeline = get_pipeline()
    try:
        session = pipeline.coordinator.read_durable(token)
        if session is None:
            raise SessionNotFound(token)
        linkage = pipeline.coordinator.get_linkage(token)
    except AttributionError as e:
        if json_output:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"\n{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}\n")
        raise typer.Exit(1)
    finally:
        pipeline.close()

    if json_output:
        print(
            json.dumps(
                {
                    "session": session.to_record(),
                    "linkage": linkage.to_record() if linkage else None,
                },
                indent=2,
            )
        )
        return

    W = BOX_WIDTH
    attrs = session.source_attributes
    print()
    print(_box_header("SESSION", W))
    print(_empty_line(W))
    rows = [
        ("Token", f"{session.token[:16]}..."),
        ("Page", session.page_id),
        ("State", session.state.value),
        ("Version", session.version),
        ("Created", f"{session.created_at:%Y-%m-%d %H:%M:%S}"),
        ("Last activity", f"{session.last_activity_at:%Y-%m-%d %H:%M:%S}"),
        ("Source type", attrs.source_type.value),
        ("Source / medium", f"{_fmt(attrs.source)} / {_fmt(attrs.medium)}"),
        ("Campaign", _fmt(attrs.campaign)),
        ("Channel", _fmt(attrs.channel)),
        ("Referrer domain", _fmt(attrs.referrer_domain)),
        ("Cart", _fmt(session.cart_id)),
        ("Order", _fmt(session.order_id)),
    ]
    for label, value in rows:
        print(_box_line(f"  {label:<20}{value}", W))
    if linkage is not None:
        print(_empty_line(W))
        print(
            _box_line(
                f"  {C.BRIGHT_GREEN}{I.CHECK}{C.RESET} Linked {linkage.cart_id} "
                f"({linkage.source_type.value}) at {linkage.linked_at:%Y-%m-%d %H:%M}",
                W,
            )
        )
    print(_empty_line(W))
    print(_box_bottom(W))
    print()


def session_expire(
    limit: Annotated[
        int, typer.Option("--limit", "-l", help="Maximum sessions to expire in this run")
    ] = DEFAULT_SWEEP_LIMIT,
) -> None:
    """Expire ACTIVE sessions idle past the inactivity horizon.

    Also replays cache invalidations that failed in any process.

    Examples:
        attribution session expire
        attribution session expire --limit 5000
    """
    pipeline = get_pipeline()
    try:
        expired = pipeline.manager.expire_stale(limit=limit)
    except AttributionError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} Expiry sweep failed: {e}{C.RESET}")
        raise typer.Exit(1)
    finally:
        pipeline.close()

    print(f"{C.BRIGHT_GREEN}{I.CHECK} Expired {C.WHITE}{expired}{C.BRIGHT_GREEN} sessions{C.RESET}")
