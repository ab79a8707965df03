# ==============================================================================
# Status Command
# ==============================================================================
"""
Status command for the attribution CLI.

Displays the reachability of each store tier and the collaborator
configuration, as formatted box output or JSON.
"""

import json as json_module
from concurrent.futures import ThreadPoolExecutor
from typing import Annotated, Any

import typer

from attribution.cli.shared import (
    BOX_WIDTH,
    C,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _section_header_plain,
    _status_badge,
)
from attribution.utils.config import Settings, get_settings
from attribution.utils.versions import get_attribution_version


# ==============================================================================
# Data Collection
# ==============================================================================


def _collect_edge_data(settings: Settings) -> dict[str, Any]:
    from attribution.infrastructure.cache import get_edge_cache

    cache = get_edge_cache(settings)
    try:
        return {"reachable": cache.ping(), "ttl_seconds": settings.session.edge_ttl_seconds}
    finally:
        cache.close()


def _collect_shared_data(settings: Settings) -> dict[str, Any]:
    from attribution.infrastructure.cache import get_shared_cache

    cache = get_shared_cache(settings)
    try:
        return {"reachable": cache.ping(), "ttl_seconds": settings.session.shared_ttl}
    finally:
        cache.close()


def _collect_durable_data(settings: Settings) -> dict[str, Any]:
    if settings.durable.backend == "memory":
        return {"backend": "memory", "reachable": True, "schema": None}

    import psycopg2

    from attribution.infrastructure.repositories import check_postgresql_connection
    from attribution.utils.db import check_schema_exists

    reachable = check_postgresql_connection(settings)
    schema = None
    if reachable:
        try:
            schema = "ready" if check_schema_exists() else "missing"
        except psycopg2.Error:
            schema = "unknown"
    return {"backend": "postgresql", "reachable": reachable, "schema": schema}


def collect_status(settings: Settings | None = None) -> dict[str, Any]:
    """Collect all status data, checking tiers in parallel."""
    settings = settings or get_settings()
    with ThreadPoolExecutor(max_workers=3) as pool:
        edge = pool.submit(_collect_edge_data, settings)
        shared = pool.submit(_collect_shared_data, settings)
        durable = pool.submit(_collect_durable_data, settings)
        return {
            "version": get_attribution_version(),
            "edge": edge.result(),
            "shared": shared.result(),
            "durable": durable.result(),
            "horizon_days": settings.session.inactivity_horizon_days,
            "collaborators": {
                "cart": settings.collaborators.cart_api_url or "in-memory",
                "orders": settings.collaborators.orders_api_url or "in-memory",
            },
        }


# ==============================================================================
# Commands
# ==============================================================================


def show_status(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Show store tier health and configuration.

    Examples:
        attribution status          # Formatted box output
        attribution status --json   # JSON output for scripting
    """
    data = collect_status()

    if json_output:
        print(json_module.dumps(data, indent=2))
        return

    W = BOX_WIDTH
    print()
    print(_box_header(f"ATTRIBUTION v{data['version']}", W))
    print(_empty_line(W))
    print(_section_header_plain("Store Tiers", W))

    edge, shared, durable = data["edge"], data["shared"], data["durable"]
    print(
        _box_line(
            f"  {'Edge':<14}{_status_badge('reachable' if edge['reachable'] else 'unreachable', edge['reachable'])}"
            f"  {C.DIM}ttl {edge['ttl_seconds']}s{C.RESET}",
            W,
        )
    )
    print(
        _box_line(
            f"  {'Shared':<14}{_status_badge('reachable' if shared['reachable'] else 'unreachable', shared['reachable'])}"
            f"  {C.DIM}ttl {shared['ttl_seconds']}s{C.RESET}",
            W,
        )
    )
    durable_ok = durable["reachable"] and durable["schema"] in (None, "ready")
    durable_label = "reachable" if durable["reachable"] else "unreachable"
    if durable["reachable"] and durable["schema"] == "missing":
        durable_label = "no schema"
    print(
        _box_line(
            f"  {'Durable':<14}{_status_badge(durable_label, durable_ok)}"
            f"  {C.DIM}{durable['backend']}{C.RESET}",
            W,
        )
    )

    print(_empty_line(W))
    print(_section_header_plain("Collaborators", W))
    print(_box_line(f"  {'Cart':<14}{data['collaborators']['cart']}", W))
    print(_box_line(f"  {'Orders':<14}{data['collaborators']['orders']}", W))
    print(_empty_line(W))
    print(_box_line(f"  {'Horizon':<14}{data['horizon_days']} days", W))
    print(_empty_line(W))
    print(_box_bottom(W))
    print()

    if not durable["reachable"]:
        raise typer.Exit(1)
