# ==============================================================================
# Funnel Command
# ==============================================================================
"""
Funnel command for the attribution CLI.

Displays funnel counts for one page, computed from the durable tier.
"""

import json
from datetime import datetime, timezone
from typing import Annotated, Optional

import typer
from pydantic import ValidationError

from attribution.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _section_header_plain,
    get_pipeline,
)
from attribution.core.errors import AttributionError
from attribution.core.models import FunnelSnapshot, FunnelWindow


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _render(snapshot: FunnelSnapshot) -> None:
    W = BOX_WIDTH
    INNER = W - 2

    print()
    print(_box_header("FUNNEL", W))
    print(_empty_line(W))
    print(_box_line(f"  {'Page':<26}{C.WHITE}{snapshot.page_id}{C.RESET}", W))
    window = (
        f"{snapshot.window_start:%Y-%m-%d %H:%M} {I.ARROW} {snapshot.window_end:%Y-%m-%d %H:%M}"
    )
    print(_box_line(f"  {'Window':<26}{window}", W))
    print(_empty_line(W))

    header = f"  {'':26}{'Reached':>12}  {'Stopped here':>14}"
    print(_box_line(header, W))
    sep = "  " + "─" * (INNER - 4)
    print(_box_line(sep, W))

    rows = [
        ("Views", snapshot.views, snapshot.viewed_only),
        ("  -> Cart Linked", snapshot.cart_adds, snapshot.cart_linked),
        ("  -> Checkout Started", snapshot.checkout_starts, snapshot.checkout_started),
        ("  -> Converted", snapshot.orders, snapshot.converted),
    ]
    for label, reached, stopped in rows:
        print(_box_line(f"  {label:<26}{reached:>12,}  {stopped:>14,}", W))

    print(_empty_line(W))
    print(_box_line(f"  {'Conversion Rate':<26}{snapshot.conversion_rate:>11.1f}%", W))
    print(_box_line(f"  {'Cart Abandonment':<26}{snapshot.cart_abandonment:>11.1f}%", W))

    anomaly_color = C.BRIGHT_YELLOW if snapshot.anomalies else C.BRIGHT_GREEN
    print(_box_line(f"  {'Anomalies':<26}{anomaly_color}{snapshot.anomalies:>12,}{C.RESET}", W))
    for reason, count in sorted(snapshot.anomaly_reasons.items()):
        print(_box_line(f"    {C.DIM}{reason:<24}{count:>12,}{C.RESET}", W))
    if snapshot.checkout_lookup_failures:
        print(
            _box_line(
                f"  {C.BRIGHT_YELLOW}{I.WARN} {snapshot.checkout_lookup_failures} checkout "
                f"lookups failed{C.RESET}",
                W,
            )
        )
    if snapshot.orders_pending:
        print(_box_line(f"  {'Orders not yet visible':<26}{snapshot.orders_pending:>12,}", W))

    if snapshot.by_source_type:
        print(_empty_line(W))
        print(_section_header_plain("By Source", W))
        header = f"  {'':16}{'Views':>10}{'Carts':>10}{'Checkouts':>12}{'Orders':>10}"
        print(_box_line(header, W))
        for source_type, counts in sorted(snapshot.by_source_type.items(), key=lambda kv: kv[0].value):
            row = (
                f"  {source_type.value:<16}{counts.views:>10,}{counts.cart_adds:>10,}"
                f"{counts.checkout_starts:>12,}{counts.orders:>10,}"
            )
            print(_box_line(row, W))

    print(_empty_line(W))
    print(_box_bottom(W))
    print()


# ==============================================================================
# Commands
# ==============================================================================


def show_funnel(
    page_id: Annotated[str, typer.Option("--page-id", "-p", help="Page to report on")],
    days: Annotated[int, typer.Option("--days", "-d", help="Trailing days (without --start/--end)")] = 30,
    start: Annotated[Optional[datetime], typer.Option("--start", help="Window start (UTC)")] = None,
    end: Annotated[Optional[datetime], typer.Option("--end", help="Window end (UTC)")] = None,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Show funnel metrics for a page.

    Counts sessions created in the window by the furthest stage they
    reached: viewed, cart linked, checkout started, converted. Sessions with
    inconsistent stored state are reported as anomalies.

    Examples:
        attribution funnel --page-id home                 # Last 30 days
        attribution funnel -p home --days 7 --json        # JSON output
        attribution funnel -p home --start 2026-01-01 --end 2026-02-01
    """
    if (start is None) != (end is None):
        print(f"\n{C.BRIGHT_RED}{I.CROSS} --start and --end must be given together{C.RESET}\n")
        raise typer.Exit(1)

    try:
        if start is not None and end is not None:
            window = FunnelWindow(start=_as_utc(start), end=_as_utc(end))
        else:
            window = FunnelWindow.last_days(days)
    except ValidationError:
        print(f"\n{C.BRIGHT_RED}{I.CROSS} --end must be after --start{C.RESET}\n")
        raise typer.Exit(1)

    pipeline = get_pipeline()
    try:
        snapshot = pipeline.aggregator.compute_funnel(page_id, window)
    except AttributionError as e:
        if json_output:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"\n{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}\n")
        raise typer.Exit(1)
    finally:
        pipeline.close()

    if json_output:
        print(snapshot.model_dump_json(indent=2))
        return

    _render(snapshot)
