"""
Dashboard TUI using Textual.

Displays:
- Top: connection state, ES/SPX basis, active filter, last error
- Left: equities overview + option chains grouped by underlying/expiry
- Right: watchlist, sweeps, blocks

Performance notes:
- Widgets only re-render when a new DashboardView arrives
- Views are already sorted/filtered/limited by the engine; rendering is
  formatting only
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from rich.console import Group, RenderableType
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import Footer, Input, Static

from ..engine.normalizers import MISSING, fmt_iv, fmt_number, ts_ago
from ..engine.views import notional_of
from ..types import ConnectionState

if TYPE_CHECKING:
    from ..datafeed.client import DashboardClient
    from ..types import DashboardView, EquityTick, FlowEvent, FlowView, OptionGroup, Watchlist

# Color scheme (dark theme)
STATE_COLORS = {
    ConnectionState.OPEN: "#22c55e",
    ConnectionState.CONNECTING: "#f59e0b",
    ConnectionState.ERROR: "#ef4444",
}
BUY_COLOR = "#22c55e"
SELL_COLOR = "#ef4444"
HEADER_COLOR = "#94a3b8"
ERROR_COLOR = "#ef4444"

NOTIONAL_STEP = 1000
QTY_STEP = 10


def parse_command(text: str) -> tuple[str, str] | None:
    """'NVDA' -> ('add', 'NVDA'); '-NVDA' -> ('remove', 'NVDA'); blank -> None."""
    text = text.strip()
    if not text:
        return None
    if text.startswith("-"):
        symbol = text[1:].strip()
        return ("remove", symbol) if symbol else None
    return ("add", text)


def equity_cells(tick: EquityTick, now_ms: float) -> list[str]:
    return [
        tick.symbol,
        fmt_number(tick.last, 2),
        fmt_number(tick.bid, 2, zero_missing=True),
        fmt_number(tick.ask, 2, zero_missing=True),
        fmt_iv(tick.iv),
        ts_ago(tick.ts, now_ms),
    ]


def flow_cells(event: FlowEvent, now_ms: float) -> list[str]:
    strike = MISSING if event.strike is None else f"{event.strike:g}"
    notional = notional_of(event)
    return [
        event.ul or MISSING,
        event.right or MISSING,
        strike,
        event.expiry or MISSING,
        event.side,
        f"{event.qty:g}",
        fmt_number(event.price, 2),
        MISSING if notional is None else f"{notional:,}",
        ts_ago(event.ts, now_ms),
    ]


def _table(*columns: str) -> Table:
    table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1))
    for col in columns:
        table.add_column(col, no_wrap=True)
    return table


def render_equities(rows: list[EquityTick], now_ms: float) -> RenderableType:
    if not rows:
        return Text("Waiting for quotes...", style="dim")
    table = _table("Symbol", "Last", "Bid", "Ask", "IV", "Age")
    for tick in rows:
        table.add_row(*equity_cells(tick, now_ms))
    return table


def render_option_groups(groups: list[OptionGroup], now_ms: float) -> RenderableType:
    if not groups:
        return Text("Waiting for chain snapshots...", style="dim")
    parts: list[RenderableType] = []
    for group in groups:
        table = _table("Strike", "Right", "Last", "Bid", "Ask", "Age")
        for row in group.rows:
            table.add_row(
                f"{row.strike:g}",
                row.right,
                fmt_number(row.last, 2),
                fmt_number(row.bid, 2, zero_missing=True),
                fmt_number(row.ask, 2, zero_missing=True),
                ts_ago(row.ts, now_ms),
            )
        parts.append(Text(group.key, style="bold"))
        parts.append(table)
    return Group(*parts)


def render_watchlist(watchlist: Watchlist) -> RenderableType:
    lines = [Text("Equities", style="bold")]
    lines.extend(Text(f"  {sym}") for sym in watchlist.equities)
    if not watchlist.equities:
        lines.append(Text("  Empty", style="dim"))
    lines.append(Text("Options (read-only)", style="bold"))
    lines.extend(
        Text(f"  {o.underlying} {o.right} {o.strike:g} {o.expiration}")
        for o in watchlist.options
    )
    if not watchlist.options:
        lines.append(Text("  Empty", style="dim"))
    return Group(*lines)


def render_flows(title: str, view: FlowView, now_ms: float) -> RenderableType:
    header = Text.assemble(
        (title, "bold"),
        (f"  Showing {view.shown} of {view.total}", "dim"),
    )
    table = _table("UL", "Right", "Strike", "Expiry", "Side", "Qty", "Price", "Notional", "Age")
    for event in view.events:
        cells = flow_cells(event, now_ms)
        side_style = BUY_COLOR if event.side == "BUY" else SELL_COLOR if event.side == "SELL" else ""
        table.add_row(*cells[:4], Text(cells[4], style=side_style), *cells[5:])
    return Group(header, table)


class ViewPanel(Static):
    """Static widget that renders one section of the latest DashboardView."""

    def __init__(self, section: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.section = section
        self._view: DashboardView | None = None

    def update_view(self, view: DashboardView) -> None:
        self._view = view
        self.refresh()

    def render(self) -> RenderableType:
        view = self._view
        if view is None:
            return Text("Connecting...", style="dim")
        now_ms = time.time() * 1000

        if self.section == "status":
            return render_status(view)
        if self.section == "equities":
            return render_equities(view.equities, now_ms)
        if self.section == "options":
            return render_option_groups(view.option_groups, now_ms)
        if self.section == "watchlist":
            return render_watchlist(view.watchlist)
        if self.section == "sweeps":
            return render_flows("Sweeps", view.sweeps, now_ms)
        if self.section == "blocks":
            return render_flows("Blocks", view.blocks, now_ms)
        return Text("")


def render_status(view: DashboardView) -> RenderableType:
    parts = [
        Text(" TradeFlash ", style="bold white on #1e40af"),
        Text("  WS: ", style="dim"),
        Text(view.state.value, style=STATE_COLORS.get(view.state, HEADER_COLOR)),
        Text("  ES-SPX basis: ", style="dim"),
        Text(fmt_number(view.basis, 2), style="cyan"),
        Text("  │  Min notional: ", style="dim"),
        Text(f"{view.flow_filter.min_notional:,.0f}"),
        Text("  Min qty: ", style="dim"),
        Text(f"{view.flow_filter.min_qty:g}"),
    ]
    if view.last_error:
        parts.append(Text(f"  Error: {view.last_error}", style=ERROR_COLOR))
    result = Text()
    for p in parts:
        result.append(p)
    return result


class DashboardApp(App):
    """Main TradeFlash application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #status {
        dock: top;
        height: 2;
        padding: 0 2;
    }

    .column {
        width: 1fr;
        padding: 0 1;
    }

    #command {
        dock: bottom;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "reset_filters", "Typical filter"),
        ("c", "clear_filters", "Show all"),
        ("n", "notional(1)", "Notional +"),
        ("m", "notional(-1)", "Notional -"),
        ("k", "qty(1)", "Qty +"),
        ("j", "qty(-1)", "Qty -"),
    ]

    def __init__(self, client: DashboardClient) -> None:
        super().__init__()
        self.client = client
        self._panels: list[ViewPanel] = []

    def compose(self) -> ComposeResult:
        self._panels = [
            ViewPanel("status", id="status"),
            ViewPanel("equities"),
            ViewPanel("options"),
            ViewPanel("watchlist"),
            ViewPanel("sweeps"),
            ViewPanel("blocks"),
        ]
        status, equities, options, watchlist, sweeps, blocks = self._panels

        yield status
        with Horizontal():
            with VerticalScroll(classes="column"):
                yield equities
                yield options
            with VerticalScroll(classes="column"):
                yield watchlist
                yield sweeps
                yield blocks
        yield Input(placeholder="Add symbol (e.g. NVDA), -NVDA to remove", id="command")
        yield Footer()

    async def on_mount(self) -> None:
        """Start the snapshot consumer task."""
        self.run_worker(self._consume_snapshots(), exclusive=True)

    async def _consume_snapshots(self) -> None:
        """Consume views from the queue and update panels."""
        while True:
            try:
                view = await asyncio.wait_for(self.client.snapshot_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            for panel in self._panels:
                panel.update_view(view)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        command = parse_command(event.value)
        event.input.value = ""
        if command is None:
            return
        action, symbol = command
        if action == "add":
            self.client.request_add(symbol)
        else:
            self.client.request_remove(symbol)

    def action_reset_filters(self) -> None:
        self.client.reset_filters()

    def action_clear_filters(self) -> None:
        self.client.clear_filters()

    def action_notional(self, direction: int) -> None:
        current = self.client.flow_filter.min_notional
        self.client.set_min_notional(current + direction * NOTIONAL_STEP)

    def action_qty(self, direction: int) -> None:
        current = self.client.flow_filter.min_qty
        self.client.set_min_qty(current + direction * QTY_STEP)


async def run_ui(client: DashboardClient) -> None:
    """Run the TUI application."""
    app = DashboardApp(client)
    await app.run_async()
