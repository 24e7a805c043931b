"""
Data types for TradeFlash.

Performance notes:
- Using NamedTuple for immutable, memory-efficient structures
- Every record leaving the normalizers is one of these; the store and the
  view engine never touch raw payload dicts
"""

from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple


class ConnectionState(str, Enum):
    """Coarse stream status exposed to the rest of the system."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"


class EventKind(str, Enum):
    """Kinds of event a transport can report."""
    OPEN = "open"
    MESSAGE = "message"
    ERROR = "error"
    CLOSE = "close"


class TransportEvent(NamedTuple):
    """Single inbound event type consumed by ConnectionManager.handle_event()."""
    kind: EventKind
    data: Any = None  # Frame text for MESSAGE, error text for ERROR


class EquityTick(NamedTuple):
    """Latest quote for one equity, keyed by canonical symbol."""
    symbol: str
    last: float | None = None
    bid: float | None = None
    ask: float | None = None
    iv: float | None = None
    ts: float | None = None  # Epoch milliseconds


class OptionRow(NamedTuple):
    """One row of an option chain snapshot."""
    underlying: str
    expiration: str
    strike: float
    right: str  # "C" or "P"
    last: float | None = None
    bid: float | None = None
    ask: float | None = None
    ts: float | None = None


class FlowEvent(NamedTuple):
    """
    A sweep or block print.

    Immutable fact: never mutated, never deduplicated.
    """
    kind: str                    # "SWEEP" or "BLOCK"
    ul: str
    right: str | None            # "CALL" / "PUT", None if upstream sent junk
    strike: float | None
    expiry: str
    side: str                    # "BUY" / "SELL" / "UNKNOWN"
    qty: float
    price: float
    notional: float | None = None  # Explicit notional from server, if any
    prints: int | None = None
    venue: str | None = None
    ts: float | None = None


class WatchedOption(NamedTuple):
    """Option contract on the watchlist."""
    underlying: str
    expiration: str
    strike: float
    right: str


class Watchlist(NamedTuple):
    """Server-authoritative watchlist."""
    equities: tuple[str, ...] = ()
    options: tuple[WatchedOption, ...] = ()


class EquityPayload(NamedTuple):
    """
    Resolved shape of an equity_ts payload.

    has_basis distinguishes "no basis key" (leave basis alone) from
    "basis key with junk value" (basis becomes None).
    """
    rows: list[EquityTick]
    basis: float | None = None
    has_basis: bool = False


class FlowFilter(NamedTuple):
    """Threshold filter applied to sweeps and blocks."""
    min_notional: float = 0.0
    min_qty: float = 1.0


class OptionGroup(NamedTuple):
    """Option rows sharing (underlying, expiration), sorted by strike."""
    key: str
    rows: list[OptionRow]


class FlowView(NamedTuple):
    """Display-ready flow list: newest first, limited."""
    events: list[FlowEvent]
    shown: int   # Events passing the filter
    total: int   # Events retained in the buffer


class DashboardView(NamedTuple):
    """
    Complete dashboard snapshot for UI rendering.

    Pushed to the UI queue on traffic, state changes and a slow refresh tick.
    """
    state: ConnectionState
    equities: list[EquityTick]
    option_groups: list[OptionGroup]
    sweeps: FlowView
    blocks: FlowView
    watchlist: Watchlist
    basis: float | None
    last_error: str | None
    flow_filter: FlowFilter
    timestamp_ms: int
