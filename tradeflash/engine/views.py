"""
Derived view computation.

Everything the UI renders is computed here from a StateStore plus the
current FlowFilter. The functions are pure; ViewEngine only adds caching.

Performance strategy:
1. Cache each view against the store's per-part version counters, so a
   burst of sweeps does not re-sort the equity table or regroup the chain
2. Threshold filter is vectorized with numpy over the whole buffer
3. Flow views are rebuilt only when their buffer or the filter changed
"""

from __future__ import annotations

import math
import time
from typing import Iterable

import numpy as np

from ..types import (
    ConnectionState,
    DashboardView,
    EquityTick,
    FlowEvent,
    FlowFilter,
    FlowView,
    OptionGroup,
    OptionRow,
)
from .normalizers import round_half_up, to_number
from .store import EventBuffer, StateStore

# Per-contract multiplier for listed options
CONTRACT_MULTIPLIER = 100

# Fresh sessions show all traffic
DEFAULT_FILTER = FlowFilter(min_notional=0.0, min_qty=1.0)
# One-step "Reset" preset
TYPICAL_FILTER = FlowFilter(min_notional=20000.0, min_qty=50.0)

# Most recent filtered events shown per flow table
DEFAULT_DISPLAY_LIMIT = 200


def notional_of(event: FlowEvent) -> int | None:
    """
    Explicit notional when upstream sent one, else qty * price * 100.

    None when the product overflows; such an event never passes a filter.
    """
    explicit = to_number(event.notional)
    if explicit is not None:
        return round_half_up(explicit)
    value = (event.qty or 0.0) * (event.price or 0.0) * CONTRACT_MULTIPLIER
    if not math.isfinite(value):
        return None
    return round_half_up(value)


def make_filter(min_notional: float, min_qty: float) -> FlowFilter:
    """Thresholds are clamped to be non-negative."""
    return FlowFilter(
        min_notional=max(0.0, float(min_notional)),
        min_qty=max(0.0, float(min_qty)),
    )


def sort_equities(equities: dict[str, EquityTick]) -> list[EquityTick]:
    return sorted(equities.values(), key=lambda t: t.symbol)


def group_options(rows: Iterable[OptionRow]) -> list[OptionGroup]:
    """
    Partition by (underlying, expiration); first-seen group order,
    rows sorted by strike within a group.
    """
    groups: dict[str, list[OptionRow]] = {}
    for row in rows:
        key = f"{row.underlying}:{row.expiration}"
        groups.setdefault(key, []).append(row)
    return [
        OptionGroup(key, sorted(group_rows, key=lambda r: r.strike))
        for key, group_rows in groups.items()
    ]


def _notional_or_nan(event: FlowEvent) -> float:
    notional = notional_of(event)
    return math.nan if notional is None else float(notional)


def filter_flows(events: list[FlowEvent], flow_filter: FlowFilter) -> list[FlowEvent]:
    """Events with notional >= min_notional and qty >= min_qty, in order."""
    if not events:
        return []
    count = len(events)
    notionals = np.fromiter((_notional_or_nan(e) for e in events), dtype=np.float64, count=count)
    qtys = np.fromiter((e.qty or 0.0 for e in events), dtype=np.float64, count=count)
    mask = (notionals >= flow_filter.min_notional) & (qtys >= flow_filter.min_qty)
    return [events[i] for i in np.flatnonzero(mask)]


def build_flow_view(
    events: list[FlowEvent],
    flow_filter: FlowFilter,
    limit: int = DEFAULT_DISPLAY_LIMIT,
) -> FlowView:
    """Filter, keep the most recent `limit`, newest first."""
    passed = filter_flows(events, flow_filter)
    recent = passed[-limit:] if limit > 0 else []
    recent.reverse()
    return FlowView(events=recent, shown=len(passed), total=len(events))


class ViewEngine:
    """
    Memoizing front for the view functions.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = (
        'display_limit',
        '_equity_key', '_equity_rows',
        '_options_key', '_option_groups',
        '_flow_cache',
    )

    def __init__(self, display_limit: int = DEFAULT_DISPLAY_LIMIT) -> None:
        self.display_limit = display_limit
        self._equity_key: int = -1
        self._equity_rows: list[EquityTick] = []
        self._options_key: int = -1
        self._option_groups: list[OptionGroup] = []
        # id(buffer) -> ((version, filter), view)
        self._flow_cache: dict[int, tuple[tuple[int, FlowFilter], FlowView]] = {}

    def equities(self, store: StateStore) -> list[EquityTick]:
        if store.equity_version != self._equity_key:
            self._equity_rows = sort_equities(store.equities)
            self._equity_key = store.equity_version
        return self._equity_rows

    def option_groups(self, store: StateStore) -> list[OptionGroup]:
        if store.options_version != self._options_key:
            self._option_groups = group_options(store.options)
            self._options_key = store.options_version
        return self._option_groups

    def flows(self, buffer: EventBuffer, flow_filter: FlowFilter) -> FlowView:
        key = (buffer.version, flow_filter)
        cached = self._flow_cache.get(id(buffer))
        if cached is not None and cached[0] == key:
            return cached[1]
        view = build_flow_view(buffer.events, flow_filter, self.display_limit)
        self._flow_cache[id(buffer)] = (key, view)
        return view

    def snapshot(
        self,
        store: StateStore,
        flow_filter: FlowFilter,
        state: ConnectionState,
    ) -> DashboardView:
        """Assemble the full dashboard view."""
        return DashboardView(
            state=state,
            equities=self.equities(store),
            option_groups=self.option_groups(store),
            sweeps=self.flows(store.sweeps, flow_filter),
            blocks=self.flows(store.blocks, flow_filter),
            watchlist=store.watchlist,
            basis=store.basis,
            last_error=store.last_error,
            flow_filter=flow_filter,
            timestamp_ms=int(time.time() * 1000),
        )
