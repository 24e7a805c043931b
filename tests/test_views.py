"""
Tests for derived views: sorting, grouping, notional, threshold filter
"""

from tradeflash.engine.normalizers import normalize_option_rows
from tradeflash.engine.store import StateStore
from tradeflash.engine.views import (
    DEFAULT_FILTER,
    TYPICAL_FILTER,
    ViewEngine,
    build_flow_view,
    filter_flows,
    group_options,
    make_filter,
    notional_of,
    sort_equities,
)
from tradeflash.types import ConnectionState, EquityTick, FlowEvent, FlowFilter


def flow(qty, price, notional=None, ts=0.0):
    return FlowEvent(kind="SWEEP", ul="SPY", right="PUT", strike=450.0, expiry="2025-01-17",
                     side="SELL", qty=qty, price=price, notional=notional, ts=ts)


class TestNotional:
    """Explicit notional wins, else qty * price * 100"""

    def test_derived(self):
        assert notional_of(flow(10, 5)) == 5000

    def test_explicit_wins(self):
        assert notional_of(flow(1, 1, notional=999)) == 999

    def test_rounds_half_up(self):
        assert notional_of(flow(1, 0.125)) == 13
        assert notional_of(flow(3, 0.333)) == 100
        assert isinstance(notional_of(flow(3, 0.333)), int)

    def test_zero_explicit_is_still_explicit(self):
        assert notional_of(flow(100, 10, notional=0)) == 0

    def test_overflowing_product_is_missing(self):
        assert notional_of(flow(1e300, 1e10)) is None

    def test_overflowing_event_never_passes(self):
        events = [flow(1e300, 1e10), flow(10, 5)]
        assert filter_flows(events, DEFAULT_FILTER) == [events[1]]
        view = build_flow_view(events, DEFAULT_FILTER)
        assert (view.shown, view.total) == (1, 2)


class TestEquityAndOptions:
    """Equity sort and option chain grouping"""

    def test_equities_sorted_by_symbol(self):
        equities = {s: EquityTick(s) for s in ("SPY", "AAPL", "ES", "/X")}
        assert [t.symbol for t in sort_equities(equities)] == ["/X", "AAPL", "ES", "SPY"]

    def test_grouping(self, sample_chain):
        groups = group_options(normalize_option_rows(sample_chain))
        assert [g.key for g in groups] == ["AAPL:2025-01-17", "AAPL:2025-02-21"]
        assert [r.strike for r in groups[0].rows] == [140.0, 150.0]
        assert len(groups[1].rows) == 1

    def test_group_order_is_first_seen_not_sorted(self):
        rows = normalize_option_rows([
            {'underlying': 'TSLA', 'expiration': '2025-06-20', 'strike': 200, 'right': 'C'},
            {'underlying': 'AAPL', 'expiration': '2025-01-17', 'strike': 150, 'right': 'C'},
        ])
        assert [g.key for g in group_options(rows)] == ["TSLA:2025-06-20", "AAPL:2025-01-17"]

    def test_empty_chain(self):
        assert group_options([]) == []


class TestThresholdFilter:
    """Notional/qty thresholds and display limits"""

    def test_defaults_are_permissive(self):
        assert DEFAULT_FILTER == FlowFilter(0.0, 1.0)
        events = [flow(1, 0.01), flow(5, 2)]
        assert filter_flows(events, DEFAULT_FILTER) == events

    def test_default_drops_zero_qty(self):
        assert filter_flows([flow(0, 5, notional=100000)], DEFAULT_FILTER) == []

    def test_typical_preset(self):
        assert TYPICAL_FILTER == FlowFilter(20000.0, 50.0)
        small = flow(10, 50)                  # 50_000 notional, 10 qty
        thin = flow(100, 1)                   # 10_000 notional
        big = flow(100, 5)                    # 50_000 notional
        explicit = flow(60, 0.01, notional=25000)
        assert filter_flows([small, thin, big, explicit], TYPICAL_FILTER) == [big, explicit]

    def test_boundaries_inclusive(self):
        event = flow(50, 4)                   # exactly 20_000
        assert filter_flows([event], TYPICAL_FILTER) == [event]

    def test_thresholds_independent(self):
        events = [flow(1, 1000), flow(1000, 0.01)]
        assert filter_flows(events, FlowFilter(50000, 0)) == [events[0]]
        assert filter_flows(events, FlowFilter(0, 500)) == [events[1]]

    def test_make_filter_clamps(self):
        assert make_filter(-5, -1) == FlowFilter(0.0, 0.0)

    def test_view_newest_first_and_limited(self):
        events = [flow(10, 1, ts=float(i)) for i in range(300)]
        view = build_flow_view(events, DEFAULT_FILTER, limit=200)
        assert view.total == 300
        assert view.shown == 300
        assert len(view.events) == 200
        assert view.events[0].ts == 299.0
        assert view.events[-1].ts == 100.0

    def test_view_counts_filtered(self):
        events = [flow(10, 1), flow(100, 10), flow(200, 10)]
        view = build_flow_view(events, TYPICAL_FILTER)
        assert (view.shown, view.total) == (2, 3)
        assert [e.qty for e in view.events] == [200, 100]


class TestViewEngine:
    """Cached views recompute only what changed"""

    def test_snapshot(self):
        store = StateStore()
        store.merge_equities([EquityTick("SPY"), EquityTick("AAPL")])
        store.set_basis(1.5)
        view = ViewEngine().snapshot(store, DEFAULT_FILTER, ConnectionState.OPEN)
        assert [t.symbol for t in view.equities] == ["AAPL", "SPY"]
        assert view.basis == 1.5
        assert view.state is ConnectionState.OPEN
        assert view.sweeps.total == 0

    def test_unchanged_parts_are_reused(self):
        store = StateStore()
        engine = ViewEngine()
        store.merge_equities([EquityTick("SPY")])
        first = engine.snapshot(store, DEFAULT_FILTER, ConnectionState.OPEN)

        store.sweeps.append([flow(10, 1)])
        second = engine.snapshot(store, DEFAULT_FILTER, ConnectionState.OPEN)
        assert second.equities is first.equities
        assert second.blocks is first.blocks
        assert second.sweeps is not first.sweeps
        assert second.sweeps.total == 1

    def test_filter_change_recomputes(self):
        store = StateStore()
        engine = ViewEngine()
        store.blocks.append([flow(10, 1), flow(100, 10)])
        assert engine.flows(store.blocks, DEFAULT_FILTER).shown == 2
        assert engine.flows(store.blocks, TYPICAL_FILTER).shown == 1

    def test_same_result_as_fresh_engine(self, sample_chain):
        store = StateStore()
        engine = ViewEngine()
        store.replace_options(normalize_option_rows(sample_chain))
        engine.snapshot(store, DEFAULT_FILTER, ConnectionState.OPEN)
        store.replace_options(normalize_option_rows(sample_chain[:1]))

        cached = engine.option_groups(store)
        fresh = ViewEngine().option_groups(store)
        assert cached == fresh
        assert len(cached) == 1
