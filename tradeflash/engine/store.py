"""
Authoritative in-memory state for the dashboard.

HOT PATH: merge_equities() and the flow buffers are touched for every frame.

Performance strategy:
1. dict[str, EquityTick] for O(1) latest-wins merge by canonical symbol
2. Option chain stored as the snapshot list, replaced wholesale
3. Flow buffers prune-then-append so growth is bounded per batch
4. Per-part version counters let the view engine skip unchanged parts
"""

from __future__ import annotations

from typing import Iterable

from ..types import EquityTick, FlowEvent, OptionRow, Watchlist

# Retained events per flow buffer before the next batch is appended
DEFAULT_RETENTION = 400


class EventBuffer:
    """
    Append-only flow buffer with a prune-then-append retention policy.

    Before a batch of N events is appended, the buffer is cut back to its
    most recent `retention` entries. It therefore never ends an append with
    more than retention + N entries, and a burst is never split.
    """

    __slots__ = ('retention', '_events', 'version')

    def __init__(self, retention: int = DEFAULT_RETENTION) -> None:
        if retention <= 0:
            raise ValueError("retention must be positive")
        self.retention = retention
        self._events: list[FlowEvent] = []
        self.version: int = 0

    def append(self, events: Iterable[FlowEvent]) -> int:
        """Prune to `retention`, then append. Returns the number appended."""
        batch = list(events)
        if not batch:
            return 0
        if len(self._events) > self.retention:
            self._events = self._events[-self.retention:]
        self._events.extend(batch)
        self.version += 1
        return len(batch)

    @property
    def events(self) -> list[FlowEvent]:
        """Retained events, oldest first. Callers must not mutate."""
        return self._events

    def __len__(self) -> int:
        return len(self._events)


class StateStore:
    """
    In-memory snapshot: equities, option chain, flows, watchlist, basis.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use;
    the dispatcher is the only writer.
    """

    __slots__ = (
        'equities', 'options', 'sweeps', 'blocks', 'watchlist',
        'basis', 'last_error',
        'equity_version', 'options_version', 'watchlist_version',
    )

    def __init__(self, retention: int = DEFAULT_RETENTION) -> None:
        self.equities: dict[str, EquityTick] = {}
        self.options: list[OptionRow] = []
        self.sweeps = EventBuffer(retention)
        self.blocks = EventBuffer(retention)
        self.watchlist = Watchlist()
        self.basis: float | None = None
        self.last_error: str | None = None

        self.equity_version: int = 0
        self.options_version: int = 0
        self.watchlist_version: int = 0

    def merge_equities(self, ticks: Iterable[EquityTick]) -> int:
        """
        Latest-wins merge keyed by symbol. The whole entry is replaced.

        Ticks must already carry canonical symbols (see normalizers).
        """
        count = 0
        for tick in ticks:
            self.equities[tick.symbol] = tick
            count += 1
        if count:
            self.equity_version += 1
        return count

    def replace_options(self, rows: Iterable[OptionRow]) -> None:
        """Full-snapshot semantics: the previous chain is discarded."""
        self.options = list(rows)
        self.options_version += 1

    def set_basis(self, value: float | None) -> None:
        self.basis = value

    def replace_watchlist(self, watchlist: Watchlist) -> None:
        self.watchlist = watchlist
        self.watchlist_version += 1

    def set_error(self, message: str | None) -> None:
        self.last_error = message
