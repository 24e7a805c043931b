"""
Dashboard client: stream connection + reconciliation + view snapshots.

Handles:
1. Stream lifecycle via ConnectionManager (aiohttp websocket by default)
2. Frame dispatch into the StateStore
3. Flow filter thresholds (the only user-adjustable view input)
4. Watchlist add/remove requests, errors surfaced as last_error
5. Periodic DashboardView snapshots for the UI

Performance notes:
- Snapshots are throttled to snapshot_interval_ms on message traffic
- ViewEngine only recomputes the parts of the store that changed
- All I/O is non-blocking (pure asyncio)
"""

from __future__ import annotations

import asyncio
import logging
import time

import aiohttp

from ..config import Settings
from ..engine.normalizers import canonical_symbol, is_valid_ticker
from ..engine.store import StateStore
from ..engine.views import DEFAULT_FILTER, TYPICAL_FILTER, ViewEngine, make_filter
from ..errors import WatchlistRequestError
from ..types import ConnectionState, DashboardView, FlowFilter
from .connection import (
    AiohttpTransport,
    Cancellable,
    ConnectionManager,
    Scheduler,
    TransportFactory,
    loop_scheduler,
)
from .dispatcher import MessageDispatcher
from .watchlist_client import WatchlistClient

logger = logging.getLogger(__name__)

SNAPSHOT_QUEUE_SIZE = 5


class DashboardClient:
    """
    Async client that keeps dashboard state current.

    Usage:
        client = DashboardClient(load_settings())
        feed = asyncio.create_task(client.run())
        view = await client.snapshot_queue.get()
        ...
        client.stop()
    """

    def __init__(
        self,
        settings: Settings,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        watchlist: WatchlistClient | None = None,
    ) -> None:
        self.settings = settings

        # Core components
        self.store = StateStore(retention=settings.retention)
        self.dispatcher = MessageDispatcher(self.store)
        self.views = ViewEngine(display_limit=settings.display_limit)
        self.flow_filter: FlowFilter = make_filter(settings.min_notional, settings.min_qty)

        self._transport_factory = transport_factory
        self._scheduler = scheduler
        self.watchlist = watchlist
        self.connection: ConnectionManager | None = None

        # State
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._last_snapshot_time: float = 0.0
        self._trailing_push: Cancellable | None = None
        self._pending: set[asyncio.Task] = set()

        # Output queue for UI; drop-oldest when the UI falls behind
        self.snapshot_queue: asyncio.Queue[DashboardView] = asyncio.Queue(maxsize=SNAPSHOT_QUEUE_SIZE)

        if transport_factory is not None:
            self.connection = self._make_connection(transport_factory)

    def _make_connection(self, transport_factory: TransportFactory) -> ConnectionManager:
        return ConnectionManager(
            self.settings.ws_url,
            transport_factory,
            on_message=self._on_message,
            on_state_change=self._on_state_change,
            base_delay_ms=self.settings.base_delay_ms,
            max_delay_ms=self.settings.max_delay_ms,
            scheduler=self._scheduler,
        )

    @property
    def state(self) -> ConnectionState:
        if self.connection is None:
            return ConnectionState.IDLE
        return self.connection.state

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    def _on_message(self, raw: bytes | str) -> None:
        """HOT PATH - called for every frame."""
        self.dispatcher.dispatch_raw(raw)
        self._maybe_push_snapshot()

    def _on_state_change(self, state: ConnectionState) -> None:
        logger.debug("Connection state -> %s", state.value)
        self.push_snapshot()

    def snapshot(self) -> DashboardView:
        return self.views.snapshot(self.store, self.flow_filter, self.state)

    def push_snapshot(self) -> None:
        """Push a snapshot now; drop the oldest queued one if the queue is full."""
        self._cancel_trailing_push()
        self._last_snapshot_time = time.perf_counter()
        view = self.snapshot()
        try:
            self.snapshot_queue.put_nowait(view)
        except asyncio.QueueFull:
            self.snapshot_queue.get_nowait()
            self.snapshot_queue.put_nowait(view)

    def _maybe_push_snapshot(self) -> None:
        elapsed_ms = (time.perf_counter() - self._last_snapshot_time) * 1000
        interval_ms = self.settings.snapshot_interval_ms
        if elapsed_ms >= interval_ms:
            self.push_snapshot()
        elif self._trailing_push is None:
            # The last frame of a burst still renders once the interval is up
            schedule = self._scheduler or loop_scheduler
            self._trailing_push = schedule((interval_ms - elapsed_ms) / 1000.0, self._flush_trailing_push)

    def _flush_trailing_push(self) -> None:
        self._trailing_push = None
        self.push_snapshot()

    def _cancel_trailing_push(self) -> None:
        if self._trailing_push is not None:
            self._trailing_push.cancel()
            self._trailing_push = None

    async def run(self) -> None:
        """
        Main run loop. Connects and keeps pushing snapshots until stop().

        Without an injected transport factory, a shared aiohttp session
        backs both the websocket and the watchlist requests.
        """
        self._running = True
        self._stop_event = asyncio.Event()

        async with aiohttp.ClientSession() as session:
            if self.connection is None:
                self.connection = self._make_connection(AiohttpTransport.factory(session))
            if self.watchlist is None:
                self.watchlist = WatchlistClient(self.settings.api_base, session)

            self.connection.start()
            self.push_snapshot()

            while self._running:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.settings.refresh_interval_sec,
                    )
                except asyncio.TimeoutError:
                    # Keeps age columns moving when the stream is quiet
                    self.push_snapshot()

            for task in list(self._pending):
                task.cancel()

    def stop(self) -> None:
        """Signal the client to stop and tear down the stream."""
        self._running = False
        if self.connection is not None:
            self.connection.stop()
        self._cancel_trailing_push()
        if self._stop_event is not None:
            self._stop_event.set()

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def set_min_notional(self, value: float) -> None:
        self.flow_filter = make_filter(value, self.flow_filter.min_qty)
        self.push_snapshot()

    def set_min_qty(self, value: float) -> None:
        self.flow_filter = make_filter(self.flow_filter.min_notional, value)
        self.push_snapshot()

    def reset_filters(self) -> None:
        """Apply the typical preset (20000 notional, 50 contracts)."""
        self.flow_filter = TYPICAL_FILTER
        self.push_snapshot()

    def clear_filters(self) -> None:
        """Back to the permissive defaults: show everything."""
        self.flow_filter = DEFAULT_FILTER
        self.push_snapshot()

    # ------------------------------------------------------------------
    # Watchlist
    # ------------------------------------------------------------------

    async def add_equity(self, symbol: str) -> bool:
        if not is_valid_ticker(symbol):
            logger.debug("Not adding invalid ticker %r", symbol)
            return False
        return await self._watchlist_call("add", canonical_symbol(symbol))

    async def remove_equity(self, symbol: str) -> bool:
        return await self._watchlist_call("remove", canonical_symbol(symbol))

    def request_add(self, symbol: str) -> asyncio.Task:
        """Fire-and-forget add."""
        return self._spawn(self.add_equity(symbol))

    def request_remove(self, symbol: str) -> asyncio.Task:
        """Fire-and-forget remove."""
        return self._spawn(self.remove_equity(symbol))

    async def _watchlist_call(self, action: str, symbol: str) -> bool:
        if self.watchlist is None:
            self.store.set_error("watchlist client not ready")
            self.push_snapshot()
            return False
        try:
            if action == "add":
                await self.watchlist.add(symbol)
            else:
                await self.watchlist.remove(symbol)
        except WatchlistRequestError as e:
            logger.warning("Watchlist %s %s failed: %s", action, symbol, e)
            self.store.set_error(str(e))
            self.push_snapshot()
            return False
        return True

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task
