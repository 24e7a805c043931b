"""
Stream connection lifecycle: connect, reconnect with backoff, teardown.

ConnectionManager is an explicit state machine driven by one event type
(TransportEvent). Transports never touch manager state directly; they call
an `emit` callback that has the attempt's generation number bound in. Any
event whose generation is no longer current, or that arrives after stop(),
is ignored.

    idle --start()--> connecting --OPEN--> open --CLOSE--> closed
                          ^                                  |
                          +------ retry timer (backoff) -----+
    any --ERROR--> error        (the following CLOSE drives the retry)
    any --stop()--> closed      (terminal)

The transport factory and the timer scheduler are injectable, so the whole
transition table runs in tests against a fake transport without a socket.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable, Protocol

import aiohttp

from ..types import ConnectionState, EventKind, TransportEvent

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 10000
DEFAULT_HEARTBEAT_SEC = 20.0


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Transport(Protocol):
    def close(self) -> None: ...


Emit = Callable[[TransportEvent], None]
TransportFactory = Callable[[str, Emit], Transport]
Scheduler = Callable[[float, Callable[[], None]], Cancellable]


def backoff_delay_ms(retry_count: int, base_ms: float, max_ms: float) -> float:
    """min(base * 2^retry, max)"""
    return min(base_ms * (2 ** retry_count), max_ms)


def loop_scheduler(delay_sec: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Default scheduler: a call_later on the running loop."""
    return asyncio.get_running_loop().call_later(delay_sec, callback)


class ConnectionManager:
    """
    Owns the single stream connection and its retry timer.

    Usage:
        manager = ConnectionManager(url, AiohttpTransport.factory(session), on_message)
        manager.start()
        ...
        manager.stop()

    Thread-safety: NOT thread-safe. All calls and transport events must
    happen on the event loop thread.
    """

    def __init__(
        self,
        url: str,
        transport_factory: TransportFactory,
        on_message: Callable[[bytes | str], object],
        on_state_change: Callable[[ConnectionState], None] | None = None,
        base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.url = url
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._transport_factory = transport_factory
        self._on_message = on_message
        self._on_state_change = on_state_change
        self._scheduler = scheduler or loop_scheduler

        self._state = ConnectionState.IDLE
        self._stopped = False
        self._generation = 0
        self._retry_count = 0
        self._transport: Transport | None = None
        self._retry_handle: Cancellable | None = None
        self.last_delay_ms: float | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def start(self) -> None:
        """
        Begin connecting. No-op after stop(), while a retry is pending, or
        while a transport is live (including in ERROR, until its CLOSE).
        """
        if self._stopped:
            return
        if self._transport is not None or self._retry_handle is not None:
            return
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        self._connect()

    def stop(self) -> None:
        """Halt for good: cancel the retry timer, close the transport."""
        if self._stopped:
            return
        self._stopped = True
        # Everything emitted by the current transport is now stale
        self._generation += 1

        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()

        self._set_state(ConnectionState.CLOSED)
        logger.info("Connection to %s stopped", self.url)

    def handle_event(self, generation: int, event: TransportEvent) -> None:
        """
        Single entry point for transport events.

        Transports receive this with their generation pre-bound (see _connect).
        """
        if self._stopped or generation != self._generation:
            logger.debug("Ignoring stale %s event (gen %d, current %d)",
                         event.kind.value, generation, self._generation)
            return

        kind = event.kind
        if kind is EventKind.MESSAGE:
            self._on_message(event.data)
        elif kind is EventKind.OPEN:
            self._retry_count = 0
            self._set_state(ConnectionState.OPEN)
            logger.info("Connected to %s", self.url)
        elif kind is EventKind.ERROR:
            self._set_state(ConnectionState.ERROR)
            logger.warning("Stream error on %s: %s", self.url, event.data)
        elif kind is EventKind.CLOSE:
            # Late events from this transport are stale from here on
            self._generation += 1
            self._transport = None
            self._set_state(ConnectionState.CLOSED)
            self._schedule_reconnect()

    def _connect(self) -> None:
        self._retry_handle = None
        if self._stopped:
            return

        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        emit: Emit = partial(self.handle_event, generation)
        try:
            self._transport = self._transport_factory(self.url, emit)
        except (OSError, ValueError) as e:
            emit(TransportEvent(EventKind.ERROR, str(e)))
            emit(TransportEvent(EventKind.CLOSE))

    def _schedule_reconnect(self) -> None:
        if self._stopped or self._retry_handle is not None:
            return
        delay_ms = backoff_delay_ms(self._retry_count, self.base_delay_ms, self.max_delay_ms)
        self._retry_count += 1
        self.last_delay_ms = delay_ms
        logger.info("Reconnecting to %s in %.0fms (attempt %d)", self.url, delay_ms, self._retry_count)
        self._retry_handle = self._scheduler(delay_ms / 1000.0, self._connect)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)


class AiohttpTransport:
    """
    Websocket transport on an aiohttp ClientSession.

    Emits OPEN once connected, MESSAGE per text/binary frame, ERROR on a
    websocket or connection failure, and always CLOSE when the socket task
    ends. close() cancels the task; the manager has already marked this
    transport stale by then.
    """

    def __init__(
        self,
        url: str,
        emit: Emit,
        session: aiohttp.ClientSession,
        heartbeat: float = DEFAULT_HEARTBEAT_SEC,
    ) -> None:
        self.url = url
        self._emit = emit
        self._session = session
        self._heartbeat = heartbeat
        self._task = asyncio.get_running_loop().create_task(self._run())

    @classmethod
    def factory(
        cls,
        session: aiohttp.ClientSession,
        heartbeat: float = DEFAULT_HEARTBEAT_SEC,
    ) -> TransportFactory:
        """Bind a session so the result fits ConnectionManager's factory signature."""
        def make(url: str, emit: Emit) -> AiohttpTransport:
            return cls(url, emit, session, heartbeat)
        return make

    async def _run(self) -> None:
        try:
            async with self._session.ws_connect(self.url, heartbeat=self._heartbeat) as ws:
                self._emit(TransportEvent(EventKind.OPEN))

                async for msg in ws:
                    if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                        self._emit(TransportEvent(EventKind.MESSAGE, msg.data))
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        self._emit(TransportEvent(EventKind.ERROR, str(ws.exception())))
                        break
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            self._emit(TransportEvent(EventKind.ERROR, str(e) or type(e).__name__))
        finally:
            self._emit(TransportEvent(EventKind.CLOSE))

    def close(self) -> None:
        self._task.cancel()
