"""
Test Configuration Module
Provides fixtures and shared test utilities
"""

import pytest

from tradeflash.config import Settings
from tradeflash.datafeed.connection import ConnectionManager
from tradeflash.engine.store import StateStore
from tradeflash.types import EventKind, TransportEvent


class FakeTimer:
    """Stand-in for asyncio.TimerHandle that fires only when told to."""

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        assert not self.cancelled, "timer was cancelled"
        self.fired = True
        self.callback()


class FakeScheduler:
    """Records every scheduled retry instead of sleeping."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self):
        pending = self.pending
        assert pending, "no pending timer"
        pending[0].fire()


class FakeTransport:
    """Synthetic transport: the test decides which events it emits."""

    def __init__(self, url, emit):
        self.url = url
        self.emit = emit
        self.closed = False

    def open(self):
        self.emit(TransportEvent(EventKind.OPEN))

    def message(self, data):
        self.emit(TransportEvent(EventKind.MESSAGE, data))

    def error(self, text="connection reset"):
        self.emit(TransportEvent(EventKind.ERROR, text))

    def drop(self):
        """Peer close / network loss."""
        self.emit(TransportEvent(EventKind.CLOSE))

    def close(self):
        self.closed = True


class FakeTransportFactory:
    def __init__(self):
        self.transports = []

    def __call__(self, url, emit):
        transport = FakeTransport(url, emit)
        self.transports.append(transport)
        return transport

    @property
    def latest(self):
        return self.transports[-1]


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def transports():
    return FakeTransportFactory()


@pytest.fixture
def received():
    """Frames and states observed by a ConnectionManager."""
    return {'messages': [], 'states': []}


@pytest.fixture
def manager(transports, scheduler, received):
    return ConnectionManager(
        "ws://test/ws",
        transports,
        on_message=received['messages'].append,
        on_state_change=received['states'].append,
        scheduler=scheduler,
    )


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def settings():
    return Settings(ws_url="ws://test/ws", api_base="http://test", log_file=None)


@pytest.fixture
def sample_sweep():
    return {
        'ul': 'NVDA', 'right': 'CALL', 'strike': 900, 'expiry': '2025-01-17',
        'side': 'BUY', 'qty': 100, 'price': 4.5, 'prints': 3, 'venue': 'CBOE',
        'ts': 1_700_000_000_000,
    }


@pytest.fixture
def sample_chain():
    return [
        {'underlying': 'AAPL', 'expiration': '2025-01-17', 'strike': 150, 'right': 'C', 'last': 2.1},
        {'underlying': 'AAPL', 'expiration': '2025-02-21', 'strike': 155, 'right': 'P', 'bid': 1.0},
        {'underlying': 'AAPL', 'expiration': '2025-01-17', 'strike': 140, 'right': 'C', 'last': 9.8},
    ]
