"""
Tests for watchlist REST requests
"""

import aiohttp
import pytest

from tradeflash.datafeed.watchlist_client import WatchlistClient
from tradeflash.errors import WatchlistRequestError


class FakeResponse:
    def __init__(self, status):
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Records requests; answers with a fixed status or raises."""

    def __init__(self, status=200, raises=None):
        self.status = status
        self.raises = raises
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs.get('json')))
        if self.raises is not None:
            raise self.raises
        return FakeResponse(self.status)


class TestWatchlistClient:

    async def test_add_posts_uppercased_symbol(self):
        session = FakeSession()
        client = WatchlistClient("http://api:8080/", session)
        await client.add(" nvda ")
        assert session.requests == [("POST", "http://api:8080/watchlist/equities", {'symbol': 'NVDA'})]

    async def test_remove_url_encodes(self):
        session = FakeSession(status=204)
        client = WatchlistClient("http://api:8080", session)
        await client.remove("BRK/B")
        assert session.requests == [("DELETE", "http://api:8080/watchlist/equities/BRK%2FB", None)]

    @pytest.mark.parametrize("status,label", [
        (500, "POST /watchlist/equities 500"),
        (404, "POST /watchlist/equities 404"),
        (302, "POST /watchlist/equities 302"),
    ])
    async def test_non_2xx_raises(self, status, label):
        client = WatchlistClient("http://api", FakeSession(status=status))
        with pytest.raises(WatchlistRequestError) as exc_info:
            await client.add("SPY")
        assert str(exc_info.value) == label
        assert exc_info.value.status == status

    async def test_delete_failure_label(self):
        client = WatchlistClient("http://api", FakeSession(status=500))
        with pytest.raises(WatchlistRequestError, match="DELETE /watchlist/equities 500"):
            await client.remove("SPY")

    async def test_transport_error_wrapped(self):
        session = FakeSession(raises=aiohttp.ClientConnectionError("refused"))
        client = WatchlistClient("http://api", session)
        with pytest.raises(WatchlistRequestError, match="failed"):
            await client.add("SPY")
