"""
Watchlist mutation requests (fire-and-forget from the dashboard's view).

The response body is never used: the authoritative watchlist arrives later
on the stream's `watchlist` topic.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote

import aiohttp

from ..errors import WatchlistRequestError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 10.0


class WatchlistClient:
    """
    POST/DELETE calls against the watchlist REST endpoints.

    Usage:
        async with aiohttp.ClientSession() as session:
            client = WatchlistClient("http://127.0.0.1:8080", session)
            await client.add("nvda")
    """

    def __init__(
        self,
        api_base: str,
        session: aiohttp.ClientSession,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)

    async def add(self, symbol: str) -> None:
        """POST /watchlist/equities {"symbol": SYMBOL}"""
        url = f"{self.api_base}/watchlist/equities"
        body = {"symbol": symbol.strip().upper()}
        await self._request("POST", url, "POST /watchlist/equities", json=body)
        logger.info("Requested watchlist add: %s", body["symbol"])

    async def remove(self, symbol: str) -> None:
        """DELETE /watchlist/equities/{symbol}"""
        url = f"{self.api_base}/watchlist/equities/{quote(symbol, safe='')}"
        await self._request("DELETE", url, "DELETE /watchlist/equities")
        logger.info("Requested watchlist remove: %s", symbol)

    async def _request(self, method: str, url: str, label: str, **kwargs) -> None:
        try:
            async with self._session.request(method, url, timeout=self._timeout, **kwargs) as resp:
                if not 200 <= resp.status < 300:
                    raise WatchlistRequestError(f"{label} {resp.status}", status=resp.status)
        except aiohttp.ClientError as e:
            raise WatchlistRequestError(f"{label} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise WatchlistRequestError(f"{label} timed out") from e
