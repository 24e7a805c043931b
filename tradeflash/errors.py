"""
Exception hierarchy for TradeFlash.

TradeflashError (base)
├── FrameDecodeError       - inbound frame is not a JSON {topic, data} object
├── PayloadError           - topic payload has a shape we cannot reconcile
└── WatchlistRequestError  - watchlist POST/DELETE failed

None of these are fatal: the dispatcher and the dashboard client catch them
and record str(exc) as the store's last_error.
"""

from __future__ import annotations


class TradeflashError(Exception):
    """Base exception for all TradeFlash errors."""

    def __init__(self, message: str, topic: str | None = None) -> None:
        self.message = message
        self.topic = topic
        super().__init__(message)

    def __str__(self) -> str:
        if self.topic:
            return f"{self.topic}: {self.message}"
        return self.message


class FrameDecodeError(TradeflashError):
    """Raised when a frame cannot be decoded into an envelope."""


class PayloadError(TradeflashError):
    """Raised when a topic payload is not the shape its rule expects."""


class WatchlistRequestError(TradeflashError):
    """Raised when a watchlist mutation request fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)
