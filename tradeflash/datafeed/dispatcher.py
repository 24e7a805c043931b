"""
Message dispatcher: decode {topic, data} frames and reconcile into the store.

HOT PATH: dispatch_raw() is called for every websocket frame.

Frames are handled one at a time, in arrival order. A bad frame is logged,
recorded as the store's last_error and dropped; the next frame is
processed normally.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable

import orjson

from ..engine.normalizers import (
    normalize_basis,
    normalize_equity_payload,
    normalize_flow_events,
    normalize_option_rows,
    normalize_watchlist,
)
from ..engine.store import StateStore
from ..errors import FrameDecodeError, PayloadError

logger = logging.getLogger(__name__)


def decode_frame(raw: bytes | str) -> dict:
    """Parse one frame into an envelope dict with a string topic."""
    try:
        envelope = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise FrameDecodeError(f"malformed frame: {e}") from e
    if not isinstance(envelope, dict):
        raise FrameDecodeError(f"frame is a {type(envelope).__name__}, not an object")
    if not isinstance(envelope.get("topic"), str):
        raise FrameDecodeError("frame has no topic")
    return envelope


class MessageDispatcher:
    """
    Routes envelopes to per-topic reconciliation rules.

    Unknown topics are ignored so newer servers can add message types.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store
        self.frames_handled: int = 0
        self.frames_dropped: int = 0
        self._rules: dict[str, Callable[[Any], None]] = {
            "equity_ts": self._on_equity,
            "basis": self._on_basis,
            "options_ts": self._on_options,
            "sweeps": self._on_sweeps,
            "blocks": self._on_blocks,
            "watchlist": self._on_watchlist,
        }

    def dispatch_raw(self, raw: bytes | str) -> bool:
        """
        Decode and dispatch one frame.

        Returns True if the frame was applied (or ignored as an unknown
        topic), False if it was dropped.
        """
        try:
            self.dispatch(decode_frame(raw))
        except (FrameDecodeError, PayloadError) as e:
            self.frames_dropped += 1
            self.store.set_error(str(e))
            logger.warning("Dropped frame: %s", e)
            return False
        return True

    def dispatch(self, envelope: Mapping[str, Any]) -> None:
        """Apply an already-decoded envelope. Raises PayloadError on bad shapes."""
        topic = envelope.get("topic")
        rule = self._rules.get(topic) if isinstance(topic, str) else None
        if rule is None:
            logger.debug("Ignoring topic %r", topic)
            return
        rule(envelope.get("data"))
        self.frames_handled += 1

    def _on_equity(self, data: Any) -> None:
        payload = normalize_equity_payload(data)
        self.store.merge_equities(payload.rows)
        if payload.has_basis:
            self.store.set_basis(payload.basis)

    def _on_basis(self, data: Any) -> None:
        self.store.set_basis(normalize_basis(data))

    def _on_options(self, data: Any) -> None:
        self.store.replace_options(normalize_option_rows(data))

    def _on_sweeps(self, data: Any) -> None:
        self.store.sweeps.append(normalize_flow_events(data, "SWEEP", "sweeps"))

    def _on_blocks(self, data: Any) -> None:
        self.store.blocks.append(normalize_flow_events(data, "BLOCK", "blocks"))

    def _on_watchlist(self, data: Any) -> None:
        self.store.replace_watchlist(normalize_watchlist(data))
