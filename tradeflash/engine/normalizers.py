"""
Normalizers: turn loosely-typed stream payloads into canonical values.

Everything here is a pure function. Two groups:
1. Scalar normalizers/formatters (symbol, ticker, number, IV %, age)
2. Payload normalizers that resolve each topic's raw JSON into the
   NamedTuples from ..types, once, at the ingestion boundary

Rejections are a filtering policy, not a fault: bad symbols, rows without
a strike, non-finite numbers are dropped or mapped to None. Only payloads
whose overall shape is unusable raise PayloadError.
"""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Mapping
from typing import Any, Iterable

from ..errors import PayloadError
from ..types import (
    EquityPayload,
    EquityTick,
    FlowEvent,
    OptionRow,
    WatchedOption,
    Watchlist,
)

logger = logging.getLogger(__name__)

# Display mark for any missing/invalid value
MISSING = "—"

# IV at or below this is a 0-1 ratio; above it is already a percentage
IV_FRACTION_THRESHOLD = 1.5
IV_PERCENT_CAP = 300

_TICKER_RE = re.compile(r"^[A-Z0-9][A-Z0-9._\-/]{0,9}$")
_TICKER_SPLIT_RE = re.compile(r"[\s,;|]+")

_OPTION_RIGHTS = {"C": "C", "CALL": "C", "P": "P", "PUT": "P"}
_FLOW_RIGHTS = {"C": "CALL", "CALL": "CALL", "P": "PUT", "PUT": "PUT"}
_SIDES = {"BUY", "SELL"}


def round_half_up(value: float) -> int:
    """Round .5 away from -inf, the way the upstream UI always did."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

def canonical_symbol(value: Any) -> str:
    """Uppercase, trimmed, with a single leading '/' removed. '' if not a string."""
    if not isinstance(value, str):
        return ""
    sym = value.strip().upper()
    if sym.startswith("/"):
        sym = sym[1:]
    return sym


def is_valid_ticker(candidate: Any) -> bool:
    """1-10 chars, alphanumeric first, then alphanumerics or . - _ /"""
    sym = canonical_symbol(candidate)
    return bool(_TICKER_RE.match(sym))


def parse_tickers(value: Any) -> list[str]:
    """
    Parse a string, a delimited string or a sequence into canonical tickers.

    Invalid candidates are dropped; duplicates keep their first position.
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts: Iterable[Any] = _TICKER_SPLIT_RE.split(value)
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = []
        for item in value:
            if isinstance(item, str):
                parts.extend(_TICKER_SPLIT_RE.split(item))
    else:
        return []

    result: list[str] = []
    seen: set[str] = set()
    for part in parts:
        if not part:
            continue
        sym = canonical_symbol(part)
        if not _TICKER_RE.match(sym):
            logger.debug("Dropping invalid ticker %r", part)
            continue
        if sym not in seen:
            seen.add(sym)
            result.append(sym)
    return result


def to_number(value: Any, zero_missing: bool = False) -> float | None:
    """
    Coerce to a finite float, or None.

    Accepts ints, floats and numeric strings. Booleans are not numbers here.
    With zero_missing, an exact 0 also maps to None (bid/ask/IV).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(num):
        return None
    if zero_missing and num == 0.0:
        return None
    return num


def fmt_number(value: Any, digits: int = 2, zero_missing: bool = False) -> str:
    """Fixed-point display, or MISSING."""
    num = to_number(value, zero_missing=zero_missing)
    if num is None:
        return MISSING
    return f"{num:.{digits}f}"


def iv_percent(value: Any) -> int | None:
    """Implied volatility as an integer percentage, capped at IV_PERCENT_CAP."""
    num = to_number(value, zero_missing=True)
    if num is None or num < 0:
        return None
    pct = num * 100 if num <= IV_FRACTION_THRESHOLD else num
    return round_half_up(min(pct, IV_PERCENT_CAP))


def fmt_iv(value: Any) -> str:
    pct = iv_percent(value)
    return MISSING if pct is None else f"{pct}%"


def ts_ago(ts: Any, now_ms: float | None = None) -> str:
    """
    Elapsed time since an epoch-ms timestamp: now, Ns, Nm, Nh, Nd.
    """
    ts_num = to_number(ts)
    if ts_num is None or ts_num <= 0:
        return MISSING
    if now_ms is None:
        now_ms = time.time() * 1000
    elapsed = max(0.0, (now_ms - ts_num) / 1000.0)
    if elapsed < 1.5:
        return "now"
    secs = int(elapsed)
    if secs < 60:
        return f"{secs}s"
    mins = secs // 60
    if mins < 60:
        return f"{mins}m"
    hours = mins // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_rows(data: Any, topic: str) -> list[Any]:
    """Payloads that should be sequences: None -> [], one object -> [obj]."""
    if data is None:
        return []
    if isinstance(data, Mapping):
        return [data]
    if isinstance(data, (list, tuple)):
        return list(data)
    raise PayloadError(f"expected a list, got {type(data).__name__}", topic=topic)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def normalize_equity_tick(raw: Any) -> EquityTick | None:
    if not isinstance(raw, Mapping):
        return None
    symbol = canonical_symbol(raw.get("symbol"))
    if not symbol:
        logger.debug("Dropping equity tick without symbol: %r", raw)
        return None
    return EquityTick(
        symbol=symbol,
        last=to_number(raw.get("last")),
        bid=to_number(raw.get("bid")),
        ask=to_number(raw.get("ask")),
        iv=to_number(raw.get("iv")),
        ts=to_number(raw.get("ts")),
    )


def normalize_basis(value: Any) -> float | None:
    """Finite basis value or None. Never 0 for junk."""
    if isinstance(value, Mapping):
        value = value.get("es_spx_basis")
    return to_number(value)


def normalize_equity_payload(data: Any) -> EquityPayload:
    """
    Resolve the equity_ts payload union.

    Accepted shapes:
        [tick, ...]
        {"rows": [tick, ...], "es_spx_basis": 1.25}
        {"symbol": ...}                      (single tick)
    """
    basis: float | None = None
    has_basis = False
    raw_rows: Any

    if isinstance(data, Mapping) and "symbol" not in data:
        raw_rows = data.get("rows")
        for key in ("es_spx_basis", "basis"):
            if key in data:
                basis = to_number(data[key])
                has_basis = True
                break
    else:
        raw_rows = data

    rows = []
    for raw in _as_rows(raw_rows, "equity_ts"):
        tick = normalize_equity_tick(raw)
        if tick is not None:
            rows.append(tick)
    return EquityPayload(rows=rows, basis=basis, has_basis=has_basis)


def normalize_option_row(raw: Any) -> OptionRow | None:
    if not isinstance(raw, Mapping):
        return None
    underlying = canonical_symbol(raw.get("underlying"))
    strike = to_number(raw.get("strike"))
    right = _OPTION_RIGHTS.get(_text(raw.get("right")).upper())
    if not underlying or strike is None or right is None:
        logger.debug("Dropping option row: %r", raw)
        return None
    return OptionRow(
        underlying=underlying,
        expiration=_text(raw.get("expiration")),
        strike=strike,
        right=right,
        last=to_number(raw.get("last")),
        bid=to_number(raw.get("bid")),
        ask=to_number(raw.get("ask")),
        ts=to_number(raw.get("ts")),
    )


def normalize_option_rows(data: Any) -> list[OptionRow]:
    rows = []
    for raw in _as_rows(data, "options_ts"):
        row = normalize_option_row(raw)
        if row is not None:
            rows.append(row)
    return rows


def normalize_flow_event(raw: Any, kind: str) -> FlowEvent | None:
    if not isinstance(raw, Mapping):
        return None
    side = _text(raw.get("side")).upper()
    prints = to_number(raw.get("prints"))
    venue = raw.get("venue")
    return FlowEvent(
        kind=kind,
        ul=canonical_symbol(raw.get("ul")),
        right=_FLOW_RIGHTS.get(_text(raw.get("right")).upper()),
        strike=to_number(raw.get("strike")),
        expiry=_text(raw.get("expiry")),
        side=side if side in _SIDES else "UNKNOWN",
        qty=to_number(raw.get("qty")) or 0.0,
        price=to_number(raw.get("price")) or 0.0,
        notional=to_number(raw.get("notional")),
        prints=int(prints) if prints is not None else None,
        venue=str(venue) if venue is not None else None,
        ts=to_number(raw.get("ts")),
    )


def normalize_flow_events(data: Any, kind: str, topic: str) -> list[FlowEvent]:
    events = []
    for raw in _as_rows(data, topic):
        event = normalize_flow_event(raw, kind)
        if event is not None:
            events.append(event)
    return events


def normalize_watched_option(raw: Any) -> WatchedOption | None:
    row = normalize_option_row(raw)
    if row is None:
        return None
    return WatchedOption(row.underlying, row.expiration, row.strike, row.right)


def normalize_watchlist(data: Any) -> Watchlist:
    """
    Watchlist broadcast -> Watchlist.

    A mapping carries {equities, options}; anything else is treated as an
    equities-only list.
    """
    if isinstance(data, Mapping):
        equities = parse_tickers(data.get("equities"))
        options = []
        for raw in _as_rows(data.get("options"), "watchlist"):
            opt = normalize_watched_option(raw)
            if opt is not None:
                options.append(opt)
        return Watchlist(equities=tuple(equities), options=tuple(options))
    return Watchlist(equities=tuple(parse_tickers(data)), options=())
