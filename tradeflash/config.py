"""
Runtime settings for TradeFlash.

Every field can be overridden with a TRADEFLASH_* environment variable
(pydantic-settings does the lookup and type coercion); main.py lets CLI
flags override those in turn.

Usage:
    settings = load_settings()

    # export TRADEFLASH_RETENTION=1000
    # settings.retention is then 1000 instead of 400
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WS_URL = "ws://127.0.0.1:8080/ws"
DEFAULT_API_BASE = "http://127.0.0.1:8080"
ENV_PREFIX = "TRADEFLASH_"


class Settings(BaseSettings):
    """Endpoint addresses, reconnect policy, retention and display limits."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra='ignore',
        frozen=True,
    )

    ws_url: str = Field(default=DEFAULT_WS_URL, description="Stream websocket URL")
    api_base: str = Field(default=DEFAULT_API_BASE, description="Watchlist REST base URL")

    base_delay_ms: float = Field(default=1000.0, gt=0, description="First reconnect delay")
    max_delay_ms: float = Field(default=10000.0, gt=0, description="Reconnect delay cap")

    retention: int = Field(default=400, gt=0, description="Flow events kept per buffer")
    display_limit: int = Field(default=200, ge=0, description="Filtered flow rows shown per table")
    snapshot_interval_ms: int = Field(default=100, ge=0, description="Min gap between message-driven snapshots")
    refresh_interval_sec: float = Field(default=1.0, gt=0, description="Idle snapshot period")

    min_notional: float = Field(default=0.0, description="Initial min notional filter")
    min_qty: float = Field(default=1.0, description="Initial min contracts filter")

    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="logs/tradeflash.log", description="Empty disables file logging")

    @field_validator('log_level')
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('log_file', mode='before')
    @classmethod
    def empty_log_file(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def check_delays(self) -> "Settings":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"{ENV_PREFIX}BASE_DELAY_MS/{ENV_PREFIX}MAX_DELAY_MS must satisfy 0 < base <= max"
            )
        return self

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Copy with every non-None override applied."""
        return self.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = err.get("loc") or ()
        if loc:
            parts.append(f"{ENV_PREFIX}{str(loc[0]).upper()}: {err['msg']}")
        else:
            parts.append(err['msg'])
    return "; ".join(parts)


def load_settings() -> Settings:
    """Build Settings from the TRADEFLASH_* environment."""
    try:
        return Settings()
    except ValidationError as e:
        raise ValueError(_describe(e)) from None
