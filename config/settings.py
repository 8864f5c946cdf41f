"""
Environment-driven settings for the market data pipeline.

Every optional upstream (price relay, data provider key, Redis) is disabled
when its variable is absent; nothing here raises on a missing value.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CORS_RELAYS = (
    "https://api.allorigins.win/raw?url=",
    "https://corsproxy.io/?",
)


def _env_str(name: str) -> Optional[str]:
    v = (os.getenv(name) or "").strip()
    return v or None


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_relays(name: str) -> Tuple[str, ...]:
    raw = _env_str(name)
    if not raw:
        return DEFAULT_CORS_RELAYS
    relays = tuple(p.strip() for p in raw.split(",") if p.strip())
    return relays or DEFAULT_CORS_RELAYS


@dataclass(frozen=True)
class MarketDataSettings:
    price_relay_url: Optional[str] = None
    fmp_api_key: Optional[str] = None
    cors_relays: Tuple[str, ...] = field(default=DEFAULT_CORS_RELAYS)

    request_timeout_sec: float = 10.0
    relay_timeout_sec: float = 15.0
    batch_delay_sec: float = 1.5

    quote_cache_ttl_sec: float = 30 * 60
    ter_cache_ttl_sec: float = 7 * 24 * 3600
    ter_negative_ttl_sec: float = 6 * 3600
    allocation_cache_ttl_sec: float = 24 * 3600
    auth_session_ttl_sec: float = 30 * 60

    default_currency: str = "EUR"

    redis_url: Optional[str] = None
    redis_prefix: str = "marketdata:"

    @property
    def relay_configured(self) -> bool:
        return bool(self.price_relay_url)

    @property
    def provider_key_configured(self) -> bool:
        return bool(self.fmp_api_key)


def load_settings() -> MarketDataSettings:
    """Build settings from the process environment (and .env, if present)."""
    return MarketDataSettings(
        price_relay_url=_env_str("PRICE_RELAY_URL"),
        fmp_api_key=_env_str("FMP_API_KEY"),
        cors_relays=_env_relays("CORS_RELAY_URLS"),
        request_timeout_sec=_env_float("MARKET_DATA_TIMEOUT_SEC", 10.0),
        relay_timeout_sec=_env_float("PRICE_RELAY_TIMEOUT_SEC", 15.0),
        batch_delay_sec=_env_float("QUOTE_BATCH_DELAY_SEC", 1.5),
        quote_cache_ttl_sec=_env_float("QUOTE_CACHE_TTL_SEC", 30 * 60),
        ter_cache_ttl_sec=_env_float("TER_CACHE_TTL_SEC", 7 * 24 * 3600),
        ter_negative_ttl_sec=_env_float("TER_NEGATIVE_TTL_SEC", 6 * 3600),
        allocation_cache_ttl_sec=_env_float("ALLOCATION_CACHE_TTL_SEC", 24 * 3600),
        auth_session_ttl_sec=_env_float("AUTH_SESSION_TTL_SEC", 30 * 60),
        default_currency=(_env_str("DEFAULT_CURRENCY") or "EUR").upper(),
        redis_url=_env_str("UPSTASH_REDIS_URL"),
        redis_prefix=os.getenv("REDIS_PREFIX", "marketdata:"),
    )
