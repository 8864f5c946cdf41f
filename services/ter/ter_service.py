# services/ter/ter_service.py
"""
Expense ratio (TER) lookup.

Order:
  1) cache (skipped on force_refresh)
  2) relay TER endpoint
  3) fund-profile page for the ISIN, scanned with TER_PATTERNS
  4) None, so the caller can ask for a manual value

A "not found" outcome is cached too, with a shorter ttl, so repeated lookups
for an unknown fund stay off the network until it expires. The miss remembers
which ISIN was scanned; a later call that brings a different ISIN still gets
its fund-profile lookup.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

import httpx

from schemas.market_data import ExpenseRatioRecord
from services.cache.cache_backend import TTLCache
from services.cache.cache_utils import SingleFlight
from services.errors import ConfigurationMissing, MarketDataError
from services.http_client import HttpClientMixin, RelayRotation
from services.quotes.providers import RelayQuoteProvider
from services.ter.ter_extraction import TER_PATTERNS, extract_ter
from utils.common_helpers import dedupe_tickers, normalize_ticker

logger = logging.getLogger(__name__)

TER_CACHE_TTL_SEC = 7 * 24 * 3600
TER_NEGATIVE_TTL_SEC = 6 * 3600

SOURCE_NOT_FOUND = "not_found"
SOURCE_FUND_PROFILE = "justetf"


def ter_category(ter: Optional[float]) -> str:
    if ter is None:
        return "Unknown"
    if ter <= 0.15:
        return "Low"
    if ter <= 0.50:
        return "Medium"
    return "High"


def annual_ter_cost(market_value: Optional[float], ter: Optional[float]) -> float:
    if not market_value or not ter:
        return 0.0
    return market_value * ter / 100.0


class FundProfileSource(HttpClientMixin):
    """Public fund-profile HTML for an ISIN, fetched through a CORS relay."""

    PROFILE_URL = "https://www.justetf.com/en/etf-profile.html?isin={isin}"

    def __init__(self, relays: RelayRotation, *, http: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._relays = relays
        self._http = http
        self.timeout = float(timeout)

    async def fetch(self, isin: str) -> str:
        url = self._relays.wrap(self.PROFILE_URL.format(isin=isin.strip().upper()))
        try:
            r = await self._get(url, headers={"Accept": "text/html"})
        except MarketDataError:
            self._relays.rotate()
            raise
        return r.text or ""


class ExpenseRatioResolver:
    def __init__(
        self,
        cache: TTLCache[ExpenseRatioRecord],
        *,
        relay: Optional[RelayQuoteProvider] = None,
        profiles: Optional[FundProfileSource] = None,
        ttl: float = TER_CACHE_TTL_SEC,
        negative_ttl: float = TER_NEGATIVE_TTL_SEC,
        patterns=TER_PATTERNS,
    ):
        self._cache = cache
        self._relay = relay
        self._profiles = profiles
        self.ttl = float(ttl)
        self.negative_ttl = float(negative_ttl)
        self._patterns = patterns
        self._flight: SingleFlight[Optional[float]] = SingleFlight("ter")

    # -----------------------
    # Cache-only (sync)
    # -----------------------
    def resolve_cached(self, ticker: str) -> Optional[float]:
        hit = self._cache.get(normalize_ticker(ticker))
        return hit.value.ter if hit is not None else None

    def resolve_cached_many(self, tickers: Iterable[str]) -> Dict[str, Optional[float]]:
        return {t: self.resolve_cached(t) for t in dedupe_tickers(tickers)}

    def record(self, ticker: str) -> Optional[ExpenseRatioRecord]:
        hit = self._cache.get(normalize_ticker(ticker))
        if hit is None or hit.value.ter is None:
            return None
        return hit.value

    # -----------------------
    # Full chain (async)
    # -----------------------
    async def resolve(self, ticker: str, isin: Optional[str] = None, force_refresh: bool = False) -> Optional[float]:
        t = normalize_ticker(ticker)
        key = f"{t}|{(isin or '').strip().upper()}|{int(bool(force_refresh))}"
        return await self._flight.do(key, lambda: self._resolve(t, isin, force_refresh))

    async def resolve_many(self, tickers: Iterable[str], force_refresh: bool = False) -> Dict[str, Optional[float]]:
        out: Dict[str, Optional[float]] = {}
        for t in dedupe_tickers(tickers):
            out[t] = await self.resolve(t, force_refresh=force_refresh)
        return out

    async def _resolve(self, ticker: str, isin: Optional[str], force_refresh: bool) -> Optional[float]:
        isin = isin.strip().upper() if isin else None
        relay_missed = False
        if not force_refresh:
            hit = self._cache.get(ticker)
            if hit is not None:
                if hit.value.ter is not None:
                    logger.debug("using cached TER for %s: %s%%", ticker, hit.value.ter)
                    return hit.value.ter
                # a recorded miss only covers the ISIN it was recorded with
                if not isin or hit.value.isin == isin:
                    logger.debug("cached TER miss for %s still fresh", ticker)
                    return None
                relay_missed = True

        if not relay_missed:
            rec = await self._from_relay(ticker)
            if rec is not None:
                self._cache.put(ticker, rec, self.ttl)
                logger.info("fetched TER for %s: %s%% (source: %s)", ticker, rec.ter, rec.source)
                return rec.ter

        if isin:
            ter = await self._from_fund_profile(isin)
            if ter is not None:
                self._cache.put(ticker, ExpenseRatioRecord(ticker=ticker, ter=ter, source=SOURCE_FUND_PROFILE), self.ttl)
                logger.info("fetched TER for %s from fund profile: %s%%", ticker, ter)
                return ter

        logger.info("TER not found for %s; manual entry needed", ticker)
        miss = ExpenseRatioRecord(ticker=ticker, ter=None, source=SOURCE_NOT_FOUND, isin=isin)
        self._cache.put(ticker, miss, self.negative_ttl)
        return None

    async def _from_relay(self, ticker: str) -> Optional[ExpenseRatioRecord]:
        if self._relay is None:
            return None
        try:
            return await self._relay.fetch_expense_ratio(ticker)
        except ConfigurationMissing:
            return None
        except MarketDataError as e:
            logger.warning("relay TER lookup failed for %s: %s (%s)", ticker, e.kind, e)
            return None

    async def _from_fund_profile(self, isin: str) -> Optional[float]:
        if self._profiles is None:
            return None
        try:
            html = await self._profiles.fetch(isin)
        except MarketDataError as e:
            logger.warning("fund profile fetch failed for %s: %s (%s)", isin, e.kind, e)
            return None
        return extract_ter(html, self._patterns)
