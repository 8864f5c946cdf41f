# services/quotes/providers.py
"""
Quote sources sharing one contract:

    await provider.fetch_quote(ticker, last_price=...) -> QuoteRecord | None

Providers raise taxonomy errors (services.errors) on failure; the chain turns
every one of them into "advance to the next tier". `deadline` bounds a whole
tier call, retries included. `handles(ticker, category)` lets a tier opt out
of tickers it has no business pricing.
"""
from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

import httpx

from schemas.market_data import SOURCE_SYNTHETIC, AssetCategory, ExpenseRatioRecord, QuoteRecord, utc_now
from services.errors import (
    AuthFailure,
    ConfigurationMissing,
    MarketDataError,
    NetworkFailure,
    NoDataAvailable,
    ParseFailure,
    SanityCheckFailure,
)
from services.http_client import BROWSER_HEADERS, HttpClientMixin, RelayRotation
from services.yahoo.auth_session import YahooAuthSessionManager
from utils.common_helpers import pct_change, raw_value, safe_float, safe_json

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

SYNTHETIC_MAX_VARIATION = 0.02


def parse_timestamp(x: Any) -> datetime:
    """Epoch seconds/millis or ISO string -> aware UTC datetime; now() when unusable."""
    if isinstance(x, (int, float)) and not isinstance(x, bool):
        ts = float(x)
        if ts > 1e12:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return utc_now()
    if isinstance(x, str) and x.strip():
        try:
            dt = datetime.fromisoformat(x.strip().replace("Z", "+00:00"))
            return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
        except ValueError:
            return utc_now()
    return utc_now()


class QuoteProvider(HttpClientMixin):
    name: str = "provider"

    @property
    def deadline(self) -> float:
        return self.timeout

    def handles(self, ticker: str, category: Optional[str] = None) -> bool:
        return True

    async def fetch_quote(self, ticker: str, *, last_price: Optional[float] = None) -> Optional[QuoteRecord]:
        raise NotImplementedError


# ---------------------------
# Tier 1: user-deployed relay
# ---------------------------
class RelayQuoteProvider(QuoteProvider):
    """
    Calls a user-deployed relay: GET <url>?ticker=SYM ->
      {price, change, bid, ask, timestamp, error?}
    and GET <url>?ticker=SYM&ter=true -> {ticker, ter, source, lastUpdated, error?}.
    """

    name = "relay"

    def __init__(self, base_url: Optional[str], *, http: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self.base_url = (base_url or "").strip() or None
        self._http = http
        self.timeout = float(timeout)

    @property
    def configured(self) -> bool:
        return self.base_url is not None

    async def _call(self, **params: str) -> Dict[str, Any]:
        if not self.base_url:
            raise ConfigurationMissing("PRICE_RELAY_URL not set")
        r = await self._get(self.base_url, params=params, headers={"Accept": "application/json"})
        data = safe_json(r)
        if data is None:
            raise ParseFailure("relay returned non-JSON")
        if data.get("error"):
            raise NoDataAvailable(str(data["error"]))
        return data

    async def fetch_quote(self, ticker: str, *, last_price: Optional[float] = None) -> Optional[QuoteRecord]:
        data = await self._call(ticker=ticker)

        price = safe_float(data.get("price"))
        if price is None or price <= 0:
            raise ParseFailure("relay returned no price")
        change = safe_float(data.get("change")) or 0.0

        return QuoteRecord(
            ticker=ticker,
            price=price,
            change=change,
            change_percent=pct_change(change, price - change),
            currency=(data.get("currency") or "USD").upper(),
            timestamp=parse_timestamp(data.get("timestamp")),
            source=self.name,
            bid=safe_float(data.get("bid")),
            ask=safe_float(data.get("ask")),
            name=data.get("name") or ticker,
        )

    async def fetch_expense_ratio(self, ticker: str) -> ExpenseRatioRecord:
        data = await self._call(ticker=ticker, ter="true")

        ter = safe_float(data.get("ter"))
        if ter is None:
            raise NoDataAvailable("relay returned no TER")
        if not (0 <= ter < 10):
            raise SanityCheckFailure(f"TER {ter} outside [0, 10)")

        return ExpenseRatioRecord(
            ticker=ticker,
            ter=ter,
            source=str(data.get("source") or self.name),
            last_updated=parse_timestamp(data.get("lastUpdated")),
        )

    async def check_connection(self, ticker: str = "AAPL") -> bool:
        """True when the relay answers with a usable price for a well-known ticker."""
        try:
            rec = await self.fetch_quote(ticker)
        except MarketDataError as e:
            logger.warning("relay connection check failed: %s", e.kind)
            return False
        return rec is not None and rec.price is not None


# ---------------------------
# Tier 2: cookie + crumb quoteSummary
# ---------------------------
class AuthenticatedQuoteProvider(QuoteProvider):
    name = "yahoo-advanced"
    QUOTE_SUMMARY_URL = "https://query2.finance.yahoo.com/v10/finance/quoteSummary/{ticker}"

    def __init__(
        self,
        sessions: YahooAuthSessionManager,
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._sessions = sessions
        self._http = http
        self.timeout = float(timeout)

    @property
    def deadline(self) -> float:
        # handshake (two requests) plus the quote request
        return self.timeout * 3

    async def fetch_quote(self, ticker: str, *, last_price: Optional[float] = None) -> Optional[QuoteRecord]:
        session = await self._sessions.obtain(ticker)

        async with self._client() as c:
            try:
                r = await c.get(
                    self.QUOTE_SUMMARY_URL.format(ticker=ticker),
                    params={"modules": "price,summaryDetail", "crumb": session.crumb},
                    headers={**BROWSER_HEADERS, "Cookie": session.cookie},
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as e:
                raise NetworkFailure(f"timeout after {self.timeout}s") from e
            except httpx.HTTPError as e:
                raise NetworkFailure(str(e) or type(e).__name__) from e

        if r.status_code in (401, 403):
            self._sessions.invalidate(session)
            raise AuthFailure(f"crumb rejected ({r.status_code})")
        if r.status_code >= 400:
            raise NetworkFailure(f"upstream status {r.status_code}")

        try:
            return self._parse(ticker, safe_json(r))
        except ParseFailure:
            # a stale crumb often shows up as an empty/odd payload rather than a 401
            self._sessions.invalidate(session)
            raise

    def _parse(self, ticker: str, data: Optional[Dict[str, Any]]) -> QuoteRecord:
        try:
            result = data["quoteSummary"]["result"][0]  # type: ignore[index]
            price_mod = result.get("price") or {}
            detail = result.get("summaryDetail") or {}
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ParseFailure("Invalid quoteSummary response format") from e

        price = safe_float(raw_value(price_mod.get("regularMarketPrice")))
        if price is None:
            raise ParseFailure("quoteSummary has no regularMarketPrice")

        change = safe_float(raw_value(price_mod.get("regularMarketChange"))) or 0.0
        prev = safe_float(raw_value(price_mod.get("regularMarketPreviousClose"))) or price

        return QuoteRecord(
            ticker=ticker,
            price=price,
            change=change,
            change_percent=pct_change(change, prev) if prev > 0 else 0.0,
            currency=(price_mod.get("currency") or "USD").upper(),
            source=self.name,
            bid=safe_float(raw_value(detail.get("bid"))),
            ask=safe_float(raw_value(detail.get("ask"))),
            name=price_mod.get("longName") or price_mod.get("shortName") or ticker,
        )


# ---------------------------
# Tier 3: public chart endpoint through an open CORS relay
# ---------------------------
class PublicRelayQuoteProvider(QuoteProvider):
    name = "yahoo-chart"
    CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}?interval=1d&range=1d"

    def __init__(
        self,
        relays: RelayRotation,
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        retries: int = 2,
        backoff: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self._relays = relays
        self._http = http
        self.timeout = float(timeout)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff)
        self._sleep = sleep

    @property
    def deadline(self) -> float:
        waits = sum(self.backoff * (2 ** i) for i in range(self.retries))
        return self.timeout * (self.retries + 1) + waits

    async def fetch_quote(self, ticker: str, *, last_price: Optional[float] = None) -> Optional[QuoteRecord]:
        target = self.CHART_URL.format(ticker=ticker)
        last_err: MarketDataError = NoDataAvailable("no relay attempted")

        for attempt in range(self.retries + 1):
            try:
                r = await self._get(self._relays.wrap(target))
                return self._parse(ticker, safe_json(r))
            except MarketDataError as e:
                last_err = e
                self._relays.rotate()
                if attempt < self.retries:
                    await self._sleep(self.backoff * (2 ** attempt))

        raise last_err

    def _parse(self, ticker: str, data: Optional[Dict[str, Any]]) -> QuoteRecord:
        try:
            result = data["chart"]["result"][0]  # type: ignore[index]
            meta = result.get("meta") or {}
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ParseFailure("Invalid response from chart endpoint") from e

        current = safe_float(meta.get("regularMarketPrice"))
        if current is None:
            try:
                closes = result["indicators"]["quote"][0]["close"]
                current = next((safe_float(c) for c in reversed(closes) if safe_float(c) is not None), None)
            except (KeyError, IndexError, TypeError):
                current = None
        if current is None:
            raise ParseFailure("chart has no price")

        prev = safe_float(meta.get("previousClose")) or safe_float(meta.get("chartPreviousClose"))
        change = (current - prev) if prev else 0.0

        return QuoteRecord(
            ticker=ticker,
            price=current,
            change=change,
            change_percent=pct_change(change, prev),
            currency=(meta.get("currency") or "USD").upper(),
            source=self.name,
            name=meta.get("longName") or meta.get("shortName") or ticker,
        )


# ---------------------------
# Crypto tier: CoinGecko simple/price, tried ahead of the stock tiers
# ---------------------------
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "SOL": "solana",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "XRP": "ripple",
}


def split_crypto_ticker(ticker: str) -> Tuple[str, Optional[str]]:
    """'BTC-USD' -> ('BTC', 'USD'); 'ETH' -> ('ETH', None)."""
    base, _, quote_ccy = ticker.strip().upper().partition("-")
    if len(quote_ccy) == 3 and quote_ccy.isalpha():
        return base, quote_ccy
    return ticker.strip().upper(), None


class CoinGeckoQuoteProvider(QuoteProvider):
    """
    Spot price plus 24h change for crypto assets. Only attempted for tickers in
    the Crypto category or whose base symbol is a known coin; every other
    ticker skips straight to the next tier.
    """

    name = "coingecko"
    SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"

    def __init__(
        self,
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        currency: str = "EUR",
        ids: Optional[Dict[str, str]] = None,
    ):
        self._http = http
        self.timeout = float(timeout)
        self.currency = currency.upper()
        self._ids = dict(COINGECKO_IDS if ids is None else ids)

    def handles(self, ticker: str, category: Optional[str] = None) -> bool:
        if AssetCategory.parse(category) is AssetCategory.CRYPTO:
            return True
        return split_crypto_ticker(ticker)[0] in self._ids

    def coin_id(self, symbol: str) -> str:
        return self._ids.get(symbol.upper(), symbol.lower())

    async def fetch_quote(self, ticker: str, *, last_price: Optional[float] = None) -> Optional[QuoteRecord]:
        symbol, quote_ccy = split_crypto_ticker(ticker)
        coin = self.coin_id(symbol)
        vs = (quote_ccy or self.currency).lower()

        r = await self._get(
            self.SIMPLE_PRICE_URL,
            params={
                "ids": coin,
                "vs_currencies": vs,
                "include_24hr_change": "true",
                "include_last_updated_at": "true",
            },
            headers={"Accept": "application/json"},
        )
        data = safe_json(r)
        if data is None:
            raise ParseFailure("coingecko returned non-JSON")
        entry = data.get(coin)
        if not isinstance(entry, dict):
            raise NoDataAvailable(f"coingecko has no data for {coin}")

        price = safe_float(entry.get(vs))
        if price is None or price <= 0:
            raise ParseFailure(f"coingecko returned no {vs} price")
        change_percent = safe_float(entry.get(f"{vs}_24h_change")) or 0.0

        return QuoteRecord(
            ticker=ticker,
            price=price,
            change=price * change_percent / 100.0,
            change_percent=change_percent,
            currency=vs.upper(),
            timestamp=parse_timestamp(entry.get("last_updated_at")),
            source=self.name,
            name=symbol,
        )


# ---------------------------
# Tier 4: synthetic (terminal, never fails)
# ---------------------------
class SyntheticQuoteProvider(QuoteProvider):
    """
    Last-known price jittered by U(-2%, +2%), flagged fallback=True.
    Without a baseline it returns price=None, success=False: nothing is invented.
    """

    name = SOURCE_SYNTHETIC

    def __init__(self, *, rng: Optional[random.Random] = None, currency: str = "EUR"):
        self._rng = rng or random.Random()
        self.currency = currency
        self.timeout = 1.0

    async def fetch_quote(self, ticker: str, *, last_price: Optional[float] = None) -> Optional[QuoteRecord]:
        return self.synthesize(ticker, last_price)

    def synthesize(self, ticker: str, last_price: Optional[float]) -> QuoteRecord:
        base = safe_float(last_price)
        if base is None or base <= 0:
            return QuoteRecord(
                ticker=ticker,
                price=None,
                currency=self.currency,
                source=self.name,
                fallback=True,
                success=False,
            )

        variation = self._rng.uniform(-SYNTHETIC_MAX_VARIATION, SYNTHETIC_MAX_VARIATION)
        price = base * (1 + variation)
        change = price - base

        return QuoteRecord(
            ticker=ticker,
            price=price,
            change=change,
            change_percent=change / base * 100.0,
            currency=self.currency,
            source=self.name,
            fallback=True,
        )


def default_tiers(
    *,
    relay: RelayQuoteProvider,
    authenticated: AuthenticatedQuoteProvider,
    public: PublicRelayQuoteProvider,
    synthetic: SyntheticQuoteProvider,
    crypto: Optional[CoinGeckoQuoteProvider] = None,
) -> Sequence[QuoteProvider]:
    """Fixed priority order; the crypto tier, when given, goes first and only answers for coins."""
    tiers: Tuple[QuoteProvider, ...] = (relay, authenticated, public, synthetic)
    return tiers if crypto is None else (crypto,) + tiers
