# services/quotes/batch_dispatcher.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Mapping, Optional

from schemas.market_data import SOURCE_CACHE, SOURCE_SYNTHETIC, QuoteRecord
from services.cache.cache_backend import TTLCache
from services.cache.cache_utils import SingleFlight
from services.quotes.quote_chain import QuoteProviderChain
from utils.common_helpers import dedupe_tickers, normalize_ticker

logger = logging.getLogger(__name__)

BATCH_DELAY_SEC = 1.5


def _as_cached(rec: QuoteRecord) -> QuoteRecord:
    return rec.model_copy(update={"source": SOURCE_CACHE})


class BatchDispatcher:
    """
    Rate-limit friendly batch quote fetch.

    - all tickers cached and fresh -> answered from cache, zero network calls
    - otherwise tickers go one at a time, `delay` seconds apart (none before the first)
    - only live (non-fallback) quotes are written to the cache; a synthetic or
      failed result never displaces a fresh cached quote
    """

    def __init__(
        self,
        chain: QuoteProviderChain,
        cache: TTLCache[QuoteRecord],
        *,
        delay: float = BATCH_DELAY_SEC,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        currency: str = "EUR",
    ):
        self._chain = chain
        self._cache = cache
        self.delay = max(0.0, float(delay))
        self.currency = currency
        self._sleep = sleep
        self._flight: SingleFlight[QuoteRecord] = SingleFlight("quotes")

    async def fetch_many(
        self,
        tickers: Iterable[str],
        last_prices: Optional[Mapping[str, float]] = None,
        categories: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, QuoteRecord]:
        keys = dedupe_tickers(tickers)
        if not keys:
            return {}

        if self._cache.all_present(keys):
            logger.info("using fully cached prices for %d tickers", len(keys))
            return {k: _as_cached(self._cache.get(k).value) for k in keys}  # type: ignore[union-attr]

        baselines = {normalize_ticker(k): v for k, v in (last_prices or {}).items() if k}
        kinds = {normalize_ticker(k): v for k, v in (categories or {}).items() if k}
        logger.info("fetching %d prices sequentially", len(keys))

        out: Dict[str, QuoteRecord] = {}
        for i, k in enumerate(keys):
            if i > 0 and self.delay:
                await self._sleep(self.delay)
            last, kind = baselines.get(k), kinds.get(k)
            out[k] = await self._flight.do(k, lambda k=k, last=last, kind=kind: self._fetch_one(k, last, kind))
        return out

    async def fetch(
        self,
        ticker: str,
        last_price: Optional[float] = None,
        category: Optional[str] = None,
    ) -> QuoteRecord:
        k = normalize_ticker(ticker)
        res = await self.fetch_many(
            [k],
            {k: last_price} if last_price is not None else None,
            {k: category} if category else None,
        )
        return res[k]

    async def _fetch_one(self, ticker: str, last_price: Optional[float], category: Optional[str]) -> QuoteRecord:
        rec = await self._chain.fetch_quote(ticker, last_price=last_price, category=category)

        if rec is not None and rec.is_live:
            self._cache.put(ticker, rec)
            return rec

        cached = self._cache.get(ticker)
        if cached is not None:
            logger.info("using cached price for %s instead of %s", ticker, "fallback" if rec else "no data")
            return _as_cached(cached.value)

        if rec is not None:
            return rec

        return QuoteRecord(
            ticker=ticker,
            price=None,
            currency=self.currency,
            source=SOURCE_SYNTHETIC,
            fallback=True,
            success=False,
        )
