# services/market_data_service.py
"""
Wires settings into one shared set of caches, the Yahoo session manager, the
quote tiers and the TER / allocation resolvers. Everything that needs the
session or a cache gets it from here by reference.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from config.settings import MarketDataSettings, load_settings
from schemas.market_data import (
    AllocationRecord,
    ExpenseRatioRecord,
    HoldingAllocation,
    PortfolioAllocation,
    QuoteRecord,
)
from services.allocation.allocation_aggregator import aggregate
from services.allocation.allocation_service import AllocationResolver
from services.cache.cache_backend import TTLCache, make_redis_client
from services.http_client import RelayRotation, build_client
from services.quotes.batch_dispatcher import BatchDispatcher
from services.quotes.providers import (
    AuthenticatedQuoteProvider,
    CoinGeckoQuoteProvider,
    PublicRelayQuoteProvider,
    RelayQuoteProvider,
    SyntheticQuoteProvider,
    default_tiers,
)
from services.quotes.quote_chain import QuoteProviderChain
from services.ter.ter_service import ExpenseRatioResolver, FundProfileSource
from services.yahoo.auth_session import YahooAuthSessionManager

logger = logging.getLogger(__name__)


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


class MarketDataService:
    def __init__(
        self,
        settings: Optional[MarketDataSettings] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
        rng: Optional[random.Random] = None,
        redis_client: Any = None,
    ):
        self.settings = s = settings or load_settings()
        self._owns_http = http is None
        self.http = http or build_client(max(s.request_timeout_sec, s.relay_timeout_sec))

        redis = redis_client if redis_client is not None else make_redis_client(s.redis_url)

        self.quote_cache: TTLCache[QuoteRecord] = TTLCache(
            namespace="quote",
            default_ttl=s.quote_cache_ttl_sec,
            redis_client=redis,
            redis_prefix=s.redis_prefix,
            encode=_dump,
            decode=QuoteRecord.model_validate,
        )
        self.ter_cache: TTLCache[ExpenseRatioRecord] = TTLCache(
            namespace="ter",
            default_ttl=s.ter_cache_ttl_sec,
            redis_client=redis,
            redis_prefix=s.redis_prefix,
            encode=_dump,
            decode=ExpenseRatioRecord.model_validate,
        )
        self.allocation_cache: TTLCache[AllocationRecord] = TTLCache(
            namespace="allocation",
            default_ttl=s.allocation_cache_ttl_sec,
            redis_client=redis,
            redis_prefix=s.redis_prefix,
            encode=_dump,
            decode=AllocationRecord.model_validate,
        )

        self.relays = RelayRotation(s.cors_relays)
        self.sessions = YahooAuthSessionManager(
            http=self.http,
            ttl=s.auth_session_ttl_sec,
            timeout=s.request_timeout_sec,
        )

        self.relay = RelayQuoteProvider(s.price_relay_url, http=self.http, timeout=s.relay_timeout_sec)
        self.chain = QuoteProviderChain(
            default_tiers(
                relay=self.relay,
                authenticated=AuthenticatedQuoteProvider(self.sessions, http=self.http, timeout=s.request_timeout_sec),
                public=PublicRelayQuoteProvider(self.relays, http=self.http, timeout=s.request_timeout_sec),
                synthetic=SyntheticQuoteProvider(rng=rng, currency=s.default_currency),
                crypto=CoinGeckoQuoteProvider(http=self.http, timeout=s.request_timeout_sec, currency=s.default_currency),
            )
        )
        self.dispatcher = BatchDispatcher(
            self.chain,
            self.quote_cache,
            delay=s.batch_delay_sec,
            currency=s.default_currency,
        )

        self.ter = ExpenseRatioResolver(
            self.ter_cache,
            relay=self.relay,
            profiles=FundProfileSource(self.relays, http=self.http, timeout=s.request_timeout_sec),
            ttl=s.ter_cache_ttl_sec,
            negative_ttl=s.ter_negative_ttl_sec,
        )
        self.allocations = AllocationResolver(
            fmp_api_key=s.fmp_api_key,
            relays=self.relays,
            cache=self.allocation_cache,
            http=self.http,
            timeout=s.request_timeout_sec,
            default_currency=s.default_currency,
            cache_ttl=s.allocation_cache_ttl_sec,
        )

    # -----------------------
    # Quotes
    # -----------------------
    async def get_quotes(
        self,
        tickers: Iterable[str],
        last_prices: Optional[Mapping[str, float]] = None,
        categories: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, QuoteRecord]:
        return await self.dispatcher.fetch_many(tickers, last_prices, categories)

    async def get_quote(
        self,
        ticker: str,
        last_price: Optional[float] = None,
        category: Optional[str] = None,
    ) -> QuoteRecord:
        return await self.dispatcher.fetch(ticker, last_price, category)

    # -----------------------
    # Expense ratio
    # -----------------------
    async def get_ter(self, ticker: str, isin: Optional[str] = None, force_refresh: bool = False) -> Optional[float]:
        return await self.ter.resolve(ticker, isin=isin, force_refresh=force_refresh)

    def get_ter_record(self, ticker: str) -> Optional[ExpenseRatioRecord]:
        return self.ter.record(ticker)

    # -----------------------
    # Allocation
    # -----------------------
    async def get_allocation(self, ticker: str, category: Optional[str]) -> AllocationRecord:
        return await self.allocations.resolve(ticker, category)

    async def get_portfolio_allocation(
        self,
        positions: Iterable[Tuple[str, Optional[str], float]],
    ) -> PortfolioAllocation:
        """positions: (ticker, category, market_value); allocations resolved one at a time."""
        holdings: List[HoldingAllocation] = []
        for ticker, category, market_value in positions:
            rec = await self.allocations.resolve(ticker, category)
            holdings.append(
                HoldingAllocation(
                    ticker=rec.ticker,
                    market_value=market_value,
                    allocation=None if rec.is_empty else rec,
                )
            )
        return aggregate(holdings)

    # -----------------------
    # Housekeeping
    # -----------------------
    def health(self) -> Dict[str, Any]:
        session = self.sessions.session
        return {
            "relay_configured": self.settings.relay_configured,
            "provider_key_configured": self.settings.provider_key_configured,
            "auth_session_cached": session is not None,
            "cache_sizes": {
                "quote": self.quote_cache.size,
                "ter": self.ter_cache.size,
                "allocation": self.allocation_cache.size,
            },
            "tiers": [p.name for p in self.chain.providers],
        }

    def clear_caches(self) -> None:
        self.quote_cache.clear()
        self.ter_cache.clear()
        self.allocation_cache.clear()
        self.sessions.invalidate()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()


# Optional: shared singleton
_service_singleton: Optional[MarketDataService] = None
_singleton_lock = asyncio.Lock()


def get_market_data_service() -> MarketDataService:
    global _service_singleton
    if _service_singleton is None:
        _service_singleton = MarketDataService()
        logger.info("market data service ready: %s", _service_singleton.health()["tiers"])
    return _service_singleton


async def shutdown_market_data_service() -> None:
    global _service_singleton
    async with _singleton_lock:
        if _service_singleton is not None:
            await _service_singleton.aclose()
            _service_singleton = None
