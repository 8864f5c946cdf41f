# services/quotes/quote_chain.py
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from schemas.market_data import QuoteRecord
from services.errors import ConfigurationMissing, MarketDataError
from services.quotes.providers import QuoteProvider
from utils.common_helpers import normalize_ticker

logger = logging.getLogger(__name__)


class QuoteProviderChain:
    """
    Ordered fallback over quote providers.

    fetch_quote() never raises for upstream trouble: a provider that errors,
    times out or returns None just hands over to the next one. Only an empty
    ticker (caller error) raises ValueError. `category` is handed to each
    provider's handles() so asset-specific tiers (crypto) can step aside.
    """

    def __init__(self, providers: Sequence[QuoteProvider]):
        if not providers:
            raise ValueError("At least one quote provider is required")
        self._providers: List[QuoteProvider] = list(providers)

    @property
    def providers(self) -> List[QuoteProvider]:
        return list(self._providers)

    async def fetch_quote(
        self,
        ticker: str,
        *,
        last_price: Optional[float] = None,
        category: Optional[str] = None,
    ) -> Optional[QuoteRecord]:
        t = normalize_ticker(ticker)

        for provider in self._providers:
            if not provider.handles(t, category):
                continue
            try:
                rec = await asyncio.wait_for(
                    provider.fetch_quote(t, last_price=last_price),
                    timeout=provider.deadline,
                )
            except ConfigurationMissing:
                logger.debug("quote tier %s skipped for %s: not configured", provider.name, t)
                continue
            except asyncio.TimeoutError:
                logger.warning("quote tier %s timed out for %s after %.1fs", provider.name, t, provider.deadline)
                continue
            except MarketDataError as e:
                logger.warning("quote tier %s failed for %s: %s (%s)", provider.name, t, e.kind, e)
                continue
            except Exception as e:
                logger.warning("quote tier %s crashed for %s: %s", provider.name, t, type(e).__name__)
                continue

            if rec is None:
                logger.debug("quote tier %s had nothing for %s", provider.name, t)
                continue

            if rec.fallback:
                logger.info("using synthetic fallback for %s (price=%s)", t, rec.price)
            else:
                logger.debug("quote for %s from %s", t, provider.name)
            return rec

        logger.warning("all quote tiers exhausted for %s", t)
        return None
