# services/allocation/allocation_service.py
"""
Country / continent / sector / market-type breakdown for one instrument.

resolve() never raises for upstream trouble and always returns a complete
AllocationRecord; empty maps plus a `note` mean "nothing known".

  Crypto -> fixed 100% Global / Cryptocurrency record, no network
  ETF    -> provider sector + country weights (fetched concurrently), continent
            and market type derived from the country table; the curated ETF
            table fills in when the provider has nothing
  Stock  -> single-country/sector profile expanded to 100%
  other  -> empty record in the default currency
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Union

import httpx

from schemas.market_data import AllocationRecord, AssetCategory
from services.allocation.etf_reference import get_local_etf_data
from services.allocation.geography import continent_for, market_type_for, rollup_countries
from services.cache.cache_backend import TTLCache
from services.cache.cache_utils import SingleFlight
from services.errors import ConfigurationMissing, MarketDataError, ParseFailure
from services.http_client import HttpClientMixin, RelayRotation
from utils.common_helpers import normalize_ticker, safe_float, safe_json

logger = logging.getLogger(__name__)

ALLOCATION_CACHE_TTL_SEC = 24 * 3600

CRYPTO_BUCKET = "Global"
CRYPTO_SECTOR = "Cryptocurrency"
CRYPTO_CURRENCY = "USD"
PROVIDER_CURRENCY = "USD"  # provider ETF weights are for USD-denominated share classes

SOURCE_PROVIDER = "fmp"
SOURCE_REFERENCE = "reference"
SOURCE_PROFILE = "yahoo-profile"

NO_DATA_NOTE = "No allocation data available"


class AllocationResolver(HttpClientMixin):
    FMP_BASE_URL = "https://financialmodelingprep.com/api/v3"
    PROFILE_URL = "https://query2.finance.yahoo.com/v10/finance/quoteSummary/{ticker}?modules=assetProfile,summaryProfile"

    def __init__(
        self,
        *,
        fmp_api_key: Optional[str],
        relays: RelayRotation,
        cache: Optional[TTLCache[AllocationRecord]] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        default_currency: str = "EUR",
        cache_ttl: float = ALLOCATION_CACHE_TTL_SEC,
    ):
        self.fmp_api_key = (fmp_api_key or "").strip() or None
        self._relays = relays
        self._cache = cache
        self._http = http
        self.timeout = float(timeout)
        self.default_currency = default_currency
        self.cache_ttl = float(cache_ttl)
        self._flight: SingleFlight[AllocationRecord] = SingleFlight("allocation")

    async def resolve(self, ticker: str, category: Union[AssetCategory, str, None]) -> AllocationRecord:
        t = normalize_ticker(ticker)
        cat = category if isinstance(category, AssetCategory) else AssetCategory.parse(category)

        if cat is AssetCategory.CRYPTO:
            return self._crypto(t)

        key = f"{t}:{cat.value}"
        if self._cache is not None:
            hit = self._cache.get(key)
            if hit is not None:
                return hit.value

        return await self._flight.do(key, lambda: self._resolve_uncached(key, t, cat))

    async def _resolve_uncached(self, key: str, ticker: str, cat: AssetCategory) -> AllocationRecord:
        logger.info("fetching allocation data for %s (%s)", ticker, cat.value)
        try:
            if cat is AssetCategory.ETF:
                rec = await self._resolve_etf(ticker)
            elif cat is AssetCategory.STOCK:
                rec = await self._resolve_stock(ticker)
            else:
                rec = None
        except Exception as e:
            logger.warning("allocation lookup crashed for %s: %s", ticker, type(e).__name__)
            return self._empty(ticker, cat, note=f"Allocation lookup failed: {type(e).__name__}")

        if rec is None:
            logger.warning("no allocation data found for %s", ticker)
            return self._empty(ticker, cat)

        if self._cache is not None and not rec.is_empty:
            self._cache.put(key, rec, self.cache_ttl)
        return rec

    # -----------------------
    # Crypto / empty
    # -----------------------
    def _crypto(self, ticker: str) -> AllocationRecord:
        return AllocationRecord(
            ticker=ticker,
            category=AssetCategory.CRYPTO,
            countries={CRYPTO_BUCKET: 100.0},
            continents={CRYPTO_BUCKET: 100.0},
            sectors={CRYPTO_SECTOR: 100.0},
            market_types={CRYPTO_SECTOR: 100.0},
            currency=CRYPTO_CURRENCY,
            source="static",
        )

    def _empty(self, ticker: str, cat: AssetCategory, note: str = NO_DATA_NOTE) -> AllocationRecord:
        return AllocationRecord(ticker=ticker, category=cat, currency=self.default_currency, note=note)

    # -----------------------
    # ETF
    # -----------------------
    async def _resolve_etf(self, ticker: str) -> Optional[AllocationRecord]:
        sectors_res, countries_res = await asyncio.gather(
            self._fetch_weights("etf-sector-weightings", ticker, "sector"),
            self._fetch_weights("etf-country-weightings", ticker, "country"),
            return_exceptions=True,
        )
        sectors = self._weights_or_empty(ticker, "sector", sectors_res)
        countries = self._weights_or_empty(ticker, "country", countries_res)

        if sectors or countries:
            continents, market_types = rollup_countries(countries)
            return AllocationRecord(
                ticker=ticker,
                category=AssetCategory.ETF,
                countries=countries,
                continents=continents,
                sectors=sectors,
                market_types=market_types,
                currency=PROVIDER_CURRENCY,
                source=SOURCE_PROVIDER,
            )

        ref = get_local_etf_data(ticker)
        if ref is None:
            return None

        logger.info("using reference table allocation for %s", ticker)
        countries = dict(ref.countries)
        continents, market_types = rollup_countries(countries)
        return AllocationRecord(
            ticker=ticker,
            category=AssetCategory.ETF,
            countries=countries,
            continents=continents,
            sectors=dict(ref.sectors),
            market_types=market_types,
            currency=ref.currency,
            source=SOURCE_REFERENCE,
            name=ref.name,
        )

    @staticmethod
    def _weights_or_empty(ticker: str, label: str, res: Any) -> Dict[str, float]:
        if isinstance(res, ConfigurationMissing):
            logger.debug("%s weights skipped for %s: no provider key", label, ticker)
            return {}
        if isinstance(res, BaseException):
            kind = getattr(res, "kind", type(res).__name__)
            logger.warning("%s weights failed for %s: %s", label, ticker, kind)
            return {}
        return res

    async def _fetch_weights(self, endpoint: str, ticker: str, field: str) -> Dict[str, float]:
        if not self.fmp_api_key:
            raise ConfigurationMissing("FMP_API_KEY not set")

        r = await self._get(f"{self.FMP_BASE_URL}/{endpoint}/{ticker}", params={"apikey": self.fmp_api_key})
        try:
            data = r.json()
        except ValueError as e:
            raise ParseFailure("provider returned non-JSON") from e
        if not isinstance(data, list):
            # error payloads come back as {"Error Message": ...}
            raise ParseFailure("provider returned no weight list")

        out: Dict[str, float] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            name = (item.get(field) or "").strip()
            pct = safe_float(item.get("weightPercentage"))
            if name and pct:
                out[name] = out.get(name, 0.0) + pct
        return out

    # -----------------------
    # Stock
    # -----------------------
    async def _resolve_stock(self, ticker: str) -> Optional[AllocationRecord]:
        try:
            profile = await self._fetch_stock_profile(ticker)
        except MarketDataError as e:
            logger.warning("stock profile failed for %s: %s (%s)", ticker, e.kind, e)
            return None

        country = (profile.get("country") or "").strip()
        if not country:
            return None

        sector = (profile.get("sector") or "").strip()
        return AllocationRecord(
            ticker=ticker,
            category=AssetCategory.STOCK,
            countries={country: 100.0},
            continents={continent_for(country): 100.0},
            sectors={sector: 100.0} if sector else {},
            market_types={market_type_for(country): 100.0},
            currency=(profile.get("currency") or "USD").upper(),
            source=SOURCE_PROFILE,
            industry=profile.get("industry"),
        )

    async def _fetch_stock_profile(self, ticker: str) -> Dict[str, Any]:
        try:
            r = await self._get(self._relays.wrap(self.PROFILE_URL.format(ticker=ticker)))
        except MarketDataError:
            self._relays.rotate()
            raise

        data = safe_json(r)
        try:
            result = data["quoteSummary"]["result"][0]  # type: ignore[index]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseFailure("Invalid profile response format") from e
        if not isinstance(result, dict):
            raise ParseFailure("Invalid profile response format")
        return result.get("assetProfile") or result.get("summaryProfile") or {}
