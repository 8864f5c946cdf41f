# market_data_routes.py
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from middleware.rate_limit import limiter
from schemas.market_data import AllocationRecord, PortfolioAllocation, QuoteRecord
from services.market_data_service import MarketDataService, get_market_data_service
from services.ter.ter_service import ter_category
from utils.common_helpers import normalize_ticker, safe_float

logger = logging.getLogger(__name__)
router = APIRouter(tags=["market-data"])


# ---------- Schemas ----------
class PortfolioPosition(BaseModel):
    ticker: str
    category: Optional[str] = None
    market_value: float = Field(0.0, ge=0)


class ExpenseRatioResponse(BaseModel):
    ticker: str
    ter: Optional[float] = None
    category: str
    source: Optional[str] = None


def _split_tickers(raw: str) -> List[str]:
    return [t for t in (p.strip() for p in (raw or "").split(",")) if t]


def _parse_last_prices(raw: Optional[str]) -> Dict[str, float]:
    """'AAPL:190.5,VWCE.DE:118' -> {"AAPL": 190.5, "VWCE.DE": 118.0}"""
    out: Dict[str, float] = {}
    for part in _split_tickers(raw or ""):
        ticker, sep, value = part.rpartition(":")
        price = safe_float(value)
        if not sep or not ticker.strip() or price is None:
            raise ValueError(f"Invalid last price entry: {part!r}")
        out[normalize_ticker(ticker)] = price
    return out


def _parse_categories(raw: Optional[str]) -> Dict[str, str]:
    """'BTC-USD:Crypto,VWCE.DE:ETF' -> {"BTC-USD": "Crypto", "VWCE.DE": "ETF"}"""
    out: Dict[str, str] = {}
    for part in _split_tickers(raw or ""):
        ticker, sep, kind = part.rpartition(":")
        if not sep or not ticker.strip() or not kind.strip():
            raise ValueError(f"Invalid category entry: {part!r}")
        out[normalize_ticker(ticker)] = kind.strip()
    return out


# ---------- Routes (thin controllers delegating to the service) ----------
@router.get("/quotes", response_model=Dict[str, QuoteRecord])
@limiter.limit("30/minute")
async def get_quotes(
    request: Request,
    tickers: str = Query(..., description="Comma-separated tickers"),
    last_prices: Optional[str] = Query(None, description="TICKER:price pairs used as synthetic baseline"),
    categories: Optional[str] = Query(None, description="TICKER:category pairs, e.g. BTC:Crypto"),
    svc: MarketDataService = Depends(get_market_data_service),
):
    try:
        symbols = _split_tickers(tickers)
        if not symbols:
            raise ValueError("Ticker is required")
        return await svc.get_quotes(symbols, _parse_last_prices(last_prices), _parse_categories(categories))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/quotes/{ticker}", response_model=QuoteRecord)
async def get_quote(
    request: Request,
    ticker: str,
    last_price: Optional[float] = Query(None, gt=0),
    category: Optional[str] = Query(None, description="Asset category, e.g. Crypto"),
    svc: MarketDataService = Depends(get_market_data_service),
):
    try:
        return await svc.get_quote(ticker, last_price, category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/ter/{ticker}", response_model=ExpenseRatioResponse)
async def get_expense_ratio(
    request: Request,
    ticker: str,
    isin: Optional[str] = None,
    refresh: bool = Query(False, description="Bypass cache"),
    svc: MarketDataService = Depends(get_market_data_service),
):
    try:
        ter = await svc.get_ter(ticker, isin=isin, force_refresh=refresh)
        rec = svc.get_ter_record(ticker)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ExpenseRatioResponse(
        ticker=normalize_ticker(ticker),
        ter=ter,
        category=ter_category(ter),
        source=rec.source if rec is not None else None,
    )


@router.get("/allocation/{ticker}", response_model=AllocationRecord)
async def get_allocation(
    request: Request,
    ticker: str,
    category: Optional[str] = Query(None, description="Stock, ETF, Crypto, ..."),
    svc: MarketDataService = Depends(get_market_data_service),
):
    try:
        return await svc.get_allocation(ticker, category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/allocation/portfolio", response_model=PortfolioAllocation)
@limiter.limit("10/minute")
async def get_portfolio_allocation(
    request: Request,
    positions: List[PortfolioPosition],
    svc: MarketDataService = Depends(get_market_data_service),
):
    try:
        return await svc.get_portfolio_allocation(
            (p.ticker, p.category, p.market_value) for p in positions
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/health")
async def health(svc: MarketDataService = Depends(get_market_data_service)):
    return svc.health()
