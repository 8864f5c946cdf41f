# schemas/market_data.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SOURCE_CACHE = "cache"
SOURCE_SYNTHETIC = "synthetic"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AssetCategory(str, Enum):
    STOCK = "Stock"
    ETF = "ETF"
    CRYPTO = "Crypto"
    BOND = "Bond"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AssetCategory":
        v = (value or "").strip().lower()
        for c in cls:
            if c.value.lower() == v:
                return c
        # legacy Italian label from imported ledgers
        if v == "azione":
            return cls.STOCK
        return cls.OTHER


class QuoteRecord(BaseModel):
    """One price observation. Frozen: a new fetch yields a new record."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    price: Optional[float] = None
    change: float = 0.0
    change_percent: float = 0.0
    currency: str = "USD"
    timestamp: datetime = Field(default_factory=utc_now)
    source: str
    bid: Optional[float] = None
    ask: Optional[float] = None
    name: Optional[str] = None
    fallback: bool = False
    success: bool = True

    @property
    def is_live(self) -> bool:
        return self.success and not self.fallback and self.price is not None


class ExpenseRatioRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    ter: Optional[float] = None
    source: str
    # ISIN already scanned when a miss was recorded
    isin: Optional[str] = None
    last_updated: datetime = Field(default_factory=utc_now)

    @field_validator("ter")
    @classmethod
    def _ter_in_bounds(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not (0 <= v < 10):
            raise ValueError("TER must be within [0, 10)")
        return v


class AllocationRecord(BaseModel):
    """Per-instrument breakdown. Maps hold percentages; they may not sum to 100."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    category: AssetCategory
    countries: Dict[str, float] = Field(default_factory=dict)
    continents: Dict[str, float] = Field(default_factory=dict)
    sectors: Dict[str, float] = Field(default_factory=dict)
    market_types: Dict[str, float] = Field(default_factory=dict)
    currency: str
    source: Optional[str] = None
    name: Optional[str] = None
    industry: Optional[str] = None
    note: Optional[str] = None
    last_updated: datetime = Field(default_factory=utc_now)

    @property
    def is_empty(self) -> bool:
        return not (self.countries or self.continents or self.sectors or self.market_types)


class HoldingAllocation(BaseModel):
    ticker: str
    market_value: float = 0.0
    allocation: Optional[AllocationRecord] = None


class PortfolioAllocation(BaseModel):
    countries: Dict[str, float] = Field(default_factory=dict)
    continents: Dict[str, float] = Field(default_factory=dict)
    sectors: Dict[str, float] = Field(default_factory=dict)
    market_types: Dict[str, float] = Field(default_factory=dict)
    currencies: Dict[str, float] = Field(default_factory=dict)
    tickers: List[str] = Field(default_factory=list)
    total_value: float = 0.0
    as_of: datetime = Field(default_factory=utc_now)
