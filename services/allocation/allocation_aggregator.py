# services/allocation/allocation_aggregator.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping

from schemas.market_data import HoldingAllocation, PortfolioAllocation
from utils.common_helpers import safe_float

logger = logging.getLogger(__name__)


def _accumulate(bucket: Dict[str, float], source: Mapping[str, float], weight: float) -> None:
    for name, pct in source.items():
        p = safe_float(pct)
        if p is None:
            continue
        bucket[name] = bucket.get(name, 0.0) + p * weight


def aggregate(holdings: Iterable[HoldingAllocation]) -> PortfolioAllocation:
    """
    Market-value-weighted rollup of per-holding allocation maps.

    Weights come from market value alone, so a holding without allocation data
    still counts toward the total; its share simply doesn't show up in any
    bucket. Values are summed as given, short positions included, and a zero
    or negative total yields empty maps.
    """
    items = list(holdings)
    values = [safe_float(h.market_value) or 0.0 for h in items]
    total = sum(values)

    out = PortfolioAllocation(tickers=[h.ticker for h in items], total_value=total)
    if total <= 0:
        return out

    skipped = 0
    for h, value in zip(items, values):
        rec = h.allocation
        if rec is None:
            skipped += 1
            continue

        weight = value / total
        _accumulate(out.countries, rec.countries, weight)
        _accumulate(out.continents, rec.continents, weight)
        _accumulate(out.sectors, rec.sectors, weight)
        _accumulate(out.market_types, rec.market_types, weight)
        if rec.currency:
            out.currencies[rec.currency] = out.currencies.get(rec.currency, 0.0) + weight * 100.0

    if skipped:
        logger.debug("allocation rollup skipped %d holdings without data", skipped)
    return out
