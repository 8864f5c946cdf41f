import math
from typing import Any, Dict, Iterable, List, Optional

import httpx


def safe_float(x: Any) -> Optional[float]:
    try:
        if x is None or isinstance(x, bool):
            return None
        if isinstance(x, str):
            x = x.strip().rstrip("%").replace(",", ".")
            if not x:
                return None
        f = float(x)
        if math.isnan(f) or math.isinf(f):
            return None
        return f
    except Exception:
        return None


def raw_value(x: Any) -> Any:
    """Yahoo wraps numbers as {"raw": 1.23, "fmt": "1.23"} unless formatted=false."""
    if isinstance(x, dict):
        return x.get("raw")
    return x


def pct_change(change: Optional[float], base: Optional[float]) -> float:
    if change is None or base in (None, 0) or (isinstance(base, float) and abs(base) < 1e-9):
        return 0.0
    return change / base * 100.0


def safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def normalize_ticker(ticker: Optional[str]) -> str:
    """
    Canonical cache key for a ticker: stripped and uppercased.
    Raises ValueError on empty input, the one caller error the pipeline reports.
    """
    t = (ticker or "").strip().upper()
    if not t:
        raise ValueError("Ticker is required")
    return t


def dedupe_tickers(tickers: Iterable[str]) -> List[str]:
    """Normalize and de-duplicate, keeping first-seen order."""
    seen: set[str] = set()
    out: List[str] = []
    for t in tickers:
        k = normalize_ticker(t)
        if k not in seen:
            seen.add(k)
            out.append(k)
    return out
