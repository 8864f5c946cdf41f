# services/ter/ter_extraction.py
from __future__ import annotations

import re
from typing import Optional, Sequence

from utils.common_helpers import safe_float

TER_MIN = 0.0
TER_MAX = 10.0  # exclusive

# Ordered: the first pattern yielding an in-bounds number wins
TER_PATTERNS: Sequence[re.Pattern[str]] = (
    re.compile(r"Total expense ratio.*?([0-9]+[.,][0-9]+)%", re.IGNORECASE),
    re.compile(r"Ongoing charges.*?([0-9]+[.,][0-9]+)%", re.IGNORECASE),
    re.compile(r"TER.*?([0-9]+[.,][0-9]+)%", re.IGNORECASE),
    re.compile(r'"ter"[^}]*?([0-9]+[.,][0-9]+)', re.IGNORECASE),
)


def ter_in_bounds(value: Optional[float]) -> bool:
    return value is not None and TER_MIN <= value < TER_MAX


def extract_ter(document: Optional[str], patterns: Sequence[re.Pattern[str]] = TER_PATTERNS) -> Optional[float]:
    """
    Scan fund-profile text for an expense ratio.

    Each pattern is tried once, in order; a match outside [0, 10) is
    discarded and the next pattern gets its turn. Decimal commas are accepted.
    """
    if not document:
        return None

    for pattern in patterns:
        m = pattern.search(document)
        if not m:
            continue
        value = safe_float(m.group(1))
        if ter_in_bounds(value):
            return value

    return None
