# services/allocation/geography.py
from __future__ import annotations

from typing import Dict, Mapping, Tuple

OTHER = "Other"

DEVELOPED = "Developed Markets"
EMERGING = "Emerging Markets"
FRONTIER = "Frontier Markets"

COUNTRY_TO_CONTINENT: Dict[str, str] = {
    "United States": "North America",
    "Canada": "North America",
    "Mexico": "North America",
    "United Kingdom": "Europe",
    "Germany": "Europe",
    "France": "Europe",
    "Italy": "Europe",
    "Spain": "Europe",
    "Netherlands": "Europe",
    "Switzerland": "Europe",
    "Sweden": "Europe",
    "Norway": "Europe",
    "Denmark": "Europe",
    "Finland": "Europe",
    "Ireland": "Europe",
    "Belgium": "Europe",
    "Austria": "Europe",
    "Poland": "Europe",
    "Russia": "Europe",
    "Japan": "Asia",
    "China": "Asia",
    "Hong Kong": "Asia",
    "South Korea": "Asia",
    "Taiwan": "Asia",
    "Singapore": "Asia",
    "India": "Asia",
    "Thailand": "Asia",
    "Indonesia": "Asia",
    "Malaysia": "Asia",
    "Philippines": "Asia",
    "Vietnam": "Asia",
    "Australia": "Oceania",
    "New Zealand": "Oceania",
    "Brazil": "South America",
    "Argentina": "South America",
    "Chile": "South America",
    "Colombia": "South America",
    "Peru": "South America",
    "South Africa": "Africa",
    "Egypt": "Africa",
    "Nigeria": "Africa",
    "Kenya": "Africa",
    "Israel": "Middle East",
    "Saudi Arabia": "Middle East",
    "United Arab Emirates": "Middle East",
    "Turkey": "Middle East",
}

MARKET_TYPES: Dict[str, Tuple[str, ...]] = {
    DEVELOPED: (
        "United States", "Canada", "United Kingdom", "Germany", "France", "Italy", "Spain",
        "Netherlands", "Switzerland", "Sweden", "Norway", "Denmark", "Finland", "Ireland",
        "Belgium", "Austria", "Japan", "Australia", "New Zealand", "Singapore", "Hong Kong",
    ),
    EMERGING: (
        "China", "India", "Brazil", "Russia", "South Korea", "Taiwan", "Mexico", "South Africa",
        "Indonesia", "Thailand", "Malaysia", "Philippines", "Turkey", "Poland", "Chile",
        "Colombia", "Peru", "Egypt", "Saudi Arabia", "United Arab Emirates",
    ),
    FRONTIER: ("Vietnam", "Argentina", "Nigeria", "Kenya", "Bangladesh", "Pakistan", "Morocco"),
}

_COUNTRY_TO_MARKET_TYPE: Dict[str, str] = {
    country: market_type for market_type, countries in MARKET_TYPES.items() for country in countries
}

# provider spellings -> table spellings
_ALIASES: Dict[str, str] = {
    "USA": "United States",
    "US": "United States",
    "United States of America": "United States",
    "UK": "United Kingdom",
    "Great Britain": "United Kingdom",
    "Korea": "South Korea",
    "Korea, Republic of": "South Korea",
    "UAE": "United Arab Emirates",
}


def canonical_country(country: str) -> str:
    c = (country or "").strip()
    return _ALIASES.get(c, c)


def continent_for(country: str) -> str:
    return COUNTRY_TO_CONTINENT.get(canonical_country(country), OTHER)


def market_type_for(country: str) -> str:
    return _COUNTRY_TO_MARKET_TYPE.get(canonical_country(country), OTHER)


def rollup_countries(countries: Mapping[str, float]) -> Tuple[Dict[str, float], Dict[str, float]]:
    """Sum country weights into (continent -> pct, market type -> pct); unmapped land in "Other"."""
    continents: Dict[str, float] = {}
    market_types: Dict[str, float] = {}
    for country, pct in countries.items():
        c = continent_for(country)
        m = market_type_for(country)
        continents[c] = continents.get(c, 0.0) + pct
        market_types[m] = market_types.get(m, 0.0) + pct
    return continents, market_types
