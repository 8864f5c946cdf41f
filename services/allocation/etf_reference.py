# services/allocation/etf_reference.py
"""
Curated ETF breakdowns (issuer factsheets, 2024), keyed by listing.

Read-only reference data: lookups hand back immutable mappings, so a caller
cannot edit the table by mutating a result. Listings of the same fund share
their breakdowns but keep their own trading currency.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional


@dataclass(frozen=True)
class EtfReference:
    name: str
    isin: str
    countries: Mapping[str, float]
    sectors: Mapping[str, float]
    currency: str


def _frozen(d: Dict[str, float]) -> Mapping[str, float]:
    return MappingProxyType(dict(d))


_US_ONLY = _frozen({"United States": 100})

_FTSE_ALL_WORLD_COUNTRIES = _frozen({
    "United States": 61.8,
    "Japan": 5.8,
    "United Kingdom": 3.8,
    "China": 3.4,
    "France": 2.8,
    "Canada": 2.8,
    "Switzerland": 2.5,
    "Germany": 2.3,
    "Australia": 2.0,
    "Taiwan": 1.8,
})
_FTSE_ALL_WORLD_SECTORS = _frozen({
    "Technology": 23.5,
    "Financials": 15.2,
    "Industrials": 11.8,
    "Consumer Discretionary": 10.9,
    "Health Care": 10.8,
    "Consumer Staples": 6.2,
    "Energy": 4.8,
    "Materials": 4.3,
    "Real Estate": 2.8,
    "Utilities": 2.5,
})

_MSCI_WORLD_COUNTRIES = _frozen({
    "United States": 70.5,
    "Japan": 6.1,
    "United Kingdom": 3.7,
    "France": 3.1,
    "Canada": 3.0,
    "Switzerland": 2.6,
    "Germany": 2.2,
    "Australia": 1.9,
    "Netherlands": 1.3,
    "Sweden": 1.0,
})
_MSCI_WORLD_SECTORS = _frozen({
    "Technology": 24.8,
    "Financials": 14.8,
    "Health Care": 11.9,
    "Consumer Discretionary": 11.2,
    "Industrials": 10.8,
    "Consumer Staples": 6.8,
    "Communication Services": 7.2,
    "Energy": 4.1,
    "Materials": 3.8,
    "Utilities": 2.4,
})

_SP500_SECTORS = _frozen({
    "Technology": 29.8,
    "Financials": 13.2,
    "Health Care": 12.5,
    "Consumer Discretionary": 10.8,
    "Communication Services": 8.9,
    "Industrials": 8.4,
    "Consumer Staples": 6.1,
    "Energy": 3.8,
    "Utilities": 2.5,
    "Real Estate": 2.3,
})
_INVESCO_SP500_SECTORS = _frozen({
    "Technology": 29.5,
    "Financials": 13.0,
    "Health Care": 12.8,
    "Consumer Discretionary": 11.0,
    "Communication Services": 9.0,
    "Industrials": 8.5,
    "Consumer Staples": 6.0,
    "Energy": 4.0,
    "Utilities": 2.5,
    "Real Estate": 2.2,
})
_ISHARES_SP500_SECTORS = _frozen({
    "Technology": 30.2,
    "Financials": 13.0,
    "Health Care": 12.3,
    "Consumer Discretionary": 10.5,
    "Communication Services": 9.2,
    "Industrials": 8.3,
    "Consumer Staples": 6.2,
    "Energy": 3.9,
    "Utilities": 2.6,
    "Real Estate": 2.4,
})

_FTSE_ALL_WORLD = "Vanguard FTSE All-World UCITS ETF"
_MSCI_WORLD = "iShares Core MSCI World UCITS ETF"
_VANGUARD_SP500 = "Vanguard S&P 500 UCITS ETF"
_INVESCO_SP500 = "Invesco S&P 500 UCITS ETF"
_ISHARES_SP500 = "iShares Core S&P 500 UCITS ETF"

ETF_DATA: Mapping[str, EtfReference] = MappingProxyType({
    # Vanguard
    "VWCE": EtfReference(_FTSE_ALL_WORLD, "IE00BK5BQT80", _FTSE_ALL_WORLD_COUNTRIES, _FTSE_ALL_WORLD_SECTORS, "USD"),
    "VWCE.DE": EtfReference(_FTSE_ALL_WORLD, "IE00BK5BQT80", _FTSE_ALL_WORLD_COUNTRIES, _FTSE_ALL_WORLD_SECTORS, "EUR"),
    "VTI": EtfReference(
        "Vanguard Total Stock Market ETF",
        "US9229087690",
        _US_ONLY,
        _frozen({
            "Technology": 31.2,
            "Financials": 13.1,
            "Health Care": 12.8,
            "Consumer Discretionary": 10.5,
            "Industrials": 8.9,
            "Consumer Staples": 5.8,
            "Energy": 4.2,
            "Real Estate": 3.8,
            "Materials": 2.5,
            "Utilities": 2.3,
        }),
        "USD",
    ),
    "VUSA": EtfReference(_VANGUARD_SP500, "IE00B3XXRP09", _US_ONLY, _SP500_SECTORS, "USD"),
    "VUSA.L": EtfReference(_VANGUARD_SP500, "IE00B3XXRP09", _US_ONLY, _SP500_SECTORS, "USD"),
    # SPDR
    "SPY": EtfReference("SPDR S&P 500 ETF Trust", "US78462F1030", _US_ONLY, _SP500_SECTORS, "USD"),
    # iShares
    "IWDA": EtfReference(_MSCI_WORLD, "IE00B4L5Y983", _MSCI_WORLD_COUNTRIES, _MSCI_WORLD_SECTORS, "USD"),
    "IWDA.L": EtfReference(_MSCI_WORLD, "IE00B4L5Y983", _MSCI_WORLD_COUNTRIES, _MSCI_WORLD_SECTORS, "USD"),
    "IS3N": EtfReference(_MSCI_WORLD, "IE00B4L5Y983", _MSCI_WORLD_COUNTRIES, _MSCI_WORLD_SECTORS, "EUR"),
    "IS3N.DE": EtfReference(_MSCI_WORLD, "IE00B4L5Y983", _MSCI_WORLD_COUNTRIES, _MSCI_WORLD_SECTORS, "EUR"),
    "EIMI": EtfReference(
        "iShares Core MSCI Emerging Markets IMI UCITS ETF",
        "IE00BKM4GZ66",
        _frozen({
            "China": 28.5,
            "India": 19.8,
            "Taiwan": 16.2,
            "South Korea": 11.8,
            "Brazil": 5.2,
            "Saudi Arabia": 3.8,
            "South Africa": 3.2,
            "Mexico": 2.8,
            "Indonesia": 2.1,
            "Thailand": 1.9,
        }),
        _frozen({
            "Technology": 22.8,
            "Financials": 21.5,
            "Consumer Discretionary": 14.2,
            "Communication Services": 9.8,
            "Materials": 8.5,
            "Energy": 6.8,
            "Industrials": 5.9,
            "Consumer Staples": 5.2,
            "Health Care": 3.1,
            "Utilities": 2.2,
        }),
        "USD",
    ),
    "SXRV": EtfReference(_ISHARES_SP500, "IE00B5BMR087", _US_ONLY, _ISHARES_SP500_SECTORS, "USD"),
    "SXRV.DE": EtfReference(_ISHARES_SP500, "IE00B5BMR087", _US_ONLY, _ISHARES_SP500_SECTORS, "EUR"),
    "CSPX": EtfReference(_ISHARES_SP500, "IE00B5BMR087", _US_ONLY, _ISHARES_SP500_SECTORS, "USD"),
    # Invesco
    "SPPW": EtfReference(_INVESCO_SP500, "IE00B6YX5C33", _US_ONLY, _INVESCO_SP500_SECTORS, "USD"),
    "SPPW.DE": EtfReference(_INVESCO_SP500, "IE00B6YX5C33", _US_ONLY, _INVESCO_SP500_SECTORS, "EUR"),
    "QQQ": EtfReference(
        "Invesco QQQ Trust",
        "US46090E1038",
        _US_ONLY,
        _frozen({
            "Technology": 51.2,
            "Communication Services": 18.5,
            "Consumer Discretionary": 14.8,
            "Health Care": 6.2,
            "Consumer Staples": 4.8,
            "Industrials": 3.2,
            "Energy": 0.8,
            "Utilities": 0.3,
            "Financials": 0.2,
        }),
        "USD",
    ),
})


def get_local_etf_data(ticker: str) -> Optional[EtfReference]:
    return ETF_DATA.get((ticker or "").strip().upper())


def has_local_etf_data(ticker: str) -> bool:
    return (ticker or "").strip().upper() in ETF_DATA
