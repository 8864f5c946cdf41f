# services/errors.py
from __future__ import annotations


class MarketDataError(Exception):
    """Base class for failures inside the market data pipeline.

    None of these escape the public surface: each is caught at the tier that
    raised it and turned into "try the next source".
    """

    kind = "market_data_error"


class ConfigurationMissing(MarketDataError):
    """Optional upstream not configured; the tier is skipped, not failed."""

    kind = "configuration_missing"


class NetworkFailure(MarketDataError):
    """Timeout, transport error or non-2xx response."""

    kind = "network_failure"


class ParseFailure(MarketDataError):
    """Payload arrived but did not have the expected shape."""

    kind = "parse_failure"


class AuthFailure(MarketDataError):
    """Cookie/crumb handshake failed, or the upstream rejected the crumb."""

    kind = "auth_failure"


class SanityCheckFailure(MarketDataError):
    """A value came back outside its declared bounds."""

    kind = "sanity_check_failure"


class NoDataAvailable(MarketDataError):
    """Every source was exhausted."""

    kind = "no_data_available"
