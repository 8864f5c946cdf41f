import asyncio
import unittest

from schemas.market_data import QuoteRecord
from services.errors import AuthFailure, ConfigurationMissing, NetworkFailure
from services.quotes.providers import QuoteProvider
from services.quotes.quote_chain import QuoteProviderChain


class _FakeProvider(QuoteProvider):
    def __init__(self, name, *, price=None, error=None, delay=0.0, timeout=1.0):
        self.name = name
        self.price = price
        self.error = error
        self.delay = delay
        self.timeout = timeout
        self.calls = []

    async def fetch_quote(self, ticker, *, last_price=None):
        self.calls.append((ticker, last_price))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.price is None:
            return None
        return QuoteRecord(ticker=ticker, price=self.price, source=self.name)


class _CoinsOnly(_FakeProvider):
    def handles(self, ticker, category=None):
        return category == "Crypto" or ticker.startswith("BTC")


class TestQuoteProviderChain(unittest.TestCase):
    def test_first_success_wins_and_later_tiers_not_called(self):
        first = _FakeProvider("relay", error=NetworkFailure("down"))
        second = _FakeProvider("yahoo-advanced", price=101.0)
        third = _FakeProvider("yahoo-chart", price=99.0)

        rec = asyncio.run(QuoteProviderChain([first, second, third]).fetch_quote(" aapl ", last_price=100.0))

        self.assertEqual(rec.source, "yahoo-advanced")
        self.assertEqual(first.calls, [("AAPL", 100.0)])
        self.assertEqual(second.calls, [("AAPL", 100.0)])
        self.assertEqual(third.calls, [])

    def test_unconfigured_tier_is_skipped(self):
        relay = _FakeProvider("relay", error=ConfigurationMissing("PRICE_RELAY_URL not set"))
        chart = _FakeProvider("yahoo-chart", price=50.0)

        with self.assertLogs("services.quotes.quote_chain", level="DEBUG") as logs:
            rec = asyncio.run(QuoteProviderChain([relay, chart]).fetch_quote("MSFT"))

        self.assertEqual(rec.source, "yahoo-chart")
        self.assertTrue(any("not configured" in line for line in logs.output))

    def test_slow_tier_is_abandoned_after_deadline(self):
        slow = _FakeProvider("yahoo-advanced", price=1.0, delay=1.0, timeout=0.01)
        fast = _FakeProvider("yahoo-chart", price=2.0)

        rec = asyncio.run(QuoteProviderChain([slow, fast]).fetch_quote("AAPL"))
        self.assertEqual(rec.price, 2.0)

    def test_none_and_unexpected_errors_advance(self):
        empty = _FakeProvider("relay")
        broken = _FakeProvider("yahoo-advanced", error=KeyError("price"))
        auth = _FakeProvider("yahoo-chart", error=AuthFailure("crumb"))
        last = _FakeProvider("synthetic", price=3.0)

        rec = asyncio.run(QuoteProviderChain([empty, broken, auth, last]).fetch_quote("AAPL"))
        self.assertEqual(rec.source, "synthetic")

    def test_all_tiers_failing_returns_none(self):
        chain = QuoteProviderChain([_FakeProvider("a", error=NetworkFailure("x")), _FakeProvider("b")])
        self.assertIsNone(asyncio.run(chain.fetch_quote("AAPL")))

    def test_empty_ticker_is_caller_error(self):
        chain = QuoteProviderChain([_FakeProvider("a", price=1.0)])
        with self.assertRaises(ValueError):
            asyncio.run(chain.fetch_quote("  "))

    def test_asset_specific_tier_only_sees_its_tickers(self):
        coins = _CoinsOnly("coingecko", price=60_000.0)
        stocks = _FakeProvider("relay", price=190.0)
        chain = QuoteProviderChain([coins, stocks])

        self.assertEqual(asyncio.run(chain.fetch_quote("AAPL")).source, "relay")
        self.assertEqual(asyncio.run(chain.fetch_quote("btc-usd")).source, "coingecko")
        self.assertEqual(asyncio.run(chain.fetch_quote("SOL", category="Crypto")).source, "coingecko")
        self.assertEqual(coins.calls, [("BTC-USD", None), ("SOL", None)])

    def test_requires_a_provider(self):
        with self.assertRaises(ValueError):
            QuoteProviderChain([])


if __name__ == "__main__":
    unittest.main()
