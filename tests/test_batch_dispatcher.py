import asyncio
import unittest

from schemas.market_data import QuoteRecord
from services.cache.cache_backend import TTLCache
from services.quotes.batch_dispatcher import BatchDispatcher


class _Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _FakeChain:
    """Answers from a fixed table; records every call in order."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.calls = []
        self.categories = []

    async def fetch_quote(self, ticker, *, last_price=None, category=None):
        self.calls.append((ticker, last_price))
        self.categories.append(category)
        return self.answers.get(ticker)


def _live(ticker, price):
    return QuoteRecord(ticker=ticker, price=price, source="relay")


def _fallback(ticker, price):
    return QuoteRecord(ticker=ticker, price=price, source="synthetic", fallback=True)


class TestBatchDispatcher(unittest.TestCase):
    def setUp(self):
        self.sleeps = []
        self.cache = TTLCache(namespace="quote", default_ttl=1800, clock=_Clock())

    async def _sleep(self, seconds):
        self.sleeps.append(seconds)

    def _dispatcher(self, chain, delay=1.5, currency="EUR"):
        return BatchDispatcher(chain, self.cache, delay=delay, sleep=self._sleep, currency=currency)

    def test_fully_cached_batch_makes_no_calls(self):
        self.cache.put("AAPL", _live("AAPL", 190.0))
        self.cache.put("MSFT", _live("MSFT", 410.0))
        chain = _FakeChain()

        out = asyncio.run(self._dispatcher(chain).fetch_many(["aapl", "MSFT"]))

        self.assertEqual(chain.calls, [])
        self.assertEqual(self.sleeps, [])
        self.assertEqual(out["AAPL"].price, 190.0)
        self.assertEqual(out["MSFT"].source, "cache")

    def test_sequential_fetch_spaces_requests(self):
        chain = _FakeChain({t: _live(t, 10.0) for t in ("AAPL", "MSFT", "TSLA")})

        out = asyncio.run(self._dispatcher(chain).fetch_many(["AAPL", "MSFT", "TSLA"]))

        self.assertEqual([c[0] for c in chain.calls], ["AAPL", "MSFT", "TSLA"])
        self.assertEqual(self.sleeps, [1.5, 1.5])
        self.assertEqual(list(out.keys()), ["AAPL", "MSFT", "TSLA"])
        self.assertTrue(self.cache.all_present(["AAPL", "MSFT", "TSLA"]))

    def test_partial_cache_refetches_every_ticker(self):
        self.cache.put("AAPL", _live("AAPL", 190.0))
        chain = _FakeChain({"AAPL": _live("AAPL", 191.0), "MSFT": _live("MSFT", 410.0)})

        out = asyncio.run(self._dispatcher(chain).fetch_many(["AAPL", "MSFT"]))

        self.assertEqual(len(chain.calls), 2)
        self.assertEqual(out["AAPL"].price, 191.0)
        self.assertEqual(self.cache.value("AAPL").price, 191.0)

    def test_duplicates_are_fetched_once(self):
        chain = _FakeChain({"AAPL": _live("AAPL", 1.0), "MSFT": _live("MSFT", 2.0)})

        out = asyncio.run(self._dispatcher(chain).fetch_many(["aapl", "AAPL", " msft "]))

        self.assertEqual(len(chain.calls), 2)
        self.assertEqual(sorted(out.keys()), ["AAPL", "MSFT"])
        self.assertEqual(self.sleeps, [1.5])

    def test_last_prices_reach_the_chain(self):
        chain = _FakeChain()
        asyncio.run(self._dispatcher(chain).fetch_many(["vwce.de"], {"VWCE.de": 118.0}))
        self.assertEqual(chain.calls, [("VWCE.DE", 118.0)])

    def test_categories_reach_the_chain(self):
        chain = _FakeChain()
        asyncio.run(self._dispatcher(chain).fetch_many(["btc-usd", "AAPL"], categories={"BTC-USD": "Crypto"}))
        self.assertEqual(chain.categories, ["Crypto", None])

    def test_fallback_is_returned_but_not_cached(self):
        chain = _FakeChain({"AAPL": _fallback("AAPL", 101.0)})

        out = asyncio.run(self._dispatcher(chain).fetch_many(["AAPL"]))

        self.assertTrue(out["AAPL"].fallback)
        self.assertEqual(out["AAPL"].price, 101.0)
        self.assertIsNone(self.cache.get("AAPL"))

    def test_cached_quote_beats_fallback(self):
        self.cache.put("AAPL", _live("AAPL", 190.0))
        chain = _FakeChain({"AAPL": _fallback("AAPL", 187.0), "MSFT": _live("MSFT", 410.0)})

        out = asyncio.run(self._dispatcher(chain).fetch_many(["AAPL", "MSFT"]))

        self.assertEqual(out["AAPL"].price, 190.0)
        self.assertEqual(out["AAPL"].source, "cache")
        self.assertFalse(out["AAPL"].fallback)

    def test_nothing_anywhere_yields_null_record(self):
        out = asyncio.run(self._dispatcher(_FakeChain()).fetch_many(["NEW"]))

        rec = out["NEW"]
        self.assertIsNone(rec.price)
        self.assertFalse(rec.success)
        self.assertTrue(rec.fallback)

    def test_null_record_uses_the_configured_currency(self):
        eur = asyncio.run(self._dispatcher(_FakeChain()).fetch("NEW"))
        gbp = asyncio.run(self._dispatcher(_FakeChain(), currency="GBP").fetch("OTHER"))
        self.assertEqual(eur.currency, "EUR")
        self.assertEqual(gbp.currency, "GBP")

    def test_single_fetch(self):
        chain = _FakeChain({"AAPL": _live("AAPL", 5.0)})
        rec = asyncio.run(self._dispatcher(chain).fetch("aapl", 4.0))
        self.assertEqual(rec.price, 5.0)
        self.assertEqual(chain.calls, [("AAPL", 4.0)])

    def test_empty_batch(self):
        self.assertEqual(asyncio.run(self._dispatcher(_FakeChain()).fetch_many([])), {})


if __name__ == "__main__":
    unittest.main()
