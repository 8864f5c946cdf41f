import asyncio
import unittest

from schemas.market_data import ExpenseRatioRecord
from services.cache.cache_backend import TTLCache
from services.errors import ConfigurationMissing, NetworkFailure, SanityCheckFailure
from services.ter.ter_extraction import extract_ter
from services.ter.ter_service import ExpenseRatioResolver, annual_ter_cost, ter_category


class _Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _FakeRelay:
    def __init__(self, ters=None, error=None):
        self.ters = ters or {}
        self.error = error
        self.calls = []

    async def fetch_expense_ratio(self, ticker):
        self.calls.append(ticker)
        if self.error is not None:
            raise self.error
        if ticker not in self.ters:
            raise NetworkFailure("upstream status 404")
        return ExpenseRatioRecord(ticker=ticker, ter=self.ters[ticker], source="relay")


class _FakeProfiles:
    def __init__(self, html=""):
        self.html = html
        self.calls = []

    async def fetch(self, isin):
        self.calls.append(isin)
        return self.html


class TestExtractTer(unittest.TestCase):
    def test_total_expense_ratio(self):
        self.assertEqual(extract_ter("<td>Total expense ratio</td><td>0.22% p.a.</td>"), 0.22)

    def test_ongoing_charges_with_decimal_comma(self):
        self.assertEqual(extract_ter("Ongoing charges: 0,19%"), 0.19)

    def test_out_of_bounds_match_is_rejected(self):
        self.assertIsNone(extract_ter("Total expense ratio: 12.50%"))

    def test_out_of_bounds_match_falls_through_to_next_pattern(self):
        self.assertEqual(extract_ter("Total expense ratio: 12.50% ... TER 0.20%"), 0.20)

    def test_json_fragment(self):
        self.assertEqual(extract_ter('{"isin": "IE00BK5BQT80", "ter": 0.07}'), 0.07)

    def test_nothing_to_find(self):
        self.assertIsNone(extract_ter(""))
        self.assertIsNone(extract_ter(None))
        self.assertIsNone(extract_ter("<html>Fund not found</html>"))


class TestTerHelpers(unittest.TestCase):
    def test_category_thresholds(self):
        self.assertEqual(ter_category(None), "Unknown")
        self.assertEqual(ter_category(0.07), "Low")
        self.assertEqual(ter_category(0.15), "Low")
        self.assertEqual(ter_category(0.22), "Medium")
        self.assertEqual(ter_category(0.5), "Medium")
        self.assertEqual(ter_category(0.95), "High")

    def test_annual_cost(self):
        self.assertAlmostEqual(annual_ter_cost(10_000, 0.22), 22.0)
        self.assertEqual(annual_ter_cost(10_000, None), 0.0)
        self.assertEqual(annual_ter_cost(0, 0.22), 0.0)


class TestExpenseRatioResolver(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock()
        self.cache = TTLCache(namespace="ter", default_ttl=7 * 24 * 3600, clock=self.clock)

    def _resolver(self, relay=None, profiles=None):
        return ExpenseRatioResolver(self.cache, relay=relay, profiles=profiles, negative_ttl=6 * 3600)

    def test_relay_result_is_cached(self):
        relay = _FakeRelay({"VWCE": 0.22})
        resolver = self._resolver(relay)

        self.assertIsNone(resolver.resolve_cached("VWCE"))
        self.assertEqual(asyncio.run(resolver.resolve("vwce")), 0.22)
        self.assertEqual(asyncio.run(resolver.resolve("VWCE")), 0.22)

        self.assertEqual(relay.calls, ["VWCE"])
        self.assertEqual(resolver.resolve_cached("VWCE"), 0.22)
        self.assertEqual(resolver.record("VWCE").source, "relay")

    def test_fund_profile_used_when_relay_fails(self):
        relay = _FakeRelay()
        profiles = _FakeProfiles("<div>Total expense ratio</div><div>0,12%</div>")
        resolver = self._resolver(relay, profiles)

        ter = asyncio.run(resolver.resolve("IWDA", isin="ie00b4l5y983"))

        self.assertEqual(ter, 0.12)
        self.assertEqual(profiles.calls, ["IE00B4L5Y983"])
        self.assertEqual(resolver.record("IWDA").source, "justetf")

    def test_unconfigured_relay_goes_straight_to_profile(self):
        relay = _FakeRelay(error=ConfigurationMissing("PRICE_RELAY_URL not set"))
        profiles = _FakeProfiles("TER 0.20%")
        ter = asyncio.run(self._resolver(relay, profiles).resolve("CSPX", isin="IE00B5BMR087"))
        self.assertEqual(ter, 0.20)

    def test_relay_sanity_failure_falls_through(self):
        relay = _FakeRelay(error=SanityCheckFailure("TER 22 outside [0, 10)"))
        ter = asyncio.run(self._resolver(relay).resolve("ODD"))
        self.assertIsNone(ter)

    def test_miss_is_cached_for_the_negative_ttl(self):
        relay = _FakeRelay()
        profiles = _FakeProfiles("nothing here")
        resolver = self._resolver(relay, profiles)

        self.assertIsNone(asyncio.run(resolver.resolve("XYZ", isin="IE0000000000")))
        self.assertIsNone(asyncio.run(resolver.resolve("XYZ", isin="IE0000000000")))
        self.assertEqual(relay.calls, ["XYZ"])
        self.assertIsNone(resolver.record("XYZ"))

        self.clock.now += 6 * 3600 + 1
        asyncio.run(resolver.resolve("XYZ"))
        self.assertEqual(relay.calls, ["XYZ", "XYZ"])

    def test_miss_without_isin_does_not_block_a_later_isin_lookup(self):
        relay = _FakeRelay()
        profiles = _FakeProfiles("<td>Total expense ratio</td><td>0.22%</td>")
        resolver = self._resolver(relay, profiles)

        self.assertIsNone(asyncio.run(resolver.resolve("VWCE")))
        self.assertEqual(asyncio.run(resolver.resolve("VWCE", isin="IE00BK5BQT80")), 0.22)

        self.assertEqual(profiles.calls, ["IE00BK5BQT80"])
        self.assertEqual(relay.calls, ["VWCE"])
        self.assertEqual(resolver.record("VWCE").source, "justetf")
        self.assertEqual(asyncio.run(resolver.resolve("VWCE")), 0.22)

    def test_force_refresh_bypasses_cache(self):
        relay = _FakeRelay({"VWCE": 0.22})
        resolver = self._resolver(relay)
        self.cache.put("VWCE", ExpenseRatioRecord(ticker="VWCE", ter=0.25, source="manual"))

        self.assertEqual(asyncio.run(resolver.resolve("VWCE")), 0.25)
        self.assertEqual(asyncio.run(resolver.resolve("VWCE", force_refresh=True)), 0.22)
        self.assertEqual(resolver.resolve_cached("VWCE"), 0.22)

    def test_no_isin_skips_profile(self):
        profiles = _FakeProfiles("TER 0.20%")
        self.assertIsNone(asyncio.run(self._resolver(_FakeRelay(), profiles).resolve("VWCE")))
        self.assertEqual(profiles.calls, [])

    def test_batch_variants(self):
        relay = _FakeRelay({"VWCE": 0.22, "CSPX": 0.07})
        resolver = self._resolver(relay)

        out = asyncio.run(resolver.resolve_many(["VWCE", "cspx", "VWCE", "NONE"]))
        self.assertEqual(out, {"VWCE": 0.22, "CSPX": 0.07, "NONE": None})
        self.assertEqual(resolver.resolve_cached_many(["vwce", "CSPX", "OTHER"]), {"VWCE": 0.22, "CSPX": 0.07, "OTHER": None})

    def test_concurrent_lookups_share_one_request(self):
        relay = _FakeRelay({"VWCE": 0.22})
        resolver = self._resolver(relay)

        async def _run():
            return await asyncio.gather(*(resolver.resolve("VWCE") for _ in range(4)))

        self.assertEqual(asyncio.run(_run()), [0.22] * 4)
        self.assertEqual(relay.calls, ["VWCE"])


if __name__ == "__main__":
    unittest.main()
