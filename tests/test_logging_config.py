import json
import logging
import unittest

from config.logging_config import CredentialRedactingFilter, JsonFormatter, redact


def _record(msg, *args, **extra):
    record = logging.LogRecord("services.quotes", logging.WARNING, __file__, 1, msg, args, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


class TestLoggingConfig(unittest.TestCase):
    def test_redact_crumb_cookie_and_key(self):
        self.assertEqual(
            redact("GET /quoteSummary/AAPL?modules=price&crumb=Xy7.abc failed"),
            "GET /quoteSummary/AAPL?modules=price&crumb=*** failed",
        )
        self.assertEqual(redact("Cookie: A3=d=AQAB; B=bx7"), "Cookie: ***")
        self.assertEqual(redact("etf-country-weightings/SPY?apikey=secret"), "etf-country-weightings/SPY?apikey=***")
        self.assertEqual(redact("quote tier relay failed for AAPL"), "quote tier relay failed for AAPL")

    def test_filter_rewrites_formatted_message(self):
        record = _record("handshake failed: %s", "https://x/getcrumb?crumb=abc")
        self.assertTrue(CredentialRedactingFilter().filter(record))
        self.assertEqual(record.getMessage(), "handshake failed: https://x/getcrumb?crumb=***")

    def test_json_formatter_includes_context_fields(self):
        out = json.loads(JsonFormatter().format(_record("tier %s failed", "relay", ticker="AAPL", tier="relay")))
        self.assertEqual(out["message"], "tier relay failed")
        self.assertEqual(out["level"], "WARNING")
        self.assertEqual(out["ticker"], "AAPL")
        self.assertEqual(out["tier"], "relay")
        self.assertNotIn("request_id", out)


if __name__ == "__main__":
    unittest.main()
