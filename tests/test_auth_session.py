import asyncio
import unittest

import httpx

from services.errors import AuthFailure
from services.yahoo.auth_session import YahooAuthSessionManager, harvest_cookies


class _Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _FakeYahoo:
    """Quote page sets cookies, getcrumb echoes a crumb when the cookie is present."""

    def __init__(self, *, cookies=True, crumb="Xy7.crumb"):
        self.cookies = cookies
        self.crumb = crumb
        self.page_calls = 0
        self.crumb_calls = 0
        self.crumb_cookie_headers = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "finance.yahoo.com":
            self.page_calls += 1
            headers = []
            if self.cookies:
                headers = [
                    ("set-cookie", "A3=d=AQABBL; Path=/; Domain=.yahoo.com; Secure"),
                    ("set-cookie", "B=bx7; Path=/"),
                ]
            return httpx.Response(200, headers=headers, text="<html></html>")
        if request.url.path.endswith("/getcrumb"):
            self.crumb_calls += 1
            self.crumb_cookie_headers.append(request.headers.get("cookie"))
            return httpx.Response(200, text=self.crumb)
        return httpx.Response(404)


def _manager(yahoo, clock=None, ttl=1800):
    http = httpx.AsyncClient(transport=httpx.MockTransport(yahoo))
    return YahooAuthSessionManager(http=http, ttl=ttl, clock=clock or _Clock()), http


class TestYahooAuthSession(unittest.TestCase):
    def test_handshake_pairs_cookie_and_crumb(self):
        yahoo = _FakeYahoo()

        async def _run():
            mgr, http = _manager(yahoo)
            async with http:
                return await mgr.obtain("MSFT"), mgr

        session, mgr = asyncio.run(_run())
        self.assertEqual(session.cookie, "A3=d=AQABBL; B=bx7")
        self.assertEqual(session.crumb, "Xy7.crumb")
        self.assertEqual(yahoo.crumb_cookie_headers, ["A3=d=AQABBL; B=bx7"])
        self.assertIs(mgr.session, session)

    def test_fresh_session_is_reused(self):
        yahoo = _FakeYahoo()
        clock = _Clock()

        async def _run():
            mgr, http = _manager(yahoo, clock)
            async with http:
                first = await mgr.obtain()
                clock.now += 1799
                second = await mgr.obtain()
                return first, second, mgr

        first, second, mgr = asyncio.run(_run())
        self.assertIs(first, second)
        self.assertEqual(mgr.handshake_count, 1)
        self.assertEqual(yahoo.page_calls, 1)

    def test_expired_session_triggers_new_handshake(self):
        yahoo = _FakeYahoo()
        clock = _Clock()

        async def _run():
            mgr, http = _manager(yahoo, clock)
            async with http:
                await mgr.obtain()
                clock.now += 1800
                await mgr.obtain()
                return mgr

        mgr = asyncio.run(_run())
        self.assertEqual(mgr.handshake_count, 2)

    def test_invalidate_forces_new_handshake(self):
        yahoo = _FakeYahoo()

        async def _run():
            mgr, http = _manager(yahoo)
            async with http:
                await mgr.obtain()
                mgr.invalidate()
                self.assertIsNone(mgr.session)
                await mgr.obtain()
                return mgr

        mgr = asyncio.run(_run())
        self.assertEqual(mgr.handshake_count, 2)
        self.assertEqual(yahoo.crumb_calls, 2)

    def test_invalidating_a_superseded_session_keeps_the_current_one(self):
        yahoo = _FakeYahoo()

        async def _run():
            mgr, http = _manager(yahoo)
            async with http:
                stale = await mgr.obtain()
                mgr.invalidate(stale)
                current = await mgr.obtain()
                mgr.invalidate(stale)
                self.assertIs(mgr.session, current)
                mgr.invalidate(current)
                self.assertIsNone(mgr.session)
                return mgr

        mgr = asyncio.run(_run())
        self.assertEqual(mgr.handshake_count, 2)

    def test_concurrent_callers_share_one_handshake(self):
        yahoo = _FakeYahoo()

        async def _run():
            mgr, http = _manager(yahoo)
            async with http:
                sessions = await asyncio.gather(*(mgr.obtain() for _ in range(8)))
                return sessions, mgr

        sessions, mgr = asyncio.run(_run())
        self.assertEqual(mgr.handshake_count, 1)
        self.assertEqual(yahoo.page_calls, 1)
        self.assertTrue(all(s is sessions[0] for s in sessions))

    def test_no_cookies_is_auth_failure(self):
        yahoo = _FakeYahoo(cookies=False)

        async def _run():
            mgr, http = _manager(yahoo)
            async with http:
                await mgr.obtain()

        with self.assertRaises(AuthFailure):
            asyncio.run(_run())
        self.assertEqual(yahoo.crumb_calls, 0)

    def test_html_crumb_is_auth_failure(self):
        yahoo = _FakeYahoo(crumb="<html>Too Many Requests</html>")

        async def _run():
            mgr, http = _manager(yahoo)
            async with http:
                try:
                    await mgr.obtain()
                finally:
                    self.assertIsNone(mgr.session)

        with self.assertRaises(AuthFailure):
            asyncio.run(_run())

    def test_harvest_cookies_skips_attributes(self):
        r = httpx.Response(
            200,
            headers=[("set-cookie", "GUC=AQEB; Expires=Thu, 01 Jan 2026 00:00:00 GMT"), ("set-cookie", "junk")],
        )
        self.assertEqual(harvest_cookies(r), "GUC=AQEB")


if __name__ == "__main__":
    unittest.main()
