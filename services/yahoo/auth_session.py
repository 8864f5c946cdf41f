# services/yahoo/auth_session.py
"""
Cookie + crumb session for Yahoo's authenticated quoteSummary endpoint.

Handshake:
  1) GET a quote page for any seed ticker; keep the Set-Cookie values
  2) GET the crumb endpoint with that cookie; the body is the crumb

The crumb is only valid with the cookie it was issued for, so the pair is
cached and invalidated together. One manager instance is shared by every
caller; concurrent obtain() calls ride on a single in-flight handshake.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import httpx

from services.cache.cache_utils import SingleFlight
from services.errors import AuthFailure
from services.http_client import BROWSER_HEADERS, HttpClientMixin

logger = logging.getLogger(__name__)

DEFAULT_SEED_TICKER = "AAPL"
AUTH_SESSION_TTL_SEC = 30 * 60


@dataclass(frozen=True)
class AuthSession:
    cookie: str
    crumb: str
    obtained_at: float
    ttl: float = AUTH_SESSION_TTL_SEC

    def is_fresh(self, now: float) -> bool:
        return now - self.obtained_at < self.ttl


def harvest_cookies(response: httpx.Response) -> str:
    """Join name=value pairs from every Set-Cookie header, redirects included."""
    pairs: List[str] = []
    for r in [*response.history, response]:
        for raw in r.headers.get_list("set-cookie"):
            pair = raw.split(";", 1)[0].strip()
            if pair and "=" in pair and pair not in pairs:
                pairs.append(pair)
    return "; ".join(pairs)


class YahooAuthSessionManager(HttpClientMixin):
    QUOTE_PAGE_URL = "https://finance.yahoo.com/quote/{ticker}"
    CRUMB_URL = "https://query2.finance.yahoo.com/v1/test/getcrumb"

    def __init__(
        self,
        *,
        http: Optional[httpx.AsyncClient] = None,
        ttl: float = AUTH_SESSION_TTL_SEC,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self._http = http
        self.ttl = float(ttl)
        self.timeout = float(timeout)
        self._clock = clock
        self._session: Optional[AuthSession] = None
        self._flight: SingleFlight[AuthSession] = SingleFlight("yahoo-auth")
        self.handshake_count = 0

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    async def obtain(self, seed_ticker: str = DEFAULT_SEED_TICKER) -> AuthSession:
        """
        Return the cached session while it is younger than its ttl, otherwise
        perform (or join) a handshake. Raises AuthFailure.
        """
        cur = self._session
        if cur is not None and cur.is_fresh(self._clock()):
            logger.debug("using cached cookie/crumb")
            return cur

        seed = (seed_ticker or DEFAULT_SEED_TICKER).strip().upper()
        return await self._flight.do("session", lambda: self._handshake(seed))

    def invalidate(self, session: Optional[AuthSession] = None) -> None:
        """
        Drop the cached session. When `session` is given, only that session is
        dropped; a caller holding a stale one cannot clear a newer handshake.
        """
        if session is not None and self._session is not session:
            logger.debug("ignoring invalidation of a superseded auth session")
            return
        if self._session is not None:
            logger.info("yahoo auth session invalidated")
        self._session = None

    async def _handshake(self, seed_ticker: str) -> AuthSession:
        self.handshake_count += 1
        logger.info("fetching new cookie and crumb from Yahoo Finance")

        async with self._client() as c:
            # Step 1: cookie from the quote page (status is irrelevant, headers are not)
            try:
                page = await c.get(
                    self.QUOTE_PAGE_URL.format(ticker=seed_ticker),
                    headers=BROWSER_HEADERS,
                    timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                raise AuthFailure(f"quote page request failed: {type(e).__name__}") from e

            cookie = harvest_cookies(page)
            if not cookie:
                raise AuthFailure("No cookies received from Yahoo Finance")

            # Step 2: crumb using the cookie
            try:
                r = await c.get(
                    self.CRUMB_URL,
                    headers={**BROWSER_HEADERS, "Cookie": cookie},
                    timeout=self.timeout,
                )
                r.raise_for_status()
            except httpx.HTTPError as e:
                raise AuthFailure(f"crumb request failed: {type(e).__name__}") from e

        crumb = (r.text or "").strip()
        if not crumb or "<" in crumb or " " in crumb:
            raise AuthFailure("No crumb received from Yahoo Finance")

        session = AuthSession(cookie=cookie, crumb=crumb, obtained_at=self._clock(), ttl=self.ttl)
        self._session = session
        logger.info("obtained cookie and crumb")
        return session
