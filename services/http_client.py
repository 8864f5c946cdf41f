# services/http_client.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence
from urllib.parse import quote

import httpx

from services.errors import NetworkFailure

# Yahoo refuses cookie/crumb requests without a browser user agent
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


def build_client(timeout: float = 10.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, connect=min(5.0, timeout)),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        follow_redirects=True,
    )


class HttpClientMixin:
    """Use an injected AsyncClient when given, otherwise a short-lived one per call."""

    timeout: float = 10.0
    _http: Optional[httpx.AsyncClient] = None

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with build_client(self.timeout) as c:
            yield c

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        """GET with transport errors and non-2xx folded into NetworkFailure."""
        kwargs.setdefault("timeout", self.timeout)
        async with self._client() as c:
            try:
                r = await c.get(url, **kwargs)
                r.raise_for_status()
            except httpx.TimeoutException as e:
                raise NetworkFailure(f"timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise NetworkFailure(f"upstream status {e.response.status_code}") from e
            except httpx.HTTPError as e:
                raise NetworkFailure(str(e) or type(e).__name__) from e
            return r


class RelayRotation:
    """
    Ordered list of open CORS relays (prefixes taking the encoded target URL).
    A failed call rotates to the next relay; the position is shared by every
    caller holding this instance.
    """

    def __init__(self, relays: Sequence[str]):
        cleaned = [r.strip() for r in relays if r and r.strip()]
        if not cleaned:
            raise ValueError("At least one relay is required")
        self._relays = cleaned
        self._index = 0

    @property
    def current(self) -> str:
        return self._relays[self._index]

    def __len__(self) -> int:
        return len(self._relays)

    def wrap(self, target_url: str) -> str:
        return self.current + quote(target_url, safe="")

    def rotate(self) -> str:
        self._index = (self._index + 1) % len(self._relays)
        return self.current
