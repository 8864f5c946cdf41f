# services/cache/cache_utils.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Collapse concurrent calls for the same key into one in-flight coroutine.

    The first caller for a key starts the work; callers arriving while it runs
    await the same task and receive its result (or its exception). The key is
    released as soon as the task settles, so the next call starts fresh.
    """

    def __init__(self, name: str = "singleflight"):
        self.name = name
        self._inflight: Dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._release(k, _t))
        else:
            logger.debug("%s: joining in-flight call for %s", self.name, key)
        # shield: one caller being cancelled must not cancel the shared work
        return await asyncio.shield(task)

    def _release(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is task:
            self._inflight.pop(key, None)
        if not task.cancelled():
            # mark retrieved so an unawaited failure doesn't log "never retrieved"
            task.exception()
