# services/cache/cache_backend.py
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, Optional, TypeVar

try:
    import redis as redis_sync
except ImportError:
    redis_sync = None

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    cached_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.cached_at > self.ttl

    def age(self, now: float) -> float:
        return max(0.0, now - self.cached_at)


def make_redis_client(url: Optional[str]):
    """Lazy redis client (sync). Returns None if not configured/available."""
    if not url or not redis_sync:
        return None
    try:
        return redis_sync.from_url(
            url,
            decode_responses=True,  # returns str for GET
            socket_timeout=2,
            socket_connect_timeout=2,
        )
    except Exception as e:
        logger.warning("redis unavailable, using local cache only: %s", e)
        return None


class TTLCache(Generic[T]):
    """
    Time-to-live key/value store keyed by normalized ticker.

      1) local memory, entries carry (cached_at, ttl)
      2) optional redis mirror, only when encode/decode hooks are given

    Expired entries read as absent but stay in memory until overwritten.
    """

    def __init__(
        self,
        *,
        namespace: str,
        default_ttl: float,
        clock: Clock = time.time,
        redis_client: Any = None,
        redis_prefix: str = "",
        encode: Optional[Callable[[T], Any]] = None,
        decode: Optional[Callable[[Any], T]] = None,
    ):
        self.namespace = namespace
        self.default_ttl = float(default_ttl)
        self._clock = clock
        self._local: Dict[str, CacheEntry[T]] = {}
        self._redis = redis_client if (encode and decode) else None
        self._redis_prefix = redis_prefix
        self._encode = encode
        self._decode = decode

    @staticmethod
    def _norm_key(key: str) -> str:
        return (key or "").strip().upper()

    def _redis_key(self, k: str) -> str:
        return f"{self._redis_prefix}{self.namespace}:{k}"

    def get(self, key: str) -> Optional[CacheEntry[T]]:
        k = self._norm_key(key)
        if not k:
            return None

        now = self._clock()
        hit = self._local.get(k)
        if hit is not None and not hit.expired(now):
            return hit

        return self._redis_get(k, now)

    def put(self, key: str, value: T, ttl: Optional[float] = None) -> CacheEntry[T]:
        k = self._norm_key(key)
        if not k:
            raise ValueError("Cache key is required")

        ttl = float(ttl) if ttl and ttl > 0 else self.default_ttl
        entry = CacheEntry(value=value, cached_at=self._clock(), ttl=ttl)
        self._local[k] = entry
        self._redis_set(k, entry)
        return entry

    def all_present(self, keys: Iterable[str]) -> bool:
        """True only if every key is cached and unexpired (vacuously false for no keys)."""
        keys = list(keys)
        if not keys:
            return False
        return all(self.get(k) is not None for k in keys)

    def value(self, key: str) -> Optional[T]:
        hit = self.get(key)
        return hit.value if hit is not None else None

    def age(self, key: str) -> Optional[float]:
        hit = self.get(key)
        return hit.age(self._clock()) if hit is not None else None

    def delete(self, key: str) -> None:
        k = self._norm_key(key)
        self._local.pop(k, None)
        if self._redis is not None:
            try:
                self._redis.delete(self._redis_key(k))
            except Exception as e:
                logger.warning("redis delete failed for %s: %s", self.namespace, e)

    def clear(self) -> None:
        keys = list(self._local.keys())
        self._local.clear()
        if self._redis is not None and keys:
            try:
                self._redis.delete(*[self._redis_key(k) for k in keys])
            except Exception as e:
                logger.warning("redis clear failed for %s: %s", self.namespace, e)
        logger.info("cache cleared namespace=%s entries=%d", self.namespace, len(keys))

    def snapshot(self) -> Dict[str, T]:
        """Unexpired local values keyed by normalized key."""
        now = self._clock()
        return {k: e.value for k, e in self._local.items() if not e.expired(now)}

    @property
    def size(self) -> int:
        return len(self.snapshot())

    # -------------------------
    # Redis mirror
    # -------------------------
    def _redis_get(self, k: str, now: float) -> Optional[CacheEntry[T]]:
        if self._redis is None or self._decode is None:
            return None
        try:
            raw = self._redis.get(self._redis_key(k))
            if not raw:
                return None
            payload = json.loads(raw)
            entry = CacheEntry(
                value=self._decode(payload["value"]),
                cached_at=float(payload["cached_at"]),
                ttl=float(payload["ttl"]),
            )
        except Exception as e:
            logger.warning("redis read failed for %s:%s: %s", self.namespace, k, e)
            return None

        if entry.expired(now):
            return None
        self._local[k] = entry
        return entry

    def _redis_set(self, k: str, entry: CacheEntry[T]) -> None:
        if self._redis is None or self._encode is None:
            return
        try:
            payload = {
                "value": self._encode(entry.value),
                "cached_at": entry.cached_at,
                "ttl": entry.ttl,
            }
            self._redis.setex(
                self._redis_key(k),
                max(1, int(entry.ttl)),
                json.dumps(payload, separators=(",", ":"), default=str),
            )
        except Exception as e:
            # Don't fail the request if Redis errors; local cache still helps.
            logger.warning("redis write failed for %s:%s: %s", self.namespace, k, e)
