"""
Cache store backends.

Every component that caches receives a ``CacheStore`` explicitly; there is
no module-level cache instance. Operations are independent per key, with no
cross-key transactions.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

import redis

from kardia_engine.config.models import CacheConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheStore(Protocol):
    """Minimal byte-oriented key/value store with per-entry TTL."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes, ttl: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryCacheStore:
    """
    Process-local store.

    Expired entries are never returned; they are dropped lazily on read.
    ``clock`` is injectable so TTL expiry can be exercised without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for _, expires_at in self._entries.values() if expires_at > now)


class RedisCacheStore:
    """Shared store backed by Redis (``SETEX``/``GET``/``DEL``)."""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis.Redis.from_url(url))

    def get(self, key: str) -> Optional[bytes]:
        return self.client.get(key)

    def set(self, key: str, value: bytes, ttl: int) -> None:
        self.client.setex(key, ttl, value)

    def delete(self, key: str) -> None:
        self.client.delete(key)


def create_cache_store(config: CacheConfig) -> CacheStore:
    """Build the configured backend."""
    if config.backend == "redis":
        logger.info(f"Using Redis cache store at {config.redis_url}")
        return RedisCacheStore.from_url(config.redis_url)
    logger.info("Using in-memory cache store")
    return InMemoryCacheStore()
