"""Cache layer: reply memoization and derived-view caching."""

from .store import CacheStore, InMemoryCacheStore, RedisCacheStore, create_cache_store
from .memo import ReplyMemoizer
from .views import ViewCache
from . import keys

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "create_cache_store",
    "ReplyMemoizer",
    "ViewCache",
    "keys",
]
