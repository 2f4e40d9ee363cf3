"""
Derived-view cache.

Read-optimized aggregates (conversation lists, conversation detail, dashboard
summaries, recent-assessment digests, profile snapshots) are stored as JSON
under ``view:`` keys. Mutating repositories call ``invalidate`` with the
entity's dependency keys after their commit and before returning. A failed
delete is logged and tolerated; the entry's TTL bounds how long it can stay
stale.
"""

import json
import logging
from typing import Any, Callable, Iterable, List

from kardia_engine.cache.store import CacheStore

logger = logging.getLogger(__name__)


class ViewCache:
    """JSON-valued view memo with explicit, enumerable invalidation."""

    def __init__(self, store: CacheStore):
        self.store = store

    def remember(self, key: str, ttl: int, loader: Callable[[], Any]) -> Any:
        """Return the cached view for ``key``, computing and storing it on a miss."""
        try:
            raw = self.store.get(key)
        except Exception as e:
            logger.warning(f"[CACHE] Read failed for {key}: {e}")
            raw = None

        if raw is not None:
            try:
                return json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.warning(f"[CACHE] Dropping unreadable view {key}: {e}")

        logger.info(f"[CACHE MISS] Loading view {key}")
        value = loader()
        try:
            self.store.set(key, json.dumps(value, ensure_ascii=False, default=str).encode("utf-8"), ttl)
        except Exception as e:
            logger.warning(f"[CACHE] Write failed for {key}: {e}")
        return value

    def invalidate(self, keys: Iterable[str], reason: str = "") -> List[str]:
        """
        Delete every key; returns the keys that could not be deleted.

        Never raises.
        """
        failed: List[str] = []
        for key in keys:
            try:
                self.store.delete(key)
                logger.info(f"[CACHE FORGET] {key}{f' ({reason})' if reason else ''}")
            except Exception as e:
                failed.append(key)
                logger.error(f"[CACHE FORGET] Failed to delete {key}: {e}")
        return failed
