"""
Reply memoization.

Maps a (conversation, user message) fingerprint to a previously computed
CanonicalReply for a TTL window. This is a best-effort optimization: two
concurrent misses may both compute, and the later write simply overwrites
the earlier one. With ``single_flight`` enabled, concurrent misses on the
same key within one process share the first caller's computation.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from kardia_engine.cache.store import CacheStore
from kardia_engine.models.reply import CanonicalReply

logger = logging.getLogger(__name__)


class _LeaderAbandoned(Exception):
    """The caller computing a shared key was cancelled before finishing."""


class ReplyMemoizer:
    """TTL-bound memo of CanonicalReply values keyed by request fingerprint."""

    def __init__(self, store: CacheStore, ttl_seconds: int = 3600, single_flight: bool = False):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.single_flight = single_flight
        self._inflight: Dict[str, asyncio.Future] = {}

    def get(self, key: str) -> Optional[CanonicalReply]:
        try:
            raw = self.store.get(key)
        except Exception as e:
            logger.warning(f"[CACHE] Read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return CanonicalReply.from_json(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"[CACHE] Dropping unreadable memo entry {key}: {e}")
            self._safe_delete(key)
            return None

    def put(self, key: str, reply: CanonicalReply) -> None:
        try:
            self.store.set(key, reply.to_json().encode("utf-8"), self.ttl_seconds)
        except Exception as e:
            # A lost write only costs a future external call
            logger.warning(f"[CACHE] Write failed for {key}: {e}")

    async def remember(
        self,
        key: str,
        compute: Callable[[], Awaitable[CanonicalReply]],
    ) -> Tuple[CanonicalReply, bool]:
        """
        Return ``(reply, hit)``.

        On a miss ``compute`` runs and its result is stored; exceptions from
        ``compute`` propagate and nothing is stored.
        """
        cached = self.get(key)
        if cached is not None:
            logger.info(f"[CACHE HIT] {key}")
            return cached, True

        if not self.single_flight:
            return await self._compute_and_store(key, compute), False

        pending = self._inflight.get(key)
        if pending is not None:
            logger.info(f"[CACHE WAIT] Joining in-flight computation for {key}")
            try:
                return await asyncio.shield(pending), True
            except _LeaderAbandoned:
                return await self._compute_and_store(key, compute), False

        future = asyncio.get_running_loop().create_future()
        # Mark any exception as retrieved so unattended failures are not reported at GC
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._inflight[key] = future
        try:
            reply = await self._compute_and_store(key, compute)
        except asyncio.CancelledError:
            future.set_exception(_LeaderAbandoned(key))
            raise
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(reply)
            return reply, False
        finally:
            self._inflight.pop(key, None)

    async def _compute_and_store(
        self,
        key: str,
        compute: Callable[[], Awaitable[CanonicalReply]],
    ) -> CanonicalReply:
        logger.info(f"[CACHE MISS] Computing reply for {key}")
        reply = await compute()
        self.put(key, reply)
        return reply

    def _safe_delete(self, key: str) -> None:
        try:
            self.store.delete(key)
        except Exception as e:
            logger.warning(f"[CACHE] Delete failed for {key}: {e}")
