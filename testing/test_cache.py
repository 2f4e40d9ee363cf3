"""Tests for cache stores, reply memoization and derived-view invalidation."""

import asyncio

import pytest

from kardia_engine.cache import ReplyMemoizer, ViewCache, keys
from kardia_engine.cache.store import CacheStore, InMemoryCacheStore, RedisCacheStore, create_cache_store
from kardia_engine.config.models import CacheConfig
from kardia_engine.models.reply import CanonicalReply


class TestInMemoryCacheStore:

    def test_entry_is_served_until_ttl_then_dropped(self, cache, clock):
        cache.set("k", b"v", ttl=10)

        clock.advance(9.9)
        assert cache.get("k") == b"v"

        clock.advance(0.1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_delete_and_contains(self, cache):
        cache.set("k", b"v", ttl=10)
        assert "k" in cache

        cache.delete("k")
        cache.delete("never-set")
        assert "k" not in cache

    def test_rejects_non_positive_ttl(self, cache):
        with pytest.raises(ValueError):
            cache.set("k", b"v", ttl=0)

    def test_satisfies_protocol(self, cache):
        assert isinstance(cache, CacheStore)


class TestKeys:

    def test_reply_key_ignores_whitespace_differences(self):
        assert keys.reply_key("c1", "  How is   my\nrisk? ") == keys.reply_key("c1", "How is my risk?")

    def test_reply_key_depends_on_conversation_and_text(self):
        base = keys.reply_key("c1", "hello")
        assert keys.reply_key("c2", "hello") != base
        assert keys.reply_key("c1", "Hello") != base
        assert base.startswith("reply:conv:c1:")

    def test_conversation_dependents_are_detail_and_owner_list(self):
        assert keys.conversation_dependents("u1", "c1") == [
            "view:conversation:c1:details",
            "view:user:u1:conversations_list",
        ]

    def test_assessment_dependents_are_digest_and_dashboard(self):
        assert set(keys.assessment_dependents("u1")) == {
            keys.recent_assessments_key("u1"),
            keys.dashboard_key("u1"),
        }


REPLY = CanonicalReply.of_paragraphs("cached answer")


class TestReplyMemoizer:

    def test_miss_computes_and_hit_reuses(self, cache):
        memo = ReplyMemoizer(cache, ttl_seconds=3600)
        calls = []

        async def compute():
            calls.append(1)
            return REPLY

        async def scenario():
            first = await memo.remember("reply:conv:c1:x", compute)
            second = await memo.remember("reply:conv:c1:x", compute)
            return first, second

        (reply1, hit1), (reply2, hit2) = asyncio.run(scenario())

        assert len(calls) == 1
        assert (hit1, hit2) == (False, True)
        assert reply1 == reply2 == REPLY

    def test_expired_entry_is_recomputed(self, cache, clock):
        memo = ReplyMemoizer(cache, ttl_seconds=3600)
        calls = []

        async def compute():
            calls.append(1)
            return REPLY

        asyncio.run(memo.remember("k", compute))
        clock.advance(3601)
        _, hit = asyncio.run(memo.remember("k", compute))

        assert hit is False
        assert len(calls) == 2

    def test_failed_compute_is_not_stored(self, cache):
        memo = ReplyMemoizer(cache)

        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(memo.remember("k", failing))
        assert memo.get("k") is None

    def test_unreadable_entry_is_dropped(self, cache):
        cache.set("k", b"{not json", ttl=60)
        memo = ReplyMemoizer(cache)

        assert memo.get("k") is None
        assert "k" not in cache

    def test_concurrent_misses_may_both_compute_without_single_flight(self, cache):
        memo = ReplyMemoizer(cache, single_flight=False)
        calls = []

        async def scenario():
            gate = asyncio.Event()

            async def compute():
                calls.append(1)
                await gate.wait()
                return REPLY

            tasks = [asyncio.create_task(memo.remember("k", compute)) for _ in range(2)]
            await asyncio.sleep(0)
            gate.set()
            return await asyncio.gather(*tasks)

        results = asyncio.run(scenario())

        assert len(calls) == 2
        assert all(reply == REPLY for reply, _ in results)
        assert memo.get("k") == REPLY

    def test_single_flight_shares_one_computation(self, cache):
        memo = ReplyMemoizer(cache, single_flight=True)
        calls = []

        async def scenario():
            gate = asyncio.Event()

            async def compute():
                calls.append(1)
                await gate.wait()
                return REPLY

            tasks = [asyncio.create_task(memo.remember("k", compute)) for _ in range(3)]
            await asyncio.sleep(0)
            gate.set()
            return await asyncio.gather(*tasks)

        results = asyncio.run(scenario())

        assert len(calls) == 1
        assert [hit for _, hit in results] == [False, True, True]

    def test_single_flight_followers_recompute_when_leader_is_cancelled(self, cache):
        memo = ReplyMemoizer(cache, single_flight=True)
        calls = []

        async def scenario():
            leader_started = asyncio.Event()

            async def slow():
                calls.append("leader")
                leader_started.set()
                await asyncio.sleep(10)
                return REPLY

            async def fast():
                calls.append("follower")
                return REPLY

            leader = asyncio.create_task(memo.remember("k", slow))
            await leader_started.wait()
            follower = asyncio.create_task(memo.remember("k", fast))
            await asyncio.sleep(0)
            leader.cancel()
            with pytest.raises(asyncio.CancelledError):
                await leader
            return await follower

        reply, hit = asyncio.run(scenario())

        assert reply == REPLY
        assert hit is False
        assert calls == ["leader", "follower"]


class BrokenDeleteStore(InMemoryCacheStore):
    def delete(self, key: str) -> None:
        raise ConnectionError("cache unavailable")


class TestViewCache:

    def test_remember_loads_once_within_ttl(self, cache, clock):
        views = ViewCache(cache)
        loads = []

        def loader():
            loads.append(1)
            return {"items": [1, 2]}

        assert views.remember("view:x", 60, loader) == {"items": [1, 2]}
        assert views.remember("view:x", 60, loader) == {"items": [1, 2]}
        assert len(loads) == 1

        clock.advance(61)
        views.remember("view:x", 60, loader)
        assert len(loads) == 2

    def test_invalidate_deletes_every_key(self, cache):
        views = ViewCache(cache)
        for key in keys.conversation_dependents("u1", "c1"):
            cache.set(key, b"[]", ttl=60)

        failed = views.invalidate(keys.conversation_dependents("u1", "c1"), reason="test")

        assert failed == []
        assert len(cache) == 0

    def test_invalidate_failure_is_reported_not_raised(self):
        views = ViewCache(BrokenDeleteStore())

        failed = views.invalidate(["view:a", "view:b"])

        assert failed == ["view:a", "view:b"]


class FakeRedis:
    """Records the redis-py calls RedisCacheStore makes."""

    def __init__(self):
        self.data = {}
        self.calls = []

    def get(self, key):
        self.calls.append(("get", key))
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.calls.append(("setex", key, ttl))
        self.data[key] = value

    def delete(self, key):
        self.calls.append(("delete", key))
        self.data.pop(key, None)


class TestRedisCacheStore:

    def test_maps_operations_to_redis_commands(self):
        client = FakeRedis()
        store = RedisCacheStore(client)

        store.set("k", b"v", ttl=30)
        assert store.get("k") == b"v"
        store.delete("k")

        assert client.calls == [("setex", "k", 30), ("get", "k"), ("delete", "k")]
        assert isinstance(store, CacheStore)

    def test_factory_selects_backend(self):
        assert isinstance(create_cache_store(CacheConfig()), InMemoryCacheStore)
        assert isinstance(
            create_cache_store(CacheConfig(backend="redis", redis_url="redis://localhost:6379/3")),
            RedisCacheStore,
        )
