"""
Unit tests for the query cache.
"""

import asyncio

import pytest

from schoolgate.cache import QueryCache


class TestQueryCache:
    """Tests for QueryCache."""

    @pytest.fixture
    def cache(self):
        return QueryCache()

    def test_get_set(self, cache):
        cache.set(("students", 7), [1, 2])
        assert cache.get(("students", 7)) == [1, 2]
        assert cache.get(("students", 8)) is None

    def test_invalidate_prefix(self, cache):
        cache.set(("messages", 42, 7), ["m1"])
        cache.set(("messages", 43, 7), ["m2"])
        cache.set(("conversations", 7), ["c"])

        count = cache.invalidate("messages", 42)

        assert count == 1
        assert cache.get(("messages", 42, 7)) is None
        assert cache.get(("messages", 43, 7)) == ["m2"]
        assert cache.get(("conversations", 7)) == ["c"]

    def test_invalidate_resource(self, cache):
        cache.set(("messages", 42, 7), ["m1"])
        cache.set(("messages", 43, 7), ["m2"])
        assert cache.invalidate("messages") == 2

    def test_clear(self, cache):
        cache.set(("students", 7), [1])
        cache.clear()
        assert len(cache) == 0
        assert ("students", 7) not in cache

    @pytest.mark.asyncio
    async def test_fetch_caches(self, cache):
        calls = []

        async def loader():
            calls.append(1)
            return ["row"]

        assert await cache.fetch(("students", 7), loader) == ["row"]
        assert await cache.fetch(("students", 7), loader) == ["row"]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_fetch_after_invalidate_reloads(self, cache):
        calls = []

        async def loader():
            calls.append(1)
            return [len(calls)]

        await cache.fetch(("students", 7), loader)
        cache.invalidate("students")
        assert await cache.fetch(("students", 7), loader) == [2]

    @pytest.mark.asyncio
    async def test_fetch_spanning_clear_is_not_stored(self, cache):
        """A load that straddles a sign-out must not repopulate the cache."""
        gate = asyncio.Event()

        async def loader():
            await gate.wait()
            return ["tenant-a-row"]

        task = asyncio.create_task(cache.fetch(("students", 7), loader))
        await asyncio.sleep(0)
        cache.clear()
        gate.set()

        assert await task == ["tenant-a-row"]
        assert ("students", 7) not in cache
