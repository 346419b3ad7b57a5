"""Tests for caching functionality."""

import pytest
from httpx import AsyncClient

from freshintake.utils.cache import cache_key, cached, get_redis, invalidate_cache


@pytest.mark.unit
class TestCacheKey:

    def test_cache_key_generation(self):
        key1 = cache_key(limit=50, offset=0)
        key2 = cache_key(offset=0, limit=50)
        key3 = cache_key(limit=100, offset=0)

        # Same args = same key, whatever the order
        assert key1 == key2

        # Different args = different key
        assert key1 != key3

    def test_no_arguments(self):
        assert cache_key() == "default"


@pytest.mark.asyncio
class TestCacheFallback:

    async def test_runs_uncached_when_redis_unreachable(self, monkeypatch):
        """A dead Redis must not take the endpoint down with it."""
        from freshintake.utils import cache

        monkeypatch.setattr(cache.settings, "redis_url", "redis://127.0.0.1:1/0")
        await cache.close_redis()
        call_count = 0

        @cached(ttl=10, prefix="test_down")
        async def lookup(value: int = 0):
            nonlocal call_count
            call_count += 1
            return {"value": value}

        assert await lookup(value=1) == {"value": 1}
        assert await lookup(value=1) == {"value": 1}
        assert call_count == 2


@pytest.mark.cache
@pytest.mark.asyncio
class TestCacheUtility:

    async def test_get_redis(self, redis_client):
        client = await get_redis()
        assert await client.ping() is True

    async def test_cached_decorator(self, redis_client):
        call_count = 0

        @cached(ttl=10, prefix="test")
        async def expensive_function(arg1: int = 0, arg2: str = ""):
            nonlocal call_count
            call_count += 1
            return {"result": arg1 + len(arg2)}

        # First call - cache MISS
        assert await expensive_function(arg1=10, arg2="hello") == {"result": 15}
        assert call_count == 1

        # Second call - cache HIT (function not called again)
        assert await expensive_function(arg1=10, arg2="hello") == {"result": 15}
        assert call_count == 1

        # Different args - cache MISS
        assert await expensive_function(arg1=20, arg2="world") == {"result": 25}
        assert call_count == 2

    async def test_cache_invalidation(self, redis_client):
        await redis_client.set("test:func1:abc123", "value1")
        await redis_client.set("test:func2:def456", "value2")
        await redis_client.set("other:func:xyz789", "value3")

        await invalidate_cache("test:*")

        keys = [key async for key in redis_client.scan_iter(match="test:*")]
        assert keys == []
        assert await redis_client.get("other:func:xyz789") == "value3"

    async def test_cache_ttl(self, redis_client):
        @cached(ttl=1, prefix="test_ttl")
        async def fast_expiring():
            return {"value": "expires soon"}

        assert await fast_expiring() == {"value": "expires soon"}

        keys = [key async for key in redis_client.scan_iter(match="test_ttl:*")]
        assert len(keys) == 1
        ttl = await redis_client.ttl(keys[0])
        assert 0 < ttl <= 1

    async def test_pydantic_results_come_back_as_dicts(self, redis_client, tomato):
        @cached(ttl=10, prefix="test_pydantic")
        async def get_model():
            return tomato

        first = await get_model()
        assert first == tomato

        second = await get_model()
        assert second == {"id": "p-tomato", "name": "Tomato", "unit": "kg"}


@pytest.mark.cache
@pytest.mark.asyncio
class TestEndpointCaching:

    async def test_reference_lists_are_cached(self, client: AsyncClient, redis_client):
        resp1 = await client.get("/api/receiving/reference")
        assert resp1.status_code == 200

        keys = [key async for key in redis_client.scan_iter(match="reference:*")]
        assert len(keys) == 1

        resp2 = await client.get("/api/receiving/reference")
        assert resp2.json() == resp1.json()
