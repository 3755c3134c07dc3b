# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.
"""Unit tests for SharedStore."""

import pytest

from gpu_gateway.core.errors import StoreUnavailableError
from gpu_gateway.kernel.store import SharedStore


class TestSharedStoreJson:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get_json("gateway:nothing") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        await store.set_json("gateway:test:a", {"x": [1, 2]})
        assert await store.get_json("gateway:test:a") == {"x": [1, 2]}

    @pytest.mark.asyncio
    async def test_set_with_ttl(self, store, mock_redis):
        await store.set_json("gateway:test:ttl", 1, ttl_ms=5000)
        ttl = await mock_redis.pttl("gateway:test:ttl")
        assert 0 < ttl <= 5000

    @pytest.mark.asyncio
    async def test_read_external_key(self, store, seed_json):
        await seed_json("worker:index", ["w-1"])
        assert await store.get_json("worker:index") == ["w-1"]

    @pytest.mark.asyncio
    async def test_malformed_json_raises_value_error(self, store, mock_redis):
        await mock_redis.set("worker:index", "{not json")
        with pytest.raises(ValueError):
            await store.get_json("worker:index")


class TestNamespaceGuard:
    @pytest.mark.asyncio
    async def test_refuses_worker_keys(self, store):
        with pytest.raises(ValueError):
            await store.set_json("worker:w-1:status", {})

    @pytest.mark.asyncio
    async def test_refuses_queue_keys(self, store):
        with pytest.raises(ValueError):
            await store.delete("queue:job:j-1")

    @pytest.mark.asyncio
    async def test_refuses_script_keys(self, store):
        script = store.register_script("return 1")
        with pytest.raises(ValueError):
            await script(keys=["worker:index"], args=[])


class TestIndexedWrites:
    @pytest.mark.asyncio
    async def test_set_json_indexed(self, store, mock_redis):
        await store.set_json_indexed(
            "gateway:cache:k1", {"v": 1}, ttl_ms=10_000,
            index_key="gateway:cache:keys", score=100,
        )
        assert await store.get_json("gateway:cache:k1") == {"v": 1}
        assert await store.zcard("gateway:cache:keys") == 1
        assert await mock_redis.zscore("gateway:cache:keys", "gateway:cache:k1") == 100

    @pytest.mark.asyncio
    async def test_zpopmin_and_zrem(self, store, mock_redis):
        await mock_redis.zadd("gateway:z", {"a": 1, "b": 2, "c": 3})
        popped = await store.zpopmin("gateway:z", 2)
        assert [m for m, _ in popped] == ["a", "b"]
        assert await store.zrem("gateway:z", "c") == 1
        assert await store.zcard("gateway:z") == 0


class TestOutages:
    @pytest.mark.asyncio
    async def test_unavailable_store_raises(self, store, fake_server):
        fake_server.connected = False
        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.get_json("gateway:x")
        assert exc_info.value.operation == "get"
        assert exc_info.value.key == "gateway:x"

    @pytest.mark.asyncio
    async def test_script_unavailable(self, store, fake_server):
        script = store.register_script("return 1")
        fake_server.connected = False
        with pytest.raises(StoreUnavailableError):
            await script(keys=["gateway:x"], args=[])

    @pytest.mark.asyncio
    async def test_ping(self, store, fake_server):
        latency = await store.ping()
        assert latency >= 0
        fake_server.connected = False
        with pytest.raises(StoreUnavailableError):
            await store.ping()
