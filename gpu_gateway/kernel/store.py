# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Shared State Store — Typed access to the Redis store shared with workers.

Values are JSON strings. Every Redis/network failure is surfaced as
StoreUnavailableError so callers can choose their own degraded mode.
Writes outside the `gateway:` namespace are refused: worker and job keys
are owned by other processes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, List, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError, ResponseError

from gpu_gateway.core.errors import StoreUnavailableError
from gpu_gateway.kernel.namespace import get_health_key, is_gateway_key

logger = logging.getLogger("gateway.store")

_STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class StoreScript:
    """An atomic Lua script bound to the store."""

    def __init__(self, store: SharedStore, script) -> None:
        self._store = store
        self._script = script

    async def __call__(self, keys: Sequence[str], args: Sequence[Any]) -> Any:
        for key in keys:
            self._store.check_writable(key)
        return await self._store._run(
            "script", keys[0] if keys else "",
            self._script(keys=list(keys), args=list(args)),
        )


class SharedStore:
    """
    Gateway view of the shared Redis store.

    Provides typed JSON get/set/delete, sorted-set helpers, Lua scripts
    and a transactional indexed write.
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    @property
    def redis(self) -> aioredis.Redis:
        return self._redis

    async def _run(self, operation: str, key: str, awaitable: Awaitable) -> Any:
        try:
            return await awaitable
        except ResponseError:
            # Command/script errors are programming errors, not outages
            raise
        except _STORE_ERRORS as exc:
            logger.debug("Store %s failed for '%s': %s", operation, key, exc)
            raise StoreUnavailableError(operation, key, exc) from exc

    @staticmethod
    def check_writable(key: str) -> None:
        if not is_gateway_key(key):
            raise ValueError(
                f"Key '{key}' is outside the gateway namespace and is read-only"
            )

    # ── JSON values ─────────────────────────────────────────────

    async def get_json(self, key: str) -> Any:
        """
        Read and decode a JSON value.

        Returns None if the key does not exist.
        Raises ValueError if the stored value is not valid JSON.
        """
        raw = await self._run("get", key, self._redis.get(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError(f"Malformed JSON at '{key}': {exc}") from exc

    async def set_json(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        """Write a JSON value, optionally with a TTL in milliseconds."""
        self.check_writable(key)
        payload = json.dumps(value, ensure_ascii=False)
        await self._run("set", key, self._redis.set(key, payload, px=ttl_ms))

    async def set_json_indexed(
        self,
        key: str,
        value: Any,
        ttl_ms: int,
        index_key: str,
        score: float,
    ) -> None:
        """
        Atomically write a JSON value and record it in a sorted-set index.

        Used for size-bounded collections (index score = insertion time).
        """
        self.check_writable(key)
        self.check_writable(index_key)
        payload = json.dumps(value, ensure_ascii=False)

        async def _tx():
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, payload, px=ttl_ms)
                pipe.zadd(index_key, {key: score})
                return await pipe.execute()

        await self._run("set_indexed", key, _tx())

    async def delete(self, *keys: str) -> int:
        for key in keys:
            self.check_writable(key)
        if not keys:
            return 0
        return await self._run("delete", keys[0], self._redis.delete(*keys))

    # ── Sorted sets ─────────────────────────────────────────────

    async def zcard(self, key: str) -> int:
        return await self._run("zcard", key, self._redis.zcard(key))

    async def zpopmin(self, key: str, count: int = 1) -> List[tuple]:
        """Pop the `count` lowest-scored members as (member, score) pairs."""
        self.check_writable(key)
        return await self._run("zpopmin", key, self._redis.zpopmin(key, count))

    async def zrem(self, key: str, *members: str) -> int:
        self.check_writable(key)
        if not members:
            return 0
        return await self._run("zrem", key, self._redis.zrem(key, *members))

    # ── Scripts ─────────────────────────────────────────────────

    def register_script(self, lua: str) -> StoreScript:
        """Register a Lua script for atomic read-modify-write."""
        return StoreScript(self, self._redis.register_script(lua))

    # ── Health ──────────────────────────────────────────────────

    async def ping(self) -> float:
        """Round-trip the health key. Returns latency in milliseconds."""
        start = time.perf_counter()
        key = get_health_key()
        await self._run("ping", key, self._redis.set(key, str(time.time()), ex=60))
        await self._run("ping", key, self._redis.get(key))
        return round((time.perf_counter() - start) * 1000, 2)
