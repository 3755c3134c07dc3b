# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Redis Connection Factory — The shared state store connection.

One pool per process, shared by the rate limiter, the response cache,
the worker registry and the job tracker. Connection errors surface as
redis exceptions and are mapped to StoreUnavailableError by SharedStore;
the retry below only covers stale pooled connections.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, TimeoutError
from redis.retry import Retry

from gpu_gateway.core.config import GatewaySettings, settings

logger = logging.getLogger("gateway.redis")

_pool: Optional[aioredis.Redis] = None

_USERINFO = re.compile(r"//[^/@]*@")


def redact_url(url: str) -> str:
    """
    Hide credentials in a connection URL.

    Example:
        redact_url("redis://:s3cret@db:6379/0") -> "redis://***@db:6379/0"
    """
    return _USERINFO.sub("//***@", url, count=1)


def pool_options(cfg: GatewaySettings) -> Dict[str, Any]:
    """Keyword arguments for `redis.asyncio.from_url`."""
    # Short backoff: a request waits on the store at most a few hundred ms
    # before the caller falls back (local rate limit, cache miss)
    retry = Retry(ExponentialBackoff(cap=0.5, base=0.05), retries=2)
    return {
        "decode_responses": True,
        "max_connections": cfg.REDIS_MAX_CONNECTIONS,
        "health_check_interval": 15,
        "retry_on_timeout": True,
        "retry_on_error": [ConnectionError, TimeoutError, BusyLoadingError, OSError],
        "retry": retry,
        "socket_connect_timeout": cfg.REDIS_SOCKET_TIMEOUT,
        "socket_timeout": cfg.REDIS_SOCKET_TIMEOUT,
        "socket_keepalive": True,
    }


async def get_redis_pool(cfg: Optional[GatewaySettings] = None) -> aioredis.Redis:
    """Return the process-wide async Redis client, creating it on first use."""
    global _pool
    if _pool is None:
        cfg = cfg or settings
        _pool = aioredis.from_url(cfg.REDIS_URL, **pool_options(cfg))
        logger.info(
            "Redis pool created for %s (max_connections=%d)",
            redact_url(cfg.REDIS_URL), cfg.REDIS_MAX_CONNECTIONS,
        )
    return _pool


async def close_redis_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
        logger.info("Redis pool closed")


def inject_redis_for_test(redis_instance: aioredis.Redis) -> None:
    """Inject a fake/mock Redis instance (for testing only)."""
    global _pool
    _pool = redis_instance
