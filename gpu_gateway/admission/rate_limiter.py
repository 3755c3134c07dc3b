# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Sliding-Window Rate Limiter — Atomic admission control per client key.

Each client key owns a Redis sorted set of request timestamps (ms):
    gateway:ratelimit:{client_key}

The trim/count/append sequence runs as one Lua script, so concurrent
checks for the same key (from any gateway instance) serialize in Redis
and can never both pass on a stale count.

If Redis is unreachable the limiter falls back to a process-local
fixed-window counter. That state is NOT shared between gateway instances,
so the effective limit under a store outage is per instance.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from gpu_gateway.core.errors import AdmissionRejectedError, StoreUnavailableError
from gpu_gateway.core.request_context import RateLimitInfo, RequestContext
from gpu_gateway.kernel.dispatcher import EventDispatcher, Subscription
from gpu_gateway.kernel.namespace import get_ratelimit_key
from gpu_gateway.kernel.store import SharedStore
from gpu_gateway.protocols.events import (
    PRIORITY_RATE_LIMIT,
    RATELIMIT_ALLOWED,
    RATELIMIT_EXCEEDED,
    REQUEST_INCOMING,
)
from gpu_gateway.protocols.schema import GatewayEvent

logger = logging.getLogger("gateway.rate_limiter")

KEY_TTL_MARGIN_MS = 1000

# KEYS[1] = window key
# ARGV = now_ms, window_ms, max_requests, member, ttl_ms
# Returns {allowed(0/1), count, anchor_ms}; anchor is `now` when admitted,
# the oldest retained timestamp when rejected.
_LUA_SLIDING_WINDOW = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)

if count >= limit then
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    return {0, count, oldest[2]}
end

redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, tonumber(ARGV[5]))
return {1, count + 1, tostring(now)}
"""


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    reset_at: float  # epoch ms
    limit: int
    degraded: bool = False

    def retry_after_seconds(self, now_ms: float) -> float:
        return max(0.0, (self.reset_at - now_ms) / 1000)


@dataclass
class _FixedWindow:
    window_start: float
    count: int = 0


class SlidingWindowRateLimiter:
    """
    Admission control keyed by client identity.

    `clock` returns the current time in epoch milliseconds; tests inject
    a fake one.
    """

    def __init__(
        self,
        store: SharedStore,
        window_ms: int = 60000,
        max_requests: int = 100,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._store = store
        self._window_ms = window_ms
        self._max_requests = max_requests
        self._clock = clock or _now_ms
        self._script = store.register_script(_LUA_SLIDING_WINDOW)
        self._fallback: Dict[str, _FixedWindow] = {}
        self._current_window: Optional[float] = None
        self._degraded = False

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def now_ms(self) -> float:
        return self._clock()

    @property
    def degraded(self) -> bool:
        """True while the last check used the local fallback."""
        return self._degraded

    async def check_and_admit(self, client_key: str) -> RateDecision:
        """Admit or reject one request for `client_key`."""
        now = self._clock()
        try:
            decision = await self._check_shared(client_key, now)
        except StoreUnavailableError as exc:
            if not self._degraded:
                logger.warning(
                    "Rate limiter degraded: store unavailable, using local counters (%s)", exc,
                )
            self._degraded = True
            return self._check_local(client_key, now)

        if self._degraded:
            logger.info("Rate limiter recovered: shared store reachable again")
            self._degraded = False
            self._fallback.clear()
        return decision

    async def _check_shared(self, client_key: str, now: float) -> RateDecision:
        member = f"{int(now)}-{uuid.uuid4().hex[:12]}"
        allowed, count, anchor = await self._script(
            keys=[get_ratelimit_key(client_key)],
            args=[
                int(now),
                self._window_ms,
                self._max_requests,
                member,
                self._window_ms + KEY_TTL_MARGIN_MS,
            ],
        )
        allowed = int(allowed) == 1
        count = int(count)
        anchor = float(anchor)

        if not allowed:
            return RateDecision(
                allowed=False,
                remaining=0,
                reset_at=anchor + self._window_ms,
                limit=self._max_requests,
            )
        return RateDecision(
            allowed=True,
            remaining=self._max_requests - count,
            reset_at=anchor + self._window_ms,
            limit=self._max_requests,
        )

    def _check_local(self, client_key: str, now: float) -> RateDecision:
        """Fixed-window fallback; windows are aligned to multiples of window_ms."""
        window_start = now - (now % self._window_ms)
        if window_start != self._current_window:
            self._current_window = window_start
            self.prune_fallback()
        entry = self._fallback.get(client_key)
        if entry is None or entry.window_start != window_start:
            entry = _FixedWindow(window_start=window_start)
            self._fallback[client_key] = entry

        reset_at = entry.window_start + self._window_ms
        if entry.count >= self._max_requests:
            return RateDecision(
                allowed=False, remaining=0, reset_at=reset_at,
                limit=self._max_requests, degraded=True,
            )

        entry.count += 1
        return RateDecision(
            allowed=True,
            remaining=self._max_requests - entry.count,
            reset_at=reset_at,
            limit=self._max_requests,
            degraded=True,
        )

    def prune_fallback(self) -> int:
        """Drop local counters from past windows. Returns number removed."""
        now = self._clock()
        current = now - (now % self._window_ms)
        stale = [k for k, e in self._fallback.items() if e.window_start < current]
        for key in stale:
            del self._fallback[key]
        return len(stale)


class RateLimitStage:
    """Pipeline stage (priority 90) wrapping the limiter."""

    def __init__(
        self,
        dispatcher: EventDispatcher,
        limiter: SlidingWindowRateLimiter,
        admin_prefix: str = "/gateway/",
    ) -> None:
        self._dispatcher = dispatcher
        self._limiter = limiter
        self._admin_prefix = admin_prefix
        self._subscriptions: List[Subscription] = []

    @property
    def limiter(self) -> SlidingWindowRateLimiter:
        return self._limiter

    def install(self) -> None:
        self._subscriptions.append(
            self._dispatcher.subscribe(
                REQUEST_INCOMING, self.on_request, priority=PRIORITY_RATE_LIMIT,
            )
        )
        logger.info(
            "Rate limiter installed (%d req / %dms)",
            self._limiter.max_requests, self._limiter.window_ms,
        )

    def uninstall(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()

    async def on_request(self, event: GatewayEvent) -> None:
        ctx: RequestContext = event.payload
        if ctx.is_admin_path(self._admin_prefix):
            return

        client_key = ctx.client_key
        decision = await self._limiter.check_and_admit(client_key)
        ctx.rate_limit = RateLimitInfo(
            limit=decision.limit,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
            degraded=decision.degraded,
        )

        if not decision.allowed:
            retry_after = decision.retry_after_seconds(self._limiter.now_ms())
            ctx.rejection = AdmissionRejectedError(retry_after, request_id=ctx.request_id)
            event.cancel()
            logger.info("Rate limit exceeded", extra=ctx.log_extra())
            await self._dispatcher.emit(
                RATELIMIT_EXCEEDED,
                {"request_id": ctx.request_id, "client_key": client_key},
                source="rate_limiter",
            )
            return

        await self._dispatcher.emit(
            RATELIMIT_ALLOWED,
            {"request_id": ctx.request_id, "remaining": decision.remaining},
            source="rate_limiter",
        )
