# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Response Cache — Shared cache of successful GET responses (priority 80).

Entries live at gateway:cache:{md5(method:path?sorted_query)} with a TTL
on the key, and freshness is checked again at read time against
`cached_at`. A sorted-set index (gateway:cache:keys, score = cached_at)
bounds the number of entries: past `max_size`, oldest go first.

The cache is an optimization only. Any store failure becomes a miss (on
read) or a no-op (on write); a request never fails because of it.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from gpu_gateway.core.errors import StoreUnavailableError
from gpu_gateway.core.request_context import RequestContext
from gpu_gateway.kernel.dispatcher import EventDispatcher, Subscription
from gpu_gateway.kernel.namespace import get_cache_index_key, get_cache_key
from gpu_gateway.kernel.store import SharedStore
from gpu_gateway.protocols.events import (
    CACHE_HIT,
    CACHE_MISS,
    CACHE_STORED,
    PRIORITY_CACHE,
    REQUEST_INCOMING,
)
from gpu_gateway.protocols.schema import CacheEntry, GatewayEvent

logger = logging.getLogger("gateway.cache")

CACHEABLE_METHODS = frozenset({"GET"})

# A mapping, or (name, value) pairs when a name may repeat
QueryParams = Union[Mapping[str, str], Sequence[Tuple[str, str]]]


def compute_cache_key(method: str, path: str, query: Optional[QueryParams] = None) -> str:
    """
    Deterministic cache key for a request.

    Parameter order does not matter across names:
        compute_cache_key("GET", "/m", {"b": "2", "a": "1"})
        == compute_cache_key("GET", "/m", {"a": "1", "b": "2"})
    Repeated names keep every value, in the order they were sent.
    """
    if query is None:
        pairs: List[Tuple[str, str]] = []
    elif isinstance(query, Mapping):
        pairs = list(query.items())
    else:
        pairs = list(query)
    # stable sort: values of a repeated name stay in request order
    pairs.sort(key=lambda kv: kv[0])
    query_string = "&".join(f"{k}={v}" for k, v in pairs)
    raw = f"{method.upper()}:{path}?{query_string}"
    return get_cache_key(hashlib.md5(raw.encode("utf-8")).hexdigest())


def _now_ms() -> float:
    return time.time() * 1000


class ResponseCache:
    """TTL + size bounded response cache on the shared store."""

    def __init__(
        self,
        store: SharedStore,
        dispatcher: EventDispatcher,
        ttl_seconds: int = 60,
        max_size: int = 1000,
        admin_prefix: str = "/gateway/",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._ttl_ms = ttl_seconds * 1000
        self._max_size = max_size
        self._admin_prefix = admin_prefix
        self._clock = clock or _now_ms
        self._subscriptions: List[Subscription] = []

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    @property
    def max_size(self) -> int:
        return self._max_size

    @staticmethod
    def is_cacheable(method: str) -> bool:
        return method.upper() in CACHEABLE_METHODS

    # ── Read ────────────────────────────────────────────────────

    async def fetch(
        self, method: str, path: str, query: Optional[QueryParams] = None,
    ) -> Optional[CacheEntry]:
        """
        Like `lookup`, but lets StoreUnavailableError through so the
        caller can tell an outage from a miss.
        """
        if not self.is_cacheable(method):
            return None

        key = compute_cache_key(method, path, query)
        try:
            raw = await self._store.get_json(key)
        except ValueError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Discarding invalid cache entry %s: %s", key, exc)
            return None

        if not entry.is_fresh(self._clock(), self._ttl_ms):
            return None
        return entry

    async def lookup(
        self, method: str, path: str, query: Optional[QueryParams] = None,
    ) -> Optional[CacheEntry]:
        """Fresh cached entry or None. Never raises on store failure."""
        try:
            return await self.fetch(method, path, query)
        except StoreUnavailableError as exc:
            logger.warning("Cache lookup failed, treating as miss: %s", exc)
            return None

    # ── Write ───────────────────────────────────────────────────

    async def store(
        self,
        method: str,
        path: str,
        query: Optional[QueryParams],
        entry: CacheEntry,
    ) -> bool:
        """
        Cache a response. Returns True if it was written.

        Only GET requests with a 2xx status are stored.
        """
        if not self.is_cacheable(method):
            return False
        if not 200 <= entry.status_code < 300:
            return False

        key = compute_cache_key(method, path, query)
        if not entry.cached_at:
            entry = entry.model_copy(update={"cached_at": self._clock()})

        try:
            await self._store.set_json_indexed(
                key,
                entry.model_dump(),
                ttl_ms=self._ttl_ms,
                index_key=get_cache_index_key(),
                score=entry.cached_at,
            )
            evicted = await self._evict_overflow()
        except StoreUnavailableError as exc:
            logger.warning("Cache store failed, skipping: %s", exc)
            return False

        if evicted:
            logger.debug("Evicted %d cache entries over max size %d", evicted, self._max_size)
        await self._dispatcher.emit(
            CACHE_STORED,
            {"key": key, "path": path, "status_code": entry.status_code},
            source="cache",
        )
        return True

    async def _evict_overflow(self) -> int:
        index_key = get_cache_index_key()
        overflow = await self._store.zcard(index_key) - self._max_size
        if overflow <= 0:
            return 0
        popped = await self._store.zpopmin(index_key, overflow)
        keys = [member for member, _score in popped]
        if keys:
            await self._store.delete(*keys)
        return len(keys)

    async def invalidate(
        self, method: str, path: str, query: Optional[QueryParams] = None,
    ) -> bool:
        """Drop one cached entry. Returns True if an entry was removed."""
        key = compute_cache_key(method, path, query)
        try:
            removed = await self._store.delete(key)
            await self._store.zrem(get_cache_index_key(), key)
        except StoreUnavailableError as exc:
            logger.warning("Cache invalidate failed for %s: %s", key, exc)
            return False
        return bool(removed)

    async def size(self) -> int:
        """Number of indexed entries (0 if the store is unreachable)."""
        try:
            return await self._store.zcard(get_cache_index_key())
        except StoreUnavailableError:
            return 0

    # ── Pipeline stage ──────────────────────────────────────────

    def install(self) -> None:
        self._subscriptions.append(
            self._dispatcher.subscribe(REQUEST_INCOMING, self.on_request, priority=PRIORITY_CACHE)
        )
        logger.info(
            "Response cache installed (ttl=%ds, max_size=%d)",
            self._ttl_ms // 1000, self._max_size,
        )

    def uninstall(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()

    async def on_request(self, event: GatewayEvent) -> None:
        ctx: RequestContext = event.payload
        if ctx.is_admin_path(self._admin_prefix):
            return

        if not self.is_cacheable(ctx.method):
            ctx.cache_status = "BYPASS"
            return

        payload: Dict[str, str] = {"request_id": ctx.request_id, "path": ctx.path}
        try:
            entry = await self.fetch(ctx.method, ctx.path, ctx.query_items())
        except StoreUnavailableError as exc:
            logger.warning("Cache unavailable, forwarding request: %s", exc, extra=ctx.log_extra())
            ctx.cache_status = "ERROR"
            return

        if entry is None:
            ctx.cache_status = "MISS"
            await self._dispatcher.emit(CACHE_MISS, payload, source="cache")
            return

        ctx.cache_status = "HIT"
        ctx.cached_response = entry
        event.cancel()
        await self._dispatcher.emit(CACHE_HIT, payload, source="cache")
