# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Backend Router — Picks the forwarding target for each request (priority 70).

Strategies:
  round-robin        : rotate through targets
  least-connections  : fewest in-flight requests on this instance
  region-affinity    : closest target to the client region, falling back
                       to round-robin without a usable hint
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Sequence

from gpu_gateway.core.config import ROUTER_STRATEGIES, BackendTarget
from gpu_gateway.core.request_context import RequestContext
from gpu_gateway.kernel.dispatcher import EventDispatcher, Subscription
from gpu_gateway.protocols.events import PRIORITY_ROUTER, REQUEST_INCOMING, ROUTER_SELECTED
from gpu_gateway.protocols.schema import GatewayEvent
from gpu_gateway.routing.region import DEFAULT_DISTANCE, RegionResolver

logger = logging.getLogger("gateway.router")


class BackendRouter:
    """Target selection plus in-flight accounting."""

    def __init__(
        self,
        targets: Sequence[BackendTarget],
        strategy: str = "round-robin",
        resolver: Optional[RegionResolver] = None,
    ) -> None:
        if not targets:
            raise ValueError("At least one backend target is required")
        if strategy not in ROUTER_STRATEGIES:
            raise ValueError(f"Unknown router strategy '{strategy}'")
        self._targets: List[BackendTarget] = list(targets)
        self._strategy = strategy
        self._resolver = resolver or RegionResolver()
        self._lock = threading.Lock()
        self._rr_index = 0
        self._in_flight: Dict[BackendTarget, int] = {t: 0 for t in self._targets}

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def targets(self) -> List[BackendTarget]:
        return list(self._targets)

    @property
    def resolver(self) -> RegionResolver:
        return self._resolver

    def in_flight(self, target: BackendTarget) -> int:
        return self._in_flight.get(target, 0)

    # ── Selection ───────────────────────────────────────────────

    def select_target(self, client_region: Optional[str] = None) -> BackendTarget:
        if len(self._targets) == 1:
            return self._targets[0]

        if self._strategy == "least-connections":
            return self._select_least_connections()
        if self._strategy == "region-affinity":
            return self._select_by_region(client_region) or self._select_round_robin()
        return self._select_round_robin()

    def _select_round_robin(self) -> BackendTarget:
        with self._lock:
            target = self._targets[self._rr_index % len(self._targets)]
            self._rr_index += 1
        return target

    def _select_least_connections(self) -> BackendTarget:
        with self._lock:
            # min() keeps the first target on ties
            return min(self._targets, key=lambda t: self._in_flight.get(t, 0))

    def _select_by_region(self, client_region: Optional[str]) -> Optional[BackendTarget]:
        if not client_region:
            return None
        best: Optional[BackendTarget] = None
        best_distance = DEFAULT_DISTANCE
        for target in self._targets:
            if not target.region:
                continue
            distance = self._resolver.get_distance(client_region, target.region)
            if distance < best_distance:
                best, best_distance = target, distance
        return best

    # ── In-flight accounting ────────────────────────────────────

    def acquire(self, target: BackendTarget) -> None:
        with self._lock:
            self._in_flight[target] = self._in_flight.get(target, 0) + 1

    def release(self, target: BackendTarget) -> None:
        with self._lock:
            current = self._in_flight.get(target, 0)
            self._in_flight[target] = max(0, current - 1)

    @asynccontextmanager
    async def track(self, target: BackendTarget) -> AsyncIterator[BackendTarget]:
        """Count `target` as in flight for the duration of the block."""
        self.acquire(target)
        try:
            yield target
        finally:
            self.release(target)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {t.url: n for t, n in self._in_flight.items()}


class RouterStage:
    """Pipeline stage that writes ctx.client_region and ctx.target."""

    def __init__(
        self,
        dispatcher: EventDispatcher,
        router: BackendRouter,
        admin_prefix: str = "/gateway/",
    ) -> None:
        self._dispatcher = dispatcher
        self._router = router
        self._admin_prefix = admin_prefix
        self._subscriptions: List[Subscription] = []

    @property
    def router(self) -> BackendRouter:
        return self._router

    def install(self) -> None:
        self._subscriptions.append(
            self._dispatcher.subscribe(REQUEST_INCOMING, self.on_request, priority=PRIORITY_ROUTER)
        )
        logger.info(
            "Router installed (strategy=%s, backends=%d)",
            self._router.strategy, len(self._router.targets),
        )

    def uninstall(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()

    async def on_request(self, event: GatewayEvent) -> None:
        ctx: RequestContext = event.payload
        if ctx.is_admin_path(self._admin_prefix):
            return

        ctx.client_region = self._router.resolver.resolve_client_region(ctx.headers)
        ctx.target = self._router.select_target(ctx.client_region)

        await self._dispatcher.emit(
            ROUTER_SELECTED,
            {
                "request_id": ctx.request_id,
                "target": ctx.target.url,
                "strategy": self._router.strategy,
                "client_region": ctx.client_region,
            },
            source="router",
        )
