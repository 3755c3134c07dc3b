# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Gateway Context — Singleton that holds all core component references.

Initialized at startup, injected into API routes via FastAPI Depends.
Disabled features (auth, rate limiting, cache) are simply not built, so
their stages are never subscribed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
import redis.asyncio as aioredis

from gpu_gateway.admission.auth import AuthGuard
from gpu_gateway.admission.rate_limiter import RateLimitStage, SlidingWindowRateLimiter
from gpu_gateway.caching.response_cache import ResponseCache
from gpu_gateway.core.config import GATEWAY_VERSION, GatewaySettings
from gpu_gateway.core.errors import StoreUnavailableError
from gpu_gateway.core.metrics import GatewayMetricsCollector, Metrics
from gpu_gateway.kernel.dispatcher import EventDispatcher
from gpu_gateway.kernel.redis_client import redact_url
from gpu_gateway.kernel.store import SharedStore
from gpu_gateway.pipeline.orchestrator import PipelineStage, RequestPipeline
from gpu_gateway.routing.region import RegionResolver
from gpu_gateway.routing.router import BackendRouter, RouterStage
from gpu_gateway.runtime.forwarder import BackendForwarder
from gpu_gateway.runtime.signing import RequestSigner
from gpu_gateway.services.job_tracker import JobTracker
from gpu_gateway.services.worker_registry import WorkerRegistry

logger = logging.getLogger("gateway.context")

# Config fields never echoed back by /gateway/config
_SECRET_FIELDS = ("AUTH_TOKEN_SALT", "AUTH_API_KEYS", "REQUEST_SIGNING_SECRET")


class GatewayContext:
    """
    Holds all runtime references for the gateway.
    Created once at startup, used by all API handlers.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        settings: GatewaySettings,
        backend_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.redis = redis
        self.started_at = time.monotonic()
        self.settings = settings
        self.store = SharedStore(redis)
        self.dispatcher = EventDispatcher()
        self.metrics = Metrics()
        self.collector = GatewayMetricsCollector(self.dispatcher, self.metrics)
        admin_prefix = settings.ADMIN_PATH_PREFIX

        stages: List[PipelineStage] = []

        self.auth: Optional[AuthGuard] = None
        if settings.AUTH_ENABLED:
            self.auth = AuthGuard(
                self.dispatcher,
                token_salt=settings.AUTH_TOKEN_SALT,
                api_keys=settings.api_keys(),
                admin_prefix=admin_prefix,
            )
            stages.append(self.auth)

        self.rate_limiter: Optional[SlidingWindowRateLimiter] = None
        if settings.RATE_LIMIT_ENABLED:
            self.rate_limiter = SlidingWindowRateLimiter(
                self.store,
                window_ms=settings.RATE_LIMIT_WINDOW_MS,
                max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            )
            stages.append(RateLimitStage(self.dispatcher, self.rate_limiter, admin_prefix))

        self.cache: Optional[ResponseCache] = None
        if settings.CACHE_ENABLED:
            self.cache = ResponseCache(
                self.store,
                self.dispatcher,
                ttl_seconds=settings.CACHE_TTL_SECONDS,
                max_size=settings.CACHE_MAX_SIZE,
                admin_prefix=admin_prefix,
            )
            stages.append(self.cache)

        self.router = BackendRouter(
            settings.backend_targets(),
            strategy=settings.ROUTER_STRATEGY,
            resolver=RegionResolver(),
        )
        stages.append(RouterStage(self.dispatcher, self.router, admin_prefix))

        signer = None
        if settings.REQUEST_SIGNING_SECRET:
            signer = RequestSigner(
                settings.REQUEST_SIGNING_SECRET,
                algorithm=settings.REQUEST_SIGNING_ALGORITHM,
            )
        self.forwarder = BackendForwarder(
            timeout=settings.BACKEND_TIMEOUT,
            transport=backend_transport,
            signer=signer,
        )
        self.pipeline = RequestPipeline(
            self.dispatcher,
            self.router,
            self.forwarder,
            stages=stages,
            cache=self.cache,
        )

        self.worker_registry = WorkerRegistry(
            self.store,
            self.dispatcher,
            poll_interval=settings.WORKER_POLL_INTERVAL,
            offline_misses=settings.WORKER_OFFLINE_MISSES,
            stale_after=settings.WORKER_STALE_AFTER,
        )
        self.job_tracker = JobTracker(
            self.store,
            self.dispatcher,
            poll_interval=settings.JOB_POLL_INTERVAL,
            retention_seconds=settings.JOB_RETENTION_SECONDS,
        )

    # ── Lifecycle ───────────────────────────────────────────────

    def install(self) -> None:
        """Subscribe the metrics collector and every pipeline stage."""
        self.collector.install()
        self.pipeline.install()

    async def start(self, background: bool = True) -> None:
        """
        Subscribe all stages and start the reconciliation loops.

        With background=False the loops are not started (tests drive
        reconcile() by hand).
        """
        self.install()
        if background:
            await self.worker_registry.start()
            await self.job_tracker.start()
        logger.info(
            "Gateway context ready (stages=%d, backends=%d)",
            len(self.pipeline.stages), len(self.router.targets),
        )

    async def stop(self) -> None:
        await self.job_tracker.stop()
        await self.worker_registry.stop()
        self.pipeline.uninstall()
        self.collector.uninstall()
        await self.forwarder.close()

    # ── Health / config views ───────────────────────────────────

    async def health(self, detailed: bool = False) -> Dict[str, Any]:
        """
        Gateway health.

        "degraded" if the store is unreachable or the worker snapshot is
        stale; the gateway keeps serving either way. With detailed=True
        every backend is also checked for reachability (and any unhealthy
        backend degrades the status), and the reconciliation loops and
        installed stages are listed.
        """
        checks: Dict[str, Any] = {}
        status = "ok"

        try:
            latency = await self.store.ping()
            checks["redis"] = {"status": "connected", "latency_ms": latency}
        except StoreUnavailableError as exc:
            checks["redis"] = {"status": "unavailable", "error": str(exc.cause or exc)}
            status = "degraded"

        workers = self.worker_registry.summary()
        checks["workers"] = workers
        if workers["stale"]:
            status = "degraded"

        if self.rate_limiter is not None and self.rate_limiter.degraded:
            checks["rate_limiter"] = {"status": "degraded"}
            status = "degraded"

        checks["jobs"] = self.job_tracker.job_counts()

        report: Dict[str, Any] = {
            "status": status,
            "version": GATEWAY_VERSION,
            "environment": self.settings.GATEWAY_ENV,
            "checks": checks,
        }
        if not detailed:
            return report

        backends = await asyncio.gather(*(
            self.forwarder.check_reachability(
                target,
                path=self.settings.BACKEND_HEALTH_PATH,
                timeout=self.settings.BACKEND_HEALTH_TIMEOUT,
            )
            for target in self.router.targets
        ))
        checks["backends"] = list(backends)
        if any(b["status"] == "unhealthy" for b in backends):
            report["status"] = "degraded"

        report["uptime_seconds"] = round(time.monotonic() - self.started_at, 1)
        report["stages"] = [type(stage).__name__ for stage in self.pipeline.stages]
        report["loops"] = [
            self.worker_registry.loop_status(),
            self.job_tracker.loop_status(),
        ]
        report["request_signing"] = self.forwarder.signing_enabled
        return report

    def config_view(self) -> Dict[str, Any]:
        """Effective settings with secrets masked."""
        data = self.settings.model_dump()
        for name in _SECRET_FIELDS:
            if data.get(name):
                data[name] = "***"
        data["REDIS_URL"] = redact_url(data["REDIS_URL"])
        data["backends"] = [
            {"url": t.url, "region": t.region} for t in self.router.targets
        ]
        data["api_key_count"] = self.auth.api_key_count if self.auth else 0
        return data


# ── Global singleton ────────────────────────────────────────

_ctx: Optional[GatewayContext] = None


def init_gateway_context(
    redis: aioredis.Redis,
    settings: GatewaySettings,
    backend_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GatewayContext:
    global _ctx
    _ctx = GatewayContext(redis, settings, backend_transport=backend_transport)
    return _ctx


def get_gateway_context() -> GatewayContext:
    if _ctx is None:
        raise RuntimeError("GatewayContext not initialized. Call init_gateway_context() first.")
    return _ctx


def reset_gateway_context() -> None:
    """Drop the singleton (for testing only)."""
    global _ctx
    _ctx = None
