# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Observability API — Health, metrics and effective configuration.

Served under the admin prefix, outside the admission pipeline.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gpu_gateway.api.deps import get_context
from gpu_gateway.core.context import GatewayContext

router = APIRouter(prefix="/gateway", tags=["observability"])


@router.get("/health")
async def health_check(ctx: GatewayContext = Depends(get_context)):
    """Component health; `status` is "ok" or "degraded"."""
    return await ctx.health()


@router.get("/metrics")
async def get_metrics(ctx: GatewayContext = Depends(get_context)):
    """Return current gateway metrics."""
    workers = ctx.worker_registry.get_worker_list()
    ctx.metrics.set_gauge("workers_online", workers.online)
    ctx.metrics.set_gauge("workers_busy", workers.busy)
    ctx.metrics.set_gauge("requests_in_flight", sum(ctx.router.stats().values()))
    ctx.metrics.set_gauge("jobs_tracked", ctx.job_tracker.tracked_jobs())

    snapshot = ctx.collector.snapshot()
    snapshot["router"] = {
        "strategy": ctx.router.strategy,
        "in_flight": ctx.router.stats(),
    }
    if ctx.cache is not None:
        snapshot["cache"] = {"entries": await ctx.cache.size(), "max_size": ctx.cache.max_size}
    return snapshot


@router.get("/config")
async def get_config(ctx: GatewayContext = Depends(get_context)):
    """Effective configuration with secrets masked."""
    return ctx.config_view()


@router.get("/health/detailed")
async def detailed_health_check(ctx: GatewayContext = Depends(get_context)):
    """Health plus backend reachability, loop state and installed stages."""
    return await ctx.health(detailed=True)
