# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
GPU Gateway Application Entry Point.

FastAPI app with lifespan, middleware and all API routers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gpu_gateway.api.errors import gateway_error_handler
from gpu_gateway.api.jobs import router as jobs_router
from gpu_gateway.api.middleware import RequestIdMiddleware
from gpu_gateway.api.observability import router as observability_router
from gpu_gateway.api.proxy import router as proxy_router
from gpu_gateway.api.workers import admin_router as worker_admin_router
from gpu_gateway.api.workers import router as workers_router
from gpu_gateway.core.config import GATEWAY_VERSION, settings
from gpu_gateway.core.context import init_gateway_context
from gpu_gateway.core.errors import GatewayError
from gpu_gateway.core.logging import setup_logging
from gpu_gateway.kernel.redis_client import close_redis_pool, get_redis_pool

logger = logging.getLogger("gateway.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup/shutdown of gateway resources."""
    # Startup
    setup_logging(settings.LOG_LEVEL, environment=settings.GATEWAY_ENV)
    redis = await get_redis_pool(settings)
    ctx = init_gateway_context(redis, settings)
    await ctx.start()
    logger.info("[gateway] Ready (env=%s, strategy=%s)", settings.GATEWAY_ENV, settings.ROUTER_STRATEGY)
    yield
    # Shutdown
    await ctx.stop()
    await close_redis_pool()
    logger.info("[gateway] Shutdown complete")


app = FastAPI(
    title="GPU Gateway",
    description="Edge gateway for distributed GPU inference",
    version=GATEWAY_VERSION,
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(GatewayError, gateway_error_handler)

# ── Routes ──────────────────────────────────────────────────
# The worker list must be registered before the catch-all proxy
app.include_router(observability_router)
app.include_router(jobs_router)
app.include_router(worker_admin_router)
app.include_router(workers_router)
app.include_router(proxy_router)
