# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.
"""

from __future__ import annotations

from fastapi import Request

from gpu_gateway.core.context import GatewayContext, get_gateway_context


async def get_context() -> GatewayContext:
    return get_gateway_context()


async def get_request_id(request: Request) -> str:
    """Request id assigned by RequestIdMiddleware."""
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "")
