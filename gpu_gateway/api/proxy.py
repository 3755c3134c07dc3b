# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Proxy API — Catch-all route that runs the request pipeline.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from gpu_gateway.api.deps import get_context, get_request_id
from gpu_gateway.core.context import GatewayContext
from gpu_gateway.core.request_context import RequestContext

router = APIRouter(tags=["proxy"])

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


async def build_request_context(request: Request, request_id: str) -> RequestContext:
    body = await request.body()
    return RequestContext(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        query=dict(request.query_params),
        query_string=request.url.query,
        body=body or None,
        client_ip=request.client.host if request.client else "unknown",
        request_id=request_id,
    )


@router.api_route("/api/v1/{path:path}", methods=PROXY_METHODS)
async def proxy(
    request: Request,
    path: str,
    ctx: GatewayContext = Depends(get_context),
    request_id: str = Depends(get_request_id),
):
    req_ctx = await build_request_context(request, request_id)
    result = await ctx.pipeline.handle(req_ctx)
    response = Response(content=result.body, status_code=result.status_code)
    # One header line per value; Set-Cookie must never be comma-joined
    for name, value in result.headers.multi_items():
        response.headers.append(name, value)
    return response
