# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
API Error Handling — Renders GatewayError as the unified error body.

    {"error": {"code": ..., "message": ..., "requestId": ..., "details": ...}}
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from gpu_gateway.core.errors import GatewayError


class WorkerNotFoundError(GatewayError):
    def __init__(self, worker_id: str, request_id: str = None):
        super().__init__(
            code="WORKER_NOT_FOUND",
            message=f"Worker '{worker_id}' not found",
            status_code=404,
            request_id=request_id,
        )


class JobNotFoundError(GatewayError):
    def __init__(self, job_id: str, request_id: str = None):
        super().__init__(
            code="JOB_NOT_FOUND",
            message=f"Job '{job_id}' not found",
            status_code=404,
            request_id=request_id,
        )


def error_response(exc: GatewayError, headers: Optional[Dict[str, Any]] = None) -> JSONResponse:
    merged = dict(exc.headers())
    merged["X-Request-ID"] = exc.request_id
    if headers:
        merged.update(headers)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=merged)


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Global exception handler for GatewayError."""
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        exc.request_id = request_id
    return error_response(exc)
