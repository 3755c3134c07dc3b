# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
API Middleware — Request id propagation and access logging.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("gateway.api")

MAX_REQUEST_ID_LENGTH = 128

# Polled by load balancers; logged at DEBUG
QUIET_PATHS = frozenset({"/gateway/health"})


def resolve_request_id(value: str | None) -> str:
    """Caller-supplied X-Request-ID if usable, else a fresh UUID."""
    if value and len(value) <= MAX_REQUEST_ID_LENGTH and value.isprintable():
        return value
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns every request an id (propagating the caller's X-Request-ID),
    echoes it on the response and logs the request duration.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get("X-Request-ID"))
        request.state.request_id = request_id

        start = time.time()
        response: Response = await call_next(request)
        elapsed = (time.time() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            "[api] %s %s -> %d (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed,
            extra={"request_id": request_id},
        )
        return response
