# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Backend Forwarder — HTTP client for the inference backend.

The backend is a black box: the request is relayed as-is (minus
hop-by-hop headers, query string untouched) and the response is returned
as-is, repeated headers included.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx

from gpu_gateway.core.config import BackendTarget
from gpu_gateway.core.errors import UpstreamUnreachableError
from gpu_gateway.core.request_context import RequestContext
from gpu_gateway.runtime.signing import RequestSigner

logger = logging.getLogger("gateway.forwarder")

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
})


# httpx hands back decoded bodies
DECODED_RESPONSE_HEADERS = frozenset({"content-encoding"})


def filter_headers(
    headers: Mapping[str, str], drop: frozenset = frozenset(),
) -> Dict[str, str]:
    return {
        k: v for k, v in headers.items()
        if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() not in drop
    }


def filter_response_headers(headers: httpx.Headers) -> httpx.Headers:
    """Like filter_headers, but keeps every value of a repeated header."""
    return httpx.Headers([
        (k, v) for k, v in headers.multi_items()
        if k not in HOP_BY_HOP_HEADERS and k not in DECODED_RESPONSE_HEADERS
    ])


@dataclass
class UpstreamResponse:
    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def text(self) -> Optional[str]:
        """Body as UTF-8 text, or None if it is not valid UTF-8."""
        try:
            return self.body.decode("utf-8")
        except UnicodeDecodeError:
            return None


class BackendForwarder:
    """Relays requests to a backend target over a shared httpx client."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        signer: Optional[RequestSigner] = None,
    ) -> None:
        self._timeout = timeout
        self._signer = signer
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def signing_enabled(self) -> bool:
        return self._signer is not None

    async def forward(self, target: BackendTarget, ctx: RequestContext) -> UpstreamResponse:
        """
        Send `ctx` to `target` and return the backend response.

        Raises UpstreamUnreachableError on connection failures and timeouts.
        Backend error statuses are returned, not raised.
        """
        url = target.url.rstrip("/") + ctx.original_url
        headers = filter_headers(ctx.headers)
        headers["x-request-id"] = ctx.request_id
        headers["x-forwarded-for"] = ctx.client_ip
        if self._signer is not None:
            headers.update(self._signer.headers(ctx.method, ctx.original_url))

        logger.debug("Forwarding %s %s -> %s", ctx.method, ctx.path, target.url, extra=ctx.log_extra())
        try:
            resp = await self._client.request(
                ctx.method,
                url,
                headers=headers,
                content=ctx.body,
            )
        except httpx.HTTPError as e:
            logger.error("Backend call failed: %s: %s", target.url, e, extra=ctx.log_extra())
            raise UpstreamUnreachableError(
                target.url, reason=type(e).__name__, request_id=ctx.request_id,
            ) from e

        return UpstreamResponse(
            status_code=resp.status_code,
            headers=filter_response_headers(resp.headers),
            body=resp.content,
        )

    async def check_reachability(self, target: BackendTarget, path: str = "/docs", timeout: float = 5.0) -> Dict[str, Any]:
        """
        Reachability check for one backend.

        "healthy" on 2xx, "degraded" on any other status, "unhealthy" (with
        latency_ms -1) when the backend cannot be reached.
        """
        url = target.url.rstrip("/") + path
        start = time.perf_counter()
        try:
            resp = await self._client.get(url, timeout=timeout)
        except httpx.HTTPError as e:
            logger.warning("Backend health check failed: %s: %s", target.url, e, extra={"target": target.url})
            return {"status": "unhealthy", "latency_ms": -1, "url": target.url}
        return {
            "status": "healthy" if resp.is_success else "degraded",
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "url": target.url,
        }

    async def close(self) -> None:
        await self._client.aclose()
