# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Request Pipeline — Runs one inbound request through admission and forwarding.

Flow:
  1. Publish `request:incoming` with the RequestContext as payload.
     Stages (auth 100, rate limit 90, cache 80, router 70) run in order;
     any may cancel.
  2. Cancelled -> respond from ctx.rejection (4xx) or ctx.cached_response.
     Otherwise forward to ctx.target, counting it in flight, and store
     cacheable successes.
  3. Publish `request:completed` and attach gateway headers.

The transport (FastAPI route) only builds the context and renders the
PipelineResult.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

import httpx

from gpu_gateway.core.config import GATEWAY_VERSION
from gpu_gateway.core.errors import GatewayError, UpstreamUnreachableError
from gpu_gateway.core.request_context import RequestContext
from gpu_gateway.caching.response_cache import ResponseCache
from gpu_gateway.kernel.dispatcher import DispatchReport, EventDispatcher
from gpu_gateway.protocols.events import REQUEST_COMPLETED, REQUEST_INCOMING
from gpu_gateway.protocols.schema import CacheEntry, GatewayEvent
from gpu_gateway.routing.router import BackendRouter
from gpu_gateway.runtime.forwarder import BackendForwarder

logger = logging.getLogger("gateway.pipeline")

# Response headers that belong to one client and are never replayed from cache
PER_CLIENT_HEADERS = frozenset({
    "set-cookie",
    "set-cookie2",
    "www-authenticate",
    "x-request-id",
})


class PipelineStage(Protocol):
    def install(self) -> None: ...

    def uninstall(self) -> None: ...


@dataclass
class PipelineResult:
    """What the transport should send back."""

    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    outcome: str = "forwarded"  # forwarded | rejected | cache_hit | upstream_error
    report: Optional[DispatchReport] = None

    @classmethod
    def from_error(cls, error: GatewayError, outcome: str) -> PipelineResult:
        headers = httpx.Headers({"content-type": "application/json"})
        headers.update(error.headers())
        return cls(
            status_code=error.status_code,
            headers=headers,
            body=json.dumps(error.to_body()).encode("utf-8"),
            outcome=outcome,
        )

    @classmethod
    def from_cache(cls, entry: CacheEntry) -> PipelineResult:
        body = entry.body
        if isinstance(body, str):
            raw = body.encode("utf-8")
        elif body is None:
            raw = b""
        else:
            raw = json.dumps(body).encode("utf-8")
        return cls(
            status_code=entry.status_code,
            headers=httpx.Headers(entry.headers),
            body=raw,
            outcome="cache_hit",
        )


class RequestPipeline:
    """Owns the stage subscriptions and the forward step."""

    def __init__(
        self,
        dispatcher: EventDispatcher,
        router: BackendRouter,
        forwarder: BackendForwarder,
        stages: Sequence[PipelineStage] = (),
        cache: Optional[ResponseCache] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._router = router
        self._forwarder = forwarder
        self._stages: List[PipelineStage] = list(stages)
        self._cache = cache
        self._installed = False

    @property
    def stages(self) -> List[PipelineStage]:
        return list(self._stages)

    def install(self) -> None:
        if self._installed:
            return
        for stage in self._stages:
            stage.install()
        self._installed = True

    def uninstall(self) -> None:
        for stage in self._stages:
            stage.uninstall()
        self._installed = False

    async def handle(self, ctx: RequestContext) -> PipelineResult:
        """Admit, serve or forward one request. Never raises a GatewayError."""
        event = GatewayEvent.create(REQUEST_INCOMING, ctx, source="pipeline")
        report = await self._dispatcher.publish(event)

        if event.cancelled:
            result = self._short_circuit(ctx)
        else:
            result = await self._forward(ctx)
        result.report = report

        await self._dispatcher.emit(
            REQUEST_COMPLETED,
            {
                "request_id": ctx.request_id,
                "method": ctx.method,
                "path": ctx.path,
                "status_code": result.status_code,
                "outcome": result.outcome,
                "cache_status": ctx.cache_status,
                "target": ctx.target.url if ctx.target else None,
                "duration_ms": round(ctx.elapsed_ms(), 2),
            },
            source="pipeline",
        )

        # Replaces any upstream value of the same name
        for name, value in self.gateway_headers(ctx).items():
            result.headers[name] = value
        logger.info(
            "%s %s -> %d (%s)", ctx.method, ctx.path, result.status_code, result.outcome,
            extra=ctx.log_extra(),
        )
        return result

    def _short_circuit(self, ctx: RequestContext) -> PipelineResult:
        if ctx.rejection is not None:
            return PipelineResult.from_error(ctx.rejection, outcome="rejected")
        if ctx.cached_response is not None:
            return PipelineResult.from_cache(ctx.cached_response)

        # A stage cancelled without saying why
        logger.error("Request cancelled without a rejection", extra=ctx.log_extra())
        return PipelineResult.from_error(
            GatewayError(
                code="INTERNAL_ERROR",
                message="Request was rejected by the gateway.",
                status_code=500,
                request_id=ctx.request_id,
            ),
            outcome="rejected",
        )

    async def _forward(self, ctx: RequestContext) -> PipelineResult:
        if ctx.target is None:
            ctx.target = self._router.select_target(ctx.client_region)

        try:
            async with self._router.track(ctx.target):
                response = await self._forwarder.forward(ctx.target, ctx)
        except UpstreamUnreachableError as exc:
            return PipelineResult.from_error(exc, outcome="upstream_error")

        if self._cache is not None and ctx.cache_status in ("MISS", "ERROR") and response.ok:
            text = response.text()
            if text is not None:
                await self._cache.store(
                    ctx.method,
                    ctx.path,
                    ctx.query_items(),
                    CacheEntry(
                        status_code=response.status_code,
                        headers=self.cacheable_headers(response.headers),
                        body=text,
                    ),
                )

        return PipelineResult(
            status_code=response.status_code,
            headers=response.headers,
            body=response.body,
            outcome="forwarded",
        )

    @staticmethod
    def cacheable_headers(headers: httpx.Headers) -> Dict[str, str]:
        """Headers stored with a cache entry; repeated values are comma-joined."""
        return {
            name: headers[name] for name in headers.keys()
            if name.lower() not in PER_CLIENT_HEADERS
        }

    @staticmethod
    def gateway_headers(ctx: RequestContext) -> Dict[str, str]:
        headers = {
            "X-Request-ID": ctx.request_id,
            "X-Gateway-Version": GATEWAY_VERSION,
            "X-Gateway-Duration": f"{int(ctx.elapsed_ms())}ms",
        }
        if ctx.rate_limit is not None:
            headers["X-RateLimit-Limit"] = str(ctx.rate_limit.limit)
            headers["X-RateLimit-Remaining"] = str(ctx.rate_limit.remaining)
            headers["X-RateLimit-Reset"] = str(int(ctx.rate_limit.reset_at))
        if ctx.cache_status is not None:
            headers["X-Gateway-Cache"] = ctx.cache_status
        if ctx.target is not None:
            headers["X-Gateway-Target"] = ctx.target.url
        return headers
