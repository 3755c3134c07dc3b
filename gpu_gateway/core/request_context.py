# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Request Context — Per-request state threaded through the pipeline.

One RequestContext is created per inbound request and passed by reference
as the payload of the `request:incoming` event. Inputs are set by the
transport; each pipeline stage writes only its own fields:

  auth            : auth guard
  rate_limit      : rate limiter
  cache_status    : response cache
  cached_response : response cache (on HIT)
  client_region   : router
  target          : router
  rejection       : any stage that cancels with a user-visible error
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from gpu_gateway.core.config import BackendTarget
from gpu_gateway.core.errors import GatewayError
from gpu_gateway.protocols.schema import CacheEntry

AuthType = Literal["api-key", "token", "bearer"]
CacheStatus = Literal["HIT", "MISS", "BYPASS", "ERROR"]


@dataclass(frozen=True)
class AuthIdentity:
    """Authenticated caller. `identity` is the salted token hash."""

    type: AuthType
    identity: str

    @property
    def client_key(self) -> str:
        return f"{self.type}:{self.identity}"

    @property
    def display(self) -> str:
        return f"{self.type}:{self.identity[:16]}..."


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int
    remaining: int
    reset_at: float  # epoch ms
    degraded: bool = False


@dataclass
class RequestContext:
    """Mutable per-request state. Lifetime = one request."""

    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, str] = field(default_factory=dict)
    # Raw query string as received; forwarded unchanged
    query_string: str = ""
    body: Optional[bytes] = None
    client_ip: str = "unknown"
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: float = field(default_factory=time.time)

    # Written by pipeline stages
    auth: Optional[AuthIdentity] = None
    rate_limit: Optional[RateLimitInfo] = None
    cache_status: Optional[CacheStatus] = None
    cached_response: Optional[CacheEntry] = None
    client_region: Optional[str] = None
    target: Optional[BackendTarget] = None
    rejection: Optional[GatewayError] = None

    def __post_init__(self):
        self.method = self.method.upper()
        # Header lookups are case-insensitive
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if self.query_string and not self.query:
            self.query = dict(parse_qsl(self.query_string, keep_blank_values=True))
        elif self.query and not self.query_string:
            self.query_string = urlencode(self.query)

    def query_items(self) -> List[Tuple[str, str]]:
        """All (name, value) pairs in request order, repeated names included."""
        if self.query_string:
            return parse_qsl(self.query_string, keep_blank_values=True)
        return list(self.query.items())

    @property
    def original_url(self) -> str:
        """Path plus query string, as the client sent them."""
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    @property
    def client_key(self) -> str:
        """Rate-limit identity: authenticated caller, else client IP."""
        if self.auth is not None:
            return self.auth.client_key
        return f"ip:{self.client_ip}"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def is_admin_path(self, prefix: str) -> bool:
        return self.path.startswith(prefix)

    def elapsed_ms(self) -> float:
        return (time.time() - self.started_at) * 1000

    def log_extra(self) -> Dict[str, Any]:
        """Fields for StructuredFormatter via `extra=`."""
        return {"request_id": self.request_id, "client_key": self.client_key}

    def __repr__(self) -> str:
        return f"RequestContext(id={self.request_id!r}, {self.method} {self.path})"
