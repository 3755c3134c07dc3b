# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Gateway Configuration — Environment-driven settings.

All configuration is loaded from environment variables (or .env file).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator

GATEWAY_VERSION = "0.1.0"

ROUTER_STRATEGIES = ("round-robin", "least-connections", "region-affinity")


@dataclass(frozen=True)
class BackendTarget:
    """One forwarding destination for proxied requests."""

    url: str
    region: Optional[str] = None

    def __str__(self) -> str:
        return self.url


class GatewaySettings(BaseSettings):
    """Gateway-wide configuration loaded from environment."""

    # --- Redis (shared state store) ---
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    REDIS_MAX_CONNECTIONS: int = Field(default=50, gt=0)
    REDIS_SOCKET_TIMEOUT: float = Field(
        default=5.0,
        gt=0,
        description="Connect/read timeout in seconds for store calls",
    )

    # --- Inference backend ---
    BACKEND_URL: str = Field(
        default="http://localhost:8000",
        description="Default backend URL (used when BACKEND_TARGETS is empty)",
    )
    BACKEND_TARGETS: str = Field(
        default="",
        description="Comma-separated backends, each 'url' or 'url|region'",
    )
    BACKEND_TIMEOUT: float = Field(
        default=30.0,
        description="Backend call timeout in seconds",
    )
    BACKEND_HEALTH_PATH: str = Field(
        default="/docs",
        description="Path requested on each backend by /gateway/health/detailed",
    )
    BACKEND_HEALTH_TIMEOUT: float = Field(default=5.0, gt=0)

    # --- Request signing (gateway -> backend) ---
    REQUEST_SIGNING_SECRET: str = Field(
        default="",
        description="Shared secret for X-Gateway-Signature; empty disables signing",
    )
    REQUEST_SIGNING_ALGORITHM: str = Field(default="sha256")

    # --- Auth ---
    AUTH_ENABLED: bool = Field(default=True)
    AUTH_TOKEN_SALT: str = Field(
        default="distributed-gpu-inference-v1",
        description="Shared secret salt for token identity hashing",
    )
    AUTH_API_KEYS: str = Field(
        default="",
        description="Comma-separated API key allowlist",
    )

    # --- Rate limiting ---
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_WINDOW_MS: int = Field(default=60000, gt=0)
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, gt=0)

    # --- Response cache ---
    CACHE_ENABLED: bool = Field(default=True)
    CACHE_TTL_SECONDS: int = Field(default=60, gt=0)
    CACHE_MAX_SIZE: int = Field(
        default=1000,
        gt=0,
        description="Max cached responses before oldest-first eviction",
    )

    # --- Routing ---
    ROUTER_STRATEGY: str = Field(
        default="round-robin",
        description="round-robin | least-connections | region-affinity",
    )

    # --- Reconciliation loops ---
    WORKER_POLL_INTERVAL: float = Field(
        default=5.0,
        description="Worker registry reconciliation interval in seconds",
    )
    WORKER_OFFLINE_MISSES: int = Field(
        default=1,
        ge=1,
        description="Consecutive index reads a worker must be absent from before removal",
    )
    WORKER_STALE_AFTER: float = Field(
        default=30.0,
        description="Seconds without a successful index read before the snapshot is stale",
    )
    JOB_POLL_INTERVAL: float = Field(
        default=10.0,
        description="Job tracker reconciliation interval in seconds",
    )
    JOB_RETENTION_SECONDS: int = Field(
        default=3600,
        description="How long terminal jobs stay in the tracker cache",
    )

    # --- Platform ---
    ADMIN_PATH_PREFIX: str = Field(
        default="/gateway/",
        description="Gateway-local paths that bypass the admission pipeline",
    )
    LOG_LEVEL: str = Field(default="INFO")
    GATEWAY_ENV: str = Field(
        default="dev",
        description="Environment: dev | prod",
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }

    @field_validator("ROUTER_STRATEGY")
    @classmethod
    def strategy_must_be_known(cls, v: str) -> str:
        if v not in ROUTER_STRATEGIES:
            raise ValueError(
                f"ROUTER_STRATEGY must be one of {', '.join(ROUTER_STRATEGIES)}, got '{v}'"
            )
        return v

    # ── Derived values ──────────────────────────────────────────

    def api_keys(self) -> List[str]:
        return [k.strip() for k in self.AUTH_API_KEYS.split(",") if k.strip()]

    def backend_targets(self) -> List[BackendTarget]:
        """
        Parse BACKEND_TARGETS into BackendTarget entries.

        Example:
            "http://a:8000|us-west,http://b:8000" ->
            [BackendTarget("http://a:8000", "us-west"), BackendTarget("http://b:8000")]
        """
        targets = []
        for raw in self.BACKEND_TARGETS.split(","):
            raw = raw.strip()
            if not raw:
                continue
            url, _, region = raw.partition("|")
            targets.append(BackendTarget(url=url.strip(), region=region.strip() or None))
        if not targets:
            targets.append(BackendTarget(url=self.BACKEND_URL))
        return targets


# Global singleton
settings = GatewaySettings()
