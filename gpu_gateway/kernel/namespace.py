# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Namespace Helper — Shared store key layout.

Keys written by the gateway live under the reserved `gateway:` prefix.
Keys under `worker:` and `queue:` belong to the worker/job processes and
are read-only to the gateway. The layout is shared with those processes,
so these strings must not change.
"""

from __future__ import annotations

GATEWAY_PREFIX = "gateway:"


def is_gateway_key(key: str) -> bool:
    """True if the gateway is allowed to write this key."""
    return key.startswith(GATEWAY_PREFIX)


def get_ratelimit_key(client_key: str) -> str:
    """
    Sliding-window sorted set for one client.

    Example:
        get_ratelimit_key("ip:1.2.3.4") -> "gateway:ratelimit:ip:1.2.3.4"
    """
    return f"{GATEWAY_PREFIX}ratelimit:{client_key}"


def get_cache_key(digest: str) -> str:
    """
    Cached response entry.

    Example:
        get_cache_key("9e10...") -> "gateway:cache:9e10..."
    """
    return f"{GATEWAY_PREFIX}cache:{digest}"


def get_cache_index_key() -> str:
    """Sorted set of cache keys ordered by cached_at (for size eviction)."""
    return f"{GATEWAY_PREFIX}cache:keys"


def get_health_key() -> str:
    return f"{GATEWAY_PREFIX}health:ping"


def get_worker_index_key() -> str:
    """JSON list of known worker ids (written by workers)."""
    return "worker:index"


def get_worker_status_key(worker_id: str) -> str:
    """
    Worker heartbeat record (written by workers).

    Example:
        get_worker_status_key("w-01") -> "worker:w-01:status"
    """
    return f"worker:{worker_id}:status"


def get_job_key(job_id: str) -> str:
    """
    Job record (written by the job queue).

    Example:
        get_job_key("j-42") -> "queue:job:j-42"
    """
    return f"queue:job:{job_id}"
