# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Event Name Constants — The vocabulary of the gateway.

All event names follow the pattern `domain:subject:action` (or
`domain:action` where the subject is implied) and are lowercase.
"""

# --- Request pipeline ---
REQUEST_INCOMING = "request:incoming"
REQUEST_COMPLETED = "request:completed"

# --- Authentication ---
AUTH_VALIDATED = "auth:validated"
AUTH_REJECTED = "auth:rejected"

# --- Rate limiting ---
RATELIMIT_ALLOWED = "ratelimit:allowed"
RATELIMIT_EXCEEDED = "ratelimit:exceeded"

# --- Response cache ---
CACHE_HIT = "cache:hit"
CACHE_MISS = "cache:miss"
CACHE_STORED = "cache:stored"

# --- Routing ---
ROUTER_SELECTED = "router:selected"

# --- Worker lifecycle ---
WORKER_ONLINE = "worker:online"
WORKER_OFFLINE = "worker:offline"
WORKER_UPDATED = "worker:updated"

# --- Job lifecycle ---
JOB_SUBMITTED = "job:submitted"
JOB_COMPLETED = "job:completed"
JOB_FAILED = "job:failed"

# Subscriber priorities on REQUEST_INCOMING (higher runs first)
PRIORITY_AUTH = 100
PRIORITY_RATE_LIMIT = 90
PRIORITY_CACHE = 80
PRIORITY_ROUTER = 70

# All known event names (for validation)
ALL_EVENT_NAMES = {
    REQUEST_INCOMING,
    REQUEST_COMPLETED,
    AUTH_VALIDATED,
    AUTH_REJECTED,
    RATELIMIT_ALLOWED,
    RATELIMIT_EXCEEDED,
    CACHE_HIT,
    CACHE_MISS,
    CACHE_STORED,
    ROUTER_SELECTED,
    WORKER_ONLINE,
    WORKER_OFFLINE,
    WORKER_UPDATED,
    JOB_SUBMITTED,
    JOB_COMPLETED,
    JOB_FAILED,
}
