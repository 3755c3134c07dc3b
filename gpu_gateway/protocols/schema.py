# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Gateway Protocol Schema — Events and shared-store records.

Defines:
  - GatewayEvent: the in-process event passed through the dispatcher.
  - WorkerRecord / JobRecord: read-only copies of records written by the
    worker and job-queue processes (snake_case JSON, unknown fields ignored).
  - CacheEntry: a cached backend response.

Design decisions:
  - Event `name` is frozen after construction.
  - Cancellation is monotonic: there is `cancel()` but no way back.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

WorkerState = Literal["online", "offline", "busy", "idle"]
JobState = Literal["queued", "processing", "completed", "failed", "cancelled"]

TERMINAL_JOB_STATES = frozenset({"completed", "failed", "cancelled"})


class GatewayEvent(BaseModel):
    """
    Core event for the in-process dispatcher.

    The payload is passed by reference: subscribers of a request event all
    see (and may update) the same RequestContext instance.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique event identifier (UUID v4)",
    )
    name: str = Field(
        ...,
        min_length=1,
        frozen=True,
        description="Event name, e.g. 'request:incoming'",
    )
    payload: Any = Field(
        default=None,
        description="Event data; request events carry a RequestContext",
    )
    source: str = Field(
        default="gateway",
        description="Name of the component that emitted this event",
    )
    created_at: float = Field(
        default_factory=time.time,
        description="Unix timestamp of event creation",
    )

    _cancelled: bool = PrivateAttr(default=False)

    # ── Validators ──────────────────────────────────────────────

    @field_validator("name")
    @classmethod
    def name_must_be_namespaced(cls, v: str) -> str:
        """Ensure the name looks like 'domain:action' in lowercase."""
        if v != v.lower() or ":" not in v:
            raise ValueError(
                f"Event name must be lowercase 'domain:action', got '{v}'"
            )
        return v

    # ── Cancellation ────────────────────────────────────────────

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop dispatch to lower-priority subscribers. Cannot be undone."""
        self._cancelled = True

    # ── Factory ─────────────────────────────────────────────────

    @classmethod
    def create(cls, name: str, payload: Any = None, source: str = "gateway") -> GatewayEvent:
        return cls(name=name, payload=payload, source=source)


# ── Worker records ──────────────────────────────────────────────


class WorkerGPUInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "unknown"
    memory_total_mb: float = 0
    memory_used_mb: float = 0
    utilization_percent: float = 0


class WorkerRecord(BaseModel):
    """Worker heartbeat record as written by the GPU worker processes."""

    model_config = ConfigDict(extra="ignore")

    worker_id: str = Field(..., min_length=1)
    region: str = "unknown"
    status: WorkerState = "online"
    gpu: WorkerGPUInfo = Field(default_factory=WorkerGPUInfo)
    last_heartbeat: Optional[Union[float, str]] = None
    uptime_seconds: float = 0
    jobs_completed: int = 0
    current_job: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)

    def event_payload(self, status: Optional[str] = None) -> Dict[str, Any]:
        """Payload for worker:* lifecycle events."""
        return {
            "worker_id": self.worker_id,
            "region": self.region,
            "gpu": self.gpu.name,
            "status": status or self.status,
            "last_heartbeat": time.time(),
        }


class WorkerList(BaseModel):
    workers: List[WorkerRecord]
    total: int
    online: int
    busy: int
    idle: int
    stale: bool = False


# ── Job records ─────────────────────────────────────────────────


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class JobRecord(BaseModel):
    """Job status as stored by the job queue."""

    model_config = ConfigDict(extra="ignore")

    job_id: str = Field(..., min_length=1)
    status: JobState
    model_name: str = ""
    worker_id: Optional[str] = None
    queue_position: Optional[int] = None
    estimated_wait: Optional[float] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATES

    def duration_ms(self) -> Optional[float]:
        """completed_at - created_at in milliseconds, if both are known."""
        created = _parse_timestamp(self.created_at)
        completed = _parse_timestamp(self.completed_at)
        if created is None or completed is None:
            return None
        try:
            return (completed - created).total_seconds() * 1000
        except TypeError:
            # naive vs aware timestamps
            return None

    def event_payload(self) -> Dict[str, Any]:
        """Payload for job:* lifecycle events."""
        return {
            "job_id": self.job_id,
            "status": self.status,
            "worker_id": self.worker_id,
            "model_name": self.model_name,
            "duration_ms": self.duration_ms(),
        }


# ── Cache entries ───────────────────────────────────────────────


class CacheEntry(BaseModel):
    """A cached backend response. `cached_at` is in epoch milliseconds."""

    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    cached_at: float = 0

    def is_fresh(self, now_ms: float, ttl_ms: float) -> bool:
        return now_ms - self.cached_at < ttl_ms
