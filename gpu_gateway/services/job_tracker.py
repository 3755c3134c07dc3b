# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Job Tracker — Caches job records and turns status changes into events.

Jobs are written by the job queue at queue:job:{id}. The tracker reads
them on demand (get_job_status) and on a periodic pass over tracked,
non-terminal jobs. A status change against the cached copy publishes:
    completed -> job:completed
    failed    -> job:failed
    otherwise -> job:submitted (progress)

Terminal records (completed, failed, cancelled) are served from memory
without touching the store, and dropped after the retention period.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from gpu_gateway.core.errors import StoreUnavailableError
from gpu_gateway.kernel.clock import IntervalClock
from gpu_gateway.kernel.dispatcher import EventDispatcher
from gpu_gateway.kernel.namespace import get_job_key
from gpu_gateway.kernel.store import SharedStore
from gpu_gateway.protocols.events import JOB_COMPLETED, JOB_FAILED, JOB_SUBMITTED
from gpu_gateway.protocols.schema import JobRecord

logger = logging.getLogger("gateway.job_tracker")

_TRANSITION_EVENTS = {
    "completed": JOB_COMPLETED,
    "failed": JOB_FAILED,
}


def _completed_epoch(record: JobRecord) -> Optional[float]:
    if not record.completed_at:
        return None
    try:
        return datetime.fromisoformat(record.completed_at.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class JobTracker:
    """In-memory job cache with transition detection."""

    def __init__(
        self,
        store: SharedStore,
        dispatcher: EventDispatcher,
        poll_interval: float = 10.0,
        retention_seconds: int = 3600,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._retention = retention_seconds
        self._now = clock or time.time

        self._jobs: Dict[str, JobRecord] = {}
        # Epoch seconds at which each cached job was first seen terminal
        self._terminal_seen: Dict[str, float] = {}

        self._ticker = IntervalClock(poll_interval, name="job-tracker")
        self._ticker.on_tick(self._on_tick)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        await self._ticker.start()

    async def stop(self) -> None:
        await self._ticker.stop()

    def loop_status(self) -> Dict[str, Any]:
        return self._ticker.status()

    async def _on_tick(self, tick: int) -> None:
        await self.reconcile()

    # ── Store access ────────────────────────────────────────────

    async def _fetch(self, job_id: str) -> Optional[JobRecord]:
        """
        Read a job record.

        Returns None if the key does not exist. Raises StoreUnavailableError
        or ValueError (malformed record).
        """
        raw = await self._store.get_json(get_job_key(job_id))
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise ValueError(f"Job record for '{job_id}' is not an object")
        raw.setdefault("job_id", job_id)
        try:
            return JobRecord.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"Invalid job record for '{job_id}': {exc}") from exc

    def _remember(self, record: JobRecord) -> None:
        self._jobs[record.job_id] = record
        if record.is_terminal:
            self._terminal_seen.setdefault(record.job_id, self._now())

    def _forget(self, job_id: str) -> None:
        if self._jobs.pop(job_id, None) is not None:
            logger.info("Job %s no longer in the queue, untracking", job_id, extra={"job_id": job_id})
        self._terminal_seen.pop(job_id, None)

    # ── Public API ──────────────────────────────────────────────

    async def track_job(self, job_id: str) -> Optional[JobRecord]:
        """Start tracking a job. Publishes job:submitted if it exists."""
        try:
            record = await self._fetch(job_id)
        except (StoreUnavailableError, ValueError) as exc:
            logger.warning("Failed to track job %s: %s", job_id, exc, extra={"job_id": job_id})
            return None
        if record is None:
            self._forget(job_id)
            return None

        self._remember(record)
        await self._dispatcher.emit(JOB_SUBMITTED, record.event_payload(), source="job_tracker")
        return record

    async def get_job_status(self, job_id: str) -> Optional[JobRecord]:
        """
        Current job record.

        Terminal records come from memory. A store failure returns the
        cached record (possibly stale). A missing record returns None and
        the job is no longer tracked.
        """
        cached = self._jobs.get(job_id)
        if cached is not None and cached.is_terminal:
            return cached

        try:
            record = await self._fetch(job_id)
        except (StoreUnavailableError, ValueError) as exc:
            logger.warning(
                "Failed to read job %s, serving cached copy: %s", job_id, exc,
                extra={"job_id": job_id},
            )
            return cached
        if record is None:
            self._forget(job_id)
            return None

        self._remember(record)
        if cached is not None and cached.status != record.status:
            await self._publish_transition(cached.status, record)
        return record

    async def _publish_transition(self, previous: str, record: JobRecord) -> None:
        logger.info(
            "Job %s: %s -> %s", record.job_id, previous, record.status,
            extra={"job_id": record.job_id},
        )
        event_name = _TRANSITION_EVENTS.get(record.status, JOB_SUBMITTED)
        await self._dispatcher.emit(event_name, record.event_payload(), source="job_tracker")

    async def reconcile(self) -> int:
        """Refresh every tracked non-terminal job. Returns how many were checked."""
        pending = [job_id for job_id, rec in self._jobs.items() if not rec.is_terminal]
        for job_id in pending:
            await self.get_job_status(job_id)
        self.prune_old_jobs()
        return len(pending)

    def prune_old_jobs(self, max_age_seconds: Optional[float] = None) -> int:
        """
        Forget terminal jobs older than `max_age_seconds` (default: the
        configured retention). Age counts from completed_at when present,
        else from when the tracker first saw the job terminal.
        """
        max_age = self._retention if max_age_seconds is None else max_age_seconds
        now = self._now()
        removed = 0
        for job_id, record in list(self._jobs.items()):
            if not record.is_terminal:
                continue
            finished = _completed_epoch(record) or self._terminal_seen.get(job_id, now)
            if now - finished > max_age:
                del self._jobs[job_id]
                self._terminal_seen.pop(job_id, None)
                removed += 1
        if removed:
            logger.debug("Pruned %d finished jobs", removed)
        return removed

    def job_counts(self) -> Dict[str, int]:
        counts = {"queued": 0, "processing": 0, "completed": 0, "failed": 0, "cancelled": 0}
        for record in self._jobs.values():
            counts[record.status] = counts.get(record.status, 0) + 1
        return counts

    def tracked_jobs(self) -> int:
        return len(self._jobs)
