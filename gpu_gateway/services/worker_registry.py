# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Worker Registry — Gateway-local snapshot of GPU worker heartbeats.

GPU workers (separate processes) maintain:
    worker:index           JSON list of worker ids
    worker:{id}:status     JSON heartbeat record

Each reconciliation pass reads the index, refreshes every listed worker
and publishes lifecycle events:
    new id                         -> worker:online
    status changed                 -> worker:updated
    absent for N successful reads  -> worker:offline (and removed)

A pass that cannot read the index (store down, key missing or value
malformed) changes nothing. An explicit empty list is a real "no workers".
If the index stays unreadable for longer than `stale_after` seconds the
snapshot is reported as stale instead of being emptied.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from gpu_gateway.core.errors import StoreUnavailableError
from gpu_gateway.kernel.clock import IntervalClock
from gpu_gateway.kernel.dispatcher import EventDispatcher
from gpu_gateway.kernel.namespace import get_worker_index_key, get_worker_status_key
from gpu_gateway.kernel.store import SharedStore
from gpu_gateway.protocols.events import WORKER_OFFLINE, WORKER_ONLINE, WORKER_UPDATED
from gpu_gateway.protocols.schema import WorkerList, WorkerRecord

logger = logging.getLogger("gateway.worker_registry")


class WorkerRegistry:
    """
    Periodically reconciled view of the worker pool.

    Request-time readers (`get_worker_list`, `get_worker`) only touch the
    in-memory snapshot.
    """

    def __init__(
        self,
        store: SharedStore,
        dispatcher: EventDispatcher,
        poll_interval: float = 5.0,
        offline_misses: int = 1,
        stale_after: float = 30.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._offline_misses = max(1, offline_misses)
        self._stale_after = stale_after
        self._now = clock or time.monotonic

        self._workers: Dict[str, WorkerRecord] = {}
        self._misses: Dict[str, int] = {}
        self._last_index_read: Optional[float] = None

        self._ticker = IntervalClock(poll_interval, name="worker-registry")
        self._ticker.on_tick(self._on_tick)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Run one pass immediately, then keep polling in the background."""
        await self.reconcile()
        await self._ticker.start()
        logger.info("Worker registry started (%d workers)", len(self._workers))

    async def stop(self) -> None:
        await self._ticker.stop()
        logger.info("Worker registry stopped")

    @property
    def running(self) -> bool:
        return self._ticker.running

    def loop_status(self) -> Dict[str, Any]:
        return self._ticker.status()

    async def _on_tick(self, tick: int) -> None:
        await self.reconcile()

    # ── Reconciliation ──────────────────────────────────────────

    async def _read_index(self) -> Optional[List[str]]:
        key = get_worker_index_key()
        try:
            raw = await self._store.get_json(key)
        except StoreUnavailableError as exc:
            logger.warning("Worker index unavailable, keeping snapshot: %s", exc)
            return None
        except ValueError as exc:
            logger.warning("Worker index malformed, keeping snapshot: %s", exc)
            return None

        if raw is None:
            logger.info("Worker index '%s' missing, keeping snapshot", key)
            return None
        if not isinstance(raw, list) or not all(isinstance(i, str) for i in raw):
            logger.warning("Worker index is not a list of ids, keeping snapshot")
            return None
        return [worker_id for worker_id in raw if worker_id]

    async def _fetch_worker(self, worker_id: str) -> Optional[WorkerRecord]:
        key = get_worker_status_key(worker_id)
        try:
            raw = await self._store.get_json(key)
        except (StoreUnavailableError, ValueError) as exc:
            logger.warning(
                "Could not read status for worker %s: %s", worker_id, exc,
                extra={"worker_id": worker_id},
            )
            return None
        if not isinstance(raw, dict):
            return None

        raw.setdefault("worker_id", worker_id)
        try:
            return WorkerRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "Invalid status record for worker %s: %s", worker_id, exc,
                extra={"worker_id": worker_id},
            )
            return None

    async def reconcile(self) -> bool:
        """
        One reconciliation pass.

        Returns True if the index was read and the snapshot reconciled,
        False for a no-op pass.
        """
        index = await self._read_index()
        if index is None:
            return False
        self._last_index_read = self._now()

        present = set(index)
        for worker_id in index:
            self._misses.pop(worker_id, None)
            record = await self._fetch_worker(worker_id)
            if record is None:
                # Keep whatever we had for this worker
                continue

            previous = self._workers.get(worker_id)
            self._workers[worker_id] = record

            if previous is None:
                logger.info(
                    "Worker online: %s (%s)", worker_id, record.region,
                    extra={"worker_id": worker_id},
                )
                await self._dispatcher.emit(
                    WORKER_ONLINE, record.event_payload(), source="worker_registry",
                )
            elif previous.status != record.status:
                await self._dispatcher.emit(
                    WORKER_UPDATED, record.event_payload(), source="worker_registry",
                )

        for worker_id in [w for w in self._workers if w not in present]:
            misses = self._misses.get(worker_id, 0) + 1
            if misses < self._offline_misses:
                self._misses[worker_id] = misses
                continue

            record = self._workers.pop(worker_id)
            self._misses.pop(worker_id, None)
            logger.info("Worker offline: %s", worker_id, extra={"worker_id": worker_id})
            await self._dispatcher.emit(
                WORKER_OFFLINE, record.event_payload(status="offline"), source="worker_registry",
            )

        return True

    # ── Queries ─────────────────────────────────────────────────

    @property
    def is_stale(self) -> bool:
        """True if no index read has succeeded within `stale_after` seconds."""
        if self._last_index_read is None:
            return True
        return self._now() - self._last_index_read > self._stale_after

    @property
    def last_index_read(self) -> Optional[float]:
        return self._last_index_read

    def get_worker_list(
        self, region: Optional[str] = None, status: Optional[str] = None,
    ) -> WorkerList:
        workers = list(self._workers.values())
        if region:
            workers = [w for w in workers if w.region == region]
        if status:
            workers = [w for w in workers if w.status == status]

        return WorkerList(
            workers=workers,
            total=len(workers),
            online=sum(1 for w in workers if w.status != "offline"),
            busy=sum(1 for w in workers if w.status == "busy"),
            idle=sum(1 for w in workers if w.status == "idle"),
            stale=self.is_stale,
        )

    def get_worker(self, worker_id: str) -> Optional[WorkerRecord]:
        return self._workers.get(worker_id)

    def count_by_region(self) -> Dict[str, int]:
        return dict(Counter(w.region for w in self._workers.values()))

    def summary(self) -> Dict[str, Any]:
        listing = self.get_worker_list()
        last_read = self.last_index_read
        return {
            "seconds_since_index_read": (
                None if last_read is None else round(self._now() - last_read, 1)
            ),
            "total": listing.total,
            "online": listing.online,
            "busy": listing.busy,
            "idle": listing.idle,
            "stale": listing.stale,
            "by_region": self.count_by_region(),
        }
