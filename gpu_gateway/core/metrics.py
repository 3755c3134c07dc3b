# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Metrics — In-memory counters for gateway observability.

`GatewayMetricsCollector` feeds a `Metrics` instance from the event
dispatcher, so components never call the metrics API directly.
Exposed as JSON at /gateway/metrics.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any, Dict, List

from gpu_gateway.kernel.dispatcher import EventDispatcher, Subscription
from gpu_gateway.protocols import events
from gpu_gateway.protocols.schema import GatewayEvent

HISTOGRAM_WINDOW = 1000


class Metrics:
    """Simple in-memory metrics collector."""

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, list] = defaultdict(list)
        self._start_time = time.time()

    # ── Counters ────────────────────────────────────────────────

    def inc(self, name: str, amount: int = 1) -> None:
        self._counters[name] += amount

    def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    # ── Gauges ──────────────────────────────────────────────────

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def get_gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    # ── Histograms (for latency) ────────────────────────────────

    def observe(self, name: str, value: float) -> None:
        """Record an observation (e.g. request duration in ms)."""
        values = self._histograms[name]
        values.append(value)
        if len(values) > HISTOGRAM_WINDOW:
            del values[:-HISTOGRAM_WINDOW]

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()
        self._start_time = time.time()

    # ── Export ──────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """Export all metrics as a dict."""
        result = {
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }
        for name, values in self._histograms.items():
            if values:
                ordered = sorted(values)
                result[f"histogram_{name}"] = {
                    "count": len(values),
                    "avg": round(sum(values) / len(values), 2),
                    "max": round(ordered[-1], 2),
                    "min": round(ordered[0], 2),
                    "p95": round(ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))], 2),
                }
        return result


class GatewayMetricsCollector:
    """Subscribes to gateway events and records them in a Metrics instance."""

    # Runs after every functional subscriber
    PRIORITY = -100

    def __init__(self, dispatcher: EventDispatcher, metrics: Metrics) -> None:
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._subscriptions: List[Subscription] = []

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    def install(self) -> None:
        handlers = {
            events.REQUEST_COMPLETED: self._on_request_completed,
            events.AUTH_REJECTED: self._count("auth_rejected"),
            events.AUTH_VALIDATED: self._count("auth_validated"),
            events.RATELIMIT_ALLOWED: self._count("ratelimit_allowed"),
            events.RATELIMIT_EXCEEDED: self._count("ratelimit_exceeded"),
            events.CACHE_HIT: self._count("cache_hits"),
            events.CACHE_MISS: self._count("cache_misses"),
            events.CACHE_STORED: self._count("cache_stored"),
            events.ROUTER_SELECTED: self._on_router_selected,
            events.WORKER_ONLINE: self._count("worker_online"),
            events.WORKER_OFFLINE: self._count("worker_offline"),
            events.WORKER_UPDATED: self._count("worker_updated"),
            events.JOB_SUBMITTED: self._count("job_submitted"),
            events.JOB_COMPLETED: self._on_job_finished("job_completed"),
            events.JOB_FAILED: self._on_job_finished("job_failed"),
        }
        for name, handler in handlers.items():
            self._subscriptions.append(
                self._dispatcher.subscribe(name, handler, priority=self.PRIORITY)
            )

    def uninstall(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()

    # ── Handlers ────────────────────────────────────────────────

    def _count(self, counter: str):
        def handler(event: GatewayEvent) -> None:
            self._metrics.inc(counter)

        handler.__qualname__ = f"GatewayMetricsCollector.count[{counter}]"
        return handler

    def _on_request_completed(self, event: GatewayEvent) -> None:
        payload = event.payload or {}
        self._metrics.inc("requests_total")
        status = payload.get("status_code")
        if status:
            self._metrics.inc(f"requests_{status // 100}xx")
        outcome = payload.get("outcome")
        if outcome:
            self._metrics.inc(f"requests_{outcome}")
        duration = payload.get("duration_ms")
        if duration is not None:
            self._metrics.observe("request_duration_ms", duration)

    def _on_router_selected(self, event: GatewayEvent) -> None:
        target = (event.payload or {}).get("target")
        self._metrics.inc("router_selected")
        if target:
            self._metrics.inc(f"router_target:{target}")

    def _on_job_finished(self, counter: str):
        def handler(event: GatewayEvent) -> None:
            self._metrics.inc(counter)
            duration = (event.payload or {}).get("duration_ms")
            if duration is not None:
                self._metrics.observe("job_duration_ms", duration)

        handler.__qualname__ = f"GatewayMetricsCollector.{counter}"
        return handler

    # ── Export ──────────────────────────────────────────────────

    def cache_hit_rate(self) -> float:
        hits = self._metrics.get_counter("cache_hits")
        total = hits + self._metrics.get_counter("cache_misses")
        return round(hits / total, 4) if total else 0.0

    def snapshot(self) -> Dict[str, Any]:
        result = self._metrics.snapshot()
        result["cache_hit_rate"] = self.cache_hit_rate()
        return result

