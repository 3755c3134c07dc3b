# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Interval Clock — Timer loop for background reconciliation.

Drives the worker registry and job tracker passes. Each wait is
interval +/- jitter, so gateway instances started together do not poll the
store in lockstep. A callback that fails is logged and the loop carries on
with the next tick; `last_success_at` tells health reporting how long ago
a tick last completed cleanly.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Coroutine, Dict, Optional

logger = logging.getLogger("gateway.clock")

TickCallback = Callable[[int], Coroutine[Any, Any, None]]


class IntervalClock:
    """
    Emits ticks every `interval` seconds on its own asyncio task.

    Request handling never waits on a tick; consumers read whatever
    in-memory state the last tick produced.
    """

    def __init__(
        self,
        interval: float = 5.0,
        name: str = "clock",
        jitter: float = 0.1,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Args:
            interval: Nominal tick interval in seconds.
            name: Label used in log lines and status().
            jitter: Fraction of the interval each wait may vary by (0 disables).
            rng: Random source for the jitter (tests pass a seeded one).
        """
        if not 0 <= jitter < 1:
            raise ValueError(f"jitter must be in [0, 1), got {jitter}")
        self._interval = interval
        self._name = name
        self._jitter = jitter
        self._rng = rng or random.Random()
        self._tick = 0
        self._failures = 0
        self._last_success_at: Optional[float] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._callbacks: list[TickCallback] = []

    @property
    def tick(self) -> int:
        """Number of ticks emitted so far."""
        return self._tick

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def failures(self) -> int:
        """Callback errors since start."""
        return self._failures

    @property
    def last_success_at(self) -> Optional[float]:
        """time.monotonic() of the last tick whose callbacks all succeeded."""
        return self._last_success_at

    def on_tick(self, callback: TickCallback) -> None:
        self._callbacks.append(callback)

    def next_delay(self) -> float:
        if not self._jitter:
            return self._interval
        spread = self._interval * self._jitter
        return self._interval + self._rng.uniform(-spread, spread)

    async def run_once(self) -> bool:
        """Emit one tick now. Returns True if every callback succeeded."""
        self._tick += 1
        ok = True
        for cb in self._callbacks:
            try:
                await cb(self._tick)
            except Exception as exc:
                ok = False
                self._failures += 1
                logger.error("%s callback error at tick %d: %s", self._name, self._tick, exc)
        if ok:
            self._last_success_at = time.monotonic()
        return ok

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"{self._name}-loop")
        logger.info("%s started (interval=%.2fs, jitter=%.0f%%)", self._name, self._interval, self._jitter * 100)

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.next_delay())
            await self.run_once()

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("%s stopped at tick %d", self._name, self._tick)

    def status(self) -> Dict[str, Any]:
        """Loop state for health reporting."""
        age = None
        if self._last_success_at is not None:
            age = round(time.monotonic() - self._last_success_at, 1)
        return {
            "name": self._name,
            "running": self._running,
            "tick": self._tick,
            "failures": self._failures,
            "seconds_since_success": age,
        }
