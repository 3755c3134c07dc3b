# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Event Dispatcher — In-process priority-ordered event bus.

Every request passes through here. Subscribers to an event name run one
at a time, highest priority first (ties in registration order), each
awaited before the next. Any subscriber may cancel the event; the
remaining subscribers for that publish call are then skipped and control
returns to the publisher, which decides what "cancelled" means.

A subscriber that raises does not affect other subscribers or the
publisher: the fault is logged and recorded in the DispatchReport.
"""

from __future__ import annotations

import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from gpu_gateway.protocols.schema import GatewayEvent

logger = logging.getLogger("gateway.dispatcher")

# Handlers may be plain functions or coroutines
EventHandler = Callable[[GatewayEvent], Union[None, Awaitable[None]]]
EventFilter = Callable[[Any], bool]


@dataclass(eq=False)
class Subscription:
    """
    A registered handler. Revoke with `unsubscribe()` when the owning
    component shuts down, otherwise it keeps receiving events.
    """

    event_name: str
    priority: int
    handler: EventHandler
    event_filter: Optional[EventFilter] = None
    sequence: int = 0
    _dispatcher: Optional[EventDispatcher] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._dispatcher is not None

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))

    def matches(self, payload: Any) -> bool:
        return self.event_filter is None or bool(self.event_filter(payload))

    def unsubscribe(self) -> None:
        """Revoke this subscription (idempotent)."""
        if self._dispatcher is not None:
            self._dispatcher._remove(self)
            self._dispatcher = None


@dataclass
class HandlerOutcome:
    """Result of invoking one subscriber: success or fault."""

    handler: str
    priority: int
    ok: bool = True
    error: Optional[BaseException] = None

    @property
    def fault(self) -> bool:
        return not self.ok


@dataclass
class DispatchReport:
    """What happened during one publish call."""

    event_name: str
    outcomes: List[HandlerOutcome] = field(default_factory=list)
    skipped: int = 0
    cancelled: bool = False

    @property
    def invoked(self) -> int:
        return len(self.outcomes)

    @property
    def faults(self) -> List[HandlerOutcome]:
        return [o for o in self.outcomes if o.fault]


class EventDispatcher:
    """
    Priority-ordered publish/subscribe bus for a single gateway process.

    Stateless aside from the subscription registry.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._sequence = itertools.count()

    # ── Subscribe ───────────────────────────────────────────────

    def subscribe(
        self,
        event_name: str,
        handler: EventHandler,
        priority: int = 0,
        event_filter: Optional[EventFilter] = None,
    ) -> Subscription:
        """
        Register a handler for an event name.

        Args:
            event_name: Exact event name, e.g. 'request:incoming'.
            handler: Callable receiving the GatewayEvent (sync or async).
            priority: Higher values run earlier.
            event_filter: Optional predicate on the payload; the handler is
                skipped when it returns False.
        """
        sub = Subscription(
            event_name=event_name,
            priority=priority,
            handler=handler,
            event_filter=event_filter,
            sequence=next(self._sequence),
            _dispatcher=self,
        )
        subs = self._subscriptions.setdefault(event_name, [])
        subs.append(sub)
        subs.sort(key=lambda s: (-s.priority, s.sequence))
        logger.debug(
            "Subscribed %s to %s (priority=%d)",
            sub.handler_name, event_name, priority,
        )
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.event_name)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscriptions[sub.event_name]

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscriptions.get(event_name, ()))

    def clear(self) -> None:
        """Revoke every subscription."""
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.unsubscribe()

    # ── Publish ─────────────────────────────────────────────────

    async def publish(self, event: GatewayEvent) -> DispatchReport:
        """
        Dispatch an event to its subscribers in priority order.

        Never raises because of a handler. Stops early once the event is
        cancelled.
        """
        report = DispatchReport(event_name=event.name)
        # Snapshot: subscriptions added during dispatch wait for the next publish
        subs = list(self._subscriptions.get(event.name, ()))

        for sub in subs:
            if event.cancelled:
                report.cancelled = True
                break
            if not sub.active:
                continue

            try:
                matched = sub.matches(event.payload)
            except Exception as exc:
                logger.error(
                    "Event filter error in %s for %s: %s",
                    sub.handler_name, event.name, exc,
                )
                report.outcomes.append(
                    HandlerOutcome(sub.handler_name, sub.priority, ok=False, error=exc)
                )
                continue
            if not matched:
                report.skipped += 1
                continue

            report.outcomes.append(await self._invoke(sub, event))

        if event.cancelled:
            report.cancelled = True
            logger.debug(
                "Dispatch of %s cancelled after %d handler(s)",
                event.name, report.invoked,
            )
        return report

    async def emit(self, name: str, payload: Any = None, source: str = "gateway") -> DispatchReport:
        """Build and publish an event in one call."""
        return await self.publish(GatewayEvent.create(name, payload, source=source))

    async def _invoke(self, sub: Subscription, event: GatewayEvent) -> HandlerOutcome:
        try:
            result = sub.handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error(
                "Handler %s failed on %s: %s",
                sub.handler_name, event.name, exc,
                exc_info=True,
            )
            return HandlerOutcome(sub.handler_name, sub.priority, ok=False, error=exc)
        return HandlerOutcome(sub.handler_name, sub.priority)
