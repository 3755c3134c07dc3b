# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.
"""Unit tests for EventDispatcher."""

import pytest

from gpu_gateway.kernel.dispatcher import EventDispatcher
from gpu_gateway.protocols.events import REQUEST_INCOMING, REQUEST_COMPLETED
from gpu_gateway.protocols.schema import GatewayEvent


def _recorder(calls, label, cancel=False):
    async def handler(event: GatewayEvent):
        calls.append(label)
        if cancel:
            event.cancel()
    return handler


class TestDispatchOrder:
    @pytest.mark.asyncio
    async def test_descending_priority(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 10), priority=10)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 100), priority=100)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 90), priority=90)

        report = await d.emit(REQUEST_INCOMING, {})
        assert calls == [100, 90, 10]
        assert report.invoked == 3
        assert report.cancelled is False

    @pytest.mark.asyncio
    async def test_ties_keep_registration_order(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(REQUEST_INCOMING, _recorder(calls, "first"), priority=50)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, "second"), priority=50)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, "third"), priority=50)

        await d.emit(REQUEST_INCOMING)
        assert calls == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_only_matching_event_name(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(REQUEST_COMPLETED, _recorder(calls, "completed"))
        await d.emit(REQUEST_INCOMING)
        assert calls == []

    @pytest.mark.asyncio
    async def test_sync_handler(self):
        d = EventDispatcher()
        seen = []
        d.subscribe(REQUEST_INCOMING, lambda e: seen.append(e.payload))
        await d.emit(REQUEST_INCOMING, {"x": 1})
        assert seen == [{"x": 1}]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_short_circuits_lower_priorities(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 100, cancel=True), priority=100)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 90), priority=90)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 10), priority=10)

        event = GatewayEvent.create(REQUEST_INCOMING, {})
        report = await d.publish(event)

        assert calls == [100]
        assert event.cancelled is True
        assert report.cancelled is True
        assert report.invoked == 1

    @pytest.mark.asyncio
    async def test_cancel_in_middle(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 100), priority=100)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 90, cancel=True), priority=90)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 10), priority=10)

        await d.emit(REQUEST_INCOMING)
        assert calls == [100, 90]

    @pytest.mark.asyncio
    async def test_already_cancelled_event_runs_nothing(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 1))
        event = GatewayEvent.create(REQUEST_INCOMING)
        event.cancel()

        report = await d.publish(event)
        assert calls == []
        assert report.cancelled is True


class TestFaultIsolation:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_dispatch(self):
        d = EventDispatcher()
        calls = []

        async def broken(event):
            raise RuntimeError("boom")

        d.subscribe(REQUEST_INCOMING, broken, priority=100)
        d.subscribe(REQUEST_INCOMING, _recorder(calls, 10), priority=10)

        report = await d.emit(REQUEST_INCOMING)
        assert calls == [10]
        assert len(report.faults) == 1
        assert isinstance(report.faults[0].error, RuntimeError)
        assert report.outcomes[1].ok is True

    @pytest.mark.asyncio
    async def test_filter_skips_handler(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(
            REQUEST_INCOMING, _recorder(calls, "filtered"),
            event_filter=lambda payload: payload.get("path") == "/match",
        )

        report = await d.emit(REQUEST_INCOMING, {"path": "/other"})
        assert calls == []
        assert report.skipped == 1

        await d.emit(REQUEST_INCOMING, {"path": "/match"})
        assert calls == ["filtered"]

    @pytest.mark.asyncio
    async def test_raising_filter_is_a_fault(self):
        d = EventDispatcher()
        calls = []
        d.subscribe(REQUEST_INCOMING, _recorder(calls, "bad"), event_filter=lambda p: p["missing"])
        d.subscribe(REQUEST_INCOMING, _recorder(calls, "good"))

        report = await d.emit(REQUEST_INCOMING, {})
        assert calls == ["good"]
        assert len(report.faults) == 1


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        d = EventDispatcher()
        calls = []
        sub = d.subscribe(REQUEST_INCOMING, _recorder(calls, 1))
        assert d.subscriber_count(REQUEST_INCOMING) == 1

        sub.unsubscribe()
        sub.unsubscribe()  # idempotent
        assert sub.active is False
        assert d.subscriber_count(REQUEST_INCOMING) == 0

        await d.emit(REQUEST_INCOMING)
        assert calls == []

    @pytest.mark.asyncio
    async def test_subscribe_during_dispatch_waits_for_next_publish(self):
        d = EventDispatcher()
        calls = []

        async def adder(event):
            calls.append("adder")
            d.subscribe(REQUEST_INCOMING, _recorder(calls, "late"), priority=-1)

        d.subscribe(REQUEST_INCOMING, adder, priority=10)
        await d.emit(REQUEST_INCOMING)
        assert calls == ["adder"]

    @pytest.mark.asyncio
    async def test_unsubscribe_during_dispatch_takes_effect(self):
        d = EventDispatcher()
        calls = []
        later = d.subscribe(REQUEST_INCOMING, _recorder(calls, "later"), priority=1)

        async def remover(event):
            later.unsubscribe()

        d.subscribe(REQUEST_INCOMING, remover, priority=10)
        await d.emit(REQUEST_INCOMING)
        assert calls == []

    def test_clear(self):
        d = EventDispatcher()
        d.subscribe(REQUEST_INCOMING, lambda e: None)
        d.subscribe(REQUEST_COMPLETED, lambda e: None)
        d.clear()
        assert d.subscriber_count(REQUEST_INCOMING) == 0
        assert d.subscriber_count(REQUEST_COMPLETED) == 0
