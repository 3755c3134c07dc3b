# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.
"""Unit tests for protocol schema models."""

import pytest
from pydantic import ValidationError

from gpu_gateway.protocols.schema import CacheEntry, GatewayEvent, JobRecord, WorkerRecord
from gpu_gateway.protocols.events import ALL_EVENT_NAMES, REQUEST_INCOMING


class TestGatewayEvent:
    def test_create_defaults(self):
        evt = GatewayEvent.create(REQUEST_INCOMING, {"a": 1}, source="test")
        assert evt.name == REQUEST_INCOMING
        assert evt.payload == {"a": 1}
        assert evt.source == "test"
        assert len(evt.id) == 36
        assert evt.cancelled is False

    def test_name_is_frozen(self):
        evt = GatewayEvent.create(REQUEST_INCOMING)
        with pytest.raises(ValidationError):
            evt.name = "request:completed"

    def test_cancel_is_monotonic(self):
        evt = GatewayEvent.create(REQUEST_INCOMING)
        evt.cancel()
        evt.cancel()
        assert evt.cancelled is True

    def test_rejects_bad_names(self):
        with pytest.raises(ValidationError):
            GatewayEvent.create("Request:Incoming")
        with pytest.raises(ValidationError):
            GatewayEvent.create("incoming")

    def test_all_event_names_are_valid(self):
        for name in ALL_EVENT_NAMES:
            GatewayEvent.create(name)


class TestWorkerRecord:
    def test_ignores_unknown_fields(self):
        rec = WorkerRecord.model_validate({
            "worker_id": "w-1",
            "region": "us-west",
            "status": "idle",
            "gpu": {"name": "A100", "memory_total_mb": 81920, "vendor": "nvidia"},
            "extra_field": True,
        })
        assert rec.gpu.name == "A100"
        assert rec.status == "idle"

    def test_event_payload(self):
        rec = WorkerRecord(worker_id="w-1", region="eu-west", status="busy")
        payload = rec.event_payload()
        assert payload["worker_id"] == "w-1"
        assert payload["status"] == "busy"
        assert rec.event_payload(status="offline")["status"] == "offline"

    def test_invalid_status(self):
        with pytest.raises(ValidationError):
            WorkerRecord(worker_id="w-1", status="sleeping")


class TestJobRecord:
    def test_terminal_states(self):
        assert JobRecord(job_id="j", status="completed").is_terminal
        assert JobRecord(job_id="j", status="failed").is_terminal
        assert JobRecord(job_id="j", status="cancelled").is_terminal
        assert not JobRecord(job_id="j", status="processing").is_terminal

    def test_duration_ms(self):
        job = JobRecord(
            job_id="j",
            status="completed",
            created_at="2026-01-01T00:00:00Z",
            completed_at="2026-01-01T00:00:02.500Z",
        )
        assert job.duration_ms() == 2500

    def test_duration_unknown_without_completion(self):
        job = JobRecord(job_id="j", status="processing", created_at="2026-01-01T00:00:00Z")
        assert job.duration_ms() is None


class TestCacheEntry:
    def test_freshness(self):
        entry = CacheEntry(status_code=200, body="{}", cached_at=1000)
        assert entry.is_fresh(now_ms=1000 + 59_999, ttl_ms=60_000)
        assert not entry.is_fresh(now_ms=1000 + 60_000, ttl_ms=60_000)
