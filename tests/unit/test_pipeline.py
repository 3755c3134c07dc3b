# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.
"""Tests for RequestPipeline: admission, cache short-circuit and forwarding."""

import json

import pytest

from gpu_gateway.protocols.events import REQUEST_COMPLETED, ROUTER_SELECTED
TEST_API_KEY = "test-api-key"

AUTH = {"X-API-Key": TEST_API_KEY}


class TestForwarding:
    @pytest.mark.asyncio
    async def test_forwards_and_sets_gateway_headers(self, gateway_ctx, fake_backend, make_request):
        req = make_request(path="/api/v1/models", headers=AUTH, query={"page": "1"})
        result = await gateway_ctx.pipeline.handle(req)

        assert result.status_code == 200
        assert result.outcome == "forwarded"
        body = json.loads(result.body)
        assert body["path"] == "/api/v1/models"
        assert body["query"] == {"page": "1"}

        assert result.headers["X-Request-ID"] == req.request_id
        assert result.headers["X-Gateway-Cache"] == "MISS"
        assert result.headers["X-RateLimit-Limit"] == "5"
        assert result.headers["X-RateLimit-Remaining"] == "4"
        assert result.headers["X-Gateway-Target"] == "http://backend-a:8000"
        assert result.headers["X-Gateway-Duration"].endswith("ms")
        assert result.headers["x-backend"] == "fake"

    @pytest.mark.asyncio
    async def test_backend_sees_request_id_and_client_ip(self, gateway_ctx, fake_backend, make_request):
        req = make_request(headers=AUTH, client_ip="9.9.9.9")
        await gateway_ctx.pipeline.handle(req)

        sent = fake_backend.calls[0]
        assert sent.headers["x-request-id"] == req.request_id
        assert sent.headers["x-forwarded-for"] == "9.9.9.9"
        assert sent.headers["x-api-key"] == TEST_API_KEY

    @pytest.mark.asyncio
    async def test_round_robin_across_targets(self, gateway_ctx, fake_backend, make_request):
        targets = []
        for i in range(3):
            result = await gateway_ctx.pipeline.handle(
                make_request(method="POST", path=f"/api/v1/jobs/{i}", headers=AUTH)
            )
            targets.append(result.headers["X-Gateway-Target"])
        assert targets == [
            "http://backend-a:8000",
            "http://backend-b:8000",
            "http://backend-a:8000",
        ]

    @pytest.mark.asyncio
    async def test_in_flight_released(self, gateway_ctx, fake_backend, make_request):
        await gateway_ctx.pipeline.handle(make_request(headers=AUTH))
        assert all(v == 0 for v in gateway_ctx.router.stats().values())

    @pytest.mark.asyncio
    async def test_backend_error_status_passed_through(self, gateway_ctx, fake_backend, make_request):
        fake_backend.status_code = 503
        result = await gateway_ctx.pipeline.handle(make_request(headers=AUTH))
        assert result.status_code == 503
        assert result.outcome == "forwarded"
        # Error responses are never cached
        assert await gateway_ctx.cache.size() == 0


class TestCache:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, gateway_ctx, fake_backend, make_request):
        first = await gateway_ctx.pipeline.handle(make_request(headers=AUTH))
        second = await gateway_ctx.pipeline.handle(make_request(headers=AUTH))

        assert first.headers["X-Gateway-Cache"] == "MISS"
        assert second.headers["X-Gateway-Cache"] == "HIT"
        assert second.outcome == "cache_hit"
        assert json.loads(second.body) == json.loads(first.body)
        assert len(fake_backend.calls) == 1

    @pytest.mark.asyncio
    async def test_query_order_shares_entry(self, gateway_ctx, fake_backend, make_request):
        await gateway_ctx.pipeline.handle(make_request(headers=AUTH, query={"a": "1", "b": "2"}))
        result = await gateway_ctx.pipeline.handle(
            make_request(headers=AUTH, query={"b": "2", "a": "1"})
        )
        assert result.headers["X-Gateway-Cache"] == "HIT"
        assert len(fake_backend.calls) == 1

    @pytest.mark.asyncio
    async def test_post_bypasses_cache(self, gateway_ctx, fake_backend, make_request):
        for _ in range(2):
            result = await gateway_ctx.pipeline.handle(
                make_request(method="POST", path="/api/v1/inference", headers=AUTH)
            )
            assert result.headers["X-Gateway-Cache"] == "BYPASS"
        assert len(fake_backend.calls) == 2
        assert await gateway_ctx.cache.size() == 0

    @pytest.mark.asyncio
    async def test_repeated_query_names_cached_separately(self, gateway_ctx, fake_backend, make_request):
        def tagged(query_string):
            req = make_request(headers=AUTH)
            req.query_string = query_string
            return req

        await gateway_ctx.pipeline.handle(tagged("tag=a&tag=b"))
        reordered = await gateway_ctx.pipeline.handle(tagged("tag=b&tag=a"))
        single = await gateway_ctx.pipeline.handle(tagged("tag=a"))

        # Value order of a repeated name is significant
        assert reordered.headers["X-Gateway-Cache"] == "MISS"
        assert single.headers["X-Gateway-Cache"] == "MISS"
        assert [c.url.query for c in fake_backend.calls] == [b"tag=a&tag=b", b"tag=b&tag=a", b"tag=a"]

    @pytest.mark.asyncio
    async def test_per_client_headers_not_cached(self, gateway_ctx, fake_backend, make_request):
        fake_backend.extra_headers = [
            ("set-cookie", "session=alice"),
            ("set-cookie", "theme=dark"),
            ("cache-control", "max-age=60"),
        ]
        first = await gateway_ctx.pipeline.handle(make_request(headers=AUTH))
        second = await gateway_ctx.pipeline.handle(make_request(headers=AUTH))

        assert first.headers.get_list("set-cookie") == ["session=alice", "theme=dark"]
        assert second.headers["X-Gateway-Cache"] == "HIT"
        assert "set-cookie" not in second.headers
        assert second.headers["cache-control"] == "max-age=60"
        # The hit carries its own request id, not the cached one
        assert second.headers["X-Request-ID"] != first.headers["X-Request-ID"]


class TestAdmission:
    @pytest.mark.asyncio
    async def test_missing_credentials(self, gateway_ctx, fake_backend, make_request):
        result = await gateway_ctx.pipeline.handle(make_request())

        assert result.status_code == 401
        assert result.outcome == "rejected"
        body = json.loads(result.body)
        assert body["error"]["code"] == "UNAUTHORIZED"
        assert fake_backend.calls == []
        assert "X-Gateway-Target" not in result.headers

    @pytest.mark.asyncio
    async def test_invalid_api_key(self, gateway_ctx, fake_backend, make_request):
        result = await gateway_ctx.pipeline.handle(make_request(headers={"X-API-Key": "nope"}))
        assert result.status_code == 401
        assert json.loads(result.body)["error"]["code"] == "INVALID_CREDENTIALS"
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_rate_limited_after_max_requests(self, gateway_ctx, fake_backend, make_request):
        for i in range(5):
            ok = await gateway_ctx.pipeline.handle(
                make_request(method="POST", path="/api/v1/inference", headers=AUTH)
            )
            assert ok.status_code == 200

        result = await gateway_ctx.pipeline.handle(
            make_request(method="POST", path="/api/v1/inference", headers=AUTH)
        )
        assert result.status_code == 429
        assert int(result.headers["Retry-After"]) >= 1
        assert result.headers["X-RateLimit-Remaining"] == "0"
        body = json.loads(result.body)
        assert body["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert len(fake_backend.calls) == 5

    @pytest.mark.asyncio
    async def test_rejection_skips_router(self, gateway_ctx, make_request, record_events):
        recorder = record_events(gateway_ctx.dispatcher, ROUTER_SELECTED)
        await gateway_ctx.pipeline.handle(make_request())
        assert recorder.events == []


class TestUpstreamFailure:
    @pytest.mark.asyncio
    async def test_unreachable_backend(self, gateway_ctx, fake_backend, make_request):
        fake_backend.fail = True
        req = make_request(headers=AUTH)
        result = await gateway_ctx.pipeline.handle(req)

        assert result.status_code == 502
        assert result.outcome == "upstream_error"
        body = json.loads(result.body)
        assert body["error"]["code"] == "BAD_GATEWAY"
        assert body["error"]["requestId"] == req.request_id
        assert all(v == 0 for v in gateway_ctx.router.stats().values())


class TestCompletion:
    @pytest.mark.asyncio
    async def test_completed_event(self, gateway_ctx, fake_backend, make_request, record_events):
        recorder = record_events(gateway_ctx.dispatcher, REQUEST_COMPLETED)
        req = make_request(headers=AUTH)
        await gateway_ctx.pipeline.handle(req)

        (event,) = recorder.events
        assert event.payload["request_id"] == req.request_id
        assert event.payload["status_code"] == 200
        assert event.payload["outcome"] == "forwarded"
        assert event.payload["cache_status"] == "MISS"
        assert event.payload["target"] == "http://backend-a:8000"

    @pytest.mark.asyncio
    async def test_metrics_follow_events(self, gateway_ctx, fake_backend, make_request):
        await gateway_ctx.pipeline.handle(make_request(headers=AUTH))
        await gateway_ctx.pipeline.handle(make_request(headers=AUTH))
        await gateway_ctx.pipeline.handle(make_request())

        metrics = gateway_ctx.metrics
        assert metrics.get_counter("requests_total") == 3
        assert metrics.get_counter("requests_2xx") == 2
        assert metrics.get_counter("requests_4xx") == 1
        assert metrics.get_counter("cache_hits") == 1
        assert metrics.get_counter("cache_misses") == 1
        assert metrics.get_counter("auth_rejected") == 1
        assert gateway_ctx.collector.cache_hit_rate() == 0.5
