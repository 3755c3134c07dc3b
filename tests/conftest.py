# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Shared test fixtures for all gateway tests.
"""

import json
import uuid

import fakeredis
import fakeredis.aioredis
import httpx
import pytest

from gpu_gateway.core.config import GatewaySettings
from gpu_gateway.core.context import init_gateway_context, reset_gateway_context
from gpu_gateway.core.request_context import RequestContext
from gpu_gateway.kernel.dispatcher import EventDispatcher
from gpu_gateway.kernel.redis_client import inject_redis_for_test
from gpu_gateway.kernel.store import SharedStore

TEST_API_KEY = "test-api-key"
TEST_SALT = "test-salt"


class FakeBackend:
    """Stand-in inference backend behind httpx.MockTransport."""

    def __init__(self):
        self.calls = []
        self.status_code = 200
        self.fail = False
        # Extra (name, value) response headers; repeats allowed
        self.extra_headers = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        self.calls.append(request)
        return httpx.Response(
            self.status_code,
            json={
                "path": request.url.path,
                "query": dict(request.url.params),
                "raw_query": request.url.query.decode(),
                "call": len(self.calls),
            },
            headers=[("x-backend", "fake"), *self.extra_headers],
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class EventRecorder:
    """Collects events published on a dispatcher."""

    def __init__(self, dispatcher: EventDispatcher, *names: str):
        self.events = []
        for name in names:
            dispatcher.subscribe(name, self.events.append)

    def names(self):
        return [e.name for e in self.events]

    def of(self, name: str):
        return [e for e in self.events if e.name == name]


@pytest.fixture
def fake_server():
    """A fakeredis server whose `connected` flag simulates outages."""
    return fakeredis.FakeServer()


@pytest.fixture
def mock_redis(fake_server):
    """Provide a FakeRedis async instance and inject it as the pool."""
    r = fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True)
    inject_redis_for_test(r)
    return r


@pytest.fixture
def store(mock_redis) -> SharedStore:
    return SharedStore(mock_redis)


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def test_settings() -> GatewaySettings:
    return GatewaySettings(
        _env_file=None,
        AUTH_API_KEYS=f"{TEST_API_KEY},other-key",
        AUTH_TOKEN_SALT=TEST_SALT,
        BACKEND_TARGETS="http://backend-a:8000|us-west,http://backend-b:8000|eu-west",
        RATE_LIMIT_MAX_REQUESTS=5,
        CACHE_TTL_SECONDS=60,
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def gateway_ctx(mock_redis, test_settings, fake_backend):
    """GatewayContext wired to FakeRedis and the fake backend, stages installed."""
    ctx = init_gateway_context(mock_redis, test_settings, backend_transport=fake_backend.transport)
    ctx.install()
    yield ctx
    ctx.pipeline.uninstall()
    ctx.collector.uninstall()
    reset_gateway_context()


@pytest.fixture
def make_request():
    """Factory for RequestContext objects."""

    def _make(method="GET", path="/api/v1/models", headers=None, query=None, client_ip="1.2.3.4"):
        return RequestContext(
            method=method,
            path=path,
            headers=headers or {},
            query=query or {},
            client_ip=client_ip,
            request_id=str(uuid.uuid4()),
        )

    return _make


@pytest.fixture
def seed_json(mock_redis):
    """Write a JSON value straight into the fake store (as workers would)."""

    async def _seed(key, value):
        await mock_redis.set(key, json.dumps(value))

    return _seed


@pytest.fixture
def record_events():
    """Factory: record_events(dispatcher, *event_names) -> EventRecorder."""
    return EventRecorder
