"""Tests for event bus clients."""

import json

import httpx
import pytest

from edujobs.engine import (
    DeliveryError,
    Event,
    FunctionRegistry,
    HttpEventBus,
    InMemoryRunStore,
    JobEngine,
    LocalEventBus,
    ValidationError,
)
from edujobs.engine.client import prepare_events
from edujobs.engine.signing import SIGNATURE_HEADER, verify

BROKER_URL = "https://broker.example.com/e/key"


def bus_with(handler, signing_key=None) -> HttpEventBus:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpEventBus(BROKER_URL, signing_key=signing_key, client=client)


class TestPrepareEvents:
    def test_single_event_is_wrapped(self):
        prepared = prepare_events({"name": "user/created", "data": {"user_id": "u1"}})
        assert len(prepared) == 1
        assert prepared[0].id
        assert prepared[0].ts is not None

    def test_existing_id_is_kept(self):
        prepared = prepare_events([Event(name="a/b", id="fixed")])
        assert prepared[0].id == "fixed"

    def test_missing_name_raises(self):
        with pytest.raises(ValidationError):
            prepare_events([{"data": {}}])


class TestHttpEventBus:
    @pytest.mark.asyncio
    async def test_posts_wire_events(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            captured["headers"] = request.headers
            return httpx.Response(200, json={"status": "accepted"})

        bus = bus_with(handler)
        receipt = await bus.send([{"name": "a/b", "data": {"x": 1}, "id": "e1"}])

        assert receipt.ids == ["e1"]
        assert captured["url"] == BROKER_URL
        assert captured["body"][0]["name"] == "a/b"
        assert captured["body"][0]["data"] == {"x": 1}
        assert SIGNATURE_HEADER not in captured["headers"]
        await bus.close()

    @pytest.mark.asyncio
    async def test_signs_body_when_key_configured(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = request.content
            captured["signature"] = request.headers.get(SIGNATURE_HEADER)
            return httpx.Response(200)

        bus = bus_with(handler, signing_key="secret")
        await bus.send({"name": "a/b"})

        assert captured["signature"]
        assert verify("secret", captured["body"], captured["signature"])

    @pytest.mark.asyncio
    async def test_server_error_raises_delivery_error(self):
        bus = bus_with(lambda request: httpx.Response(502))

        with pytest.raises(DeliveryError) as exc_info:
            await bus.send({"name": "a/b"})

        assert exc_info.value.status_code == 502
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_unreachable_broker_raises_delivery_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        bus = bus_with(handler)

        with pytest.raises(DeliveryError, match="unreachable"):
            await bus.send({"name": "a/b"})

    @pytest.mark.asyncio
    async def test_empty_list_sends_nothing(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        receipt = await bus_with(handler).send([])

        assert receipt.ids == []
        assert calls == []


class TestLocalEventBus:
    @pytest.mark.asyncio
    async def test_send_creates_runs(self):
        registry = FunctionRegistry()

        @registry.function("listener", "a/b")
        async def listener(ctx):
            return None

        engine = JobEngine(InMemoryRunStore(), registry.freeze())
        bus = LocalEventBus(engine)

        receipt = await bus.send({"name": "a/b", "id": "local-1"})

        assert receipt.ids == ["local-1"]
        runs, total = await engine.store.list_runs(function_id="listener")
        assert total == 1
        assert runs[0].event_id == "local-1"

    @pytest.mark.asyncio
    async def test_engine_defaults_to_local_bus(self):
        engine = JobEngine(InMemoryRunStore(), FunctionRegistry().freeze())
        assert isinstance(engine.bus, LocalEventBus)
