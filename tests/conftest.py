import json
from datetime import datetime, timezone

import httpx
import pytest

from relay.config import Settings
from relay.schemas.gateway import Device
from relay.schemas.webhook import WebhookEvent
from relay.services.cache_service import CacheStore
from relay.services.gateway_service import GatewayClient
from relay.services.state_service import ConversationStore

API_BASE = "https://gateway.test/v1"
DEVICE_ID = "dev-1"
CHAT_ID = "15550001111@c.us"
PHONE = "+15550001111"


def make_settings(**overrides) -> Settings:
    values = {
        "api_key": "k" * 64,
        "openai_api_key": "sk-" + "o" * 48,
        "api_base_url": API_BASE,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_device(**overrides) -> Device:
    data = {
        "id": DEVICE_ID,
        "phone": "+15559990000",
        "alias": "Support",
        "status": "operative",
        "session": {"status": "online"},
        "billing": {"subscription": {"product": "io"}},
    }
    data.update(overrides)
    return Device.model_validate(data)


def make_event(body="Hello", **data_overrides) -> WebhookEvent:
    chat = {"id": CHAT_ID, "type": "chat", "fromNumber": PHONE, "labels": []}
    chat.update(data_overrides.pop("chat", {}))
    data = {
        "id": "msg-in-1",
        "type": "text",
        "fromNumber": PHONE,
        "body": body,
        "chat": chat,
        "date": datetime(2024, 5, 6, 10, 0, tzinfo=timezone.utc).isoformat(),
    }
    data.update(data_overrides)
    return WebhookEvent.model_validate({"id": "evt-1", "event": "message:in:new", "data": data})


class GatewayRecorder:
    """Route table for httpx.MockTransport that records every request."""

    def __init__(self):
        self.requests = []
        self.routes = {}

    def on(self, method: str, path: str, response):
        self.routes[(method, path)] = response
        return self

    def calls(self, method: str, path: str):
        return [r for r in self.requests if r.method == method and r.url.path == f"/v1/{path}"]

    def json_bodies(self, method: str, path: str):
        return [json.loads(r.content) for r in self.calls(method, path)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1/")
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(200, json={})
        if callable(route):
            return route(request)
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def device():
    return make_device()


@pytest.fixture
def recorder():
    return GatewayRecorder()


@pytest.fixture
def cache():
    return CacheStore(ttl_seconds=600)


@pytest.fixture
def conversations():
    return ConversationStore(20, max_messages_per_chat=500)


@pytest.fixture
def gateway(recorder, cache, conversations):
    return GatewayClient(
        "k" * 64,
        API_BASE,
        cache=cache,
        conversations=conversations,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )
