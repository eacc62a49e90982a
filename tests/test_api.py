"""HTTP surface: the AI chat gateway proxy, health check and realtime WebSocket relay."""
from __future__ import annotations

import gzip
import json
from typing import Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from uniconnect.backend.realtime import ChangeEvent
from uniconnect.config import get_settings
from uniconnect.main import app
from uniconnect.routers.ai_chat import set_gateway_transport

SSE_BODY = (
    b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":" there"}}]}\n\n'
    b"data: [DONE]\n\n"
)


@pytest.fixture
def configure(monkeypatch) -> Iterator[Callable[..., None]]:
    def _configure(**env: str) -> None:
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        get_settings.cache_clear()

    _configure(AI_GATEWAY_API_KEY="gateway-secret", AI_MODEL="test-model")
    yield _configure
    set_gateway_transport(None)
    get_settings.cache_clear()


class Upstream:
    """Records gateway requests and answers each with ``response``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.response = httpx.Response(200, content=SSE_BODY, headers={"content-type": "text/event-stream"})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


@pytest.fixture
def upstream() -> Upstream:
    gateway = Upstream()
    set_gateway_transport(httpx.MockTransport(gateway))
    return gateway


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _chat(client: TestClient, role: str = "student", **headers: str):
    return client.post(
        "/functions/v1/ai-chat",
        json={"messages": [{"role": "user", "content": "What is a monad?"}], "role": role},
        headers=headers,
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_chat_streams_gateway_response(configure, upstream, client):
    response = _chat(client)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.content == SSE_BODY

    (request,) = upstream.requests
    payload = json.loads(request.content)
    assert request.headers["authorization"] == "Bearer gateway-secret"
    assert payload["model"] == "test-model"
    assert payload["stream"] is True
    assert payload["messages"][0]["role"] == "system"
    assert "UniBot" in payload["messages"][0]["content"]
    assert payload["messages"][1:] == [{"role": "user", "content": "What is a monad?"}]


def test_compressed_gateway_stream_is_relayed_decoded(configure, upstream, client):
    upstream.response = httpx.Response(
        200,
        content=gzip.compress(SSE_BODY),
        headers={"content-type": "text/event-stream", "content-encoding": "gzip"},
    )

    response = _chat(client)

    assert response.status_code == 200
    assert "content-encoding" not in response.headers
    assert response.content == SSE_BODY


def test_admin_mode_uses_the_admin_prompt(configure, upstream, client):
    _chat(client, role="admin")

    system = json.loads(upstream.requests[0].content)["messages"][0]["content"]
    assert "admin" in system.lower()


@pytest.mark.parametrize(
    ("upstream_status", "status", "error"),
    [
        (429, 429, "Rate limit exceeded. Please try again in a moment."),
        (402, 402, "AI credits exhausted. Please contact the administrator."),
        (503, 500, "AI service temporarily unavailable."),
    ],
)
def test_gateway_errors_are_mapped(configure, upstream, client, upstream_status, status, error):
    upstream.response = httpx.Response(upstream_status, json={"error": "upstream detail"})

    response = _chat(client)

    assert response.status_code == status
    assert response.json() == {"error": error}


def test_unreachable_gateway_returns_500(configure, client):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    set_gateway_transport(httpx.MockTransport(handler))

    response = _chat(client)

    assert response.status_code == 500
    assert response.json() == {"error": "AI service temporarily unavailable."}


def test_missing_gateway_key_is_a_server_error(configure, upstream, client):
    configure(AI_GATEWAY_API_KEY="")

    response = _chat(client)

    assert response.status_code == 500
    assert "AI_GATEWAY_API_KEY" in response.json()["error"]
    assert upstream.requests == []


def test_public_key_is_checked_when_configured(configure, upstream, client):
    configure(AI_CHAT_PUBLIC_KEY="anon-key")

    assert _chat(client).status_code == 401
    assert _chat(client, Authorization="Bearer wrong").status_code == 401
    assert _chat(client, Authorization="Bearer anon-key").status_code == 200


def test_empty_conversation_is_rejected(configure, upstream, client):
    response = client.post("/functions/v1/ai-chat", json={"messages": []})

    assert response.status_code == 422


def test_realtime_socket_relays_public_tables(client):
    with client.websocket_connect("/realtime/ws") as websocket:
        websocket.send_text("ping")
        assert websocket.receive_json() == {"type": "pong"}

        websocket.send_json({"type": "subscribe", "table": "messages"})
        assert websocket.receive_json()["type"] == "error"

        websocket.send_json({"type": "subscribe", "table": "posts", "event": "INSERT"})
        assert websocket.receive_json() == {"type": "subscribed", "table": "posts"}

        bus = app.state.backend.bus
        async def publish() -> None:
            bus.publish([ChangeEvent(table="posts", event_type="INSERT", new={"id": "p1"})])

        client.portal.call(publish)
        message = websocket.receive_json()

    assert message["type"] == "change"
    assert message["payload"]["table"] == "posts"
    assert message["payload"]["new"] == {"id": "p1"}
