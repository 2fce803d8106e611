#!/usr/bin/env python3
"""
Tests for the FastAPI WebSocket/HTTP surface.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from medchat_gateway.chat_service import ChannelClosedError, ChatService
from medchat_gateway.llm.client import UpstreamClient
from medchat_gateway.llm.models import RelayOptions
from medchat_gateway.relay import StreamRelay
from medchat_gateway.store import SessionStore
from medchat_gateway.websocket_server import (
    ServerConfig,
    WebSocketChannel,
    create_app,
)

OPTIONS = RelayOptions(base_url="http://upstream.test", model="m", timeout=5.0)


def upstream_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/tags":
        return httpx.Response(200, json={"models": [{"name": "deepseek-r1:8b"}]})
    if request.url.path == "/api/generate":
        return httpx.Response(
            200,
            content=b'{"response":"Drink"}\n{"response":" water"}\n{"done":true}\n',
        )
    return httpx.Response(404)


def build_client(handler=upstream_handler, max_input_length=50) -> TestClient:
    upstream = UpstreamClient(transport=httpx.MockTransport(handler))
    relay = StreamRelay(
        upstream, OPTIONS, fallback_messages=("fallback",),
        max_input_length=max_input_length,
    )
    service = ChatService(ChatService.ChatServiceConfig(
        relay=relay, store=SessionStore(), welcome_message="Welcome!",
    ))
    app = create_app(ServerConfig(
        chat_service=service,
        client=upstream,
        relay_options=OPTIONS,
        websocket={"endpoint": "/ws/chat", "allowed_origins": ["http://localhost:3000"]},
    ))
    return TestClient(app)


@pytest.fixture
def client():
    return build_client()


def test_health(client):
    """Basic health reports status and no connections."""
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["connections"] == 0


def test_api_health_reports_upstream(client):
    """Detailed health includes the upstream probe and relay counters."""
    body = client.get("/api/health").json()
    assert body["upstream"]["healthy"] is True
    assert body["upstream"]["models"] == ["deepseek-r1:8b"]
    assert body["relay"]["turns_started"] == 0
    assert body["clients"] == []


def test_api_health_with_upstream_down():
    """An unreachable upstream is reported, not raised."""
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    body = build_client(refuse).get("/api/health").json()
    assert body["status"] == "OK"
    assert body["upstream"]["healthy"] is False


def test_api_test(client):
    """The version banner carries the service version."""
    assert client.get("/api/test").json()["version"] == "2.0.0"


def test_unknown_path_returns_json_404(client):
    """Unknown paths get a JSON body listing the real endpoints."""
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "Endpoint not found"
    assert body["message"]
    assert "/api/health" in body["availableEndpoints"]
    assert "/ws/chat" in body["availableEndpoints"]


def test_chat_round_trip(client):
    """Welcome, echo, then partial snapshots ending in one complete."""
    with client.websocket_connect("/ws/chat") as ws:
        welcome = ws.receive_json()
        assert welcome["event"] == "welcome"
        assert welcome["data"]["message"] == "Welcome!"

        ws.send_json({"event": "send_message", "data": {"message": "I feel dizzy"}})

        echo = ws.receive_json()
        assert echo["event"] == "chat_message"
        assert echo["data"]["text"] == "I feel dizzy"
        assert echo["data"]["isUser"] is True

        frames = []
        while True:
            frame = ws.receive_json()
            assert frame["event"] == "streaming_response"
            frames.append(frame["data"])
            if frame["data"]["complete"]:
                break

    assert [f["text"] for f in frames] == ["Drink", "Drink water", "Drink water"]
    assert [f["partial"] for f in frames] == [True, True, False]


def test_oversize_message_gets_error_event():
    """Messages over the limit are answered with an error event."""
    with build_client(max_input_length=5).websocket_connect("/ws/chat") as ws:
        ws.receive_json()
        ws.send_json({"event": "send_message", "data": {"message": "far too long"}})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["message"]


def test_invalid_json_gets_error_event(client):
    """A frame that is not JSON gets an error event and the socket stays open."""
    with client.websocket_connect("/ws/chat") as ws:
        ws.receive_json()
        ws.send_text("{not json")
        assert ws.receive_json()["event"] == "error"


def test_connection_count_tracks_sockets(client):
    """Open sockets are counted and listed; closed ones are forgotten."""
    with client.websocket_connect(
        "/ws/chat", headers={"user-agent": "pytest-browser"}
    ) as ws:
        welcome = ws.receive_json()
        assert client.get("/health").json()["connections"] == 1

        clients = client.get("/api/health").json()["clients"]
        assert len(clients) == 1
        assert clients[0]["id"] == welcome["data"]["id"]
        assert clients[0]["userAgent"] == "pytest-browser"
        assert clients[0]["messages"] == 0

    assert client.get("/health").json()["connections"] == 0


def test_failed_welcome_does_not_leak_connection(client, monkeypatch):
    """A client gone before the welcome is still unregistered."""
    original_send = WebSocketChannel.send

    async def send_without_welcome(self, event, data):
        if event == "welcome":
            raise ChannelClosedError("client left during handshake")
        await original_send(self, event, data)

    monkeypatch.setattr(WebSocketChannel, "send", send_without_welcome)

    with client.websocket_connect("/ws/chat"):
        pass

    assert client.get("/health").json()["connections"] == 0
