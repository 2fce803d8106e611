"""
WebSocket and HTTP surface of the gateway.

Frames exchanged over the WebSocket are JSON objects of the form
`{"event": <name>, "data": {...}}`:

    Client -> Server: {"event": "send_message", "data": {"message": "..."}}
    Server -> Client: {"event": "welcome", "data": {"message", "id", "timestamp"}}
    Server -> Client: {"event": "chat_message", "data": {"text", "isUser", "timestamp"}}
    Server -> Client: {"event": "streaming_response", "data": {"text", "partial", "complete"}}
    Server -> Client: {"event": "error", "data": {"message": "..."}}
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.websockets import WebSocketState

from .chat_service import EVENT_ERROR, ChannelClosedError, ChatService
from .llm.client import UpstreamClient
from .llm.models import RelayOptions
from .responses import MALFORMED_EVENT_ERROR, NOT_FOUND_ERROR

logger = logging.getLogger(__name__)

SERVICE_NAME = "Medical Chat Gateway"
SERVICE_VERSION = "2.0.0"


class WebSocketChannel:
    """ClientChannel over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.closed = False

    @property
    def connected(self) -> bool:
        return (
            not self.closed
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    async def send(self, event: str, data: dict[str, Any]) -> None:
        if not self.connected:
            raise ChannelClosedError("WebSocket is closed")
        await self.websocket.send_json({"event": event, "data": data})


class ServerConfig(BaseModel):
    """Everything the HTTP/WebSocket app needs, built once at startup."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    chat_service: ChatService
    client: UpstreamClient
    relay_options: RelayOptions
    health_timeout: float = 10.0
    websocket: dict[str, Any] = Field(default_factory=dict)
    log_level: str = "info"
    shutdown_event: asyncio.Event | None = None


def _client_ip(websocket: WebSocket) -> str:
    forwarded = websocket.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return websocket.client.host if websocket.client else "unknown"


def create_app(server_config: ServerConfig) -> FastAPI:
    """Build the FastAPI application."""
    service = server_config.chat_service
    store = service.store
    ws_config = server_config.websocket
    endpoint = ws_config.get("endpoint", "/ws/chat")

    app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION)

    allowed_origins = ws_config.get("allowed_origins", [])
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.exception_handler(404)
    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=404, content={
            "error": "Endpoint not found",
            "message": NOT_FOUND_ERROR,
            "availableEndpoints": ["/health", "/api/health", "/api/test", endpoint],
        })

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "OK",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime": store.uptime,
            "connections": store.count,
        }

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        upstream = await server_config.client.health_check(
            server_config.relay_options, timeout=server_config.health_timeout
        )
        return {
            "status": "OK",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime": store.uptime,
            "connections": store.count,
            "upstream": upstream,
            "relay": service.relay.get_statistics(),
            "rateLimit": store.rate_limiter.get_statistics(),
            "clients": store.snapshot(),
        }

    @app.get("/api/test")
    async def api_test() -> dict[str, Any]:
        return {
            "message": "Medical chat gateway is running",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": SERVICE_VERSION,
        }

    @app.websocket(endpoint)
    async def chat_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        channel = WebSocketChannel(websocket)

        try:
            await service.on_connect(
                channel,
                connection_id,
                _client_ip(websocket),
                websocket.headers.get("user-agent", ""),
            )
            while True:
                raw = await websocket.receive_text()
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    await channel.send(EVENT_ERROR, {"message": MALFORMED_EVENT_ERROR})
                    continue
                await service.handle_event(connection_id, channel, frame)
        except WebSocketDisconnect as e:
            logger.info(f"WebSocket {connection_id} closed with code {e.code}")
        except ChannelClosedError:
            logger.info(f"WebSocket {connection_id} closed while sending")
        finally:
            channel.closed = True
            await service.on_disconnect(connection_id)

    return app


async def run_websocket_server(server_config: ServerConfig) -> None:
    """Serve the app with uvicorn until the shutdown event is set."""
    ws_config = server_config.websocket
    app = create_app(server_config)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=ws_config.get("host", "0.0.0.0"),
        port=int(ws_config.get("port", 10000)),
        log_level=server_config.log_level,
    ))

    async def watch_shutdown() -> None:
        if server_config.shutdown_event is not None:
            await server_config.shutdown_event.wait()
            server.should_exit = True

    watcher = asyncio.create_task(watch_shutdown())
    logger.info(
        f"Serving {SERVICE_NAME} on "
        f"ws://{ws_config.get('host', '0.0.0.0')}:{ws_config.get('port', 10000)}"
        f"{ws_config.get('endpoint', '/ws/chat')}"
    )
    try:
        await server.serve()
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
