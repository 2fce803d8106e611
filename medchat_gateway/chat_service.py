"""
Chat Service for the medical chat gateway.

This module handles the business logic for chat sessions, independent of
the transport carrying them:
- Connection lifecycle (welcome message, registry bookkeeping)
- Inbound message validation and rate limiting
- One relay turn per accepted message, streamed back as
  `streaming_response` events
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .llm.exceptions import MessageValidationError
from .llm.models import Notification
from .logging_utils import operation_context
from .relay import StreamRelay
from .responses import (
    MALFORMED_EVENT_ERROR,
    PROCESSING_ERROR,
    RATE_LIMITED_ERROR,
    WELCOME_MESSAGE,
)
from .store import SessionStore

logger = logging.getLogger(__name__)

# Event names of the client-facing contract
EVENT_SEND_MESSAGE = "send_message"
EVENT_WELCOME = "welcome"
EVENT_CHAT_MESSAGE = "chat_message"
EVENT_STREAMING_RESPONSE = "streaming_response"
EVENT_ERROR = "error"


class ClientChannel(Protocol):
    """Outbound side of one client connection."""

    @property
    def connected(self) -> bool: ...

    async def send(self, event: str, data: dict[str, Any]) -> None: ...


class ChannelClosedError(ConnectionError):
    """Raised by a channel asked to send after its client went away."""


class SendMessagePayload(BaseModel):
    """Payload of the inbound send_message event."""
    model_config = ConfigDict(extra="ignore")

    message: str


class ClientEvent(BaseModel):
    """Envelope of every frame exchanged with the client."""
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class ChatService:
    """
    Conversation orchestrator
    1. Greets and registers the client
    2. Validates each message it sends
    3. Hands accepted messages to the stream relay
    4. Forwards the relay's snapshots back to the client
    """

    class ChatServiceConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        relay: StreamRelay
        store: SessionStore
        welcome_message: str = WELCOME_MESSAGE
        rate_limit_enabled: bool = True

    def __init__(self, service_config: ChatService.ChatServiceConfig):
        self.relay = service_config.relay
        self.store = service_config.store
        self.welcome_message = service_config.welcome_message
        self.rate_limit_enabled = service_config.rate_limit_enabled

    async def on_connect(
        self,
        channel: ClientChannel,
        connection_id: str,
        ip: str,
        user_agent: str = "",
    ) -> None:
        """Register the connection and greet the client."""
        self.store.register(connection_id, ip, user_agent)
        await channel.send(EVENT_WELCOME, {
            "message": self.welcome_message,
            "id": connection_id,
            "timestamp": _timestamp(),
        })

    async def on_disconnect(self, connection_id: str) -> None:
        """Forget the connection and cancel whatever it still has in flight."""
        self.store.unregister(connection_id)

    async def handle_event(
        self, connection_id: str, channel: ClientChannel, raw: dict[str, Any]
    ) -> asyncio.Task | None:
        """Dispatch one decoded client frame."""
        try:
            event = ClientEvent.model_validate(raw)
        except ValidationError:
            await self._send_error(channel, MALFORMED_EVENT_ERROR)
            return None

        if event.event != EVENT_SEND_MESSAGE:
            logger.warning(f"Unknown event '{event.event}' from {connection_id}")
            await self._send_error(channel, MALFORMED_EVENT_ERROR)
            return None

        return await self.handle_message(connection_id, channel, event.data)

    async def handle_message(
        self, connection_id: str, channel: ClientChannel, payload: dict[str, Any]
    ) -> asyncio.Task | None:
        """
        Validate a send_message payload and start its relay turn.

        Returns:
            The task running the turn, or None when the message was rejected
        """
        try:
            text = self._accept(connection_id, payload)
        except MessageValidationError as e:
            logger.info(f"Rejected message from {connection_id}: {e.reason}")
            await self._send_error(channel, e.message)
            return None

        await channel.send(EVENT_CHAT_MESSAGE, {
            "text": text,
            "isUser": True,
            "timestamp": _timestamp(),
        })

        task = asyncio.create_task(
            self._run_turn(connection_id, channel, text),
            name=f"turn-{connection_id}",
        )
        self.store.track_turn(connection_id, task)
        return task

    def _accept(self, connection_id: str, payload: dict[str, Any]) -> str:
        try:
            message = SendMessagePayload.model_validate(payload)
        except ValidationError as e:
            raise MessageValidationError(
                MessageValidationError.MALFORMED, MALFORMED_EVENT_ERROR
            ) from e

        text = self.relay.validate_input(message.message)

        if self.rate_limit_enabled:
            result = self.store.check_rate_limit(connection_id)
            if not result.allowed:
                raise MessageValidationError(
                    MessageValidationError.RATE_LIMITED,
                    RATE_LIMITED_ERROR.format(seconds=int(result.wait_time) + 1),
                )
        return text

    async def _run_turn(
        self, connection_id: str, channel: ClientChannel, text: str
    ) -> str:
        async def notify(notification: Notification) -> None:
            if not channel.connected:
                raise ChannelClosedError(f"Client {connection_id} disconnected")
            await channel.send(EVENT_STREAMING_RESPONSE, notification.to_payload())

        async with operation_context(
            "chat_turn", context={"connection_id": connection_id}
        ):
            try:
                return await self.relay.relay(text, notify)
            except MessageValidationError as e:
                await self._send_error(channel, e.message)
                return ""
            except Exception:
                logger.exception(f"Message processing error for {connection_id}")
                await self._send_error(channel, PROCESSING_ERROR)
                return ""

    async def _send_error(self, channel: ClientChannel, message: str) -> None:
        if channel.connected:
            await channel.send(EVENT_ERROR, {"message": message})
