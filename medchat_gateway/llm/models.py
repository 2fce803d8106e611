"""
Core relay dataclasses.

This module provides the value types shared by the upstream client, the
stream decoders and the relay:
- Decoding mode and turn status enums
- Relay options and generation parameters
- Client notifications
- The ephemeral per-turn state
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class DecodeMode(Enum):
    """Framing used by the upstream generation stream."""
    NDJSON = "ndjson"
    SSE = "sse"


class TurnStatus(Enum):
    """Lifecycle of a single conversation turn."""
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {TurnStatus.COMPLETE, TurnStatus.FAILED, TurnStatus.CANCELLED}
)


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters forwarded to the upstream model."""
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    max_tokens: int = 1024

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> GenerationParams:
        return cls(
            temperature=config.get("temperature", cls.temperature),
            top_p=config.get("top_p", cls.top_p),
            top_k=config.get("top_k", cls.top_k),
            max_tokens=config.get("max_tokens", cls.max_tokens),
        )


@dataclass(frozen=True)
class RelayOptions:
    """Per-call options for a relay invocation."""
    base_url: str
    model: str
    mode: DecodeMode = DecodeMode.NDJSON
    timeout: float = 30.0

    def with_overrides(self, **overrides: Any) -> RelayOptions:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


@dataclass(frozen=True)
class Notification:
    """Snapshot of the cumulative answer sent to the client."""
    text: str
    partial: bool
    complete: bool = False
    is_fallback: bool = False

    @classmethod
    def partial_snapshot(cls, text: str) -> Notification:
        return cls(text=text, partial=True, complete=False)

    @classmethod
    def final(cls, text: str, *, is_fallback: bool = False) -> Notification:
        return cls(text=text, partial=False, complete=True, is_fallback=is_fallback)

    def to_payload(self) -> dict[str, Any]:
        """Client wire shape of the streaming_response event."""
        payload: dict[str, Any] = {
            "text": self.text,
            "partial": self.partial,
            "complete": self.complete,
        }
        if self.is_fallback:
            payload["isFallback"] = True
        return payload


@dataclass
class ConversationTurn:
    """Ephemeral state for one user message and its generated answer."""
    input_text: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    accumulated_text: str = ""
    status: TurnStatus = TurnStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def append(self, fragment: str) -> str:
        """Append a content fragment and return the cumulative text."""
        self.accumulated_text += fragment
        return self.accumulated_text

    def transition(self, status: TurnStatus) -> None:
        """Move to a new status; terminal states are final."""
        if self.is_terminal:
            raise RuntimeError(
                f"Turn {self.request_id} already {self.status.value}, "
                f"cannot move to {status.value}"
            )
        self.status = status
