"""
Upstream LLM integration for the gateway.

This package provides:
- Type-safe dataclass models for turns, options and notifications
- An httpx client for Ollama (NDJSON) and OpenAI-compatible (SSE) backends
- Incremental stream decoders
- Per-client rate limiting
"""

from __future__ import annotations

from .client import UpstreamClient
from .exceptions import (
    LLMError,
    MessageValidationError,
    StreamingError,
    UpstreamStatusError,
)
from .models import (
    ConversationTurn,
    DecodeMode,
    GenerationParams,
    Notification,
    RelayOptions,
    TurnStatus,
)

__all__ = [
    "ConversationTurn",
    "DecodeMode",
    "GenerationParams",
    # Exceptions
    "LLMError",
    "MessageValidationError",
    "Notification",
    "RelayOptions",
    "StreamingError",
    "TurnStatus",
    # Client
    "UpstreamClient",
    "UpstreamStatusError",
]
