"""
Error types for upstream LLM operations and inbound message validation.

Upstream errors (everything deriving from LLMError) are absorbed by the
relay and turned into a fallback answer. MessageValidationError is raised
before any upstream call and is surfaced to the client as an error event.
"""

from __future__ import annotations


class LLMError(Exception):
    """Base LLM error with rich context."""

    def __init__(
        self,
        message: str,
        provider: str,
        model: str,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


class UpstreamStatusError(LLMError):
    """Upstream answered with a non-success HTTP status."""
    pass


class StreamingError(LLMError):
    """Streaming-specific errors."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        model: str = "unknown",
        **kwargs,
    ):
        super().__init__(message, provider, model, **kwargs)


class MessageValidationError(ValueError):
    """Inbound chat message rejected before reaching the upstream."""

    EMPTY = "empty"
    TOO_LONG = "too_long"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message
