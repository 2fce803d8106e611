"""
Streaming-specific dataclasses for the upstream decoders.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class StreamEventType(Enum):
    """Events a decoder hands back to the relay."""
    CONTENT = "content"
    DONE = "done"


@dataclass(frozen=True)
class StreamEvent:
    """Decoded event with the content fragment it carries, if any."""
    kind: StreamEventType
    content: str = ""

    @classmethod
    def content_fragment(cls, content: str) -> StreamEvent:
        return cls(StreamEventType.CONTENT, content)

    @classmethod
    def done(cls) -> StreamEvent:
        return cls(StreamEventType.DONE)


@dataclass(frozen=True)
class NdjsonFrame:
    """One newline-delimited JSON object from an Ollama-style stream."""
    content: str | None
    done: bool
    error: str | None
    raw: dict[str, Any]

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> NdjsonFrame:
        content = obj.get("response")
        error = obj.get("error")
        return cls(
            content=content if isinstance(content, str) else None,
            done=bool(obj.get("done", False)),
            error=str(error) if error else None,
            raw=obj,
        )


@dataclass(frozen=True)
class SseFrame:
    """One `data:` line from an OpenAI-compatible event stream."""
    content: str | None
    done: bool
    raw: str

    @classmethod
    def sentinel(cls, raw: str) -> SseFrame:
        return cls(content=None, done=True, raw=raw)


UpstreamFrame = NdjsonFrame | SseFrame
