"""
Incremental decoders for upstream generation streams.

Both decoders share the same line framing: incoming data is appended to a
buffer, split on newlines, and every complete line is decoded while the
trailing partial line waits for the next chunk.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Protocol

from ..exceptions import StreamingError
from ..models import DecodeMode
from .models import NdjsonFrame, SseFrame, StreamEvent

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE_SENTINEL = "[DONE]"


class Decoder(Protocol):
    """Common interface of the NDJSON and SSE decoders."""

    def feed(self, chunk: str | bytes) -> list[StreamEvent]: ...

    def finish(self) -> list[StreamEvent]: ...

    def get_stats(self) -> dict[str, int]: ...


class LineDecoder:
    """Shared newline framing with carry-over of the incomplete last line."""

    def __init__(self) -> None:
        self._buffer = ""
        self._bytes_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.stats = {
            "lines": 0,
            "content_events": 0,
            "skipped_lines": 0,
            "discarded_chars": 0,
        }

    def feed(self, chunk: str | bytes) -> list[StreamEvent]:
        """Buffer a chunk and decode every complete line it finishes."""
        if isinstance(chunk, bytes):
            chunk = self._bytes_decoder.decode(chunk)

        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")

        events: list[StreamEvent] = []
        for raw_line in lines:
            line = raw_line.rstrip("\r")
            if not line.strip():
                continue
            self.stats["lines"] += 1
            line_events = self._decode_line(line)
            self.stats["content_events"] += sum(
                1 for event in line_events if event.content
            )
            events.extend(line_events)
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush at end of stream; an unterminated fragment is dropped."""
        self._buffer += self._bytes_decoder.decode(b"", final=True)
        if self._buffer.strip():
            self.stats["discarded_chars"] += len(self._buffer)
            logger.debug(
                "Discarding unterminated trailing fragment (%d chars)",
                len(self._buffer),
            )
        self._buffer = ""
        return []

    def get_stats(self) -> dict[str, int]:
        """Get decoding statistics for monitoring."""
        return self.stats.copy()

    def _decode_line(self, line: str) -> list[StreamEvent]:
        raise NotImplementedError


class NdjsonDecoder(LineDecoder):
    """Ollama `/api/generate` stream: one JSON object per line."""

    def _decode_line(self, line: str) -> list[StreamEvent]:
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            # keep-alive noise from the upstream
            self.stats["skipped_lines"] += 1
            logger.debug("Skipping non-JSON line in NDJSON stream: %s", e)
            return []

        if not isinstance(obj, dict):
            self.stats["skipped_lines"] += 1
            return []

        frame = NdjsonFrame.from_object(obj)
        if frame.error:
            raise StreamingError(f"Upstream reported error: {frame.error}")

        events: list[StreamEvent] = []
        if frame.content:
            events.append(StreamEvent.content_fragment(frame.content))
        if frame.done:
            events.append(StreamEvent.done())
        return events


class SseDecoder(LineDecoder):
    """OpenAI-compatible `/v1/chat/completions` stream of `data:` lines."""

    def _decode_line(self, line: str) -> list[StreamEvent]:
        if not line.startswith(SSE_DATA_PREFIX):
            # comments, event: and id: fields carry nothing we relay
            self.stats["skipped_lines"] += 1
            return []

        frame = self._parse_frame(line[len(SSE_DATA_PREFIX):].removeprefix(" "))
        if frame.done:
            return [StreamEvent.done()]
        if frame.content:
            return [StreamEvent.content_fragment(frame.content)]
        return []

    def _parse_frame(self, data: str) -> SseFrame:
        if data.strip() == SSE_DONE_SENTINEL:
            return SseFrame.sentinel(data)
        if not data.strip():
            # heartbeat
            return SseFrame(content=None, done=False, raw=data)

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise StreamingError(f"SSE parse error: {e}") from e

        return SseFrame(content=_delta_content(payload), done=False, raw=data)


def _delta_content(payload: Any) -> str | None:
    """Extract choices[0].delta.content, tolerating missing pieces."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not choices or not isinstance(choices, list):
        return None
    delta = choices[0].get("delta") if isinstance(choices[0], dict) else None
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def create_decoder(mode: DecodeMode) -> Decoder:
    """Build a fresh decoder for one turn."""
    if mode is DecodeMode.NDJSON:
        return NdjsonDecoder()
    if mode is DecodeMode.SSE:
        return SseDecoder()
    raise ValueError(f"Unsupported decoding mode: {mode!r}")
