"""
Streaming functionality for upstream generation APIs.

This package contains:
- Line framing with carry-over of partial lines
- NDJSON (Ollama) and SSE (OpenAI-compatible) decoders
"""

from __future__ import annotations

from .models import NdjsonFrame, SseFrame, StreamEvent, StreamEventType, UpstreamFrame
from .parser import Decoder, NdjsonDecoder, SseDecoder, create_decoder

__all__ = [
    "Decoder",
    "NdjsonDecoder",
    "NdjsonFrame",
    "SseDecoder",
    "SseFrame",
    "StreamEvent",
    "StreamEventType",
    "UpstreamFrame",
    "create_decoder",
]
