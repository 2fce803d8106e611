#!/usr/bin/env python3
"""
Tests for the NDJSON and SSE stream decoders.
"""

import pytest

from medchat_gateway.llm.exceptions import StreamingError
from medchat_gateway.llm.models import DecodeMode
from medchat_gateway.llm.streaming import (
    NdjsonDecoder,
    SseDecoder,
    StreamEvent,
    StreamEventType,
    create_decoder,
)

NDJSON_STREAM = (
    '{"response":"Hello"}\n'
    '{"response":" world","done":false}\n'
    '{"done":true}\n'
)

SSE_STREAM = (
    'data: {"choices":[{"delta":{"content":"Bon"}}]}\n\n'
    'data: {"choices":[{"delta":{"content":"jour"}}]}\n\n'
    "data: [DONE]\n\n"
)


def collect_text(events: list[StreamEvent]) -> str:
    return "".join(e.content for e in events if e.kind is StreamEventType.CONTENT)


def feed_all(decoder, chunks) -> list[StreamEvent]:
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.finish())
    return events


class TestNdjsonDecoder:
    """NDJSON framing and decoding."""

    def test_scenario_events(self):
        """Scenario stream decodes to content events then done."""
        events = feed_all(NdjsonDecoder(), [NDJSON_STREAM])
        assert events == [
            StreamEvent.content_fragment("Hello"),
            StreamEvent.content_fragment(" world"),
            StreamEvent.done(),
        ]

    def test_partial_line_waits_for_next_chunk(self):
        """Incomplete lines are held until their newline arrives."""
        decoder = NdjsonDecoder()
        assert decoder.feed('{"respo') == []
        assert decoder.feed('nse":"Hi"}') == []
        assert decoder.feed("\n") == [StreamEvent.content_fragment("Hi")]

    def test_multiple_lines_in_one_chunk(self):
        """Several lines in one chunk decode in order."""
        decoder = NdjsonDecoder()
        events = decoder.feed('{"response":"a"}\n{"response":"b"}\n{"respo')
        assert collect_text(events) == "ab"

    def test_malformed_line_is_skipped(self):
        """Invalid JSON lines are skipped and counted."""
        decoder = NdjsonDecoder()
        events = feed_all(decoder, ['{"response":"a"}\nnot json\n{"response":"b"}\n'])
        assert collect_text(events) == "ab"
        assert decoder.get_stats()["skipped_lines"] == 1

    def test_non_object_json_is_skipped(self):
        """JSON values that are not objects are skipped."""
        decoder = NdjsonDecoder()
        assert decoder.feed('42\n["x"]\n') == []
        assert decoder.get_stats()["skipped_lines"] == 2

    def test_blank_and_crlf_lines(self):
        """Blank lines are ignored and CRLF endings accepted."""
        events = feed_all(NdjsonDecoder(), ['\n\r\n{"response":"x"}\r\n\n'])
        assert events == [StreamEvent.content_fragment("x")]

    def test_content_and_done_on_same_line(self):
        """A final line with text yields content before done."""
        events = feed_all(NdjsonDecoder(), ['{"response":"end","done":true}\n'])
        assert events == [StreamEvent.content_fragment("end"), StreamEvent.done()]

    def test_empty_response_yields_nothing(self):
        """An empty response field produces no event."""
        assert NdjsonDecoder().feed('{"response":"","done":false}\n') == []

    def test_upstream_error_object_raises(self):
        """An error field raises a streaming error."""
        with pytest.raises(StreamingError, match="model not found"):
            NdjsonDecoder().feed('{"error":"model not found"}\n')

    def test_unterminated_trailing_fragment_is_dropped(self):
        """finish() drops the unterminated tail."""
        decoder = NdjsonDecoder()
        events = feed_all(decoder, ['{"response":"Hi"}\n{"response":"lost"}'])
        assert collect_text(events) == "Hi"
        assert decoder.get_stats()["discarded_chars"] == len('{"response":"lost"}')

    def test_multibyte_character_split_across_byte_chunks(self):
        """UTF-8 sequences split across chunks decode intact."""
        data = '{"response":"مرحبا"}\n'.encode()
        split = data.index("ر".encode()) + 1  # inside a two-byte character
        events = feed_all(NdjsonDecoder(), [data[:split], data[split:]])
        assert collect_text(events) == "مرحبا"


class TestSseDecoder:
    """SSE framing and decoding."""

    def test_scenario_events(self):
        """Scenario stream decodes to content events then done."""
        events = feed_all(SseDecoder(), [SSE_STREAM])
        assert events == [
            StreamEvent.content_fragment("Bon"),
            StreamEvent.content_fragment("jour"),
            StreamEvent.done(),
        ]

    def test_non_data_lines_are_ignored(self):
        """Comments and event lines are ignored."""
        decoder = SseDecoder()
        events = feed_all(decoder, [
            ": keep-alive\n",
            "event: message\n",
            "id: 7\n",
            'data: {"choices":[{"delta":{"content":"ok"}}]}\n',
        ])
        assert collect_text(events) == "ok"
        assert decoder.get_stats()["skipped_lines"] == 3

    def test_prefix_without_space(self):
        """The space after data: is optional."""
        events = feed_all(SseDecoder(), ['data:{"choices":[{"delta":{"content":"x"}}]}\n'])
        assert collect_text(events) == "x"

    def test_role_only_delta_and_empty_data(self):
        """Role-only deltas and empty data lines emit nothing."""
        events = feed_all(SseDecoder(), [
            'data: {"choices":[{"delta":{"role":"assistant"}}]}\n',
            "data: \n",
            'data: {"choices":[]}\n',
        ])
        assert events == []

    def test_malformed_json_raises(self):
        """Invalid JSON in a data line raises."""
        with pytest.raises(StreamingError):
            SseDecoder().feed("data: {broken\n")


@pytest.mark.parametrize(
    ("mode", "stream", "expected"),
    [
        (DecodeMode.NDJSON, NDJSON_STREAM, "Hello world"),
        (DecodeMode.SSE, SSE_STREAM, "Bonjour"),
    ],
)
def test_reframing_is_independent_of_chunk_boundaries(mode, stream, expected):
    """Any two-way split of the byte stream decodes to the same text."""
    data = stream.encode()
    for split in range(len(data) + 1):
        events = feed_all(create_decoder(mode), [data[:split], data[split:]])
        assert collect_text(events) == expected
        assert events[-1].kind is StreamEventType.DONE


def test_byte_at_a_time_feeding():
    """Feeding one byte at a time gives the same events."""
    events = feed_all(NdjsonDecoder(), [bytes([b]) for b in NDJSON_STREAM.encode()])
    assert collect_text(events) == "Hello world"


def test_create_decoder_selects_by_mode():
    """The factory picks the decoder for each mode."""
    assert isinstance(create_decoder(DecodeMode.NDJSON), NdjsonDecoder)
    assert isinstance(create_decoder(DecodeMode.SSE), SseDecoder)
    with pytest.raises(ValueError):
        create_decoder("xml")
