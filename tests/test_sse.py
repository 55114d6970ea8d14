"""Tests for the SSE module."""

import pytest

from oai_gateway.core.sse import (
    SSE_HEADERS,
    SSEDecoder,
    SSEMessage,
    encode_payload,
    format_sse_message,
)


class TestFormatSseMessage:
    """Tests for SSE framing."""

    def test_frames_event_and_compact_json(self):
        """Test the exact wire format of one event."""
        assert format_sse_message("text_delta", {"delta": "Hi"}) == (
            'event: text_delta\ndata: {"delta":"Hi"}\n\n'
        )

    def test_frames_boolean_payload(self):
        """Test that booleans serialize as JSON literals."""
        assert format_sse_message("done", {"ok": True}) == 'event: done\ndata: {"ok":true}\n\n'

    def test_keeps_non_ascii_text(self):
        """Test that unicode is written as-is instead of escaped."""
        assert encode_payload({"delta": "héllo"}) == '{"delta":"héllo"}'

    def test_data_line_never_contains_newlines(self):
        """Test that embedded newlines are escaped inside the JSON payload."""
        frame = format_sse_message("text_delta", {"delta": "line1\nline2"})
        lines = frame.split("\n")
        assert lines[0] == "event: text_delta"
        assert lines[1] == 'data: {"delta":"line1\\nline2"}'
        assert lines[2:] == ["", ""]

    def test_accepts_non_mapping_payloads(self):
        """Test that lists and null payloads are framed too."""
        assert format_sse_message("items", [1, 2]) == "event: items\ndata: [1,2]\n\n"
        assert format_sse_message("empty", None) == "event: empty\ndata: null\n\n"

    def test_headers_disable_buffering(self):
        """Test the fixed set of stream response headers."""
        assert dict(SSE_HEADERS) == {
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }


class TestSSEDecoder:
    """Tests for the incremental SSE decoder."""

    def test_decodes_complete_event(self):
        """Test decoding a single complete event."""
        decoder = SSEDecoder()
        messages = decoder.feed(b'event: response.created\ndata: {"id": "resp_1"}\n\n')

        assert messages == [SSEMessage(event="response.created", data='{"id": "resp_1"}')]
        assert messages[0].json() == {"id": "resp_1"}

    def test_handles_event_split_across_chunks(self):
        """Test that a fragmented event is emitted once complete."""
        decoder = SSEDecoder()
        assert decoder.feed(b"event: response.output_text.delta\nda") == []
        messages = decoder.feed(b'ta: {"delta": "Hi"}\n\n')

        assert len(messages) == 1
        assert messages[0].event == "response.output_text.delta"
        assert messages[0].json() == {"delta": "Hi"}

    def test_decodes_multiple_events_in_one_chunk(self):
        """Test that several events in one chunk are all returned."""
        decoder = SSEDecoder()
        messages = decoder.feed(b"data: {\"a\": 1}\n\ndata: {\"b\": 2}\n\n")
        assert [m.json() for m in messages] == [{"a": 1}, {"b": 2}]
        assert all(m.event is None for m in messages)

    def test_normalizes_crlf(self):
        """Test that CRLF line endings are accepted."""
        decoder = SSEDecoder()
        messages = decoder.feed(b"event: ping\r\ndata: {}\r\n\r\n")
        assert messages == [SSEMessage(event="ping", data="{}")]

    def test_skips_comments_and_done(self):
        """Test that comment lines and the [DONE] sentinel produce no messages."""
        decoder = SSEDecoder()
        assert decoder.feed(b": keep-alive\n\n") == []
        assert decoder.feed(b"data: [DONE]\n\n") == []

    def test_joins_multiline_data(self):
        """Test that consecutive data lines are joined with newlines."""
        decoder = SSEDecoder()
        messages = decoder.feed(b"data: first\ndata: second\n\n")
        assert messages[0].data == "first\nsecond"

    def test_flush_returns_trailing_event(self):
        """Test that an unterminated final event is recovered on flush."""
        decoder = SSEDecoder()
        assert decoder.feed(b'event: response.completed\ndata: {"ok": true}') == []

        messages = decoder.flush()
        assert messages == [SSEMessage(event="response.completed", data='{"ok": true}')]
        assert decoder.flush() == []

    def test_empty_chunk_is_ignored(self):
        """Test that an empty chunk yields nothing."""
        assert SSEDecoder().feed(b"") == []

    def test_invalid_json_raises_on_access(self):
        """Test that malformed data is only rejected when parsed."""
        message = SSEDecoder().feed(b"data: {not json\n\n")[0]
        with pytest.raises(ValueError):
            message.json()
