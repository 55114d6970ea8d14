"""Tests for the SSE streaming relay."""

import asyncio
import json

import pytest

from oai_gateway.core.exceptions import GatewayError, UpstreamError
from oai_gateway.streaming.events import EventSource, StreamEvent
from oai_gateway.streaming.relay import StreamContext, StreamingRelay, error_message_for
from oai_gateway.streaming.session_store import StreamSessionStore


class FakeConnection:
    """Records every effect the relay has on its client connection."""

    def __init__(self, *, close_after_writes=None):
        self.calls = []
        self.headers = {}
        self.writes = []
        self.end_calls = 0
        self._closed = False
        self.close_after_writes = close_after_writes

    @property
    def closed(self):
        return self._closed

    def set_header(self, name, value):
        self.calls.append(("set_header", name))
        self.headers[name] = value

    async def write(self, chunk):
        self.calls.append(("write", chunk))
        self.writes.append(chunk)
        if self.close_after_writes is not None and len(self.writes) >= self.close_after_writes:
            self._closed = True

    async def end(self):
        self.calls.append(("end", None))
        self.end_calls += 1


async def produce(events, error=None):
    for event in events:
        yield event
    if error is not None:
        raise error


def text_events(response_id="resp_1"):
    return [
        StreamEvent("response.created", {"response": {"id": response_id}}, sequence=0),
        StreamEvent("text_delta", {"delta": "Hel"}, sequence=1),
        StreamEvent("text_delta", {"delta": "lo"}, sequence=2),
        StreamEvent("response_completed", {"response": {"id": response_id}}, sequence=3),
    ]


class TestRelayFraming:
    """Tests for headers, framing and termination."""

    @pytest.mark.asyncio
    async def test_two_events_are_framed_in_order(self):
        """Test the exact writes for a two-event stream."""
        connection = FakeConnection()
        events = [
            StreamEvent("text_delta", {"delta": "Hi"}, sequence=1),
            StreamEvent("done", {"ok": True}, sequence=2),
        ]

        await StreamingRelay().relay(produce(events), connection)

        assert connection.writes == [
            'event: text_delta\ndata: {"delta":"Hi"}\n\n',
            'event: done\ndata: {"ok":true}\n\n',
        ]
        assert connection.end_calls == 1

    @pytest.mark.asyncio
    async def test_headers_are_set_once_before_first_write(self):
        """Test that every SSE header is set once, ahead of any write."""
        connection = FakeConnection()
        await StreamingRelay().relay(produce(text_events()), connection)

        header_calls = [c for c in connection.calls if c[0] == "set_header"]
        first_write = next(i for i, c in enumerate(connection.calls) if c[0] == "write")
        assert len(header_calls) == 4
        assert all(i < first_write for i, c in enumerate(connection.calls) if c[0] == "set_header")
        assert connection.headers == {
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }

    @pytest.mark.asyncio
    async def test_empty_stream_sets_headers_and_ends(self):
        """Test that a stream with no events still ends exactly once."""
        connection = FakeConnection()
        await StreamingRelay().relay(produce([]), connection)

        assert len(connection.headers) == 4
        assert connection.writes == []
        assert connection.end_calls == 1
        assert connection.calls[-1] == ("end", None)

    @pytest.mark.asyncio
    async def test_mid_stream_error_writes_error_event(self):
        """Test that one event then a failure gives two writes and one end."""
        connection = FakeConnection()
        events = [StreamEvent("text_delta", {"delta": "Hi"}, sequence=1)]

        await StreamingRelay().relay(
            produce(events, UpstreamError("connection reset by upstream")), connection
        )

        assert connection.writes == [
            'event: text_delta\ndata: {"delta":"Hi"}\n\n',
            'event: error\ndata: {"error":"connection reset by upstream"}\n\n',
        ]
        assert connection.end_calls == 1

    @pytest.mark.asyncio
    async def test_error_without_message_reports_unknown_error(self):
        """Test the fallback message for errors that carry no text."""
        connection = FakeConnection()
        await StreamingRelay().relay(produce([], RuntimeError()), connection)

        assert connection.writes == ['event: error\ndata: {"error":"Unknown error"}\n\n']
        assert connection.end_calls == 1

    @pytest.mark.asyncio
    async def test_consumed_source_is_reported_as_error(self):
        """Test that relaying an already consumed source ends with an error event."""
        source = EventSource(produce([StreamEvent("a", {}, sequence=0)]))
        async for _ in source:
            pass
        connection = FakeConnection()

        await StreamingRelay().relay(source, connection)

        assert len(connection.writes) == 1
        assert connection.writes[0].startswith("event: error\n")
        assert connection.end_calls == 1


class TestRelayClientDisconnect:
    """Tests for clients that go away mid-stream."""

    @pytest.mark.asyncio
    async def test_stops_writing_but_drains_producer(self):
        """Test that the producer still runs to completion after a disconnect."""
        connection = FakeConnection(close_after_writes=1)
        pulled = []

        async def producer():
            for event in text_events():
                pulled.append(event.sequence)
                yield event

        await StreamingRelay().relay(producer(), connection)

        assert len(connection.writes) == 1
        assert pulled == [0, 1, 2, 3]
        assert connection.end_calls == 1

    @pytest.mark.asyncio
    async def test_write_exception_does_not_escape(self):
        """Test that a failing write is absorbed and the connection still ends."""

        class ExplodingConnection(FakeConnection):
            async def write(self, chunk):
                raise OSError("broken pipe")

        connection = ExplodingConnection()
        await StreamingRelay().relay(produce(text_events()), connection)

        assert connection.end_calls == 1

    @pytest.mark.asyncio
    async def test_session_recorded_after_disconnect(self):
        """Test that drained events still reach the session store."""
        store = StreamSessionStore()
        connection = FakeConnection(close_after_writes=1)

        await StreamingRelay(session_store=store).relay(produce(text_events()), connection)

        assert store.last_sequence("resp_1") == 3

    @pytest.mark.asyncio
    async def test_cancelled_relay_closes_producer(self):
        """Test that cancelling a relay closes the producer and ends the connection."""
        write_started = asyncio.Event()
        producer_closed = []

        class StalledConnection(FakeConnection):
            async def write(self, chunk):
                await super().write(chunk)
                write_started.set()
                await asyncio.Event().wait()

        async def producer():
            try:
                for event in text_events():
                    yield event
            finally:
                producer_closed.append(True)

        connection = StalledConnection()
        task = asyncio.create_task(StreamingRelay().relay(producer(), connection))
        await write_started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert producer_closed == [True]
        assert len(connection.writes) == 1
        assert connection.end_calls == 1


class TestRelaySessions:
    """Tests for recording and resuming stream sessions."""

    @pytest.mark.asyncio
    async def test_records_events_under_response_id(self):
        """Test that events are stored once the response id is known."""
        store = StreamSessionStore()
        await StreamingRelay(session_store=store).relay(produce(text_events()), FakeConnection())

        assert store.has_session("resp_1")
        assert store.get_cache_stats()["events"] == 4

    @pytest.mark.asyncio
    async def test_events_before_response_id_are_not_recorded(self):
        """Test that events arriving before any id are skipped."""
        store = StreamSessionStore()
        events = [StreamEvent("text_delta", {"delta": "x"}, sequence=0)] + text_events()[1:]

        await StreamingRelay(session_store=store).relay(produce(events), FakeConnection())

        assert store.has_session("resp_1")
        assert store.get_cache_stats()["events"] == 1
        assert store.last_sequence("resp_1") == 3

    @pytest.mark.asyncio
    async def test_resume_from_store_after_sequence(self):
        """Test that resume replays only events after starting_after."""
        store = StreamSessionStore()
        relay = StreamingRelay(session_store=store)
        await relay.relay(produce(text_events()), FakeConnection())

        connection = FakeConnection()
        await relay.resume("resp_1", connection, starting_after=1)

        assert connection.writes == [
            'event: text_delta\ndata: {"delta":"lo"}\n\n',
            'event: response_completed\ndata: {"response":{"id":"resp_1"}}\n\n',
        ]
        assert connection.end_calls == 1
        assert len(connection.headers) == 4

    @pytest.mark.asyncio
    async def test_resume_does_not_record_again(self):
        """Test that replaying a session leaves the store unchanged."""
        store = StreamSessionStore()
        relay = StreamingRelay(session_store=store)
        await relay.relay(produce(text_events()), FakeConnection())

        await relay.resume("resp_1", FakeConnection())

        assert store.get_cache_stats()["events"] == 4

    @pytest.mark.asyncio
    async def test_resume_falls_back_to_factory(self):
        """Test that unknown sessions are continued through the upstream factory."""
        requested = []

        def factory(response_id, starting_after):
            requested.append((response_id, starting_after))
            return produce(text_events(response_id)[starting_after + 1:])

        relay = StreamingRelay(session_store=StreamSessionStore(), resume_source_factory=factory)
        connection = FakeConnection()

        await relay.resume("resp_9", connection, starting_after=2)

        assert requested == [("resp_9", 2)]
        assert connection.writes == [
            'event: response_completed\ndata: {"response":{"id":"resp_9"}}\n\n'
        ]

    @pytest.mark.asyncio
    async def test_resume_missing_session_writes_error(self):
        """Test that resuming an unknown session without a fallback fails as an event."""
        connection = FakeConnection()
        await StreamingRelay(session_store=StreamSessionStore()).resume("resp_404", connection)

        assert connection.writes == [
            "event: error\ndata: "
            + json.dumps({"error": "No stream session found for response 'resp_404'"}, separators=(",", ":"))
            + "\n\n"
        ]
        assert connection.end_calls == 1


class TestRelayLogging:
    """Tests for the stream side-channel."""

    @pytest.mark.asyncio
    async def test_logs_start_and_end(self, recording_logger):
        """Test that a clean stream logs its start and end."""
        relay = StreamingRelay(interaction_logger=recording_logger)
        ctx = StreamContext(request={"model": "gpt-4o"})

        await relay.relay(produce(text_events()), FakeConnection(), context=ctx)

        kinds = [e["event_type"] for e in recording_logger.stream_events]
        assert kinds == ["stream_start", "stream_end"]
        end = recording_logger.stream_events[-1]
        assert end["metadata"]["events_relayed"] == 4
        assert end["sequence"] == 3
        assert end["request"] == {"model": "gpt-4o"}

    @pytest.mark.asyncio
    async def test_logs_error(self, recording_logger):
        """Test that a failed stream logs the error once."""
        relay = StreamingRelay(interaction_logger=recording_logger)

        await relay.relay(produce([], GatewayError("boom")), FakeConnection())

        errors = [e for e in recording_logger.stream_events if e["event_type"] == "stream_error"]
        assert len(errors) == 1
        assert errors[0]["error"] == {"message": "boom", "type": "GatewayError"}

    @pytest.mark.asyncio
    async def test_resume_logs_stream_resume(self, recording_logger):
        """Test that resumed streams are tagged separately."""
        store = StreamSessionStore()
        await store.record("resp_1", StreamEvent("a", {}, sequence=0))
        relay = StreamingRelay(interaction_logger=recording_logger, session_store=store)

        await relay.resume("resp_1", FakeConnection())

        first = recording_logger.stream_events[0]
        assert first["event_type"] == "stream_resume"
        assert first["response_id"] == "resp_1"

    @pytest.mark.asyncio
    async def test_broken_logger_does_not_affect_relay(self):
        """Test that side-channel failures never reach the client."""

        class BrokenLogger:
            def log_streaming_event(self, entry):
                raise OSError("disk full")

        connection = FakeConnection()
        await StreamingRelay(interaction_logger=BrokenLogger()).relay(
            produce(text_events()), connection
        )

        assert len(connection.writes) == 4
        assert connection.end_calls == 1


class TestErrorMessageFor:
    """Tests for terminal error messages."""

    def test_prefers_message_attribute(self):
        """Test that gateway errors use their message."""
        assert error_message_for(GatewayError("upstream failed")) == "upstream failed"

    def test_falls_back_to_str(self):
        """Test that plain exceptions use their text."""
        assert error_message_for(ValueError("bad")) == "bad"

    def test_unknown_error(self):
        """Test the literal fallback."""
        assert error_message_for(Exception()) == "Unknown error"
