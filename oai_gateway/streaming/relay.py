"""Relay upstream stream events to a client as Server-Sent Events.

The relay pulls one event at a time from a single-pass ``EventSource`` and
writes it to the client before asking for the next, so a slow client slows
the producer down. Every relay sets the SSE headers once, writes one framed
message per event and ends the connection exactly once, whether the producer
finished, failed, or the client went away.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Optional, Protocol

from starlette.requests import ClientDisconnect
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from ..core.exceptions import GatewayError
from ..core.sse import SSE_HEADERS, format_sse_message
from .events import EventSource, StreamEvent
from .session_store import StreamSessionStore, extract_response_id

logger = logging.getLogger("oai-gateway")

UNKNOWN_ERROR_MESSAGE = "Unknown error"

ResumeSourceFactory = Callable[[str, Optional[int]], AsyncIterable[StreamEvent]]


class SSEConnection(Protocol):
    """Writable, long-lived response channel."""

    @property
    def closed(self) -> bool: ...

    def set_header(self, name: str, value: str) -> None: ...

    async def write(self, chunk: str) -> None: ...

    async def end(self) -> None: ...


@dataclass
class StreamContext:
    """Observability metadata for one relayed stream."""

    endpoint: str = "/api/responses/text/stream"
    api: str = "responses"
    request: dict[str, Any] = field(default_factory=dict)
    response_id: Optional[str] = None


def error_message_for(exc: BaseException) -> str:
    """Message for the terminal ``error`` event."""
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(exc)
    return text if text else UNKNOWN_ERROR_MESSAGE


class ASGIConnection:
    """``SSEConnection`` backed by an ASGI ``send`` callable.

    Headers are buffered until the first write (or ``end``), then sent once
    with ``http.response.start``. After the client disconnects every write is
    a no-op.
    """

    def __init__(self, send: Send, status_code: int = 200) -> None:
        self._send = send
        self.status_code = status_code
        self._headers: dict[str, str] = {}
        self._started = False
        self._ended = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def mark_disconnected(self) -> None:
        if not self._closed:
            logger.info("Client disconnected from SSE stream")
        self._closed = True

    def set_header(self, name: str, value: str) -> None:
        if self._started:
            raise RuntimeError("Cannot set headers after the response has started")
        self._headers[name] = value

    async def _start(self) -> None:
        self._started = True
        raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in self._headers.items()
        ]
        await self._send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": raw_headers,
            }
        )

    async def write(self, chunk: str) -> None:
        if self._closed or self._ended:
            return
        try:
            if not self._started:
                await self._start()
            await self._send(
                {
                    "type": "http.response.body",
                    "body": chunk.encode("utf-8"),
                    "more_body": True,
                }
            )
        except (OSError, ClientDisconnect) as exc:
            logger.info("SSE write failed, client went away: %s", exc)
            self._closed = True

    async def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        if self._closed:
            return
        try:
            if not self._started:
                await self._start()
            await self._send({"type": "http.response.body", "body": b"", "more_body": False})
        except (OSError, ClientDisconnect) as exc:
            logger.info("SSE end failed, client went away: %s", exc)
            self._closed = True


class RelayResponse(Response):
    """Starlette response that hands its ASGI channel to a relay coroutine."""

    def __init__(self, runner: Callable[[ASGIConnection], Awaitable[None]]) -> None:
        self.runner = runner
        self.status_code = 200
        self.background = None
        self.init_headers(None)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        connection = ASGIConnection(send, status_code=self.status_code)

        async def listen_for_disconnect() -> None:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    connection.mark_disconnected()
                    return

        listener = asyncio.create_task(listen_for_disconnect())
        try:
            await self.runner(connection)
        finally:
            listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listener


class StreamingRelay:
    """Relay event sources to SSE connections, optionally logging sessions."""

    def __init__(
        self,
        *,
        interaction_logger: Optional[Any] = None,
        session_store: Optional[StreamSessionStore] = None,
        resume_source_factory: Optional[ResumeSourceFactory] = None,
    ) -> None:
        self._interaction_logger = interaction_logger
        self._session_store = session_store
        self._resume_source_factory = resume_source_factory

    async def relay(
        self,
        event_source: AsyncIterable[StreamEvent],
        connection: SSEConnection,
        *,
        context: Optional[StreamContext] = None,
        record_session: bool = True,
    ) -> None:
        """Drive ``event_source`` to completion, writing each event to ``connection``."""
        ctx = context or StreamContext()
        source = EventSource.wrap(event_source, response_id=ctx.response_id)
        started = time.monotonic()
        relayed = 0
        last_sequence = 0
        client_gone = False

        for name, value in SSE_HEADERS:
            connection.set_header(name, value)

        self._log_stream_event(ctx, "stream_resume" if not record_session else "stream_start", 0)

        try:
            async for event in source:
                last_sequence = event.sequence
                if record_session:
                    await self._record(source, ctx, event)

                if client_gone or connection.closed:
                    # Keep draining so the session log stays complete
                    client_gone = True
                    continue
                if not await self._safe_write(connection, event.to_sse()):
                    client_gone = True
                    continue
                relayed += 1
        except Exception as exc:
            message = error_message_for(exc)
            logger.error("Stream %s failed after %d events: %s", ctx.endpoint, relayed, message)
            self._log_stream_event(
                ctx,
                "stream_error",
                last_sequence,
                error={"message": message, "type": exc.__class__.__name__},
            )
            if not (client_gone or connection.closed):
                await self._safe_write(connection, format_sse_message("error", {"error": message}))
        else:
            latency_ms = int((time.monotonic() - started) * 1000)
            self._log_stream_event(
                ctx,
                "stream_end",
                last_sequence,
                metadata={"latency_ms": latency_ms, "events_relayed": relayed},
            )
        finally:
            with contextlib.suppress(Exception):
                await source.aclose()
            await self._safe_end(connection)

    async def resume(
        self,
        response_id: str,
        connection: SSEConnection,
        *,
        starting_after: Optional[int] = None,
        context: Optional[StreamContext] = None,
    ) -> None:
        """Replay a stored stream after ``starting_after`` with the same framing rules."""
        ctx = context or StreamContext(endpoint=f"/api/responses/{response_id}/stream")
        ctx.response_id = response_id
        ctx.request.setdefault("response_id", response_id)
        if starting_after is not None:
            ctx.request.setdefault("starting_after", starting_after)
        source = self.resume_source(response_id, starting_after)
        await self.relay(source, connection, context=ctx, record_session=False)

    def resume_source(self, response_id: str, starting_after: Optional[int]) -> EventSource:
        """Pick the event source that continues a stream after ``starting_after``."""
        if self._session_store is not None and self._session_store.has_session(response_id):
            logger.info(
                "Resuming %s from stored session after sequence %s", response_id, starting_after
            )
            return EventSource(
                self._session_store.events_after(response_id, starting_after),
                response_id=response_id,
            )
        if self._resume_source_factory is not None:
            logger.info(
                "Resuming %s from upstream after sequence %s", response_id, starting_after
            )
            return EventSource(
                self._resume_source_factory(response_id, starting_after),
                response_id=response_id,
            )
        return EventSource(_missing_session(response_id), response_id=response_id)

    async def _record(self, source: EventSource, ctx: StreamContext, event: StreamEvent) -> None:
        if self._session_store is None:
            return
        if source.response_id is None:
            source.response_id = extract_response_id(event)
            if source.response_id is None:
                return
            ctx.response_id = source.response_id
        try:
            await self._session_store.record(source.response_id, event)
        except Exception as exc:
            logger.warning("Failed to record stream event %s: %s", event.sequence, exc)

    @staticmethod
    async def _safe_write(connection: SSEConnection, chunk: str) -> bool:
        try:
            await connection.write(chunk)
        except Exception as exc:
            logger.warning("SSE write failed, stopping writes: %s", exc)
            return False
        return not connection.closed

    @staticmethod
    async def _safe_end(connection: SSEConnection) -> None:
        try:
            await connection.end()
        except Exception as exc:
            logger.warning("Failed to end SSE connection: %s", exc)

    def _log_stream_event(
        self,
        ctx: StreamContext,
        event_type: str,
        sequence: int,
        *,
        error: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        if self._interaction_logger is None:
            return
        entry: dict[str, Any] = {
            "api": ctx.api,
            "endpoint": ctx.endpoint,
            "event_type": event_type,
            "sequence": sequence,
        }
        if ctx.request:
            entry["request"] = ctx.request
        if ctx.response_id:
            entry["response_id"] = ctx.response_id
        if error is not None:
            entry["error"] = error
        if metadata is not None:
            entry["metadata"] = metadata
        try:
            self._interaction_logger.log_streaming_event(entry)
        except Exception as exc:
            logger.warning("Failed to record streaming event: %s", exc)


async def _missing_session(response_id: str) -> AsyncIterator[StreamEvent]:
    raise GatewayError(f"No stream session found for response '{response_id}'")
    yield  # pragma: no cover
