"""Streaming relay, stream events and resumable sessions."""

from .events import EventSource, StreamEvent
from .relay import (
    ASGIConnection,
    RelayResponse,
    SSEConnection,
    StreamContext,
    StreamingRelay,
    error_message_for,
)
from .session_store import (
    StreamSessionStore,
    extract_response_id,
)

__all__ = [
    "ASGIConnection",
    "EventSource",
    "RelayResponse",
    "SSEConnection",
    "StreamContext",
    "StreamEvent",
    "StreamSessionStore",
    "StreamingRelay",
    "error_message_for",
    "extract_response_id",
]
