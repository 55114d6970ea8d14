"""Map Responses API stream events onto the events relayed to clients."""

import json
import logging
from typing import Any, Optional

from ..core.sse import SSEMessage
from ..streaming.events import StreamEvent

logger = logging.getLogger("oai-gateway")

EVENT_NAME_MAP = {
    "response.output_text.delta": "text_delta",
    "response.output_text.done": "text_done",
    "response.created": "response_created",
    "response.completed": "response_completed",
    "response.failed": "response_failed",
    "error": "error",
}


def client_event_name(upstream_type: str) -> str:
    mapped = EVENT_NAME_MAP.get(upstream_type)
    if mapped is not None:
        return mapped
    return upstream_type.replace(".", "_")


def to_stream_event(message: SSEMessage, fallback_sequence: int = 0) -> Optional[StreamEvent]:
    """Turn one decoded SSE message into a ``StreamEvent``.

    Returns None for messages without a JSON object body, which the upstream
    only sends as keep-alives.
    """
    if message.data is None:
        return None
    try:
        data = message.json()
    except json.JSONDecodeError:
        logger.warning("Skipping upstream SSE message with invalid JSON: %.200s", message.data)
        return None
    if not isinstance(data, dict):
        return None

    upstream_type = data.get("type") or message.event or "message"
    sequence = data.get("sequence_number")
    if not isinstance(sequence, int) or isinstance(sequence, bool):
        sequence = fallback_sequence

    payload: dict[str, Any] = {
        key: value for key, value in data.items() if key not in ("type", "sequence_number")
    }
    return StreamEvent(client_event_name(str(upstream_type)), payload, sequence)
