"""SSE (Server-Sent Events) framing and decoding."""

import json
from dataclasses import dataclass
from typing import Any, Optional

SSE_HEADERS: tuple[tuple[str, str], ...] = (
    ("Content-Type", "text/event-stream"),
    ("Cache-Control", "no-cache"),
    ("Connection", "keep-alive"),
    ("X-Accel-Buffering", "no"),
)

DONE_SENTINEL = "[DONE]"


def encode_payload(payload: Any) -> str:
    """Serialize an event payload as compact JSON on a single line."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def format_sse_message(event_name: str, payload: Any) -> str:
    """Frame one event as ``event: <name>\\ndata: <json>\\n\\n``."""
    return f"event: {event_name}\ndata: {encode_payload(payload)}\n\n"


@dataclass
class SSEMessage:
    event: Optional[str]
    data: Optional[str]

    def json(self) -> Any:
        if self.data is None:
            return None
        return json.loads(self.data)


class SSEDecoder:
    """Incrementally split an upstream byte stream into SSE messages."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[SSEMessage]:
        if not chunk:
            return []
        text = chunk.decode("utf-8", errors="replace")
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        self._buffer += text
        messages: list[SSEMessage] = []

        while True:
            sep_index = self._buffer.find("\n\n")
            if sep_index == -1:
                break
            raw_event = self._buffer[:sep_index]
            self._buffer = self._buffer[sep_index + 2:]
            if not raw_event.strip():
                continue
            message = self._parse_event(raw_event)
            if message is not None:
                messages.append(message)

        return messages

    def flush(self) -> list[SSEMessage]:
        """Parse whatever is left once the upstream closed without a blank line."""
        leftover = self._buffer
        self._buffer = ""
        if not leftover.strip():
            return []
        message = self._parse_event(leftover.rstrip("\n"))
        return [message] if message is not None else []

    @staticmethod
    def _parse_event(raw: str) -> Optional[SSEMessage]:
        event_name: Optional[str] = None
        data_lines: list[str] = []
        for line in raw.split("\n"):
            if line.startswith(":"):
                continue
            if line.startswith("data:"):
                data_lines.append(line[5:].lstrip())
            elif line.startswith("event:"):
                event_name = line[6:].strip()
        data = "\n".join(data_lines) if data_lines else None
        if data == DONE_SENTINEL:
            return None
        if data is None and event_name is None:
            return None
        return SSEMessage(event=event_name, data=data)
