"""Event log for resumable streams.

Keeps the events relayed for each response id so a client that lost its
connection can ask for everything after the last sequence number it saw.
Storage is an in-memory LRU keyed by response id.
"""

import logging
from collections import OrderedDict
from typing import Any, AsyncIterator, Optional

from .events import StreamEvent

logger = logging.getLogger("oai-gateway")


def extract_response_id(event: StreamEvent) -> Optional[str]:
    """Find the response id carried by a lifecycle event, if any."""
    payload = event.payload
    if not isinstance(payload, dict):
        return None
    response = payload.get("response")
    if isinstance(response, dict) and isinstance(response.get("id"), str):
        return response["id"]
    response_id = payload.get("response_id")
    if isinstance(response_id, str) and response_id:
        return response_id
    return None


class StreamSessionStore:
    """LRU map of response id -> relayed events in sequence order."""

    def __init__(self, max_entries: int = 1000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._sessions: OrderedDict[str, list[StreamEvent]] = OrderedDict()
        self.max_entries = max_entries

    async def record(self, response_id: str, event: StreamEvent) -> None:
        """Append an event to a session, evicting the oldest session if full."""
        if not response_id:
            logger.warning("StreamSessionStore: Cannot record event without response id")
            return
        events = self._sessions.get(response_id)
        if events is None:
            events = []
            self._sessions[response_id] = events
        self._sessions.move_to_end(response_id)
        events.append(event)

        if len(self._sessions) > self.max_entries:
            evicted_id, _ = self._sessions.popitem(last=False)
            logger.debug(f"StreamSessionStore: Evicted {evicted_id} from memory")

    def has_session(self, response_id: str) -> bool:
        return response_id in self._sessions

    def last_sequence(self, response_id: str) -> Optional[int]:
        events = self._sessions.get(response_id)
        if not events:
            return None
        return events[-1].sequence

    async def events_after(
        self, response_id: str, starting_after: Optional[int] = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield stored events with a sequence greater than ``starting_after``."""
        events = list(self._sessions.get(response_id, ()))
        if response_id in self._sessions:
            self._sessions.move_to_end(response_id)
        threshold = starting_after if starting_after is not None else -1
        for event in events:
            if event.sequence > threshold:
                yield event

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "sessions": len(self._sessions),
            "max_entries": self.max_entries,
            "events": sum(len(events) for events in self._sessions.values()),
        }

    def clear(self) -> None:
        self._sessions.clear()
        logger.info("StreamSessionStore: Memory cleared")
