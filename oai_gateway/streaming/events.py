"""Stream events and the single-pass event source consumed by the relay."""

from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Optional

from ..core.exceptions import StreamConsumedError
from ..core.sse import format_sse_message


@dataclass(frozen=True)
class StreamEvent:
    """One upstream event as relayed to the client."""

    event_name: str
    payload: Any
    sequence: int = 0

    def to_sse(self) -> str:
        return format_sse_message(self.event_name, self.payload)

    def to_record(self) -> dict[str, Any]:
        return {
            "event": self.event_name,
            "sequence": self.sequence,
            "payload": self.payload,
        }


class EventSource:
    """Consuming async iterator over ``StreamEvent`` values.

    The wrapped producer is pulled lazily, one event per ``__anext__``. It can
    be iterated exactly once; a second ``async for`` raises
    ``StreamConsumedError`` instead of silently yielding nothing.
    """

    def __init__(self, producer: AsyncIterable[StreamEvent], *, response_id: Optional[str] = None) -> None:
        self._producer = producer
        self._iterator: Optional[AsyncIterator[StreamEvent]] = None
        self._started = False
        self._exhausted = False
        self.response_id = response_id

    @classmethod
    def wrap(cls, source: Any, *, response_id: Optional[str] = None) -> "EventSource":
        if isinstance(source, EventSource):
            if response_id and not source.response_id:
                source.response_id = response_id
            return source
        return cls(source, response_id=response_id)

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def __aiter__(self) -> "EventSource":
        if self._started:
            raise StreamConsumedError("event source has already been consumed")
        self._started = True
        self._iterator = self._producer.__aiter__()
        return self

    async def __anext__(self) -> StreamEvent:
        if self._iterator is None:
            raise StreamConsumedError("event source iterated without __aiter__")
        if self._exhausted:
            raise StopAsyncIteration
        try:
            return await self._iterator.__anext__()
        except BaseException:
            # End of stream and producer errors both end the sequence for good
            self._exhausted = True
            raise

    async def aclose(self) -> None:
        """Close the underlying async generator, if it supports it."""
        target = self._iterator if self._iterator is not None else self._producer
        closer = getattr(target, "aclose", None)
        if closer is not None:
            await closer()
        self._exhausted = True
