"""HTTPX client for the OpenAI Responses API."""

import logging
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from ..core.exceptions import UpstreamConnectionError, UpstreamError, UpstreamHTTPError
from ..core.sse import SSEDecoder
from ..streaming.events import EventSource, StreamEvent
from .events import to_stream_event
from .transport import get_upstream_transport

logger = logging.getLogger("oai-gateway")

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_MS = 60000


class OpenAIClient:
    """Thin async client over ``/responses``.

    Every call raises ``UpstreamHTTPError`` for non-2xx answers and
    ``UpstreamConnectionError`` when the upstream cannot be reached, so the
    retry scheduler can classify failures by status or network code.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        organization: Optional[str] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms
        self.organization = organization

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, *, stream: bool = False) -> dict[str, str]:
        headers = {
            "authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
            "accept": "text/event-stream" if stream else "application/json",
        }
        if self.organization:
            headers["openai-organization"] = self.organization
        return headers

    async def create_response(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        body = dict(payload)
        body["stream"] = False
        return await self._request("POST", "/responses", json_body=body)

    async def retrieve_response(self, response_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/responses/{response_id}")

    async def delete_response(self, response_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/responses/{response_id}")

    async def cancel_response(self, response_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/responses/{response_id}/cancel")

    def stream_response(self, payload: Mapping[str, Any]) -> EventSource:
        """Start a streamed response; the request is sent on first iteration."""
        body = dict(payload)
        body["stream"] = True
        return EventSource(self._stream("POST", "/responses", json_body=body))

    def stream_stored_response(
        self, response_id: str, starting_after: Optional[int] = None
    ) -> EventSource:
        """Re-stream a stored response, skipping events up to ``starting_after``."""
        params: dict[str, Any] = {"stream": "true"}
        if starting_after is not None:
            params["starting_after"] = starting_after
        return EventSource(
            self._stream("GET", f"/responses/{response_id}", params=params),
            response_id=response_id,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = self.build_url(path)
        transport = get_upstream_transport(url)
        logger.debug("Upstream %s %s", method, url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s, transport=transport, follow_redirects=True
            ) as client:
                resp = await client.request(
                    method, url, headers=self._headers(), json=json_body, params=params
                )
        except httpx.TransportError as exc:
            raise UpstreamConnectionError.from_httpx(exc, url=url) from exc

        if resp.status_code >= 400:
            logger.warning("Upstream %s %s returned status %s", method, url, resp.status_code)
            raise UpstreamHTTPError.from_response(resp)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(f"Upstream returned invalid JSON for {method} {path}") from exc

    async def _stream(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        url = self.build_url(path)
        transport = get_upstream_transport(url)
        stream_timeout = httpx.Timeout(
            connect=self.timeout_s, read=None, write=self.timeout_s, pool=self.timeout_s
        )
        logger.debug("Upstream stream %s %s", method, url)
        try:
            async with httpx.AsyncClient(
                timeout=stream_timeout, transport=transport, follow_redirects=True
            ) as client:
                async with client.stream(
                    method, url, headers=self._headers(stream=True), json=json_body, params=params
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        logger.warning(
                            "Upstream stream %s %s returned status %s", method, url, resp.status_code
                        )
                        raise UpstreamHTTPError.from_response(resp)

                    decoder = SSEDecoder()
                    position = 0
                    async for chunk in resp.aiter_bytes():
                        for message in decoder.feed(chunk):
                            event = to_stream_event(message, fallback_sequence=position)
                            if event is None:
                                continue
                            position += 1
                            _raise_for_error_event(event)
                            yield event
                    for message in decoder.flush():
                        event = to_stream_event(message, fallback_sequence=position)
                        if event is None:
                            continue
                        position += 1
                        _raise_for_error_event(event)
                        yield event
        except httpx.TransportError as exc:
            raise UpstreamConnectionError.from_httpx(exc, url=url) from exc


def _raise_for_error_event(event: StreamEvent) -> None:
    """Upstream ``error`` events end the stream as a producer failure."""
    if event.event_name != "error":
        return
    payload = event.payload if isinstance(event.payload, dict) else {}
    error = payload.get("error") if isinstance(payload.get("error"), dict) else payload
    message = error.get("message") or "Upstream stream error"
    raise UpstreamError(str(message))
