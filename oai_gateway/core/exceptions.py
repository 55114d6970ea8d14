"""Core exceptions for the gateway."""

import json
from typing import Any, Mapping, Optional

import httpx

NETWORK_ERROR_CODES = (
    "ECONNRESET",
    "ETIMEDOUT",
    "ECONNREFUSED",
    "ENETUNREACH",
    "ENOTFOUND",
)


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(GatewayError):
    """Raised when there's an issue with the configuration."""
    pass


class InvalidRequestError(GatewayError):
    """Raised when an incoming request is invalid."""

    def __init__(self, message: str, code: str = "invalid_request") -> None:
        super().__init__(message)
        self.code = code


class StreamConsumedError(GatewayError):
    """Raised when a single-pass event source is iterated a second time."""
    pass


class UpstreamError(GatewayError):
    """Base exception for failures reported by the upstream API."""
    pass


class UpstreamHTTPError(UpstreamError):
    """The upstream API answered with a non-success status code."""

    def __init__(
        self,
        message: str,
        status_code: int,
        *,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        request_id: Optional[str] = None,
        code: Optional[str] = None,
        param: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.headers = dict(headers or {})
        self.request_id = request_id
        self.code = code
        self.param = param
        self.error_type = error_type

    @classmethod
    def from_response(cls, resp: httpx.Response) -> "UpstreamHTTPError":
        """Build an error from an upstream response, reading the OpenAI error body."""
        body: Any
        try:
            body = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            body = resp.text

        error_obj: Mapping[str, Any] = {}
        if isinstance(body, Mapping) and isinstance(body.get("error"), Mapping):
            error_obj = body["error"]

        message = error_obj.get("message") or f"Upstream returned status {resp.status_code}"
        code = error_obj.get("code")
        param = error_obj.get("param")
        return cls(
            str(message),
            resp.status_code,
            body=body,
            headers=resp.headers,
            request_id=resp.headers.get("x-request-id"),
            code=code if isinstance(code, str) else None,
            param=param if isinstance(param, str) else None,
            error_type=error_obj.get("type"),
        )


class UpstreamConnectionError(UpstreamError):
    """The upstream API could not be reached."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code

    @classmethod
    def from_httpx(cls, exc: httpx.TransportError, url: Optional[str] = None) -> "UpstreamConnectionError":
        """Map an httpx transport failure onto a network error code."""
        parts = [exc.__class__.__name__]
        text = str(exc).strip()
        if text:
            parts.append(text)
        if url:
            parts.append(f"url={url}")
        code = _network_code_for(exc)
        parts.append(code)
        return cls("; ".join(parts), code)


def _network_code_for(exc: httpx.TransportError) -> str:
    text = str(exc)
    for token in NETWORK_ERROR_CODES:
        if token in text:
            return token
    lowered = text.lower()
    if "name or service not known" in lowered or "nodename nor servname" in lowered or "getaddrinfo" in lowered:
        return "ENOTFOUND"
    if "network is unreachable" in lowered:
        return "ENETUNREACH"
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.ConnectError):
        return "ECONNREFUSED"
    return "ECONNRESET"
