"""Uniform error envelopes for every failure that reaches a route."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.exceptions import (
    GatewayError,
    InvalidRequestError,
    UpstreamConnectionError,
    UpstreamHTTPError,
)

logger = logging.getLogger("oai-gateway")

DEFAULT_RETRY_AFTER_SECONDS = 60
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"

RATE_LIMIT_HEADERS = {
    "limit_requests": "x-ratelimit-limit-requests",
    "remaining_requests": "x-ratelimit-remaining-requests",
    "reset_requests": "x-ratelimit-reset-requests",
    "limit_tokens": "x-ratelimit-limit-tokens",
    "remaining_tokens": "x-ratelimit-remaining-tokens",
    "reset_tokens": "x-ratelimit-reset-tokens",
}

# status, message, hint
NETWORK_ERROR_MAPPINGS: dict[str, tuple[int, str, str]] = {
    "ECONNREFUSED": (
        503,
        "Cannot connect to OpenAI API",
        "Connection refused. Verify your network connection and that OpenAI services are accessible.",
    ),
    "ENOTFOUND": (
        503,
        "Cannot resolve OpenAI API hostname",
        "DNS resolution failed. Check your network connection and DNS settings.",
    ),
    "ENETUNREACH": (
        503,
        "OpenAI API network unreachable",
        "Cannot reach the OpenAI API. Check your network connection and firewall settings.",
    ),
    "ETIMEDOUT": (
        504,
        "Request to OpenAI API timed out",
        "The request exceeded the timeout limit. Try again or increase the timeout setting.",
    ),
    "ECONNRESET": (
        504,
        "Connection to OpenAI API was reset",
        "The connection was interrupted. This is usually temporary; retry with exponential backoff.",
    ),
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def extract_rate_limit_info(headers: Mapping[str, str]) -> dict[str, Optional[str]]:
    lowered = {str(k).lower(): v for k, v in headers.items()}
    return {field: lowered.get(header) for field, header in RATE_LIMIT_HEADERS.items()}


def _retry_after(headers: Mapping[str, str]) -> int:
    lowered = {str(k).lower(): v for k, v in headers.items()}
    raw = lowered.get("retry-after")
    try:
        value = int(float(raw)) if raw is not None else DEFAULT_RETRY_AFTER_SECONDS
    except ValueError:
        value = DEFAULT_RETRY_AFTER_SECONDS
    return value if value > 0 else DEFAULT_RETRY_AFTER_SECONDS


def _openai_error(exc: UpstreamHTTPError, error_type: str) -> dict[str, Any]:
    details: dict[str, Any] = {"type": exc.error_type or error_type, "message": exc.message}
    if exc.code:
        details["code"] = exc.code
    if exc.param:
        details["param"] = exc.param
    return details


def _upstream_http_envelope(exc: UpstreamHTTPError) -> tuple[int, dict[str, Any], dict[str, str]]:
    status = exc.status_code
    headers: dict[str, str] = {}
    body: dict[str, Any] = {"request_id": exc.request_id or "unknown"}

    if status == 429:
        retry_after = _retry_after(exc.headers)
        headers["Retry-After"] = str(retry_after)
        body.update(
            statusCode=429,
            message="Rate limit exceeded",
            error_code="rate_limit_error",
            retry_after_seconds=retry_after,
            rate_limit_info=extract_rate_limit_info(exc.headers),
            hint="Please wait before making another request. Check rate_limit_info for detailed limits.",
            openai_error=_openai_error(exc, "rate_limit_error"),
        )
    elif status == 401:
        body.update(
            statusCode=401,
            message="Authentication failed with OpenAI API",
            error_code="authentication_error",
            hint='Check your OPENAI_API_KEY environment variable. Ensure it starts with "sk-" and is valid.',
            openai_error=_openai_error(exc, "authentication_error"),
        )
    elif status == 403:
        body.update(
            statusCode=403,
            message="Permission denied for OpenAI API resource",
            error_code="permission_denied_error",
            hint="Your API key does not have access to this resource or feature.",
            openai_error=_openai_error(exc, "permission_denied_error"),
        )
    elif status == 404:
        body.update(
            statusCode=404,
            message="Resource not found",
            error_code="not_found_error",
            hint="The requested resource does not exist. Check the resource ID or URL.",
            openai_error=_openai_error(exc, "not_found_error"),
        )
    elif status in (400, 422):
        body.update(
            statusCode=status,
            message="Invalid request to OpenAI API",
            error_code=exc.code or "invalid_request_error",
            parameter=exc.param,
            hint="Check your request parameters. See openai_error for details.",
            openai_error=_openai_error(exc, "invalid_request_error"),
        )
    elif 500 <= status < 600:
        body.update(
            statusCode=502,
            message="OpenAI API server error",
            error_code="server_error",
            hint="This is an issue with OpenAI servers. Retry with exponential backoff.",
            openai_error=_openai_error(exc, "server_error"),
        )
    else:
        body.update(
            statusCode=status,
            message=exc.message or "Unknown OpenAI API error",
            error_code="api_error",
            openai_error=_openai_error(exc, "api_error"),
        )
    return body["statusCode"], body, headers


def build_error_envelope(exc: BaseException, path: str) -> tuple[int, dict[str, Any], dict[str, str]]:
    """Map any exception to ``(status, body, extra_headers)``."""
    headers: dict[str, str] = {}
    if isinstance(exc, UpstreamHTTPError):
        status, body, headers = _upstream_http_envelope(exc)
    elif isinstance(exc, UpstreamConnectionError):
        status, message, hint = NETWORK_ERROR_MAPPINGS.get(
            exc.code,
            (503, "Network error communicating with OpenAI", "Check your network connection and try again."),
        )
        body = {"statusCode": status, "message": message, "error_code": exc.code, "hint": hint}
    elif isinstance(exc, InvalidRequestError):
        status = 400
        body = {"statusCode": status, "message": exc.message, "error_code": exc.code}
    elif isinstance(exc, RequestValidationError):
        status = 422
        body = {
            "statusCode": status,
            "message": "Request validation failed",
            "error_code": "validation_error",
            "error": exc.errors(),
        }
    elif isinstance(exc, StarletteHTTPException):
        status = exc.status_code
        body = {"statusCode": status, "message": str(exc.detail), "error_code": "http_error"}
        if exc.headers:
            headers.update(exc.headers)
    else:
        status = 500
        message = getattr(exc, "message", None)
        if not isinstance(message, str) or not message:
            message = str(exc) or UNEXPECTED_ERROR_MESSAGE
        body = {
            "statusCode": status,
            "message": message,
            "error_code": "internal_error",
            "error": exc.__class__.__name__,
        }

    envelope = {"statusCode": status, "timestamp": utc_now_iso(), "path": path}
    envelope.update(body)
    return status, envelope, headers


def register_exception_handlers(app: FastAPI, interaction_logger_getter: Callable[[], Any]) -> None:
    """Install handlers that turn every failure into the error envelope."""

    async def handle(request: Request, exc: Exception) -> JSONResponse:
        path = request.url.path
        status, envelope, headers = build_error_envelope(exc, path)
        if status >= 500:
            logger.error("Request %s %s failed with %s: %s", request.method, path, status, exc)
        else:
            logger.warning("Request %s %s failed with %s: %s", request.method, path, status, exc)

        interaction_logger = interaction_logger_getter()
        if interaction_logger is not None:
            entry: dict[str, Any] = {
                "api": "responses",
                "endpoint": path,
                "error": dict(envelope, original_error=exc.__class__.__name__),
                "metadata": {},
            }
            request_body = getattr(request.state, "json_body", None)
            if request_body is not None:
                entry["request"] = request_body
            interaction_logger.log_interaction(entry)

        return JSONResponse(status_code=status, content=envelope, headers=headers or None)

    app.add_exception_handler(GatewayError, handle)
    app.add_exception_handler(StarletteHTTPException, handle)
    app.add_exception_handler(RequestValidationError, handle)
    app.add_exception_handler(Exception, handle)
