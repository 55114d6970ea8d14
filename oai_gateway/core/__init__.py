"""Core module initialization."""

from .exceptions import (
    ConfigurationError,
    GatewayError,
    InvalidRequestError,
    StreamConsumedError,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamHTTPError,
)
from .registry import get_gateway, reset_gateway, set_gateway
from .retry import (
    FailureClass,
    RetryContext,
    RetryPolicy,
    RetryScheduler,
    RetryState,
    classify_failure,
    compute_backoff,
    is_retryable,
)
from .sse import SSE_HEADERS, SSEDecoder, format_sse_message

__all__ = [
    "ConfigurationError",
    "FailureClass",
    "GatewayError",
    "InvalidRequestError",
    "RetryContext",
    "RetryPolicy",
    "RetryScheduler",
    "RetryState",
    "SSEDecoder",
    "SSE_HEADERS",
    "StreamConsumedError",
    "UpstreamConnectionError",
    "UpstreamError",
    "UpstreamHTTPError",
    "classify_failure",
    "compute_backoff",
    "format_sse_message",
    "get_gateway",
    "is_retryable",
    "reset_gateway",
    "set_gateway",
]
