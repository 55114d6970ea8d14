"""Testing utilities for in-process gateway simulations."""

from .fake_upstream import FakeUpstream, StreamError, UpstreamResponse
from .harness import (
    UPSTREAM_BASE_URL,
    UPSTREAM_HOST,
    GatewayHarness,
    build_gateway_config,
    parse_sse_frames,
)
from .response_builders import (
    build_openai_error_body,
    build_response_object,
    build_response_stream_events,
    build_text_request,
    build_usage,
    new_response_id,
)

__all__ = [
    # Core simulation classes
    "FakeUpstream",
    "UpstreamResponse",
    "StreamError",
    "GatewayHarness",
    "UPSTREAM_BASE_URL",
    "UPSTREAM_HOST",
    "build_gateway_config",
    "parse_sse_frames",
    # Response builders
    "build_openai_error_body",
    "build_response_object",
    "build_response_stream_events",
    "build_text_request",
    "build_usage",
    "new_response_id",
]
