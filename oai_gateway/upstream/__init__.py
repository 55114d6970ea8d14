"""Upstream OpenAI client, event mapping and test transports."""

from .client import DEFAULT_BASE_URL, OpenAIClient
from .events import client_event_name, to_stream_event
from .transport import (
    clear_upstream_transports,
    get_upstream_transport,
    register_upstream_transport,
    register_upstream_transport_for_url,
)

__all__ = [
    "DEFAULT_BASE_URL",
    "OpenAIClient",
    "clear_upstream_transports",
    "client_event_name",
    "get_upstream_transport",
    "register_upstream_transport",
    "register_upstream_transport_for_url",
    "to_stream_event",
]
