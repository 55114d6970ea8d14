"""OAI Gateway - a resilient proxy in front of the OpenAI Responses API.

This package provides:
- RetryScheduler: retries transient upstream failures with jittered backoff
- StreamingRelay: relays upstream stream events to clients as SSE
- StreamSessionStore: keeps relayed events so clients can resume streams
- A FastAPI app exposing the gateway routes

Example:
    >>> from oai_gateway.main import create_app
    >>> import uvicorn
    >>> uvicorn.run(create_app(), host="127.0.0.1", port=3000)
"""

from .config_loader import GatewaySettings, build_settings, load_config
from .core import RetryPolicy, RetryScheduler, classify_failure, compute_backoff
from .logging import InteractionLogger, logger, setup_logging
from .main import create_app
from .streaming import EventSource, StreamEvent, StreamingRelay, StreamSessionStore

__all__ = [
    "EventSource",
    "GatewaySettings",
    "InteractionLogger",
    "RetryPolicy",
    "RetryScheduler",
    "StreamEvent",
    "StreamSessionStore",
    "StreamingRelay",
    "build_settings",
    "classify_failure",
    "compute_backoff",
    "create_app",
    "load_config",
    "logger",
    "setup_logging",
]
