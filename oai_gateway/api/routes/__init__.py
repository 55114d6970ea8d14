"""API routes for the gateway."""

from .health import health
from .responses import (
    cancel_response,
    create_text_response,
    create_text_response_stream,
    delete_response,
    get_response,
    resume_response_stream,
)

__all__ = [
    "cancel_response",
    "create_text_response",
    "create_text_response_stream",
    "delete_response",
    "get_response",
    "health",
    "resume_response_stream",
]
