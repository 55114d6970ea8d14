"""API module for the gateway."""

from fastapi import FastAPI

from .errors import build_error_envelope, register_exception_handlers
from .routes import (
    cancel_response,
    create_text_response,
    create_text_response_stream,
    delete_response,
    get_response,
    health,
    resume_response_stream,
)


def register_routes(app: FastAPI) -> None:
    """Attach every gateway route to ``app``."""
    app.get("/health")(health)
    app.post("/api/responses/text")(create_text_response)
    app.post("/api/responses/text/stream")(create_text_response_stream)
    app.get("/api/responses/{response_id}")(get_response)
    app.delete("/api/responses/{response_id}")(delete_response)
    app.post("/api/responses/{response_id}/cancel")(cancel_response)
    app.get("/api/responses/{response_id}/stream")(resume_response_stream)


__all__ = [
    "build_error_envelope",
    "register_exception_handlers",
    "register_routes",
]
