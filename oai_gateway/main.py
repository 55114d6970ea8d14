"""Main FastAPI application for the gateway."""

import logging
from typing import Any, Mapping, Optional

from fastapi import FastAPI

from .api import register_exception_handlers, register_routes
from .config_loader import build_settings, load_config
from .core.registry import get_gateway, set_gateway
from .gateway import Gateway, build_gateway
from .logging import flush_pending_logs, setup_logging

logger = logging.getLogger("oai-gateway")


def _current_interaction_logger() -> Any:
    try:
        return get_gateway().interaction_logger
    except RuntimeError:
        return None


def create_app(
    config: Optional[Mapping[str, Any]] = None,
    *,
    gateway: Optional[Gateway] = None,
) -> FastAPI:
    """Factory function to create the FastAPI application.

    Args:
        config: Parsed configuration. Loaded from disk when omitted.
        gateway: Prebuilt service bundle; built from ``config`` when omitted.

    Returns:
        The configured FastAPI application instance.
    """
    if gateway is None:
        if config is None:
            config = load_config()
        settings = build_settings(config)
        gateway = build_gateway(settings)

    setup_logging(gateway.settings.logging.level)
    set_gateway(gateway)
    logger.info(
        "Gateway initialized for %s (default model %s, %d attempts per call)",
        gateway.settings.openai.base_url,
        gateway.settings.openai.default_model,
        gateway.scheduler.policy.max_attempts,
    )

    app = FastAPI(title="OAI Gateway")
    app.state.gateway = gateway

    @app.on_event("startup")
    async def startup_event():
        """Handle application startup."""
        server = gateway.settings.server
        logger.info("OAI Gateway starting up...")
        logger.info("Configured bind address %s:%s", server.host, server.port)
        logger.info("OAI Gateway ready to handle requests")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Handle application shutdown."""
        pending = await flush_pending_logs()
        if pending:
            logger.info("Flushed %d pending log tasks", pending)

    register_routes(app)
    register_exception_handlers(app, _current_interaction_logger)
    return app


__all__ = ["create_app"]
