"""Logging module for the gateway."""

from .recorder import (
    InteractionLogger,
    build_error_payload,
    flush_pending_logs,
    is_file_logging_enabled,
    mask_sensitive,
    set_file_logging_enabled,
)
from .setup import logger, setup_logging

__all__ = [
    "logger",
    "setup_logging",
    "InteractionLogger",
    "build_error_payload",
    "flush_pending_logs",
    "is_file_logging_enabled",
    "mask_sensitive",
    "set_file_logging_enabled",
]
