"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

from typing import Any, Generator

import httpx
import pytest


@pytest.fixture(autouse=True)
def disable_file_logging():
    """Disable on-disk interaction logging during all tests.

    This fixture is automatically used for all tests due to autouse=True.
    It keeps test runs from writing log files into the working tree.
    """
    from oai_gateway.logging import set_file_logging_enabled

    set_file_logging_enabled(False)

    yield

    set_file_logging_enabled(True)


@pytest.fixture(autouse=True)
def reset_global_state() -> Generator[None, None, None]:
    """Reset the gateway registry around every test."""
    from oai_gateway.core.registry import reset_gateway

    reset_gateway()
    yield
    reset_gateway()


# =============================================================================
# Transport Registry Fixtures
# =============================================================================


@pytest.fixture
def clear_transport_registry() -> Generator[None, None, None]:
    """Clear upstream transport registry after test.

    Use this fixture in tests that register fake transports.
    """
    from oai_gateway.upstream.transport import clear_upstream_transports

    yield
    clear_upstream_transports()


def register_fake_upstream(host: str, upstream: Any) -> None:
    """Register a FakeUpstream for the given host.

    Args:
        host: Host to register (e.g., "upstream.local")
        upstream: FakeUpstream instance
    """
    from oai_gateway.upstream.transport import register_upstream_transport

    register_upstream_transport(host, httpx.ASGITransport(app=upstream.app))


# =============================================================================
# Recording doubles
# =============================================================================


class RecordingInteractionLogger:
    """Collects side-channel records in memory instead of writing files."""

    def __init__(self) -> None:
        self.interactions: list[dict[str, Any]] = []
        self.stream_events: list[dict[str, Any]] = []
        self.retry_attempts: list[dict[str, Any]] = []
        self.retry_failures: list[dict[str, Any]] = []

    def log_interaction(self, entry):
        self.interactions.append(dict(entry))

    def log_streaming_event(self, entry):
        self.stream_events.append(dict(entry))

    def log_retry_attempt(self, **kwargs):
        self.retry_attempts.append(kwargs)

    def log_retry_failure(self, **kwargs):
        self.retry_failures.append(kwargs)


@pytest.fixture
def recording_logger() -> RecordingInteractionLogger:
    return RecordingInteractionLogger()


# =============================================================================
# Harness Fixtures
# =============================================================================


@pytest.fixture
def gateway_harness(
    clear_transport_registry: None,
) -> Generator[tuple[Any, Any], None, None]:
    """Create a harness wired to a fake upstream.

    Returns:
        Tuple of (FakeUpstream, GatewayHarness)

    Usage:
        async def test_text(gateway_harness):
            upstream, harness = gateway_harness
            upstream.enqueue_response("Hello")
            # ... test code ...
    """
    from oai_gateway.testing import (
        UPSTREAM_HOST,
        FakeUpstream,
        GatewayHarness,
        build_gateway_config,
    )

    upstream = FakeUpstream()
    register_fake_upstream(UPSTREAM_HOST, upstream)

    harness = GatewayHarness(build_gateway_config())
    try:
        yield upstream, harness
    finally:
        harness.close()
