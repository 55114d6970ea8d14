"""Service bundle shared by the routes of one application instance."""

from dataclasses import dataclass
from typing import Optional

from .config_loader import GatewaySettings
from .core.retry import RetryPolicy, RetryScheduler
from .logging.recorder import InteractionLogger
from .streaming.relay import StreamingRelay
from .streaming.session_store import StreamSessionStore
from .upstream.client import OpenAIClient


@dataclass
class Gateway:
    settings: GatewaySettings
    client: OpenAIClient
    scheduler: RetryScheduler
    relay: StreamingRelay
    interaction_logger: InteractionLogger
    session_store: StreamSessionStore


def build_gateway(
    settings: GatewaySettings,
    *,
    session_store: Optional[StreamSessionStore] = None,
    scheduler: Optional[RetryScheduler] = None,
) -> Gateway:
    """Wire the upstream client, retry scheduler and relay from settings."""
    interaction_logger = InteractionLogger(
        settings.logging.dir, log_to_disk=settings.logging.log_to_disk
    )
    client = OpenAIClient(
        settings.openai.api_key,
        settings.openai.base_url,
        timeout_ms=settings.openai.timeout_ms,
        organization=settings.openai.organization,
    )
    if session_store is None:
        session_store = StreamSessionStore(settings.streaming.session_max_entries)
    if scheduler is None:
        scheduler = RetryScheduler(
            RetryPolicy.from_settings(settings.retry),
            interaction_logger=interaction_logger,
        )
    relay = StreamingRelay(
        interaction_logger=interaction_logger,
        session_store=session_store,
        resume_source_factory=client.stream_stored_response,
    )
    return Gateway(
        settings=settings,
        client=client,
        scheduler=scheduler,
        relay=relay,
        interaction_logger=interaction_logger,
        session_store=session_store,
    )
