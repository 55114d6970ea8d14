"""Responses API endpoint handlers.

Implements the gateway's ``/api/responses`` routes:
- Non-streaming create, retrieve, delete and cancel go through the retry
  scheduler.
- Streaming create is relayed as SSE without retries.
- Resume replays a stream after a client-supplied sequence number.
"""

import json
import logging
import time
from typing import Any, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from ...core.exceptions import InvalidRequestError
from ...core.registry import get_gateway
from ...core.retry import RetryContext
from ...pricing import calculate_cost, normalize_usage
from ...streaming.relay import RelayResponse, StreamContext

logger = logging.getLogger("oai-gateway")

API_NAME = "responses"


async def _read_payload(request: Request, default_model: str) -> dict[str, Any]:
    """Parse and validate a create request body."""
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError as exc:
        logger.error(f"Invalid JSON in Responses request: {exc}")
        raise InvalidRequestError("Invalid JSON payload", code="invalid_json") from exc

    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object", code="invalid_request_body")
    request.state.json_body = payload

    model = payload.get("model")
    if model is None or model == "":
        payload["model"] = default_model
    elif not isinstance(model, str):
        raise InvalidRequestError("model must be a string", code="invalid_model")

    if payload.get("input") in (None, "", []):
        raise InvalidRequestError("input is required", code="missing_input")

    payload.pop("stream", None)
    return payload


def _log_success(
    request: Request,
    payload: Optional[dict[str, Any]],
    result: Any,
    started: float,
) -> None:
    gateway = get_gateway()
    latency_ms = int((time.monotonic() - started) * 1000)
    metadata: dict[str, Any] = {"latency_ms": latency_ms}
    if isinstance(result, dict):
        usage = result.get("usage")
        counts = normalize_usage(usage)
        model = result.get("model") or (payload or {}).get("model") or ""
        if counts:
            metadata["tokens_used"] = counts.get("total_tokens")
            metadata["cached_tokens"] = counts.get("cached_tokens", 0)
            metadata["reasoning_tokens"] = counts.get("reasoning_tokens", 0)
            metadata["cost_estimate"] = calculate_cost(str(model), usage)
        if result.get("status") is not None:
            metadata["response_status"] = result.get("status")
        if model:
            metadata["model"] = model

    entry: dict[str, Any] = {
        "api": API_NAME,
        "endpoint": request.url.path,
        "response": result,
        "metadata": metadata,
    }
    if payload is not None:
        entry["request"] = payload
    gateway.interaction_logger.log_interaction(entry)


async def create_text_response(request: Request) -> Response:
    """POST /api/responses/text - create a response and wait for the result."""
    gateway = get_gateway()
    try:
        payload = await _read_payload(request, gateway.settings.openai.default_model)
    except ClientDisconnect:
        logger.warning("Client disconnected before request body was fully read")
        return Response(status_code=499)  # Client Closed Request

    logger.info("Creating text response with model %s", payload["model"])
    started = time.monotonic()
    result = await gateway.scheduler.execute(
        lambda: gateway.client.create_response(payload),
        RetryContext(method="POST", path=request.url.path, api=API_NAME),
    )
    _log_success(request, payload, result, started)
    return JSONResponse(result)


async def create_text_response_stream(request: Request) -> Response:
    """POST /api/responses/text/stream - create a response and relay it as SSE."""
    gateway = get_gateway()
    try:
        payload = await _read_payload(request, gateway.settings.openai.default_model)
    except ClientDisconnect:
        logger.warning("Client disconnected before request body was fully read")
        return Response(status_code=499)

    logger.info("Streaming text response with model %s", payload["model"])
    source = gateway.client.stream_response(payload)
    context = StreamContext(endpoint=request.url.path, api=API_NAME, request=payload)
    return RelayResponse(lambda connection: gateway.relay.relay(source, connection, context=context))


async def get_response(response_id: str, request: Request) -> Response:
    """GET /api/responses/{response_id} - retrieve a stored response."""
    gateway = get_gateway()
    started = time.monotonic()
    result = await gateway.scheduler.execute(
        lambda: gateway.client.retrieve_response(response_id),
        RetryContext(method="GET", path=request.url.path, api=API_NAME),
    )
    _log_success(request, None, result, started)
    return JSONResponse(result)


async def delete_response(response_id: str, request: Request) -> Response:
    """DELETE /api/responses/{response_id} - delete a stored response."""
    gateway = get_gateway()
    started = time.monotonic()
    result = await gateway.scheduler.execute(
        lambda: gateway.client.delete_response(response_id),
        RetryContext(method="DELETE", path=request.url.path, api=API_NAME),
    )
    _log_success(request, None, result, started)
    return JSONResponse(result)


async def cancel_response(response_id: str, request: Request) -> Response:
    """POST /api/responses/{response_id}/cancel - cancel a background response."""
    gateway = get_gateway()
    started = time.monotonic()
    result = await gateway.scheduler.execute(
        lambda: gateway.client.cancel_response(response_id),
        RetryContext(method="POST", path=request.url.path, api=API_NAME),
    )
    _log_success(request, None, result, started)
    return JSONResponse(result)


async def resume_response_stream(
    response_id: str,
    request: Request,
    starting_after: Optional[int] = None,
) -> Response:
    """GET /api/responses/{response_id}/stream - resume a stream after a sequence number."""
    gateway = get_gateway()
    logger.info("Resuming stream for %s after sequence %s", response_id, starting_after)
    context = StreamContext(endpoint=request.url.path, api=API_NAME)
    return RelayResponse(
        lambda connection: gateway.relay.resume(
            response_id, connection, starting_after=starting_after, context=context
        )
    )
