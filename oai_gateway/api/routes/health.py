"""Liveness endpoint."""

from datetime import datetime, timezone

from fastapi.responses import JSONResponse

from ...core.registry import get_gateway


async def health() -> JSONResponse:
    """GET /health - report liveness and session store usage."""
    gateway = get_gateway()
    return JSONResponse(
        {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sessions": gateway.session_store.get_cache_stats(),
        }
    )
