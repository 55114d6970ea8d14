"""Structured interaction log for upstream calls, retries and streams.

Each record is appended as pretty-printed JSON to
``<log_dir>/<YYYY-MM-DD>/<api>.log``. Writes run in background threads so the
event loop never blocks on disk, and every public method swallows its own
failures: logging must never change the outcome of a request.
"""

import asyncio
import json
import logging
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from ..core.retry import describe_failure

logger = logging.getLogger("oai-gateway")

DEFAULT_LOG_DIR = Path("logs")
SEPARATOR = "-" * 80
SENSITIVE_KEYS = {"api_key", "authorization", "openai_api_key", "x-api-key"}

# Flag to disable on-disk logging (useful during testing)
_FILE_LOGGING_ENABLED = True
_PENDING_LOG_TASKS: set[asyncio.Task] = set()


def set_file_logging_enabled(enabled: bool) -> None:
    """Enable or disable on-disk interaction logging globally."""
    global _FILE_LOGGING_ENABLED
    _FILE_LOGGING_ENABLED = enabled


def is_file_logging_enabled() -> bool:
    return _FILE_LOGGING_ENABLED


def _register_background_task(task: asyncio.Task) -> None:
    """Register a background task and set up cleanup."""
    _PENDING_LOG_TASKS.add(task)

    def _cleanup(_task: asyncio.Task) -> None:
        _PENDING_LOG_TASKS.discard(_task)

    task.add_done_callback(_cleanup)


async def flush_pending_logs() -> int:
    """Wait for all queued log writes. Returns how many were pending."""
    pending = list(_PENDING_LOG_TASKS)
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    return len(pending)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def mask_sensitive(value: Any) -> Any:
    """Return a copy of ``value`` with credential-like keys masked."""
    if isinstance(value, Mapping):
        masked: dict[str, Any] = {}
        for key, item in value.items():
            if str(key).lower() in SENSITIVE_KEYS and item:
                masked[key] = "***"
            else:
                masked[key] = mask_sensitive(item)
        return masked
    if isinstance(value, list):
        return [mask_sensitive(item) for item in value]
    return value


def build_error_payload(failure: Any) -> dict[str, Any]:
    """Describe a failure value of any shape for a log record."""
    message, status = describe_failure(failure)
    payload: dict[str, Any] = {"message": message, "status": status}
    if isinstance(failure, BaseException):
        payload["type"] = failure.__class__.__name__
        code = getattr(failure, "code", None)
        if code is not None:
            payload["code"] = code
        body = getattr(failure, "body", None)
        if body is not None:
            payload["response"] = body
        if failure.__traceback__ is not None:
            payload["stack"] = "".join(
                traceback.format_exception(type(failure), failure, failure.__traceback__)
            )
    elif failure is not None and not isinstance(failure, Mapping):
        payload["value"] = repr(failure)
    return payload


class InteractionLogger:
    """Fire-and-forget side channel for interaction, retry and stream records."""

    def __init__(
        self,
        log_dir: Union[str, Path] = DEFAULT_LOG_DIR,
        *,
        log_to_disk: bool = True,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_to_disk = log_to_disk

    def log_interaction(self, entry: Mapping[str, Any]) -> None:
        """Record one upstream interaction (success or error)."""
        try:
            record = self._normalize(entry)
            record.setdefault("metadata", {})
            if "error" in record:
                logger.info(
                    "Interaction %s %s failed: %s",
                    record.get("api"),
                    record.get("endpoint"),
                    (record["error"] or {}).get("message"),
                )
            else:
                logger.debug(
                    "Interaction %s %s ok (latency=%sms)",
                    record.get("api"),
                    record.get("endpoint"),
                    record["metadata"].get("latency_ms"),
                )
            self._write(record)
        except Exception as exc:
            logger.warning("Failed to record interaction: %s", exc)

    def log_streaming_event(self, entry: Mapping[str, Any]) -> None:
        """Record one streaming lifecycle event."""
        try:
            record = self._normalize(entry)
            record.setdefault("sequence", 0)
            logger.debug(
                "Stream %s event=%s seq=%s",
                record.get("endpoint"),
                record.get("event_type"),
                record.get("sequence"),
            )
            self._write(record)
        except Exception as exc:
            logger.warning("Failed to record streaming event: %s", exc)

    def log_retry_attempt(
        self,
        *,
        endpoint: str,
        method: str,
        api: str,
        attempt: int,
        max_attempts: int,
        delay_ms: Optional[int],
        failure: Any,
        failure_class: str,
    ) -> None:
        """Record a failed attempt; ``delay_ms`` is None when no retry follows."""
        try:
            self._write(
                {
                    "timestamp": utc_timestamp(),
                    "api": api,
                    "endpoint": endpoint,
                    "event_type": "retry_attempt",
                    "method": method,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_ms": delay_ms,
                    "classification": failure_class,
                    "error": build_error_payload(failure),
                }
            )
        except Exception as exc:
            logger.warning("Failed to record retry attempt: %s", exc)

    def log_retry_failure(
        self,
        *,
        endpoint: str,
        method: str,
        api: str,
        attempts: int,
        max_attempts: int,
        failure: Any,
        failure_class: str,
    ) -> None:
        """Record the terminal failure of a retried call."""
        try:
            self._write(
                {
                    "timestamp": utc_timestamp(),
                    "api": api,
                    "endpoint": endpoint,
                    "event_type": "retry_exhausted" if attempts >= max_attempts else "retry_aborted",
                    "method": method,
                    "attempts": attempts,
                    "max_attempts": max_attempts,
                    "classification": failure_class,
                    "error": build_error_payload(failure),
                }
            )
        except Exception as exc:
            logger.warning("Failed to record retry failure: %s", exc)

    @staticmethod
    def _normalize(entry: Mapping[str, Any]) -> dict[str, Any]:
        record = dict(entry)
        record.setdefault("timestamp", utc_timestamp())
        record.setdefault("api", "responses")
        if "request" in record:
            record["request"] = mask_sensitive(record["request"])
        error = record.get("error")
        if error is not None and not isinstance(error, Mapping):
            record["error"] = build_error_payload(error)
        return record

    def _log_file_for(self, api: str) -> Path:
        date_dir = self.log_dir / datetime.now(timezone.utc).strftime("%Y-%m-%d")
        safe_api = "".join(c if c.isalnum() or c in "-_" else "-" for c in api or "unknown")
        return date_dir / f"{safe_api}.log"

    def _write(self, record: Mapping[str, Any]) -> None:
        if not (self.log_to_disk and _FILE_LOGGING_ENABLED):
            return
        path = self._log_file_for(str(record.get("api") or "unknown"))
        content = json.dumps(record, indent=2, ensure_ascii=False, default=str) + "\n" + SEPARATOR + "\n"

        def _append() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(content)

        # Write async if possible, sync otherwise
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _append()
            return

        async def _write_in_thread() -> None:
            try:
                await asyncio.to_thread(_append)
            except OSError as exc:
                logger.warning("Failed to write interaction log %s: %s", path, exc)

        task = loop.create_task(_write_in_thread())
        _register_background_task(task)
