"""Retry scheduling with exponential backoff for upstream calls.

Failures are classified by a pure function over the failure value. Transient
failures (rate limits, 5xx, network trouble) are retried with exponential
backoff plus jitter until the attempt budget runs out; anything else is
re-raised on the spot. The exception that reaches the caller is always the
object raised by the last attempt.
"""

import asyncio
import enum
import errno
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from .exceptions import NETWORK_ERROR_CODES

logger = logging.getLogger("oai-gateway")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 10000
JITTER_RATIO = 0.2

_STATUS_FIELDS = ("status_code", "status", "statusCode")
_PRIMITIVE_TYPES = (str, bytes, int, float, bool, type(None))


class FailureClass(str, enum.Enum):
    """Outcome of classifying a failed attempt."""

    TRANSIENT_RATE_LIMIT = "transient-rate-limit"
    TRANSIENT_SERVER_ERROR = "transient-server-error"
    TRANSIENT_NETWORK = "transient-network"
    PERMANENT = "permanent"

    @property
    def is_transient(self) -> bool:
        return self is not FailureClass.PERMANENT


class RetryState(enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    WAITING_BACKOFF = "waiting_backoff"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff envelope for one scheduler."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must not be negative")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")

    @property
    def max_retries(self) -> int:
        return self.max_attempts - 1

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
        )


@dataclass
class RetryContext:
    """Observability metadata for a scheduled call. Never affects decisions."""

    method: str = "POST"
    path: str = "/unknown"
    api: str = "responses"


@dataclass
class AttemptOutcome:
    attempt_number: int
    result: Any = None
    error: Optional[BaseException] = None
    failure_class: Optional[FailureClass] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class RetryRun:
    """State of a single ``execute`` call."""

    state: RetryState = RetryState.IDLE
    attempts: int = 0
    history: list[RetryState] = field(default_factory=lambda: [RetryState.IDLE])
    delays_ms: list[int] = field(default_factory=list)

    def transition(self, new_state: RetryState) -> None:
        self.state = new_state
        self.history.append(new_state)


def _numeric_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _extract_status(failure: Any) -> Optional[int]:
    if isinstance(failure, Mapping):
        for key in _STATUS_FIELDS:
            status = _numeric_status(failure.get(key))
            if status is not None:
                return status
        return None

    if isinstance(failure, _PRIMITIVE_TYPES):
        return None

    for name in _STATUS_FIELDS:
        status = _numeric_status(getattr(failure, name, None))
        if status is not None:
            return status

    # httpx.HTTPStatusError and friends keep the status on .response
    response = getattr(failure, "response", None)
    if response is not None:
        return _numeric_status(getattr(response, "status_code", None))
    return None


def _failure_message(failure: Any) -> Optional[str]:
    if isinstance(failure, Mapping):
        message = failure.get("message")
        return message if isinstance(message, str) else None
    if isinstance(failure, BaseException):
        message = getattr(failure, "message", None)
        if isinstance(message, str):
            return message
        return str(failure)
    if isinstance(failure, _PRIMITIVE_TYPES):
        return None
    message = getattr(failure, "message", None)
    return message if isinstance(message, str) else None


def _is_network_failure(failure: Any) -> bool:
    if isinstance(failure, Mapping):
        code = failure.get("code")
    elif isinstance(failure, _PRIMITIVE_TYPES):
        return False
    else:
        code = getattr(failure, "code", None)

    if isinstance(code, str) and code in NETWORK_ERROR_CODES:
        return True

    if isinstance(failure, OSError) and failure.errno is not None:
        if errno.errorcode.get(failure.errno) in NETWORK_ERROR_CODES:
            return True

    message = _failure_message(failure)
    if message:
        return any(token in message for token in NETWORK_ERROR_CODES)
    return False


def classify_failure(failure: Any) -> FailureClass:
    """Classify a failure value as transient or permanent.

    Accepts values of any shape. Status codes win over network codes; a value
    that matches no known shape is permanent.
    """
    status = _extract_status(failure)
    if status is not None:
        if status == 429:
            return FailureClass.TRANSIENT_RATE_LIMIT
        if 500 <= status < 600:
            return FailureClass.TRANSIENT_SERVER_ERROR
        return FailureClass.PERMANENT

    if _is_network_failure(failure):
        return FailureClass.TRANSIENT_NETWORK

    return FailureClass.PERMANENT


def is_retryable(failure: Any) -> bool:
    return classify_failure(failure).is_transient


def describe_failure(failure: Any) -> tuple[str, Union[int, str]]:
    """Return (message, status) for logging a failure value."""
    message = _failure_message(failure) or "Unknown error"
    status = _extract_status(failure)
    return message, status if status is not None else "unknown"


def base_delay(retry_index: int, policy: RetryPolicy) -> int:
    """Pre-jitter delay in milliseconds for the n-th retry (1-based)."""
    return min(policy.max_delay_ms, policy.base_delay_ms * (2 ** retry_index))


def compute_backoff(
    retry_index: int,
    policy: RetryPolicy,
    random_source: Callable[[], float] = random.random,
) -> int:
    """Jittered delay in milliseconds: capped exponential plus up to 20%."""
    capped = base_delay(retry_index, policy)
    jitter = random_source() * JITTER_RATIO * capped
    return math.floor(capped + jitter)


class RetryScheduler:
    """Run a zero-argument async operation, retrying transient failures."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        interaction_logger: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        random_source: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._interaction_logger = interaction_logger
        self._sleep = sleep
        self._random_source = random_source

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Union[RetryContext, Mapping[str, Any], None] = None,
        run: Optional[RetryRun] = None,
    ) -> T:
        """Invoke ``operation`` until it succeeds or fails for good.

        Every invocation is a fresh call, so the operation must be safe to
        repeat. The final exception is re-raised untouched. Pass a
        ``RetryRun`` to observe the state transitions of this call.
        """
        ctx = _coerce_context(context)
        run = run if run is not None else RetryRun()
        max_attempts = self.policy.max_attempts

        while True:
            run.transition(RetryState.ATTEMPTING)
            run.attempts += 1
            attempt = run.attempts
            logger.debug(
                "Attempt %d/%d for %s %s", attempt, max_attempts, ctx.method, ctx.path
            )
            try:
                result = await operation()
            except Exception as exc:
                outcome = AttemptOutcome(
                    attempt_number=attempt,
                    error=exc,
                    failure_class=classify_failure(exc),
                )
            else:
                run.transition(RetryState.SUCCEEDED)
                if attempt > 1:
                    logger.info(
                        "%s %s succeeded on attempt %d", ctx.method, ctx.path, attempt
                    )
                return result

            if outcome.failure_class.is_transient and attempt < max_attempts:
                run.transition(RetryState.WAITING_BACKOFF)
                delay_ms = compute_backoff(attempt, self.policy, self._random_source)
                run.delays_ms.append(delay_ms)
                self._report_attempt(ctx, outcome, delay_ms)
                logger.warning(
                    "Retrying %s %s in %.2fs (attempt %d/%d, %s)",
                    ctx.method,
                    ctx.path,
                    delay_ms / 1000,
                    attempt,
                    max_attempts,
                    outcome.failure_class.value,
                )
                await self._sleep(delay_ms / 1000)
                continue

            run.transition(RetryState.FAILED)
            self._report_attempt(ctx, outcome, None)
            self._report_failure(ctx, outcome)
            logger.error(
                "%s %s failed after %d attempt(s) (%s)",
                ctx.method,
                ctx.path,
                attempt,
                outcome.failure_class.value,
            )
            raise outcome.error

    def _report_attempt(
        self, ctx: RetryContext, outcome: AttemptOutcome, delay_ms: Optional[int]
    ) -> None:
        if self._interaction_logger is None:
            return
        try:
            self._interaction_logger.log_retry_attempt(
                endpoint=ctx.path,
                method=ctx.method,
                api=ctx.api,
                attempt=outcome.attempt_number,
                max_attempts=self.policy.max_attempts,
                delay_ms=delay_ms,
                failure=outcome.error,
                failure_class=outcome.failure_class.value,
            )
        except Exception as exc:
            logger.warning("Failed to record retry attempt: %s", exc)

    def _report_failure(self, ctx: RetryContext, outcome: AttemptOutcome) -> None:
        if self._interaction_logger is None:
            return
        try:
            self._interaction_logger.log_retry_failure(
                endpoint=ctx.path,
                method=ctx.method,
                api=ctx.api,
                attempts=outcome.attempt_number,
                max_attempts=self.policy.max_attempts,
                failure=outcome.error,
                failure_class=outcome.failure_class.value,
            )
        except Exception as exc:
            logger.warning("Failed to record retry failure: %s", exc)


def _coerce_context(context: Union[RetryContext, Mapping[str, Any], None]) -> RetryContext:
    if context is None:
        return RetryContext()
    if isinstance(context, RetryContext):
        return context
    return RetryContext(
        method=str(context.get("method", "POST")),
        path=str(context.get("path", "/unknown")),
        api=str(context.get("api", "responses")),
    )
