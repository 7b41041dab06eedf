"""Retry executor with exponential backoff for generation calls.

This module wraps a single asynchronous operation with retry, backoff and an
optional per-attempt timeout. It is used by the submission layer to make
individual generation requests resilient to transient backend failures.

Retry Policy:
    - Attempts run 1..max_retries+1
    - Non-retryable errors propagate on first occurrence (fail fast)
    - Delay before retry N is base_delay * 2**(N-1) (or base_delay when
      exponential backoff is disabled)
    - on_retry(attempt, error, next_delay) fires before every sleep
    - A per-attempt timeout surfaces as GenerationTimeoutError, which is
      retryable like any other transient failure

Error Classification:
    classify_error() reads the structured ErrorKind attached to the error at
    its point of origin, then well-known library exception types (httpx,
    builtin timeouts/connection errors), and only falls back to message
    matching for errors from collaborators outside this package.

Usage:
    from shotforge.services.retry_executor import RetryConfig, RetryExecutor

    executor = RetryExecutor()
    image = await executor.execute(
        lambda: backend.generate(prompt),
        RetryConfig(max_retries=3, base_delay=2.0, timeout=120),
    )
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from shotforge.config import get_retry_base_delay, get_retry_max_attempts
from shotforge.exceptions import ErrorKind, GenerationTimeoutError
from shotforge.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], Any]

# Message fragments used only when an error carries no structured kind
_NETWORK_MARKERS = (
    "network",
    "fetch",
    "failed to fetch",
    "connection refused",
    "econnrefused",
    "econnreset",
    "etimedout",
)
_TIMEOUT_MARKERS = ("timeout", "timed out")
_SERVER_MARKERS = (
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "bad gateway",
    "service unavailable",
)
_RATE_LIMIT_MARKERS = ("429", "too many requests", "rate limit")
_TEMPORARY_MARKERS = ("temporary", "retry")


def _classify_status_code(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code >= 500:
        return ErrorKind.SERVER
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN


def classify_message(message: str) -> ErrorKind:
    """Classify an error from its message text alone.

    Fallback adapter for errors raised by collaborators that do not tag
    their failures with an ErrorKind.

    Args:
        message: Error message (case-insensitive)

    Returns:
        Matched ErrorKind, or UNKNOWN

    Example:
        >>> classify_message("HTTP 503: Service Unavailable")
        <ErrorKind.SERVER: 'server'>
        >>> classify_message("HTTP 400: invalid prompt")
        <ErrorKind.UNKNOWN: 'unknown'>
    """
    text = message.lower()

    if any(marker in text for marker in _NETWORK_MARKERS):
        return ErrorKind.NETWORK
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if any(marker in text for marker in _SERVER_MARKERS):
        return ErrorKind.SERVER
    if any(marker in text for marker in _RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMIT
    if any(marker in text for marker in _TEMPORARY_MARKERS):
        return ErrorKind.TEMPORARY
    return ErrorKind.UNKNOWN


def classify_error(exception: BaseException) -> ErrorKind:
    """Classify an exception into an ErrorKind.

    Resolution order:
    1. Structured ``kind`` attribute (GenerationError and subclasses)
    2. httpx exception types (timeouts, transport errors, HTTP status)
    3. Builtin TimeoutError / ConnectionError
    4. Message matching fallback

    Args:
        exception: Exception raised by an operation

    Returns:
        ErrorKind for the exception
    """
    kind = getattr(exception, "kind", None)
    if isinstance(kind, ErrorKind) and kind is not ErrorKind.UNKNOWN:
        return kind

    if isinstance(exception, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(exception, httpx.HTTPStatusError):
        return _classify_status_code(exception.response.status_code)
    if isinstance(exception, httpx.TransportError):
        return ErrorKind.NETWORK

    if isinstance(exception, TimeoutError | asyncio.TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exception, ConnectionError):
        return ErrorKind.NETWORK

    return classify_message(str(exception))


def is_retryable_error(exception: BaseException) -> bool:
    """Default retryability rule.

    Network/connection errors, timeouts, HTTP 5xx, HTTP 429 / rate limits and
    errors marked temporary are retryable. Everything else (e.g. HTTP 4xx
    validation errors) fails on first occurrence.
    """
    if not isinstance(exception, Exception):
        return False
    return classify_error(exception).is_transient


@dataclass
class RetryConfig:
    """Retry policy for a single operation.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Delay in seconds before the first retry
        exponential_backoff: Double the delay for each further retry
        timeout: Optional per-attempt timeout in seconds
        is_retryable: Predicate deciding whether an error may be retried
        on_retry: Hook called as on_retry(attempt, error, next_delay) before sleeping
    """

    max_retries: int = field(default_factory=get_retry_max_attempts)
    base_delay: float = field(default_factory=get_retry_base_delay)
    exponential_backoff: bool = True
    timeout: float | None = None
    is_retryable: Callable[[BaseException], bool] = is_retryable_error
    on_retry: OnRetry | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")


class RetryExecutor:
    """Runs operations under a RetryConfig using tenacity.

    Stateless apart from the injected sleep function, so one executor can be
    shared by every queue in a session.

    Args:
        sleep: Coroutine function used for backoff waits (tests inject a fake)
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
    ) -> T:
        """Execute operation with retry and backoff.

        Args:
            operation: Zero-argument coroutine function
            config: Retry policy (defaults from environment when omitted)

        Returns:
            The operation's result from the first successful attempt

        Raises:
            Exception: The last error when attempts are exhausted, or the first
                non-retryable error
        """
        config = config or RetryConfig()

        if config.exponential_backoff:
            wait = wait_exponential(multiplier=config.base_delay, exp_base=2, min=0)
        else:
            wait = wait_fixed(config.base_delay)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.max_retries + 1),
            wait=wait,
            retry=retry_if_exception(config.is_retryable),
            before_sleep=self._make_before_sleep(config),
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(self._run_attempt, operation, config.timeout)

    @staticmethod
    async def _run_attempt(operation: Callable[[], Awaitable[T]], timeout: float | None) -> T:
        if timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(f"Request timed out after {timeout}s") from e

    @staticmethod
    def _make_before_sleep(config: RetryConfig) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            attempt = retry_state.attempt_number
            error = retry_state.outcome.exception() if retry_state.outcome else None
            next_delay = retry_state.next_action.sleep if retry_state.next_action else 0.0

            log.warning(
                "retry_scheduled",
                attempt=attempt,
                max_attempts=config.max_retries + 1,
                next_delay_seconds=next_delay,
                error_type=type(error).__name__,
                error_message=str(error),
            )

            if config.on_retry is None or error is None:
                return
            try:
                config.on_retry(attempt, error, next_delay)
            except Exception as e:
                # Observability hook only, never a veto
                log.error("on_retry_callback_failed", attempt=attempt, error=str(e))

        return before_sleep
