"""
Stream Recovery

Classifies failures of streaming AI calls and retries the recoverable ones.

Error kinds (first match wins, in this order):
    parse -> connection -> timeout -> incomplete -> provider -> unknown

Only connection, timeout and incomplete errors are retried: a malformed
payload or an upstream rate limit will not go away by asking again a few
hundred milliseconds later. Whatever the kind, users only ever see the fixed
messages from ``get_stream_error_message``.

Architectural Decision: tenacity AsyncRetrying drives the retry loop
- Backoff: retry_delay_ms * 2^(attempt-1) (500ms, 1s, 2s...)
- A cancel event is checked before every retry so a client that went away
  stops further upstream calls
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from nexus_resilience.core.config.constants import (
    SSE_EVENT_CHUNK,
    SSE_EVENT_COMPLETE,
    SSE_EVENT_ERROR,
    STREAM_RECOVERY_MAX_RETRIES,
    STREAM_RECOVERY_RETRY_DELAY_MS,
    Stage,
)
from nexus_resilience.core.exceptions import StreamCancelledError
from nexus_resilience.core.logging.logger import get_logger, log_stage
from nexus_resilience.resilience.errors import error_text

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_STREAM_FALLBACK_MESSAGE = (
    "I apologize, but I encountered an issue generating my response. Please try again."
)


class StreamErrorKind(str, Enum):
    """Closed set of stream failure categories."""

    PARSE = "parse_error"
    CONNECTION = "connection_error"
    TIMEOUT = "timeout_error"
    INCOMPLETE = "incomplete_error"
    PROVIDER = "provider_error"
    UNKNOWN = "unknown_error"


# Evaluated in order; the first kind with a matching keyword wins.
_CLASSIFICATION_TABLE: tuple[tuple[StreamErrorKind, tuple[str, ...]], ...] = (
    (StreamErrorKind.PARSE, ("unexpected token", "json parse", "invalid json", "malformed")),
    (
        StreamErrorKind.CONNECTION,
        ("network", "econnreset", "socket hang up", "connection", "fetch failed"),
    ),
    (StreamErrorKind.TIMEOUT, ("timeout", "aborted")),
    (StreamErrorKind.INCOMPLETE, ("incomplete", "truncated", "unexpected end")),
    (StreamErrorKind.PROVIDER, ("429", "rate limit", "503", "502")),
)

RECOVERABLE_STREAM_ERRORS = frozenset(
    {StreamErrorKind.CONNECTION, StreamErrorKind.TIMEOUT, StreamErrorKind.INCOMPLETE}
)

_STREAM_ERROR_MESSAGES: dict[StreamErrorKind, str] = {
    StreamErrorKind.PARSE: "Received an invalid response. Please try again.",
    StreamErrorKind.CONNECTION: "Connection was interrupted. Please try again.",
    StreamErrorKind.TIMEOUT: "Response took too long. Please try a shorter question.",
    StreamErrorKind.INCOMPLETE: "Response was incomplete. Please try again.",
    StreamErrorKind.PROVIDER: "AI service is temporarily busy. Please wait a moment and try again.",
    StreamErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}


def classify_stream_error(error: Any) -> StreamErrorKind:
    """Map an exception (or message string) to a ``StreamErrorKind``."""
    text = error_text(error)

    for kind, keywords in _CLASSIFICATION_TABLE:
        if any(keyword in text for keyword in keywords):
            return kind
        # Timeout exceptions often carry an empty message
        if kind is StreamErrorKind.TIMEOUT and isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return kind

    return StreamErrorKind.UNKNOWN


def is_recoverable_stream_error(kind: StreamErrorKind) -> bool:
    return kind in RECOVERABLE_STREAM_ERRORS


def get_stream_error_message(kind: StreamErrorKind) -> str:
    """User-facing message for an error kind. Never includes upstream text."""
    return _STREAM_ERROR_MESSAGES.get(kind, _STREAM_ERROR_MESSAGES[StreamErrorKind.UNKNOWN])


def _is_recoverable_exception(error: BaseException) -> bool:
    return is_recoverable_stream_error(classify_stream_error(error))


@dataclass
class StreamRecoveryOptions:
    """
    Options for ``with_stream_recovery``.

    Attributes:
        max_retries: Retries after the first attempt
        retry_delay_ms: Base backoff, doubled per retry
        on_retry: Called as ``on_retry(attempt, error)`` before each backoff
        on_recovery_failed: Called as ``on_recovery_failed(error, attempts)``
            before the final error propagates
        cancel_event: When set, no further retries are attempted
        sleep: Backoff sleep coroutine (``asyncio.sleep`` by default)
    """

    max_retries: int = STREAM_RECOVERY_MAX_RETRIES
    retry_delay_ms: int = STREAM_RECOVERY_RETRY_DELAY_MS
    on_retry: Callable[[int, BaseException], None] | None = None
    on_recovery_failed: Callable[[BaseException, int], None] | None = None
    cancel_event: asyncio.Event | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


async def with_stream_recovery(
    operation: Callable[[], Awaitable[T]],
    options: StreamRecoveryOptions | None = None,
) -> T:
    """
    Run ``operation`` and retry it while its failures stay recoverable.

    Raises:
        StreamCancelledError: ``cancel_event`` was set before a retry
        Exception: The last error once it is unrecoverable or retries ran out
    """
    options = options or StreamRecoveryOptions()
    max_attempts = options.max_retries + 1
    attempts = 0

    def _before_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        if options.on_retry:
            options.on_retry(retry_state.attempt_number, error)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=options.retry_delay_ms / 1000),
        retry=retry_if_exception(_is_recoverable_exception),
        before_sleep=_before_retry,
        sleep=options.sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            if attempts > 0 and options.cancel_event is not None and options.cancel_event.is_set():
                log_stage(
                    logger,
                    Stage.STREAM_RECOVERY,
                    "Stream retry cancelled by client",
                    attempts=attempts,
                )
                raise StreamCancelledError(
                    "Stream cancelled before retry", details={"attempts": attempts}
                )

            with attempt:
                attempts += 1
                try:
                    return await operation()
                except Exception as e:
                    kind = classify_stream_error(e)
                    log_stage(
                        logger,
                        Stage.STREAM_RECOVERY,
                        "Stream operation failed",
                        level="warning",
                        attempt=attempts,
                        max_attempts=max_attempts,
                        error_kind=kind.value,
                        is_recoverable=is_recoverable_stream_error(kind),
                        error=str(e),
                    )
                    raise
    except StreamCancelledError:
        raise
    except Exception as e:
        if options.on_recovery_failed:
            options.on_recovery_failed(e, attempts)
        raise

    # AsyncRetrying with reraise=True either returns or raises above
    raise RuntimeError("stream recovery loop exited without a result")


@dataclass(frozen=True)
class StreamEvent:
    """One event of a guarded chunk stream."""

    type: Literal["chunk", "error", "complete"]
    content: str = ""
    error_kind: StreamErrorKind | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.type == SSE_EVENT_CHUNK:
            data["content"] = self.content
        elif self.type == SSE_EVENT_ERROR:
            data["error"] = self.content
            data["error_kind"] = self.error_kind.value if self.error_kind else None
        return data


async def recoverable_stream(
    chunks: AsyncIterator[str],
    fallback_message: str = DEFAULT_STREAM_FALLBACK_MESSAGE,
) -> AsyncIterator[StreamEvent]:
    """
    Guard an async chunk iterator.

    Chunks pass through as ``chunk`` events and a clean end yields
    ``complete``. A fault in the middle is classified, logged and turned into
    one final ``error`` event carrying a friendly message (``fallback_message``
    for unknown faults) instead of the upstream text.
    """
    delivered = 0
    try:
        async for chunk in chunks:
            delivered += 1
            yield StreamEvent(type=SSE_EVENT_CHUNK, content=chunk)
    except Exception as e:
        kind = classify_stream_error(e)
        log_stage(
            logger,
            Stage.STREAM_RECOVERY,
            "Stream failed mid-response",
            level="error",
            error_kind=kind.value,
            chunks_delivered=delivered,
            error=str(e),
            error_type=type(e).__name__,
        )
        message = fallback_message if kind is StreamErrorKind.UNKNOWN else get_stream_error_message(kind)
        yield StreamEvent(type=SSE_EVENT_ERROR, content=message, error_kind=kind)
        return

    yield StreamEvent(type=SSE_EVENT_COMPLETE)
