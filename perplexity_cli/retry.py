"""Exponential backoff with jitter for transient network failures."""

import errno
import random
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar, Optional, Any
from functools import wraps

import httpx

from .models import PerplexityError, RequestCancelled

T = TypeVar("T")

# Some failures only surface as a generic error with a descriptive message.
RETRYABLE_PATTERNS = (
    "connection refused",
    "connection reset",
    "connection timed out",
    "no such host",
    "network is unreachable",
    "host is unreachable",
    "temporary failure",
    "try again",
    "i/o timeout",
    "eof",
    "broken pipe",
    "connection closed",
)

RETRYABLE_ERRNOS = frozenset({
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.ETIMEDOUT,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
})


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior. Durations are in seconds."""

    max_retries: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.2  # Random jitter factor (0-1)

    def calculate_backoff(self, attempt: int) -> float:
        """Calculate the delay before the retry that follows ``attempt``."""
        if attempt <= 0:
            return self.initial_backoff

        backoff = self.initial_backoff * (self.multiplier ** attempt)
        backoff = min(backoff, self.max_backoff)

        # Jitter: uniform in [backoff * (1 - jitter), backoff * (1 + jitter)]
        if self.jitter > 0:
            jitter_range = backoff * self.jitter
            backoff = backoff + random.uniform(-jitter_range, jitter_range)

        return backoff


@dataclass(frozen=True)
class RetryInfo:
    """Details about a retry, passed to ``on_retry`` callbacks."""

    attempt: int  # 0-indexed attempt that just failed
    max_retries: int
    error: BaseException
    next_backoff: float


OnRetry = Callable[[RetryInfo], None]


def is_retryable_error(error: Optional[BaseException]) -> bool:
    """Detect transient network errors worth retrying in place."""
    seen = set()

    while error is not None and id(error) not in seen:
        seen.add(id(error))

        # Cancellation, API errors and local failures are already classified
        if isinstance(error, PerplexityError):
            return False

        if isinstance(error, (httpx.TimeoutException, TimeoutError, socket.timeout)):
            return True

        if isinstance(error, socket.gaierror):
            return True

        if isinstance(error, (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionError)):
            return True

        if isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS:
            return True

        message = str(error).lower()
        if any(pattern in message for pattern in RETRYABLE_PATTERNS):
            return True

        error = error.__cause__ or error.__context__

    return False


def _sleep(delay: float, cancel: Optional[threading.Event]) -> None:
    """Sleep for ``delay`` seconds, aborting if ``cancel`` is set."""
    if cancel is None:
        time.sleep(delay)
    elif cancel.wait(delay):
        raise RequestCancelled()


def retry_call(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetry] = None,
    cancel: Optional[threading.Event] = None,
) -> T:
    """
    Execute a function, retrying transient network errors.

    Args:
        func: Zero-argument callable to execute
        config: Retry configuration
        on_retry: Callback called before each backoff sleep
        cancel: Cancellation token checked before each attempt and while sleeping

    Returns:
        Result from func

    Raises:
        RequestCancelled: If ``cancel`` is set before an attempt or during a backoff
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        if cancel is not None and cancel.is_set():
            raise RequestCancelled()

        try:
            return func()
        except Exception as e:
            if not is_retryable_error(e):
                raise

            # No wait after the last attempt
            if attempt == config.max_retries:
                raise

            delay = config.calculate_backoff(attempt)

            if on_retry:
                on_retry(RetryInfo(
                    attempt=attempt,
                    max_retries=config.max_retries,
                    error=e,
                    next_backoff=delay,
                ))

            _sleep(delay, cancel)

    # Only reachable with a negative max_retries
    raise ValueError(f"max_retries must be >= 0, got {config.max_retries}")


def with_retry(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetry] = None,
):
    """
    Decorator for adding network retry logic to synchronous functions.

    Args:
        config: Retry configuration
        on_retry: Callback called before each retry
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return retry_call(lambda: func(*args, **kwargs), config=config, on_retry=on_retry)

        return wrapper
    return decorator
