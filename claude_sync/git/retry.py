"""Retry-with-backoff for git network operations."""

import re
import time
from collections.abc import Callable, Iterator
from typing import TypeVar

from pydantic import BaseModel, Field

from claude_sync.errors import TransientNetworkError
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in [
        r"Could not resolve host",
        r"ENOTFOUND",
        r"Connection reset",
        r"ECONNRESET",
        r"Connection refused",
        r"ECONNREFUSED",
        r"Connection timed out",
        r"ETIMEDOUT",
        r"timed out",
        r"non-fast-forward",
        r"\[rejected\]",
        r"fetch first",
        r"Could not read from remote repository",
        r"unable to access",
        r"early EOF",
        r"remote end hung up",
    ]
]

REJECTION_PATTERN = re.compile(r"non-fast-forward|\[rejected\]|fetch first", re.IGNORECASE)


def _error_text(error: BaseException) -> str:
    parts = [str(error)]
    for attr in ("stderr", "stdout"):
        value = getattr(error, attr, None)
        if value:
            parts.append(str(value))
    return "\n".join(parts)


def is_transient_error(error: BaseException) -> bool:
    """Check whether an error looks like a network blip worth retrying."""
    text = _error_text(error)
    return any(pattern.search(text) for pattern in TRANSIENT_PATTERNS)


def is_push_rejection(error: BaseException) -> bool:
    """Check whether a push was rejected because the remote moved ahead."""
    return bool(REJECTION_PATTERN.search(_error_text(error)))


class RetryPolicy(BaseModel):
    """Exponential backoff parameters."""

    max_retries: int = Field(3, ge=0)
    base_delay: float = Field(1.0, ge=0.0)
    multiplier: float = Field(2.0, ge=1.0)
    max_delay: float = Field(30.0, ge=0.0)

    def delays(self) -> Iterator[float]:
        """Yield the pause before each retry. Never decreasing."""
        delay = self.base_delay
        for _ in range(self.max_retries):
            yield min(delay, self.max_delay)
            delay *= self.multiplier


def retry_with_backoff(
    operation: Callable[[], T],
    policy: RetryPolicy,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[BaseException, int], None] | None = None,
) -> T:
    """Run ``operation``, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument callable performing the network call
        policy: Retry bound and delays
        description: Human-readable name used in logs and errors
        sleep: Sleep function, injectable for tests
        on_retry: Called with the failure and the retry number before each retry

    Returns:
        Whatever ``operation`` returns

    Raises:
        TransientNetworkError: If every attempt failed with a transient error
        Exception: Any non-transient error, immediately
    """
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as error:
            if not is_transient_error(error):
                raise
            delay = next(delays, None)
            if delay is None:
                raise TransientNetworkError(description, attempt, error) from error
            logger.warning(
                f"{description} failed with a transient error (attempt {attempt}), "
                f"retrying in {delay:.1f}s: {error}"
            )
            sleep(delay)
            if on_retry is not None:
                on_retry(error, attempt)
