from __future__ import annotations

from typing import Any, Callable, TypeVar, cast

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")

LOGGER = structlog.get_logger(__name__)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    LOGGER.warning(
        "retry.attempt_failed",
        attempt=retry_state.attempt_number,
        error=str(outcome.exception()) if outcome is not None else None,
    )


def backoff_retry(
    *,
    max_attempts: int = 3,
    initial_wait: float = 0.5,
    max_wait: float = 5.0,
    retry_on: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Create a retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts, the first call included
        initial_wait: Wait before the second attempt in seconds
        max_wait: Upper bound for a single wait in seconds
        retry_on: Exception types to retry on

    Returns:
        A retry decorator; the last exception is re-raised when attempts run out
    """
    decorator: Any = retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_before_sleep,
        reraise=True,
    )
    return cast(Callable[[Callable[..., T]], Callable[..., T]], decorator)
