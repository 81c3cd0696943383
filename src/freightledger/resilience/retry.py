"""
Retry Strategies using Tenacity.

Retry policy for outbound deliveries (webhooks). Ledger operations are never
retried here: a failed atomic scope is reported to the caller, who may resend
the request.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient network error worth retrying."""
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exception, httpx.TransportError)


def _log_retry(retry_state: Any) -> None:
    logger.warning(f"Retrying delivery... (Attempt {retry_state.attempt_number})")


async def execute_with_retry(
    func: Callable[..., Any],
    *args: Any,
    attempts: int = 5,
    max_wait: float = 16,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function, retrying transient errors with exponential backoff.

    Args:
        func: Coroutine function to call
        attempts: Total attempts including the first
        max_wait: Upper bound for a single backoff sleep in seconds
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        wait=wait_exponential(multiplier=1, min=0, max=max_wait),
        stop=stop_after_attempt(attempts),
        reraise=True,
        before_sleep=_log_retry,
    ):
        with attempt:
            return await func(*args, **kwargs)
