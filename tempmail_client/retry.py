"""Tenacity retry wrapper driven by RetryConfig."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig
from .errors import ApiError

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[None]]


def is_retryable(exc: BaseException) -> bool:
    """Only errors classified as transient are retried."""
    return isinstance(exc, ApiError) and exc.retryable


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "request_retry_scheduled",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        status=getattr(exc, "status", None),
        error=str(exc),
    )


def with_retry(config: RetryConfig, *, sleep: SleepFn = asyncio.sleep) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    The first attempt plus ``config.max_retries`` retries are made; the wait
    before retry *n* is ``initial_wait_seconds * multiplier ** n``.  When
    retries are exhausted the last error is re-raised unchanged.

    Usage::

        @with_retry(config.retry)
        async def send() -> httpx.Response: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=wait_exponential(
            multiplier=config.initial_wait_seconds,
            exp_base=config.multiplier,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
