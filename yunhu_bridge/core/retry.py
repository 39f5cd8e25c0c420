"""Retry with exponential backoff for transient API failures."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Type, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from yunhu_bridge.core.errors import RateLimitError, TransientError
from yunhu_bridge.observability.logging import get_logger

T = TypeVar("T")
log = get_logger("retry")

DEFAULT_RETRYABLE: tuple[Type[Exception], ...] = (
    TransientError,
    RateLimitError,
    asyncio.TimeoutError,
    httpx.TransportError,
)

# /bot/send is not idempotent: only retry failures where the request never landed.
SEND_RETRYABLE: tuple[Type[Exception], ...] = (
    RateLimitError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 8.0,
    retryable_exceptions: tuple[Type[Exception], ...] = DEFAULT_RETRYABLE,
    **kwargs: Any,
) -> T:
    """
    Await ``func(*args, **kwargs)``, retrying retryable failures.

    Args:
        func: Coroutine function to call
        max_attempts: Total attempts including the first one
        min_wait: Minimum backoff between attempts (seconds)
        max_wait: Maximum backoff between attempts (seconds)
        retryable_exceptions: Exceptions that trigger another attempt

    Returns:
        The first successful result

    Raises:
        The last exception once attempts are exhausted, or any
        non-retryable exception immediately.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retryable_exceptions),
        reraise=True,
    )

    attempt = 0
    async for attempt_state in retrying:
        with attempt_state:
            attempt += 1
            try:
                result = await func(*args, **kwargs)
            except retryable_exceptions as e:
                log.warning(
                    "retry_failed_attempt",
                    func=getattr(func, "__name__", repr(func)),
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            if attempt > 1:
                log.info("retry_succeeded", func=getattr(func, "__name__", repr(func)), attempts=attempt)
            return result

    # unreachable with reraise=True
    raise RuntimeError("Retry logic failed unexpectedly")
