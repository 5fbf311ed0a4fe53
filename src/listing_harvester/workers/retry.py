"""Retry-with-backoff around flaky async operations.

Built on tenacity's ``AsyncRetrying``.  Two behaviours differ from a plain
``@retry`` decorator:

- Errors that :func:`is_retryable_error` rejects (4xx responses, selector or
  parse failures, adapter contract violations) are re-raised immediately
  instead of consuming the attempt budget.
- Exhaustion raises :class:`~listing_harvester.core.exceptions.RetryExhaustedError`
  naming the attempt count, chained from the last underlying failure.

Usage::

    response = await retry_with_backoff(
        lambda: page.goto(url, wait_until="domcontentloaded"),
        max_retries=3,
        initial_delay=2.0,
        retry_if=is_retryable_error,
    )
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from listing_harvester.core.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Lower-cased message fragments that mark a transient failure.
_RETRYABLE_FRAGMENTS: tuple[str, ...] = (
    "net::err",
    "network",
    "connection",
    "econnreset",
    "econnrefused",
    "timeout",
    "timed out",
)

_SERVER_ERROR_RE = re.compile(r"\b50[0-4]\b")


def is_retryable_error(error: BaseException) -> bool:
    """Return True when ``error`` looks transient.

    Network-class failures, timeouts and 5xx responses are retryable.
    Everything else (4xx, selector/parse failures) fails fast.
    """
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    if any(fragment in message for fragment in _RETRYABLE_FRAGMENTS):
        return True
    return bool(_SERVER_ERROR_RE.search(message))


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _raise_exhausted(retry_state: RetryCallState) -> Any:
    last_error = retry_state.outcome.exception() if retry_state.outcome else None
    if last_error is None:  # pragma: no cover - tenacity only stops after a failure here
        last_error = RuntimeError("operation failed")
    raise RetryExhaustedError(retry_state.attempt_number, last_error) from last_error


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "retry: attempt %d failed (%s), retrying in %.2fs",
        retry_state.attempt_number,
        exc,
        delay,
    )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    exponential: bool = True,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Invoke ``operation`` until it succeeds or the attempt budget runs out.

    Between attempts the call sleeps ``min(initial_delay * 2 ** n, max_delay)``
    seconds (``n`` counts from 0), or a fixed ``initial_delay`` when
    ``exponential`` is False.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_retries: Total number of attempts, at least 1.
        initial_delay: First backoff delay in seconds.
        max_delay: Upper bound for any single delay in seconds.
        exponential: Double the delay after each failure.
        retry_if: Classifier deciding whether a failure may be retried.
            ``None`` retries every ``Exception``.

    Returns:
        Whatever ``operation`` returned on its first successful attempt.

    Raises:
        RetryExhaustedError: After ``max_retries`` failed attempts.
        Exception: The original error, unchanged, when ``retry_if`` rejects it.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    wait = (
        wait_exponential(multiplier=initial_delay, max=max_delay)
        if exponential
        else wait_fixed(min(initial_delay, max_delay))
    )
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries),
        wait=wait,
        retry=retry_if_exception(retry_if or (lambda exc: isinstance(exc, Exception))),
        sleep=_sleep,
        before_sleep=_log_before_sleep,
        retry_error_callback=_raise_exhausted,
    )

    async def _attempt() -> T:
        # Awaited here so plain lambdas returning a coroutine are retried too.
        return await operation()

    return await retrying(_attempt)
