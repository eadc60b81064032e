"""Retry-with-backoff for outbound backend calls."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from calbridge.logging_config import get_logger
from calbridge.modules.calendar.errors import BackendError
from calbridge.modules.calendar.models import RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Only transient backend errors are retried; 401/403/404 surface at once."""
    return isinstance(exc, BackendError) and exc.transient


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    source: str,
    operation: str,
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Await ``fn()`` under the given policy, re-raising the last error."""
    policy = policy or RetryPolicy()

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "backend_call_retry",
            source=source,
            operation=operation,
            attempt=state.attempt_number,
            sleep=state.next_action.sleep if state.next_action else 0,
            error=str(exc),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.multiplier,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
