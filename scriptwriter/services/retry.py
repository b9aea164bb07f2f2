"""
Retry with exponential backoff and jitter for model calls.

delay = min(max_delay, initial_delay * multiplier ** (attempt - 1))
        * (0.5 + random()), capped at max_delay; a larger server
retry-after hint replaces the computed delay.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..config import RetryPolicy
from .errors import ModelApiError, ModelRateLimitError

logger = logging.getLogger("scriptwriter.retry")

T = TypeVar("T")

HALF_JITTER = 0.5


@dataclass
class RetryEvent:
    """Emitted after every failed attempt."""
    attempt: int
    max_attempts: int
    will_retry: bool
    delay_ms: int
    error: BaseException
    error_type: str  # "rate-limit", "api-error" or "unknown"


async def _default_sleep(delay_ms: int) -> None:
    if delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)


def should_retry(error: BaseException) -> bool:
    if isinstance(error, ModelRateLimitError):
        return True
    if isinstance(error, ModelApiError):
        return error.is_retryable
    return False


def classify_error(error: BaseException) -> str:
    if isinstance(error, ModelRateLimitError):
        return "rate-limit"
    if isinstance(error, ModelApiError):
        return "api-error"
    return "unknown"


def compute_delay_ms(
    policy: RetryPolicy,
    attempt: int,
    random_value: float,
    error: Optional[BaseException] = None,
) -> int:
    """Backoff delay before the attempt following `attempt` (1-based)."""
    base_delay = min(
        policy.max_delay_ms,
        policy.initial_delay_ms * policy.multiplier ** (attempt - 1),
    )
    jitter_ratio = HALF_JITTER + random_value
    delay_ms = min(policy.max_delay_ms, round(base_delay * jitter_ratio))

    if isinstance(error, ModelRateLimitError) and error.retry_after_ms and error.retry_after_ms > delay_ms:
        delay_ms = round(error.retry_after_ms)

    return max(0, int(delay_ms))


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    on_event: Optional[Callable[[RetryEvent], None]] = None,
    sleep: Optional[Callable[[int], Awaitable[None]]] = None,
    random_fn: Optional[Callable[[], float]] = None,
) -> T:
    """
    Run `operation`, retrying retryable model errors per `policy`.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Backoff policy (defaults to RetryPolicy())
        on_event: Hook invoked after each failed attempt
        sleep: Override for the delay (milliseconds), e.g. to skip waits in tests
        random_fn: Override for the jitter source

    Returns:
        The operation's result

    Raises:
        The last error, once it is not retryable or attempts are exhausted
    """
    policy = policy or RetryPolicy()
    sleep = sleep or _default_sleep
    random_fn = random_fn or random.random

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            error_type = classify_error(e)
            is_last_attempt = attempt >= policy.max_attempts

            if not should_retry(e) or is_last_attempt:
                event = RetryEvent(attempt, policy.max_attempts, False, 0, e, error_type)
                if on_event:
                    on_event(event)
                if is_last_attempt and should_retry(e):
                    logger.error(f"[execute_with_retry] All {policy.max_attempts} attempts exhausted: {e}")
                else:
                    logger.warning(f"[execute_with_retry] Non-retryable {error_type} error on attempt {attempt}: {e}")
                raise

            delay_ms = compute_delay_ms(policy, attempt, random_fn(), e)
            event = RetryEvent(attempt, policy.max_attempts, True, delay_ms, e, error_type)
            if on_event:
                on_event(event)
            logger.info(
                f"[execute_with_retry] Attempt {attempt}/{policy.max_attempts} failed ({error_type}), "
                f"retrying in {delay_ms}ms"
            )
            await sleep(delay_ms)
            attempt += 1
