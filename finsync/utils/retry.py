"""Exponential backoff with jitter for every remote call."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    stop_after_attempt,
    wait_exponential_jitter,
)

from finsync.config.settings import RetryConfig
from finsync.utils.errors import AuthExpiredError, RetryExhaustedError, get_status_code
from finsync.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Timeout, rate limit, server errors
DEFAULT_RETRYABLE_STATUSES = (408, 429, 500, 502, 503, 504)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt budget and backoff curve.

    The delay before attempt ``n + 1`` is
    ``min(base_delay * 2 ** (n - 1) + uniform(0, jitter_max), max_delay)``.
    ``retryable_statuses=None`` retries every failure.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter_max: float = 1.0
    retryable_statuses: Optional[tuple[int, ...]] = DEFAULT_RETRYABLE_STATUSES

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        """Build a policy from the RETRY_* settings."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            jitter_max=config.jitter_max_seconds,
            retryable_statuses=tuple(config.retryable_statuses),
        )


def _should_retry(policy: RetryPolicy) -> Callable[[RetryCallState], bool]:
    def predicate(retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False

        # Expired auth never recovers by waiting
        if isinstance(outcome.exception(), AuthExpiredError):
            return False

        # Out of attempts: let the stop condition wrap the error
        if retry_state.attempt_number >= policy.max_attempts:
            return True

        status = get_status_code(outcome.exception())
        if (
            policy.retryable_statuses is not None
            and status is not None
            and status not in policy.retryable_statuses
        ):
            # Non-retryable error (401, 403, 404...)
            return False
        return True

    return predicate


def _log_before_sleep(operation: Optional[str]) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retrying after failure",
            operation=operation,
            attempt=retry_state.attempt_number,
            delay_seconds=round(retry_state.upcoming_sleep, 3),
            status=get_status_code(error) if error else None,
            error=str(error),
        )

    return log


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    operation: Optional[str] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``fn`` with exponential backoff.

    Args:
        fn: Zero-argument coroutine function performing one attempt
        policy: Attempt budget and backoff curve (defaults to RetryPolicy())
        operation: Name used in retry log lines
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Whatever ``fn`` returns on its first successful attempt

    Raises:
        RetryExhaustedError: ``fn`` failed on every allowed attempt
        Exception: the original error, immediately, when its status code is
            not in ``policy.retryable_statuses``
    """
    policy = policy or RetryPolicy()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential_jitter(
            multiplier=policy.base_delay,
            max=policy.max_delay,
            exp_base=2,
            jitter=policy.jitter_max,
        ),
        retry=_should_retry(policy),
        before_sleep=_log_before_sleep(operation),
        sleep=sleep,
        reraise=False,
    )

    try:
        return await retrying(fn)
    except RetryError as e:
        last_attempt = e.last_attempt
        last_error = last_attempt.exception()
        raise RetryExhaustedError(
            f"Failed after {last_attempt.attempt_number} attempts: {last_error}",
            attempts=last_attempt.attempt_number,
            last_error=last_error,
        ) from last_error
