"""Bounded async retry loop.

Retries are an explicit counted loop: attempt, classify the error, wait via the
throttle, try again. Only ``UpstreamTransientError`` is retried; any other
exception ends the loop immediately with a failed outcome. The loop never
raises for errors raised by ``operation``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from lexsync.exceptions import UpstreamError
from lexsync.utils.logger import get_logger
from lexsync.utils.throttle import Throttle

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    success: bool
    value: T | None
    attempts: int
    error: BaseException | None = None


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    delay: Callable[[int], float],
    throttle: Throttle,
    label: str,
    context: dict[str, Any] | None = None,
) -> RetryOutcome[T]:
    """Run ``operation`` up to ``max_attempts`` times.

    ``delay(attempt)`` gives the wait after a failed attempt number ``attempt``
    (1-based). No wait follows the final attempt.
    """
    context = context or {}
    max_attempts = max(1, int(max_attempts))
    attempts = 0
    last_error: BaseException | None = None

    while attempts < max_attempts:
        attempts += 1
        try:
            value = await operation()
            return RetryOutcome(success=True, value=value, attempts=attempts)
        except Exception as e:  # classified below
            last_error = e
            retryable = isinstance(e, UpstreamError) and e.retryable
            if not retryable:
                logger.warning(
                    f"{label} failed with non-retryable error",
                    attempt=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                    **context,
                )
                break
            if attempts >= max_attempts:
                break
            wait = delay(attempts)
            logger.warning(
                f"{label} retry scheduled",
                attempt=attempts,
                backoff_seconds=round(wait, 2),
                error=str(e),
                **context,
            )
            await throttle.pause(wait, reason=label)

    logger.error(
        f"{label} gave up",
        attempts=attempts,
        error=str(last_error),
        **context,
    )
    return RetryOutcome(success=False, value=None, attempts=attempts, error=last_error)


__all__ = ["RetryOutcome", "retry_async"]
