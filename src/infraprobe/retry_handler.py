"""Retry logic with a fixed delay for checks against freshly provisioned hosts.

A new instance can take a minute or so to boot, so every remote check is run
through this module: call the operation, and if it raises, sleep a fixed
interval and call it again until it succeeds or the attempt budget runs out.

Design Philosophy:
- Ruthless simplicity: one loop, fixed delay, no jitter, no backoff growth
- Deterministic: at most (max_attempts - 1) * delay of sleeping
- Observable: every failed attempt is logged with its reason

Usage:
    ip, err = do_with_retry_e(
        "SSH to public host 1.2.3.4", 30, 15.0, lambda: run_check()
    )

    # Fatal variant: raises RetryExhaustedError once the budget is spent
    do_with_retry("SSH to public host 1.2.3.4", 30, 15.0, run_check)
"""

import logging
import time
from typing import Any, Callable, TypeVar

from infraprobe.retry_config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when an operation keeps failing after every allowed attempt."""

    def __init__(self, description: str, attempts: int, last_error: BaseException | None):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"'{description}' unsuccessful after {attempts} retries: {last_error}")


class FatalError(Exception):
    """Raised by an operation to stop retrying immediately.

    Wrap the underlying cause so callers can still inspect it.
    """

    def __init__(self, cause: BaseException | str):
        self.cause = cause
        super().__init__(str(cause))


def do_with_retry_e(
    description: str,
    max_attempts: int,
    delay: float,
    operation: Callable[[], T],
    sleep: Callable[[float], Any] = time.sleep,
) -> tuple[T | None, Exception | None]:
    """Run operation until it succeeds or max_attempts is reached.

    Args:
        description: Human-readable description used in logs and errors
        max_attempts: Maximum number of calls to operation (>= 1)
        delay: Seconds to sleep between attempts (fixed)
        operation: Zero-argument callable. Returning is success, raising is failure.
        sleep: Sleep function (injectable for tests)

    Returns:
        (value, None) on success, (None, error) once attempts are exhausted
        or the operation raised FatalError.

    Raises:
        ValueError: If max_attempts < 1 or delay is negative
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if delay < 0:
        raise ValueError("delay must be non-negative")

    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        logger.info(f"{description}")

        try:
            value = operation()
        except FatalError as e:
            logger.error(f"{description} returned a fatal error: {e}")
            return None, e
        except Exception as e:
            last_error = e

            if attempt >= max_attempts:
                break

            logger.warning(
                f"{description} returned an error: {e}. "
                f"Sleeping for {delay}s and will try again."
            )
            sleep(delay)
            continue

        if attempt > 1:
            logger.info(f"{description} succeeded on attempt {attempt}/{max_attempts}")
        return value, None

    logger.error(f"{description} failed after {max_attempts} attempts: {last_error}")
    return None, RetryExhaustedError(description, max_attempts, last_error)


def do_with_retry(
    description: str,
    max_attempts: int,
    delay: float,
    operation: Callable[[], T],
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """Like do_with_retry_e, but raise instead of returning the error.

    Raises:
        RetryExhaustedError: If every attempt failed
        FatalError: If the operation gave up early
    """
    value, error = do_with_retry_e(description, max_attempts, delay, operation, sleep=sleep)
    if error is not None:
        raise error
    return value  # type: ignore[return-value]


def do_with_retry_policy(
    policy: RetryPolicy,
    operation: Callable[[], T],
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """Run operation under a RetryPolicy (fatal variant)."""
    return do_with_retry(
        policy.description, policy.max_attempts, policy.delay, operation, sleep=sleep
    )


__all__ = [
    "FatalError",
    "RetryExhaustedError",
    "do_with_retry",
    "do_with_retry_e",
    "do_with_retry_policy",
]
