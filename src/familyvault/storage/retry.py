"""Bounded retries for storage operations."""

import random
import time
from collections.abc import Callable
from typing import TypeVar

from ..config import get_retry_attempts, get_retry_base_delay, get_retry_max_delay
from ..errors import StorageError
from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: float = 0.1) -> float:
    """
    Delay before retry number ``attempt`` (1 for the first retry).

    Doubles per attempt, plus up to ``jitter`` of the delay at random, capped at ``max_delay``.
    """
    delay = base_delay * (2 ** (attempt - 1))
    delay += delay * random.uniform(0, jitter)
    return min(delay, max_delay)


def with_retry(
    operation: Callable[[], T],
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    operation_name: str = "storage_operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation`` and retry transient storage failures.

    Only ``StorageError`` instances with ``retryable`` set are retried.
    Validation, not-found and access errors propagate on the first failure.

    Args:
        operation: Zero-argument callable to run
        max_attempts: Total attempts including the first (defaults to config)
        base_delay: Delay before the first retry in seconds (defaults to config)
        max_delay: Upper bound for a single delay (defaults to config)
        operation_name: Name used in log events
        sleep: Sleep function, replaceable in tests

    Returns:
        The operation's result

    Raises:
        StorageError: Non-retryable, once every attempt has failed
    """
    attempts = max_attempts if max_attempts is not None else get_retry_attempts()
    if attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    first_delay = base_delay if base_delay is not None else get_retry_base_delay()
    delay_cap = max_delay if max_delay is not None else get_retry_max_delay()

    last_error: StorageError | None = None

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StorageError as e:
            if not e.retryable:
                raise
            last_error = e

        if attempt < attempts:
            delay = backoff_delay(attempt, first_delay, delay_cap)
            logger.warning(
                "storage_operation_retrying",
                operation=operation_name,
                attempt=attempt,
                max_attempts=attempts,
                next_retry_in=round(delay, 3),
                error=str(last_error),
            )
            sleep(delay)

    logger.error(
        "storage_operation_failed_all_retries",
        operation=operation_name,
        total_attempts=attempts,
        final_error=str(last_error),
    )
    raise StorageError(
        f"{operation_name} failed after {attempts} attempts. Last error: {last_error}",
        code="retries_exhausted",
        details={"operation": operation_name, "attempts": attempts},
        retryable=False,
        original_exception=last_error,
    ) from last_error
