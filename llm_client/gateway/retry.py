"""Retry policy with deterministic exponential backoff.

Backoff strategy:
  delay = retry_delay_ms * 2^attempt

Attempts are numbered 0..max_retries. After attempt ``i`` fails the error is
surfaced when ``i == max_retries`` or the error is not retryable; otherwise
the call sleeps ``delay`` and tries again.
"""

from __future__ import annotations

import logging

from llm_client.gateway.errors import ClassifiedError

logger = logging.getLogger(__name__)


def calculate_backoff(attempt: int, base_delay_ms: float) -> float:
    """Delay in milliseconds before the attempt after ``attempt``.

    No jitter: identical inputs always give identical delays.
    """
    return base_delay_ms * (2**attempt)


def next_retry_delay(
    error: ClassifiedError,
    attempt: int,
    max_retries: int,
    base_delay_ms: float,
) -> float | None:
    """Record a failed attempt and decide what happens next.

    Args:
        error: The classified failure of this attempt
        attempt: Current attempt number (0-based)
        max_retries: Highest attempt index allowed
        base_delay_ms: Base delay for exponential backoff

    Returns:
        Retry delay in milliseconds, or None if the error must be surfaced.
    """
    if not error.retryable:
        logger.warning(
            "Not retrying %s error (status=%s): %s",
            error.type.value,
            error.status,
            error.message,
        )
        return None

    if attempt >= max_retries:
        logger.warning(
            "Giving up after %d attempts, last %s error: %s",
            attempt + 1,
            error.type.value,
            error.message,
        )
        return None

    delay = calculate_backoff(attempt, base_delay_ms)
    logger.info(
        "Retry %d/%d after %s error in %.0fms",
        attempt + 1,
        max_retries,
        error.type.value,
        delay,
    )
    return delay
