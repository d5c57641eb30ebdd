"""Exponential backoff retry decorator for contended writes.

Favourite slot allocation uses optimistic concurrency: when two gigs of
the same band race for the last slot, one commit loses the version check
and raises ``StaleFavouriteSlotsError``. Wrapping the allocation in this
decorator makes the loser re-read the slots and decide again.

Usage::

    from infrastructure.retry import with_retry

    @with_retry(max_attempts=5, base_seconds=0.01, exceptions=(StaleFavouriteSlotsError,))
    def allocate(song_id: str, band_id: str) -> SlotAllocation:
        ...
"""

from __future__ import annotations

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Default exceptions that trigger a retry (transient failures)
_DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (
    OSError,
    TimeoutError,
    ConnectionError,
)


def with_retry(
    *,
    max_attempts: int = 3,
    base_seconds: float = 0.05,
    max_seconds: float = 1.0,
    jitter: bool = True,
    exceptions: tuple[type[Exception], ...] = _DEFAULT_RETRYABLE,
    on_retry: Callable[[Exception], None] | None = None,
) -> Callable[[F], F]:
    """Decorator factory for exponential backoff retry.

    Args:
        max_attempts: Total attempts including the first try (default: 3).
        base_seconds: Base wait time in seconds (default: 0.05).
        max_seconds: Maximum wait time cap in seconds (default: 1.0).
        jitter: Add random jitter ±25% so racing writers spread out (default: True).
        exceptions: Tuple of exception types that trigger a retry.
        on_retry: Optional callback invoked with each retried exception,
            e.g. to count conflicts in metrics.

    Returns:
        Decorator that wraps the function with retry logic. Once attempts
        are exhausted the last exception is re-raised unchanged.

    Raises:
        ValueError: If max_attempts is below 1.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    if on_retry is not None:
                        on_retry(exc)
                    if attempt == max_attempts:
                        raise
                    wait = min(base_seconds * (2 ** (attempt - 1)), max_seconds)
                    if jitter:
                        wait *= 1 + random.uniform(-0.25, 0.25)  # noqa: S311
                    logger.warning(
                        "retry: %s attempt %d/%d failed (%s), retrying in %.3fs",
                        func.__name__,
                        attempt,
                        max_attempts,
                        exc,
                        wait,
                    )
                    time.sleep(wait)
            raise AssertionError("unreachable")  # pragma: no cover

        return wrapper  # type: ignore[return-value]

    return decorator
