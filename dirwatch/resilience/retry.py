"""Bounded retry for individual backend writes."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

from dirwatch.exceptions import CircuitBreakerError
from dirwatch.monitoring.metrics import record_write_retry

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_call(
    func: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    delay_seconds: float = 0.0,
    description: str = "call",
    **kwargs: Any,
) -> T:
    """Call ``func`` until it succeeds or ``attempts`` calls have failed.

    An open circuit is not retried: the breaker already knows the backend is
    down.

    Args:
        func: Function to call
        attempts: Total number of calls allowed (at least one)
        delay_seconds: Pause between attempts
        description: Used in log messages
        *args: Function arguments
        **kwargs: Function keyword arguments

    Returns:
        Function result

    Raises:
        Exception: The last error once every attempt has failed
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except CircuitBreakerError:
            raise
        except Exception as e:
            if attempt == attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            logger.warning(f"{description} failed (attempt {attempt}/{attempts}), retrying: {e}")
            record_write_retry()
            if delay_seconds > 0:
                time.sleep(delay_seconds)

    raise AssertionError("unreachable")
