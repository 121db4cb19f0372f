"""Thread-safe circuit breaker guarding calls to the remote backend.

Several change-detector callback threads may talk to the same backend at
once, so all state transitions happen under a single lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from dirwatch.exceptions import CircuitBreakerError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Backend is failing, calls are blocked
    HALF_OPEN = "half_open"  # Probing whether the backend recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    success_threshold: int = 2  # Half-open successes before closing
    reset_timeout: float = 30.0  # Seconds to wait before half-open


@dataclass
class CircuitBreakerStats:
    """Statistics for circuit breaker."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_failure_at: float | None = None  # time.monotonic()
    last_state_change: datetime = field(default_factory=lambda: datetime.now(UTC))
    consecutive_failures: int = 0
    consecutive_successes: int = 0


class CircuitBreaker:
    """Blocks calls to a failing service until it has had time to recover.

    States:
        - CLOSED: Normal operation, calls pass through
        - OPEN: Service is failing, calls are rejected with CircuitBreakerError
        - HALF_OPEN: Calls pass through; enough successes close the circuit,
          a single failure opens it again
    """

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> None:
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._stats = CircuitBreakerStats()
        self._lock = threading.Lock()

        logger.debug(
            f"Circuit breaker created for '{service_name}' "
            f"(failure_threshold={self.config.failure_threshold})"
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute function with circuit breaker protection.

        Args:
            func: Function to call
            *args: Function arguments
            **kwargs: Function keyword arguments

        Returns:
            Function result

        Raises:
            CircuitBreakerError: If circuit is open
            Exception: Whatever the function raises
        """
        self._check_circuit_state()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._handle_failure()
            logger.warning(f"Call to '{self.service_name}' failed: {e.__class__.__name__}: {e}")
            raise

        self._handle_success()
        return result

    def _check_circuit_state(self) -> None:
        with self._lock:
            if self._state != CircuitState.OPEN:
                return
            if self._should_attempt_reset():
                logger.info(f"Circuit '{self.service_name}' entering HALF_OPEN state")
                self._transition(CircuitState.HALF_OPEN)
                self._stats.consecutive_successes = 0
                return

            self._stats.rejected_calls += 1
            raise CircuitBreakerError(
                f"Circuit '{self.service_name}' is OPEN - rejecting call",
                self._state,
            )

    def _should_attempt_reset(self) -> bool:
        if self._stats.last_failure_at is None:
            return True
        return time.monotonic() - self._stats.last_failure_at >= self.config.reset_timeout

    def _handle_success(self) -> None:
        with self._lock:
            self._stats.successful_calls += 1
            self._stats.total_calls += 1
            self._stats.consecutive_failures = 0

            if self._state == CircuitState.HALF_OPEN:
                self._stats.consecutive_successes += 1
                if self._stats.consecutive_successes >= self.config.success_threshold:
                    logger.info(f"Circuit '{self.service_name}' CLOSED (service recovered)")
                    self._transition(CircuitState.CLOSED)

    def _handle_failure(self) -> None:
        with self._lock:
            self._stats.failed_calls += 1
            self._stats.total_calls += 1
            self._stats.consecutive_failures += 1
            self._stats.consecutive_successes = 0
            self._stats.last_failure_at = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit '{self.service_name}' HALF_OPEN probe failed - back to OPEN")
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._stats.consecutive_failures >= self.config.failure_threshold
            ):
                logger.error(
                    f"Circuit '{self.service_name}' OPEN "
                    f"({self._stats.consecutive_failures} consecutive failures)"
                )
                self._transition(CircuitState.OPEN)

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._stats.last_state_change = datetime.now(UTC)

    def get_stats_summary(self) -> dict[str, Any]:
        """Get summary of circuit statistics."""
        with self._lock:
            return {
                "service_name": self.service_name,
                "state": self._state.value,
                "total_calls": self._stats.total_calls,
                "successful_calls": self._stats.successful_calls,
                "failed_calls": self._stats.failed_calls,
                "rejected_calls": self._stats.rejected_calls,
                "consecutive_failures": self._stats.consecutive_failures,
                "success_rate": (
                    self._stats.successful_calls / self._stats.total_calls
                    if self._stats.total_calls > 0
                    else 0
                ),
                "last_state_change": self._stats.last_state_change.isoformat(),
            }
