"""Tests for circuit breaker and retry resilience patterns."""

from __future__ import annotations

import time

import pytest

from dirwatch.exceptions import CircuitBreakerError
from dirwatch.resilience import retry_call
from dirwatch.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


def failing() -> None:
    raise ConnectionError("Service error")


class TestCircuitBreakerConfig:
    """Test suite for CircuitBreakerConfig."""

    def test_default_config(self) -> None:
        config = CircuitBreakerConfig()

        assert config.failure_threshold == 5
        assert config.success_threshold == 2
        assert config.reset_timeout == 30.0


class TestCircuitBreaker:
    """Test suite for CircuitBreaker."""

    @pytest.fixture
    def breaker(self) -> CircuitBreaker:
        config = CircuitBreakerConfig(failure_threshold=3, success_threshold=2, reset_timeout=0.2)
        return CircuitBreaker("test-service", config)

    def test_initial_state(self, breaker: CircuitBreaker) -> None:
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.total_calls == 0

    def test_successful_call(self, breaker: CircuitBreaker) -> None:
        assert breaker.call(lambda x: x * 2, 21) == 42
        assert breaker.stats.successful_calls == 1
        assert breaker.state == CircuitState.CLOSED

    def test_failed_call_is_reraised(self, breaker: CircuitBreaker) -> None:
        with pytest.raises(ConnectionError):
            breaker.call(failing)

        assert breaker.stats.failed_calls == 1
        assert breaker.stats.consecutive_failures == 1

    def test_opens_at_threshold(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerError):
            breaker.call(lambda: "never")
        assert breaker.stats.rejected_calls == 1

    def test_half_open_recovers(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing)
        time.sleep(0.25)

        breaker.call(lambda: None)
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.call(lambda: None)
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing)
        time.sleep(0.25)

        with pytest.raises(ConnectionError):
            breaker.call(failing)
        assert breaker.state == CircuitState.OPEN

    def test_stats_summary(self, breaker: CircuitBreaker) -> None:
        breaker.call(lambda: None)
        summary = breaker.get_stats_summary()

        assert summary["service_name"] == "test-service"
        assert summary["state"] == "closed"
        assert summary["success_rate"] == 1.0


class TestRetryCall:
    """Test suite for retry_call."""

    def test_returns_first_success(self) -> None:
        attempts = []

        def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("try again")
            return "ok"

        assert retry_call(flaky, attempts=3) == "ok"
        assert len(attempts) == 3

    def test_reraises_last_error(self) -> None:
        with pytest.raises(ConnectionError):
            retry_call(failing, attempts=2)

    def test_open_circuit_is_not_retried(self) -> None:
        attempts = []

        def rejected() -> None:
            attempts.append(1)
            raise CircuitBreakerError("open", CircuitState.OPEN)

        with pytest.raises(CircuitBreakerError):
            retry_call(rejected, attempts=3)
        assert len(attempts) == 1
