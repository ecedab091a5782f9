"""Tests for RetryManager."""

import pytest

from releasegate.core.config import RetrySettings
from releasegate.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager


def _manager(sleeps: list[float], **overrides: float) -> RetryManager:
    return RetryManager(RetryConfig(**overrides), sleep=sleeps.append)  # type: ignore[arg-type]


class TestRetryManager:
    """Retry logic with tenacity."""

    def test_retry_on_retryable_error(self) -> None:
        sleeps: list[float] = []
        manager = _manager(sleeps)

        call_count = 0

        def flaky_operation() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("Transient error")
            return "success"

        result = manager.execute_with_retry(
            flaky_operation,
            is_retryable=lambda e: isinstance(e, ConnectionError),
        )

        assert result == "success"
        assert call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_no_retry_on_non_retryable(self) -> None:
        sleeps: list[float] = []
        manager = _manager(sleeps)

        call_count = 0

        def failing_operation() -> None:
            nonlocal call_count
            call_count += 1
            raise TypeError("Not retryable")

        with pytest.raises(TypeError):
            manager.execute_with_retry(
                failing_operation,
                is_retryable=lambda e: isinstance(e, ConnectionError),
            )

        assert call_count == 1
        assert sleeps == []

    def test_max_attempts_exceeded(self) -> None:
        manager = _manager([], max_attempts=2)

        def always_fails() -> None:
            raise ConnectionError("Always fails")

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            manager.execute_with_retry(always_fails, is_retryable=lambda e: True)

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, ConnectionError)

    def test_backoff_capped_at_max_delay(self) -> None:
        sleeps: list[float] = []
        manager = _manager(sleeps, max_attempts=5, base_delay=10.0, max_delay=30.0)

        with pytest.raises(MaxRetriesExceeded):
            manager.execute_with_retry(
                lambda: (_ for _ in ()).throw(ConnectionError("down")),
                is_retryable=lambda e: True,
            )

        assert sleeps == [10.0, 20.0, 30.0, 30.0]

    def test_on_retry_uses_one_based_attempts(self) -> None:
        attempts: list[tuple[int, str]] = []
        call_count = 0

        def flaky_with_tracking() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise ConnectionError("Fail")
            return "ok"

        result = _manager([]).execute_with_retry(
            flaky_with_tracking,
            is_retryable=lambda e: True,
            on_retry=lambda attempt, error: attempts.append((attempt, str(error))),
        )

        assert result == "ok"
        assert attempts == [(1, "Fail")]

    def test_on_retry_not_called_on_final_attempt(self) -> None:
        attempts: list[int] = []

        with pytest.raises(MaxRetriesExceeded):
            _manager([]).execute_with_retry(
                lambda: (_ for _ in ()).throw(ConnectionError("Always fails")),
                is_retryable=lambda e: True,
                on_retry=lambda attempt, error: attempts.append(attempt),
            )

        assert attempts == [1, 2]


class TestRetryConfig:
    def test_defaults(self) -> None:
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 60.0
        assert config.exponential_base == 2.0
        assert config.jitter == 0.0

    def test_no_retry(self) -> None:
        assert RetryConfig.no_retry().max_attempts == 1

    def test_from_settings(self) -> None:
        config = RetryConfig.from_settings(RetrySettings(max_attempts=5, initial_delay_seconds=0.5, max_delay_seconds=10))

        assert config == RetryConfig(max_attempts=5, base_delay=0.5, max_delay=10.0)

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"base_delay": -1.0}, {"jitter": -0.1}])
    def test_invalid_values_rejected(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)  # type: ignore[arg-type]
