"""
Unit tests for the retry helpers.

Tests cover:
- RetryConfig validation
- Backoff growth, capping and jitter bounds
- retry_async success, exhaustion and non-retryable errors
"""

import pytest

from orderflow.retry import RetryConfig, RetryError, calculate_backoff, retry_async

FAST = RetryConfig(max_retries=2, initial_delay=0.001, max_delay=0.002)


class TestRetryConfig:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"initial_delay": 0},
            {"max_delay": 0},
            {"initial_delay": 2.0, "max_delay": 1.0},
            {"exponential_base": 1.0},
            {"jitter": 1.5},
        ],
    )
    def test_invalid_values_are_rejected(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)  # type: ignore[arg-type]


class TestCalculateBackoff:
    def test_grows_exponentially_without_jitter(self) -> None:
        config = RetryConfig(initial_delay=0.1, max_delay=10.0, jitter=0.0)

        assert [calculate_backoff(n, config) for n in range(3)] == pytest.approx(
            [0.1, 0.2, 0.4]
        )

    def test_is_capped_at_max_delay(self) -> None:
        config = RetryConfig(initial_delay=1.0, max_delay=2.0, jitter=0.0)

        assert calculate_backoff(10, config) == 2.0

    def test_jitter_stays_within_bounds(self) -> None:
        config = RetryConfig(initial_delay=1.0, max_delay=1.0, jitter=0.1)

        for _ in range(50):
            assert 0.9 <= calculate_backoff(0, config) <= 1.1


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self) -> None:
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await retry_async(flaky, FAST) == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises_retry_error(self) -> None:
        async def down() -> None:
            raise TimeoutError("gateway timed out")

        with pytest.raises(RetryError) as exc_info:
            await retry_async(down, FAST, operation_name="create_intent")

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, TimeoutError)
        assert "create_intent" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_raised_immediately(self) -> None:
        calls = 0

        async def broken() -> None:
            nonlocal calls
            calls += 1
            raise KeyError("bad input")

        with pytest.raises(KeyError):
            await retry_async(broken, FAST)

        assert calls == 1

    @pytest.mark.asyncio
    async def test_custom_retryable_exceptions(self) -> None:
        calls = 0

        async def conflicted() -> int:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise LookupError("lost race")
            return calls

        assert await retry_async(conflicted, FAST, retryable_exceptions=(LookupError,)) == 2
