"""Tests for the bounded retry helper."""

from __future__ import annotations

import pytest
from report_engine.errors import EngineError
from report_engine.executor.retry import RetryConfig, async_retry_with_backoff, compute_delay

FAST = RetryConfig(max_retries=1, base_delay=0.001, jitter=False)


class TestComputeDelay:
    def test_exponential_without_jitter(self):
        config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=False)
        assert [compute_delay(i, config) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert compute_delay(10, config) == 5.0

    def test_jitter_stays_in_band(self):
        config = RetryConfig(base_delay=2.0, jitter=True)
        for _ in range(20):
            assert 1.0 <= compute_delay(0, config) <= 3.0


class TestAsyncRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        attempts: list[int] = []

        async def ok() -> str:
            return "done"

        assert await async_retry_with_backoff(ok, FAST, on_attempt=attempts.append) == "done"
        assert attempts == [1]

    @pytest.mark.asyncio
    async def test_retries_once_then_succeeds(self):
        calls = 0

        async def flaky() -> int:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise EngineError("transient")
            return calls

        assert await async_retry_with_backoff(flaky, FAST, retryable_exceptions=(EngineError,)) == 2

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_budget_spent(self):
        attempts: list[int] = []

        async def broken() -> None:
            raise EngineError(f"failure {len(attempts)}")

        with pytest.raises(EngineError, match="failure 2"):
            await async_retry_with_backoff(
                broken, FAST, retryable_exceptions=(EngineError,), on_attempt=attempts.append
            )
        assert attempts == [1, 2]

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        calls = 0

        async def bad() -> None:
            nonlocal calls
            calls += 1
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await async_retry_with_backoff(bad, FAST, retryable_exceptions=(EngineError,))
        assert calls == 1

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        calls = 0

        async def broken() -> None:
            nonlocal calls
            calls += 1
            raise TimeoutError

        with pytest.raises(TimeoutError):
            await async_retry_with_backoff(
                broken,
                RetryConfig(max_retries=0, base_delay=0.001),
                retryable_exceptions=(TimeoutError,),
            )
        assert calls == 1
