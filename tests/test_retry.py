"""
重试机制测试用例
"""

import asyncio

import pytest

from ripper.utils.retry import RetryPolicy, CancellationToken, AsyncioScheduler


class TestRetryPolicy:

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.should_retry(1)
        assert not policy.should_retry(2)
        assert not policy.should_retry(1, retry_enabled=False)
        assert policy.calculate_delay(1) == 5.0

    def test_backoff_strategies(self):
        assert RetryPolicy(max_attempts=5, base_delay=1, backoff_strategy='linear').calculate_delay(3) == 3
        assert RetryPolicy(max_attempts=5, base_delay=1, backoff_strategy='exponential').calculate_delay(3) == 4
        assert RetryPolicy(base_delay=10, max_delay=15, backoff_strategy='exponential').calculate_delay(4) == 15

    def test_jitter_never_below_base(self):
        policy = RetryPolicy(base_delay=5.0, jitter=True)
        for _ in range(20):
            assert 5.0 <= policy.calculate_delay(1) <= 5.5

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(backoff_strategy='random')


class TestAsyncioScheduler:

    @pytest.mark.asyncio
    async def test_sleep_completes(self):
        assert await AsyncioScheduler().sleep(0.01, CancellationToken()) is True

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        assert await AsyncioScheduler().sleep(10, token) is False

    @pytest.mark.asyncio
    async def test_cancel_wakes_sleeper(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)

        started = loop.time()
        assert await AsyncioScheduler().sleep(10, token) is False
        assert loop.time() - started < 1
