# -*- coding: utf-8 -*-
"""
有界重试与取消令牌测试
"""

import pytest

from edgelb.core.cancellation import CancelToken
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.core.retry import RetryPolicy, retry_on_pending


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestRetryPolicy:
    """测试重试策略"""

    def test_delay_is_capped(self):
        """测试等待时间有上限"""
        policy = RetryPolicy(backoff_seconds=2.0, multiplier=2.0, max_backoff_seconds=5.0)
        assert policy.delay(0) == 2.0
        assert policy.delay(1) == 4.0
        assert policy.delay(5) == 5.0


class TestRetryOnPending:
    """测试 PENDING 重试循环"""

    async def test_retries_until_success(self):
        """测试 PENDING 后重试成功"""
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise GatewayError(ErrorKind.PENDING, "busy")
            return "done"

        result = await retry_on_pending(operation, RetryPolicy(attempts=5, backoff_seconds=0))
        assert result == "done"
        assert len(calls) == 3

    async def test_exhausted_raises_last_pending(self):
        """测试重试耗尽后抛出最后一次 PENDING 错误"""
        calls = []

        async def operation():
            calls.append(1)
            raise GatewayError(ErrorKind.PENDING, f"busy {len(calls)}")

        with pytest.raises(GatewayError) as exc_info:
            await retry_on_pending(operation, RetryPolicy(attempts=3, backoff_seconds=0))

        assert exc_info.value.kind is ErrorKind.PENDING
        assert exc_info.value.message == "busy 3"
        assert len(calls) == 3

    async def test_other_errors_are_not_retried(self):
        """测试非 PENDING 错误立即抛出"""
        calls = []

        async def operation():
            calls.append(1)
            raise GatewayError(ErrorKind.BACKEND, "boom")

        with pytest.raises(GatewayError) as exc_info:
            await retry_on_pending(operation, RetryPolicy(attempts=3, backoff_seconds=0))

        assert exc_info.value.kind is ErrorKind.BACKEND
        assert len(calls) == 1

    async def test_cancel_interrupts_backoff(self):
        """测试取消信号中断重试等待"""
        token = CancelToken()

        async def operation():
            token.cancel("停止")
            raise GatewayError(ErrorKind.PENDING, "busy")

        with pytest.raises(GatewayError) as exc_info:
            await retry_on_pending(
                operation, RetryPolicy(attempts=3, backoff_seconds=60), token
            )

        assert exc_info.value.kind is ErrorKind.CANCELLED


class TestCancelToken:
    """测试取消令牌"""

    def test_deadline_with_injected_clock(self):
        """测试注入时钟后的超时判断"""
        clock = FakeClock()
        token = CancelToken(timeout=10, clock=clock)

        assert not token.cancelled
        assert token.remaining() == 10
        clock.now += 10
        assert token.cancelled

        with pytest.raises(GatewayError) as exc_info:
            token.raise_if_cancelled("测试")
        assert exc_info.value.kind is ErrorKind.CANCELLED

    def test_no_deadline(self):
        """测试未设置超时"""
        token = CancelToken()
        assert token.remaining() is None
        token.raise_if_cancelled()

    async def test_sleep_respects_deadline(self):
        """测试等待不超过截止时间"""
        clock = FakeClock()
        token = CancelToken(timeout=0, clock=clock)

        with pytest.raises(GatewayError) as exc_info:
            await token.sleep(60)
        assert exc_info.value.kind is ErrorKind.CANCELLED
