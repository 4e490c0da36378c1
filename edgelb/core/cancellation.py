# -*- coding: utf-8 -*-
"""
取消令牌
为所有远程操作提供显式的取消信号和截止时间
"""

import asyncio
import time
from typing import Callable, Optional

from edgelb.core.errors import ErrorKind, GatewayError


class CancelToken:
    """取消令牌，支持主动取消和超时"""

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        初始化取消令牌

        Args:
            timeout: 超时时间（秒），None表示不限时
            clock: 单调时钟函数，测试时可注入
        """
        self._clock = clock
        self._event = asyncio.Event()
        self._reason = "操作已取消"
        self.deadline = clock() + timeout if timeout is not None else None

    def cancel(self, reason: str = "操作已取消"):
        """发出取消信号"""
        self._reason = reason
        self._event.set()

    def remaining(self) -> Optional[float]:
        """距离截止时间的剩余秒数"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and self._clock() >= self.deadline

    def raise_if_cancelled(self, operation: Optional[str] = None):
        """已取消或超时时抛出 CANCELLED 错误"""
        if self._event.is_set():
            raise GatewayError(ErrorKind.CANCELLED, self._reason, operation=operation)
        if self.deadline is not None and self._clock() >= self.deadline:
            raise GatewayError(
                ErrorKind.CANCELLED, "操作超时", operation=operation
            )

    async def sleep(self, seconds: float, operation: Optional[str] = None):
        """
        可被取消的等待

        取消信号或截止时间到达时立即返回并抛出 CANCELLED
        """
        self.raise_if_cancelled(operation)

        delay = seconds
        remaining = self.remaining()
        if remaining is not None:
            delay = min(delay, remaining)

        if delay > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self.raise_if_cancelled(operation)


def ensure_token(token: Optional[CancelToken]) -> CancelToken:
    """调用方未提供令牌时返回一个永不取消的令牌"""
    return token if token is not None else CancelToken()
