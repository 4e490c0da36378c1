# -*- coding: utf-8 -*-
"""
有界重试
后端处于 PENDING（忙碌/未就绪）状态时按固定次数重试
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from edgelb.core.cancellation import CancelToken, ensure_token
from edgelb.core.errors import ErrorKind, GatewayError

T = TypeVar("T")

logger = logging.getLogger("edgelb.retry")


@dataclass(frozen=True)
class RetryPolicy:
    """重试策略"""

    attempts: int = 5
    backoff_seconds: float = 2.0
    max_backoff_seconds: float = 30.0
    multiplier: float = 1.5

    def delay(self, attempt: int) -> float:
        """第 attempt 次失败后的等待时间（attempt 从0开始）"""
        delay = self.backoff_seconds * (self.multiplier**attempt)
        return min(delay, self.max_backoff_seconds)


async def retry_on_pending(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    token: Optional[CancelToken] = None,
    description: str = "操作",
) -> T:
    """
    执行操作，遇到 PENDING 错误时重试

    Args:
        operation: 无参异步函数，每次重试都会重新调用
        policy: 重试策略
        token: 取消令牌
        description: 日志中使用的操作描述

    Returns:
        operation 的返回值

    Raises:
        GatewayError: 非 PENDING 错误立即抛出；重试耗尽后抛出最后一次 PENDING 错误
    """
    token = ensure_token(token)
    attempts = max(1, policy.attempts)
    last_error: Optional[GatewayError] = None

    for attempt in range(attempts):
        token.raise_if_cancelled(description)
        try:
            return await operation()
        except GatewayError as e:
            if e.kind is not ErrorKind.PENDING:
                raise
            last_error = e

        if attempt + 1 < attempts:
            delay = policy.delay(attempt)
            logger.warning(
                "%s 处于等待状态 (%d/%d)，%.1f 秒后重试: %s",
                description,
                attempt + 1,
                attempts,
                delay,
                last_error.message,
            )
            await token.sleep(delay, description)

    logger.error("%s 重试 %d 次后仍处于等待状态", description, attempts)
    raise last_error
