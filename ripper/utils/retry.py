"""
重试机制

提供可配置的重试策略、取消令牌和延迟调度器
"""

import asyncio
import logging
import random
from typing import Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    协作式取消令牌

    取消只是一个标志位，正在进行的网络请求不会被中断
    """

    def __init__(self):
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        """设置取消标志并唤醒等待者"""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def wait(self):
        """等待直到被取消"""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()


class RetryPolicy:
    """重试策略"""

    def __init__(self,
                 max_attempts: int = 2,
                 base_delay: float = 5.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = 'fixed'):
        """
        初始化重试策略

        Args:
            max_attempts: 最大尝试次数（含首次尝试）
            base_delay: 基础延迟时间（秒），也是任何一次重试的最短等待
            max_delay: 最大延迟时间（秒）
            exponential_base: 指数退避的基数
            jitter: 是否添加随机抖动（只会向上抖动）
            backoff_strategy: 退避策略 ('fixed', 'linear', 'exponential')
        """
        if max_attempts < 1:
            raise ValueError("max_attempts 必须 >= 1")
        if backoff_strategy not in ('fixed', 'linear', 'exponential'):
            raise ValueError(f"未知的退避策略: {backoff_strategy}")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max(max_delay, base_delay)
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    def should_retry(self, attempt: int, retry_enabled: bool = True) -> bool:
        """
        判断第 attempt 次尝试失败后是否还应重试

        Args:
            attempt: 已完成的尝试次数（从1开始）
            retry_enabled: 会话是否启用重试
        """
        return retry_enabled and attempt < self.max_attempts

    def calculate_delay(self, attempt: int) -> float:
        """
        计算第 attempt 次失败后的等待时间

        Args:
            attempt: 已完成的尝试次数（从1开始）

        Returns:
            延迟时间（秒）
        """
        retry_index = max(attempt - 1, 0)

        if self.backoff_strategy == 'exponential':
            delay = self.base_delay * (self.exponential_base ** retry_index)
        elif self.backoff_strategy == 'linear':
            delay = self.base_delay * (retry_index + 1)
        else:  # fixed
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def __repr__(self):
        return (f"<RetryPolicy(max_attempts={self.max_attempts}, "
                f"base_delay={self.base_delay}, strategy='{self.backoff_strategy}')>")


class AsyncioScheduler:
    """基于 asyncio 的延迟调度器"""

    async def sleep(self, delay: float, token: Optional[CancellationToken] = None) -> bool:
        """
        等待指定时间

        Args:
            delay: 等待时间（秒）
            token: 取消令牌，被取消时提前返回

        Returns:
            正常等待结束返回True，被取消返回False
        """
        if token is None:
            await asyncio.sleep(delay)
            return True

        if token.cancelled:
            return False

        try:
            await asyncio.wait_for(token.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True

        logger.debug("延迟等待被取消")
        return False
