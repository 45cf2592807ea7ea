"""任务执行间隔控制模块。"""

from __future__ import annotations

import asyncio
import logging
import time

from ..core.metrics import GATE_WAIT_DURATION

logger = logging.getLogger(__name__)


class DelayGate:
    """单通道的顺序闸门。

    每次 ``acquire`` 按调用顺序依次放行，相邻两次放行至少间隔 ``interval`` 毫秒。
    间隔从上一次放行的时刻开始计算，与任务本身执行多久无关，
    因此闸门与工作池的并发数相互独立。``interval`` 为0时只保证先进先出。

    Attributes:
        interval: 相邻放行的最短间隔，单位毫秒
    """

    def __init__(self, interval: float = 0):
        if interval < 0:
            raise ValueError("interval must not be negative")

        self.interval = interval
        self._lock = asyncio.Lock()
        self._last_opened: float | None = None

    @property
    def last_opened(self) -> float | None:
        """上一次放行的 ``time.monotonic()`` 时刻。"""
        return self._last_opened

    async def acquire(self) -> None:
        """等待轮到调用方并满足最短间隔后返回。"""
        started = time.monotonic()

        # asyncio.Lock 按等待顺序唤醒，保证先进先出
        async with self._lock:
            if self._last_opened is not None and self.interval > 0:
                next_open = self._last_opened + self.interval / 1000
                while (wait_time := next_open - time.monotonic()) > 0:
                    logger.debug("Delay gate closed. Waiting for %.3f seconds.", wait_time)
                    await asyncio.sleep(wait_time)

            opened = time.monotonic()
            self._last_opened = opened

        GATE_WAIT_DURATION.observe(opened - started)
