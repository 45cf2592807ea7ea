"""有界并发工作池模块。

工作池按提交顺序执行任务，同时运行的任务数不超过 ``concurrency``。
队列中和执行中的任务全部完成时触发 empty 回调，调度器据此判断整轮爬行结束。
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..core.metrics import ACTIVE_WORKERS, POOL_PENDING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    type Job = Callable[[], Awaitable[object]]

log = logging.getLogger("pool")


class WorkerPool:
    """有界并发工作池。

    Worker 按需创建，最多 ``concurrency`` 个；队列取空后自行退出，
    因此空闲的工作池不持有任何后台任务。

    Attributes:
        concurrency: 最大并发任务数
        _queue: 等待执行的任务队列
        _workers: 存活的 Worker 任务
        _pending: 排队中与执行中的任务总数
        _idle: 工作池空闲时处于 set 状态
    """

    def __init__(self, concurrency: int = 1):
        if concurrency <= 0:
            raise ValueError("concurrency must be greater than 0")

        self.concurrency = concurrency
        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._workers: dict[int, asyncio.Task[None]] = {}
        self._next_worker_id = 0
        self._pending = 0
        self._active = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._empty_callbacks: list[Callable[[], object]] = []

    @property
    def pending(self) -> int:
        """排队中与执行中的任务总数。"""
        return self._pending

    @property
    def active(self) -> int:
        """正在执行的任务数。"""
        return self._active

    @property
    def idle(self) -> bool:
        return self._pending == 0

    def on_empty(self, callback: Callable[[], object]) -> None:
        """注册工作池变为空闲时的回调，回调在最后一个任务结束时同步调用。"""
        self._empty_callbacks.append(callback)

    def submit(self, job: Job) -> None:
        """提交任务，必须在事件循环中调用。"""
        loop = asyncio.get_running_loop()

        self._queue.put_nowait(job)
        self._pending += 1
        self._idle.clear()
        POOL_PENDING.inc()

        if len(self._workers) < self.concurrency:
            worker_id = self._next_worker_id
            self._next_worker_id += 1
            self._workers[worker_id] = loop.create_task(self._run_worker(worker_id), name=f"worker-{worker_id}")

    async def join(self) -> None:
        """等待所有已提交的任务完成。"""
        await self._idle.wait()

    async def close(self) -> None:
        """取消所有 Worker 并丢弃队列中尚未执行的任务。"""
        workers = list(self._workers.values())
        for t in workers:
            t.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        # 尚未开始执行就被取消的 Worker 不会进入 _run_worker 的 finally
        self._workers.clear()

        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1

        if dropped:
            log.info("Dropped %d queued jobs on close.", dropped)
            POOL_PENDING.dec(dropped)

        self._pending = 0
        self._idle.set()

    async def _run_worker(self, worker_id: int) -> None:
        """Worker 主循环，持续取出任务执行，直到队列为空。"""
        wlog = logging.getLogger(f"Worker-{worker_id}")
        wlog.debug("Starting...")

        try:
            while True:
                try:
                    job = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    wlog.debug("Queue drained. Exiting.")
                    break

                self._active += 1
                ACTIVE_WORKERS.inc()
                try:
                    await job()
                except Exception as e:
                    wlog.exception(f"An unexpected error occurred in worker loop: {e}")
                finally:
                    self._active -= 1
                    ACTIVE_WORKERS.dec()
                    self._queue.task_done()
                    self._job_finished()

        except asyncio.CancelledError:
            wlog.info("Cancelled. Exiting.")
            raise

        finally:
            self._workers.pop(worker_id, None)

    def _job_finished(self) -> None:
        self._pending -= 1
        POOL_PENDING.dec()
        if self._pending > 0:
            return

        self._idle.set()
        for callback in list(self._empty_callbacks):
            try:
                callback()
            except Exception as e:
                log.exception(f"Pool empty callback failed: {e}")
