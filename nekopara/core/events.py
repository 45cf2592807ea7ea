"""异步事件分发模块。

监听器通过 ``on`` / ``once`` 注册，``emit`` 不会立即调用监听器，
而是在事件循环的下一轮中分发，因此触发事件的一方永远不会被监听器打断。
监听器可以是普通函数，也可以是协程函数。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    type Listener = Callable[..., Any]

logger = logging.getLogger(__name__)


class EventEmitter:
    """事件分发器。

    Attributes:
        _listeners: 事件名到 (监听器, 是否只触发一次) 列表的映射
        _tasks: 协程监听器产生的后台任务，防止被提前回收
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[str, list[tuple[Listener, bool]]] = defaultdict(list)
        self._tasks: set[asyncio.Future[Any]] = set()

    def on(self, event: str, listener: Listener) -> Listener:
        """注册监听器，返回监听器本身。"""
        self._listeners[event].append((listener, False))
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """注册只触发一次的监听器。"""
        self._listeners[event].append((listener, True))
        return listener

    def off(self, event: str, listener: Listener) -> None:
        """移除监听器，未注册时忽略。"""
        entries = self._listeners.get(event)
        if not entries:
            return
        self._listeners[event] = [e for e in entries if e[0] != listener]

    def listeners(self, event: str) -> list[Listener]:
        return [listener for listener, _ in self._listeners.get(event, ())]

    def emit(self, event: str, *args: Any) -> None:
        """在下一轮事件循环中分发事件，必须在事件循环中调用。

        监听器在分发时才解析，因此在 ``emit`` 之后、同一轮内注册的监听器也能收到事件。
        """
        loop = asyncio.get_running_loop()
        loop.call_soon(self._deliver, event, args)

    def _deliver(self, event: str, args: tuple[Any, ...]) -> None:
        entries = self._listeners.get(event)
        if not entries:
            return

        if any(once for _, once in entries):
            self._listeners[event] = [e for e in entries if not e[1]]

        for listener, _ in entries:
            try:
                result = listener(*args)
            except Exception as e:
                logger.exception(f"Listener for '{event}' event failed: {e}")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(lambda t, ev=event: self._on_listener_done(ev, t))

    def _on_listener_done(self, event: str, task: asyncio.Future[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Async listener for '{event}' event failed: {exc!r}", exc_info=exc)

    async def drain(self) -> None:
        """等待已排队的事件分发完毕，包括协程监听器。"""
        # 让通过 call_soon 排队的分发先执行
        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
