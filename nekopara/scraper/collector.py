"""收集器模块。

模板函数通过收集器添加子任务或数据。收集器并不真正修改爬行树，
只是按调用顺序记录，待模板函数成功完成后再由调度器一次性提交。
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

from .errors import CollectorClosedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


@dataclasses.dataclass(slots=True, frozen=True)
class EmitData:
    """添加数据节点。

    Attributes:
        data: 数据内容
    """

    data: Any


@dataclasses.dataclass(slots=True, frozen=True)
class EmitTask:
    """添加任务节点。

    Attributes:
        template: 模板名称
        url: 爬行URL
    """

    template: str
    url: str

    def __post_init__(self) -> None:
        if not isinstance(self.template, str) or not isinstance(self.url, str):
            raise TypeError(
                f"Task template and url must be strings, got {type(self.template).__name__} "
                f"and {type(self.url).__name__}"
            )


type Emit = EmitData | EmitTask


class Collector:
    """单次模板调用的收集器。

    既可以直接传入 ``EmitData`` / ``EmitTask``，也可以使用 ``data`` 和 ``task`` 便捷方法::

        async def list_page(url: str, add: Collector):
            add.data({"url": url})
            add.task("detail", url + "/1")
    """

    __slots__ = ("_queue", "_closed")

    def __init__(self) -> None:
        self._queue: list[Emit] = []
        self._closed = False

    def __call__(self, emit: Emit) -> None:
        if not isinstance(emit, (EmitData, EmitTask)):
            raise TypeError(f"Expected EmitData or EmitTask, got {type(emit).__name__}")
        if self._closed:
            raise CollectorClosedError("Collector used after its template invocation has settled")
        self._queue.append(emit)

    def data(self, data: Any) -> None:
        """添加数据。"""
        self(EmitData(data))

    def task(self, template: str, url: str) -> None:
        """添加爬行任务。"""
        self(EmitTask(template, url))

    @property
    def closed(self) -> bool:
        return self._closed

    def drain(self) -> list[Emit]:
        """关闭收集器并取出全部记录。"""
        self._closed = True
        queue, self._queue = self._queue, []
        return queue

    def __len__(self) -> int:
        return len(self._queue)


type TemplateFunc = Callable[[str, Collector], Awaitable[Any]]
