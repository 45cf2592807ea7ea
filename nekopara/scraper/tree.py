"""爬行进度树模块。

爬行树由两种节点组成：
- TaskNode: 任务节点，记录模板名称、URL、执行状态以及该任务产出的子节点
- DataNode: 数据节点，只保存数据，永远是叶子节点

任务节点的子节点只会在模板函数成功完成后被一次性写入，
因此任意时刻保存的快照都是一致且可恢复的。
"""

from __future__ import annotations

import dataclasses
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class NodeKind(StrEnum):
    """节点类型标签，同时也是快照中 ``kind`` 字段的取值。"""

    TASK = "task"
    DATA = "data"


class TaskState(StrEnum):
    """任务节点状态。

    - WAITING: 等待执行，子节点为空
    - DONE: 执行成功，已收集全部子节点
    - FAIL: 执行出错，子节点为空
    """

    WAITING = "waiting"
    DONE = "done"
    FAIL = "fail"


@dataclasses.dataclass(slots=True, eq=True)
class DataNode:
    """数据节点。

    Attributes:
        data: 模板函数产出的数据
    """

    data: Any

    @property
    def kind(self) -> NodeKind:
        return NodeKind.DATA


@dataclasses.dataclass(slots=True, eq=True)
class TaskNode:
    """任务节点。

    Attributes:
        template: 模板名称
        url: 该任务的URL，同时作为去重依据
        state: 任务状态，默认为WAITING
        children: 子节点列表，顺序与模板函数调用收集器的顺序一致
    """

    template: str
    url: str
    state: TaskState = TaskState.WAITING
    children: list[Node] = dataclasses.field(default_factory=list)

    @property
    def kind(self) -> NodeKind:
        return NodeKind.TASK


type Node = TaskNode | DataNode


@dataclasses.dataclass(slots=True, frozen=True)
class CrawlResults:
    """爬行结果。

    Attributes:
        items: 当前已收集的全部数据，按前序遍历顺序排列
        complete: 所有任务节点均为DONE时为True
    """

    items: list[Any]
    complete: bool


def walk(root: Node | None) -> Iterator[Node]:
    """前序遍历给定的树，子节点遍历方向为从左到右。

    使用显式栈实现，不受递归深度限制。遍历过程中可以修改节点状态，
    但不应修改正在遍历的 ``children`` 列表。
    """
    if root is None:
        return

    yield root
    if not isinstance(root, TaskNode):
        return

    # 栈中保存 (任务节点, 下一个待访问的子节点下标)
    stack: list[tuple[TaskNode, int]] = [(root, 0)]
    while stack:
        node, cursor = stack[-1]
        if cursor >= len(node.children):
            stack.pop()
            continue

        stack[-1] = (node, cursor + 1)
        child = node.children[cursor]
        yield child
        if isinstance(child, TaskNode):
            stack.append((child, 0))


def iter_task_nodes(root: Node | None) -> Iterator[TaskNode]:
    """按前序遍历顺序返回所有任务节点。"""
    for node in walk(root):
        if isinstance(node, TaskNode):
            yield node


def collect_results(root: Node | None) -> CrawlResults:
    """汇总树中的全部数据以及整体完成状态。

    尚未开始爬行（根节点为空）时 ``complete`` 为False。
    """
    if root is None:
        return CrawlResults(items=[], complete=False)

    items: list[Any] = []
    complete = True
    for node in walk(root):
        if isinstance(node, DataNode):
            items.append(node.data)
        elif node.state != TaskState.DONE:
            complete = False

    return CrawlResults(items=items, complete=complete)
