"""爬行调度器模块。

Nekopara 负责：
1. 注册爬行模板
2. 将模板函数通过收集器添加的任务与数据一次性写入爬行树，并派发新任务
3. 维护每个任务节点的状态，提供快照、断点续爬、停止与结果汇总
4. 发出 ``data`` / ``fail`` / ``done`` 事件

单个任务的执行流程：
停止检查 -> 解析模板 -> 等待闸门 -> 执行模板函数 -> 一次性提交子节点 -> 标记状态
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import TYPE_CHECKING, Any, overload

from ..core.config import CrawlOptions
from ..core.events import EventEmitter
from ..core.metrics import DATA_ITEMS, TASK_DURATION, TASK_RESULTS, TASKS_DISPATCHED
from .collector import Collector, EmitData
from .dedup import UrlRegistry
from .errors import AlreadyStartedError, TemplateAlreadyRegisteredError, TemplateNotFoundError
from .gate import DelayGate
from .pool import WorkerPool
from .snapshot import copy_tree, from_dict, loads
from .tree import CrawlResults, DataNode, TaskNode, TaskState, collect_results, iter_task_nodes

if TYPE_CHECKING:
    from collections.abc import Callable

    from .collector import Emit, TemplateFunc

logger = logging.getLogger(__name__)


class Nekopara(EventEmitter):
    """可断点续爬的递归爬行调度器。

    事件：
    - ``data``: 每提交一个数据节点触发一次，参数为数据
    - ``fail``: 每个任务节点变为FAIL时触发一次，参数为异常对象
    - ``done``: 工作池清空且未调用 ``stop`` 时触发，每轮最多一次

    ``start`` 与事件分发都依赖正在运行的事件循环。

    Attributes:
        options: 调度器配置
        _crawl_tree: 爬行进度树，开始前为None
        _url_registry: 已爬行URL集合
        _task_pool: 爬行任务工作池
        _templates: 爬行模板映射
        _delay_gate: 执行间隔控制闸门
        _stopped: 停止爬行指示器，调用 ``stop`` 后被设为True
    """

    def __init__(self, options: CrawlOptions | None = None, **overrides: Any):
        """初始化调度器。

        Args:
            options: 调度器配置，默认为 ``CrawlOptions()``。
            **overrides: 覆盖 ``options`` 中的字段，例如 ``thread=4``。

        Raises:
            pydantic.ValidationError: 配置不合法。
        """
        super().__init__()

        if options is None or overrides:
            base = options.model_dump() if options is not None else {}
            options = CrawlOptions(**{**base, **overrides})
        self.options = options

        self._crawl_tree: TaskNode | None = None
        self._url_registry = UrlRegistry(enabled=options.distinct)
        self._task_pool = WorkerPool(options.thread)
        self._templates: dict[str, TemplateFunc] = {}
        self._delay_gate = DelayGate(options.interval)
        self._started = False
        self._stopped = False
        self._done_emitted = False

        self._task_pool.on_empty(self._on_done)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def tree(self) -> TaskNode | None:
        """实时的爬行树，仅供读取；需要持久化时请使用 ``snapshot``。"""
        return self._crawl_tree

    @property
    def templates(self) -> tuple[str, ...]:
        """已注册的模板名称。"""
        return tuple(self._templates)

    @property
    def pending(self) -> int:
        """排队中与执行中的任务数。"""
        return self._task_pool.pending

    @overload
    def register(self, template: str) -> Callable[[TemplateFunc], TemplateFunc]: ...

    @overload
    def register(self, template: str, func: TemplateFunc) -> TemplateFunc: ...

    def register(self, template: str, func: TemplateFunc | None = None) -> Any:
        """注册爬行模板，也可以作为装饰器使用。

        Args:
            template: 模板名称
            func: 模板函数，接收 ``url`` 与收集器，返回 awaitable

        Raises:
            TemplateAlreadyRegisteredError: 模板名称已被注册。
        """
        if func is None:
            return functools.partial(self.register, template)

        if not callable(func):
            raise TypeError(f"Template '{template}' must be callable")
        if template in self._templates:
            raise TemplateAlreadyRegisteredError(template)

        self._templates[template] = func
        logger.debug("Registered template '%s'.", template)
        return func

    @overload
    def start(self, template: str, url: str, /) -> None: ...

    @overload
    def start(self, snapshot: TaskNode | dict[str, Any] | str | bytes, /) -> None: ...

    def start(self, *args: Any) -> None:
        """开始爬行，每个实例只能调用一次。

        - ``start(template, url)``: 从指定的入口页面开始爬行
        - ``start(snapshot)``: 通过保存的爬行进度继续爬行，发生错误的任务也会重试。
          快照可以是 ``snapshot()`` 返回的节点、``to_dict`` 结构或 ``dumps`` 文本。

        Raises:
            AlreadyStartedError: 重复调用。
            TypeError: 参数个数不是1或2。
            SnapshotFormatError: 快照格式不合法。
        """
        if self._started:
            raise AlreadyStartedError()

        # 任务派发与事件分发都需要事件循环，提前检查避免留下半初始化的状态
        asyncio.get_running_loop()

        if len(args) == 2:
            template, url = args
            if not isinstance(template, str) or not isinstance(url, str):
                raise TypeError("start(template, url) expects two strings")
            self._started = True
            self._start_with_entry(template, url)
        elif len(args) == 1:
            root = self._load_snapshot(args[0])
            self._started = True
            self._start_with_snapshot(root)
        else:
            raise TypeError(f"start() takes a snapshot or (template, url), got {len(args)} arguments")

    def _start_with_entry(self, template: str, url: str) -> None:
        logger.info("Starting crawl from '%s' with template '%s'.", url, template)
        collector = Collector()
        collector.task(template, url)
        self._commit(None, collector.drain())

    @staticmethod
    def _load_snapshot(snapshot: Any) -> TaskNode:
        if isinstance(snapshot, (str, bytes)):
            return loads(snapshot)
        if isinstance(snapshot, (TaskNode, DataNode)):
            return copy_tree(snapshot)
        return from_dict(snapshot)

    def _start_with_snapshot(self, root: TaskNode) -> None:
        self._crawl_tree = root
        resumed = 0

        for node in iter_task_nodes(root):
            # 重建已爬行URL集合
            self._url_registry.record(node.url)

            # 任务状态为WAITING或FAIL
            if node.state != TaskState.DONE:
                if node.children:
                    logger.warning(
                        "Unfinished task '%s' for %s carries %d children; discarding them.",
                        node.template,
                        node.url,
                        len(node.children),
                    )
                    node.children.clear()
                node.state = TaskState.WAITING
                self._submit_task(node)
                resumed += 1

        logger.info("Resuming crawl from snapshot: %d unfinished tasks.", resumed)

        # 没有未完成的任务
        if resumed == 0:
            self._on_done()

    def _submit_task(self, node: TaskNode) -> None:
        TASKS_DISPATCHED.labels(template=node.template).inc()
        self._task_pool.submit(functools.partial(self._run_task, node))

    async def _run_task(self, node: TaskNode) -> None:
        """在工作池中执行单个任务节点。"""
        template, url = node.template, node.url

        if self._stopped:
            # stop 已被调用，放弃队列中的任务
            TASK_RESULTS.labels(template=template, status="skipped").inc()
            return

        try:
            emits = await self._invoke(template, url)
        except Exception as e:
            self._fail(node, e)
            return

        self._commit(node, emits)
        node.state = TaskState.DONE
        TASK_RESULTS.labels(template=template, status="done").inc()
        logger.debug("Task '%s' for %s done with %d children.", template, url, len(node.children))

    async def _invoke(self, template: str, url: str) -> list[Emit]:
        """执行模板函数并返回收集到的全部记录。

        收集器只能在模板函数完成之前使用，完成或失败后立即关闭。
        """
        func = self._templates.get(template)
        if func is None:
            raise TemplateNotFoundError(template)

        await self._delay_gate.acquire()

        collector = Collector()
        logger.debug("Running template '%s' for %s.", template, url)
        with TASK_DURATION.labels(template=template).time():
            try:
                result = func(url, collector)
                if inspect.isawaitable(result):
                    await result
            finally:
                emits = collector.drain()
        return emits

    def _commit(self, parent: TaskNode | None, emits: list[Emit]) -> None:
        """依次执行收集到的记录。

        执行前 ``parent.children`` 为空，执行后拥有最终的全部子节点，
        中间不存在挂起点，因此爬行树可以随时保存快照。
        ``parent`` 为None时表示入口任务，新建的任务节点成为根节点。
        """
        for emit in emits:
            if isinstance(emit, EmitData):
                if parent is None:
                    raise ValueError("Data cannot be added without a parent task")
                parent.children.append(DataNode(emit.data))
                DATA_ITEMS.labels(template=parent.template).inc()
                self.emit("data", emit.data)
                continue

            if not self._url_registry.admit(emit.url):
                logger.debug("Skip duplicate url %s.", emit.url)
                continue

            node = TaskNode(template=emit.template, url=emit.url)
            if parent is None:
                self._crawl_tree = node
            else:
                parent.children.append(node)
            self._submit_task(node)

    def _fail(self, node: TaskNode, error: Exception) -> None:
        node.state = TaskState.FAIL
        TASK_RESULTS.labels(template=node.template, status="fail").inc()
        logger.warning("Task '%s' for %s failed: %r", node.template, node.url, error)
        self.emit("fail", error)

    def _on_done(self) -> None:
        if self._stopped or self._done_emitted:
            return

        self._done_emitted = True
        logger.info("Crawl finished.")
        # 异步触发，防止调用方在 start 之后才注册监听器而错过事件
        self.emit("done")

    def get_results(self) -> CrawlResults:
        """获取爬行结果。

        Returns:
            ``items`` 为当前已爬行的数据集合，``complete`` 在爬行未完成或存在错误节点时为False。
        """
        return collect_results(self._crawl_tree)

    def snapshot(self) -> TaskNode | None:
        """返回当前爬行进度的快照，尚未开始时返回None。"""
        if self._crawl_tree is None:
            return None
        return copy_tree(self._crawl_tree)

    def stop(self) -> None:
        """终止爬行，队列中等待执行的任务将不会被执行，调用后不会触发done事件。"""
        if not self._stopped:
            logger.info("Stopping crawl; %d jobs still pending.", self._task_pool.pending)
        self._stopped = True

    async def join(self) -> None:
        """等待工作池清空，并等待已发出的事件分发完毕。"""
        await self._task_pool.join()
        await self.drain()

    async def close(self) -> None:
        """停止爬行并取消仍在执行的任务。"""
        self.stop()
        await self._task_pool.close()
        await self.drain()

    async def __aenter__(self) -> Nekopara:
        return self

    async def __aexit__(self, exc_type=None, exc_val=None, exc_tb=None):
        await self.close()
