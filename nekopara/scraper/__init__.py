"""爬行调度模块包。

包含爬行调度的核心组件：
- Nekopara: 爬行调度器，负责模板注册、任务派发、快照与续爬
- Collector: 模板函数使用的收集器
- WorkerPool / DelayGate / UrlRegistry: 并发、间隔与去重控制
- 爬行树节点定义与快照序列化
"""

from .collector import Collector, Emit, EmitData, EmitTask, TemplateFunc
from .dedup import UrlRegistry
from .errors import (
    AlreadyStartedError,
    CollectorClosedError,
    NekoparaError,
    SnapshotFormatError,
    TemplateAlreadyRegisteredError,
    TemplateNotFoundError,
)
from .gate import DelayGate
from .pool import WorkerPool
from .scheduler import Nekopara
from .snapshot import copy_tree, dumps, from_dict, loads, to_dict
from .tree import CrawlResults, DataNode, Node, NodeKind, TaskNode, TaskState, collect_results, walk

__all__ = [
    "AlreadyStartedError",
    "Collector",
    "CollectorClosedError",
    "CrawlResults",
    "DataNode",
    "DelayGate",
    "Emit",
    "EmitData",
    "EmitTask",
    "Nekopara",
    "NekoparaError",
    "Node",
    "NodeKind",
    "SnapshotFormatError",
    "TaskNode",
    "TaskState",
    "TemplateAlreadyRegisteredError",
    "TemplateFunc",
    "TemplateNotFoundError",
    "UrlRegistry",
    "WorkerPool",
    "collect_results",
    "copy_tree",
    "dumps",
    "from_dict",
    "loads",
    "to_dict",
    "walk",
]
