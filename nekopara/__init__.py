"""Nekopara: 可断点续爬、限速、有界并发的递归爬行调度器。"""

from .core import Config, CrawlOptions
from .scraper import (
    Collector,
    CrawlResults,
    DataNode,
    EmitData,
    EmitTask,
    Nekopara,
    NekoparaError,
    SnapshotFormatError,
    TaskNode,
    TaskState,
    dumps,
    loads,
)

__all__ = [
    "Collector",
    "Config",
    "CrawlOptions",
    "CrawlResults",
    "DataNode",
    "EmitData",
    "EmitTask",
    "Nekopara",
    "NekoparaError",
    "SnapshotFormatError",
    "TaskNode",
    "TaskState",
    "dumps",
    "loads",
]
