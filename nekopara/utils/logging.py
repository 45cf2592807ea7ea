"""统一日志配置模块。

提供 setup_logging() 以在命令行启动时一次性配置全局日志。
级别优先取参数，其次取环境变量 LOG_LEVEL，默认 INFO。
调度器本身只通过 ``logging.getLogger`` 输出，不会主动配置日志。
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d | %(message)s"


def resolve_level(level: int | str | None) -> int:
    """将级别名称或数值解析为 logging 级别，无法识别时返回 INFO。"""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.strip().upper(), logging.INFO)


def setup_logging(level: int | str | None = None, *, stream: TextIO | None = None) -> None:
    """配置全局日志输出。

    Args:
        level: 日志级别，int 或名称。
        stream: 输出流，默认为 stderr。
    """
    resolved_level = resolve_level(level)

    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.setLevel(resolved_level)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=DEFAULT_FORMAT, datefmt="%m-%d %H:%M:%S"))
    handler.setLevel(resolved_level)
    root_logger.addHandler(handler)

    # asyncio 的调试输出与爬行日志无关
    logging.getLogger("asyncio").setLevel(max(resolved_level, logging.WARNING))
