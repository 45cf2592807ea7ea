"""爬行调度器异常定义。"""

from __future__ import annotations


class NekoparaError(Exception):
    """所有调度器异常的基类。"""


class TemplateNotFoundError(NekoparaError, LookupError):
    """任务引用了未注册的模板。

    该异常不会抛给调用方，而是使对应任务节点变为FAIL并通过 ``fail`` 事件发出。
    """

    def __init__(self, template: str):
        super().__init__(f"Template '{template}' does not exist")
        self.template = template


class TemplateAlreadyRegisteredError(NekoparaError, ValueError):
    """重复注册同名模板。"""

    def __init__(self, template: str):
        super().__init__(f"Template '{template}' has been registered")
        self.template = template


class AlreadyStartedError(NekoparaError, RuntimeError):
    """同一个调度器实例的 ``start`` 被调用了多次。"""

    def __init__(self):
        super().__init__("Cannot call start again")


class CollectorClosedError(NekoparaError, RuntimeError):
    """模板函数完成后仍在使用收集器。"""


class SnapshotFormatError(NekoparaError, ValueError):
    """快照结构不符合约定格式。"""
