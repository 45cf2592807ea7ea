"""URL去重模块。"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.metrics import DUPLICATE_URLS

if TYPE_CHECKING:
    from collections.abc import Iterable


class UrlRegistry:
    """已爬行URL集合。

    在一次运行中只增不减。关闭去重时依旧记录URL，但总是放行。

    Attributes:
        enabled: 是否根据URL去重
        _seen: 已放行的URL集合
    """

    def __init__(self, enabled: bool = True, urls: Iterable[str] = ()):
        self.enabled = enabled
        self._seen: set[str] = set(urls)

    def admit(self, url: str) -> bool:
        """检查并记录URL，返回该URL是否应当创建新的任务节点。"""
        if self.enabled and url in self._seen:
            DUPLICATE_URLS.inc()
            return False

        self._seen.add(url)
        return True

    def record(self, url: str) -> None:
        """直接记录URL，用于从快照重建集合。"""
        self._seen.add(url)

    def __contains__(self, url: object) -> bool:
        return url in self._seen

    def __len__(self) -> int:
        return len(self._seen)
