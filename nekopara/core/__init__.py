"""核心模块包。

包含调度器依赖的基础设施：
- Config / CrawlOptions: 配置加载与校验
- EventEmitter: 异步事件分发
- metrics: Prometheus 指标
"""

from .config import Config, CrawlOptions
from .events import EventEmitter

__all__ = ["Config", "CrawlOptions", "EventEmitter"]
