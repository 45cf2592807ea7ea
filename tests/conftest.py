"""Pytest 配置和共享 fixtures。"""
# ruff: noqa: E402

import sys
from pathlib import Path

# Add the project root to sys.path so `from nekopara...` and `import main` work without installing
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from typing import Any

import pytest

from nekopara.core.config import CONFIG_ENV
from nekopara.scraper import Nekopara

# ==================== 事件记录 ====================


class EventLog:
    """记录调度器发出的事件。"""

    def __init__(self, crawler: Nekopara):
        self.data: list[Any] = []
        self.fail: list[Exception] = []
        self.done = 0
        crawler.on("data", self.data.append)
        crawler.on("fail", self.fail.append)
        crawler.on("done", self._on_done)

    def _on_done(self) -> None:
        self.done += 1


@pytest.fixture
def event_log():
    """返回 EventLog 类，用法：``events = event_log(crawler)``"""
    return EventLog


# ==================== 环境隔离 ====================


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """避免读取工作目录中的 config.toml 与外部环境变量"""
    monkeypatch.setenv(CONFIG_ENV, str(tmp_path / "missing-config.toml"))
    for key in ("CRAWLER__THREAD", "CRAWLER__INTERVAL", "CRAWLER__DISTINCT", "LOGGING__LEVEL", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
