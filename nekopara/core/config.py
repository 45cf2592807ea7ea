"""应用程序配置管理模块。

调度器参数（并发数、执行间隔、是否去重）由 ``CrawlOptions`` 描述并校验。
命令行入口额外通过 ``Config`` 从 TOML 配置文件与环境变量加载配置，
支持通过环境变量覆盖配置（例如 CRAWLER__THREAD=4）。
"""

from __future__ import annotations

import os
import tomllib
from logging import getLevelNamesMapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

CONFIG_ENV = "NEKOPARA_CONFIG"
DEFAULT_CONFIG_FILE = "config.toml"


class CrawlOptions(BaseModel):
    """调度器配置模型

    Attributes:
        thread: 同时进行的任务数
        interval: 相邻任务执行最短时间间隔，单位毫秒
        distinct: 是否根据URL去重
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    thread: int = Field(1, gt=0)
    interval: float = Field(0, ge=0)
    distinct: bool = True


class LoggingConfig(BaseModel):
    """日志配置模型"""

    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def check_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v}")
        return v


class PydanticConfig(BaseSettings):
    """Pydantic总配置模型"""

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    crawler: CrawlOptions = Field(default_factory=CrawlOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )


def resolve_config_file() -> Path:
    """返回配置文件路径，优先使用环境变量 NEKOPARA_CONFIG。"""
    return Path(os.getenv(CONFIG_ENV) or DEFAULT_CONFIG_FILE)


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """TOML 配置文件加载源

    配置文件不存在时返回空配置；文件存在但无法解析时抛出 ValueError。
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        raise NotImplementedError

    def __call__(self) -> dict[str, Any]:
        config_file = resolve_config_file()
        if not config_file.is_file():
            return {}
        try:
            with config_file.open("rb") as f:
                return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"无法解析配置文件 {config_file}: {e}") from e


class Config:
    """应用程序配置类。

    配置加载优先级：
    1. 构造参数
    2. 环境变量 (例如 CRAWLER__INTERVAL)
    3. config.toml 配置文件

    Attributes:
        pydantic_config (PydanticConfig): Pydantic应用配置模型
    """

    pydantic_config: PydanticConfig

    def __init__(self, **overrides: Any):
        try:
            self.pydantic_config = PydanticConfig(**overrides)
        except ValidationError as e:
            raise ValueError(f"配置验证失败: {e}") from e

    @property
    def crawl_options(self) -> CrawlOptions:
        """获取调度器配置。"""
        return self.pydantic_config.crawler

    @property
    def thread(self) -> int:
        """获取并发任务数。"""
        return self.pydantic_config.crawler.thread

    @property
    def interval(self) -> float:
        """获取任务执行最短间隔（毫秒）。"""
        return self.pydantic_config.crawler.interval

    @property
    def distinct(self) -> bool:
        """获取是否根据URL去重。"""
        return self.pydantic_config.crawler.distinct

    @property
    def log_level(self) -> str:
        """获取日志级别。"""
        return self.pydantic_config.logging.level
