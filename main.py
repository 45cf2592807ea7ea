"""Nekopara 命令行入口模块。

该模块提供两种运行方式：
1. 入口模式(--entry): 从指定模板与入口URL开始一轮新的爬行
2. 续爬模式(--resume): 读取保存的快照文件，重试失败与未完成的任务

模板函数由 --templates 指定的模块提供，模块需暴露 ``TEMPLATES: dict[str, TemplateFunc]``。
爬行结束、出错或被 Ctrl-C 中断时，都会把当前进度写入 --save 指定的快照文件。
"""

import argparse
import asyncio
import importlib
import logging
import os
import platform
import sys
from pathlib import Path
from typing import Any

import orjson

from nekopara import Config, CrawlResults, Nekopara, dumps
from nekopara.core.config import CONFIG_ENV
from nekopara.scraper import TemplateFunc
from nekopara.utils import setup_logging, to_jsonable

log = logging.getLogger("main")


def load_templates(module_name: str) -> dict[str, TemplateFunc]:
    """导入模板模块并返回其中的 ``TEMPLATES`` 映射。

    Raises:
        ValueError: 模块没有提供合法的 ``TEMPLATES``。
    """
    module = importlib.import_module(module_name)
    templates = getattr(module, "TEMPLATES", None)
    if not isinstance(templates, dict) or not templates:
        raise ValueError(f"Module '{module_name}' does not define a non-empty TEMPLATES dict")
    return templates


def write_snapshot(crawler: Nekopara, path: Path) -> bool:
    """将当前进度写入快照文件，尚未产生爬行树时跳过。"""
    tree = crawler.snapshot()
    if tree is None:
        log.warning("Nothing to save: crawl tree is empty.")
        return False

    path.write_text(dumps(tree), encoding="utf-8")
    log.info(f"Snapshot saved to {path}.")
    return True


def write_results(results: CrawlResults, path: Path) -> None:
    payload = {"items": results.items, "complete": results.complete}
    path.write_bytes(orjson.dumps(payload, default=to_jsonable, option=orjson.OPT_INDENT_2))
    log.info(f"{len(results.items)} items written to {path}.")


async def main(
    templates_module: str,
    *,
    entry: tuple[str, str] | None = None,
    resume: Path | None = None,
    save: Path | None = None,
    output: Path | None = None,
    config: Config | None = None,
) -> CrawlResults:
    """运行一轮爬行并返回结果。

    Args:
        templates_module: 提供 ``TEMPLATES`` 的模块名。
        entry: 入口 (模板名称, URL)，与 ``resume`` 二选一。
        resume: 快照文件路径。
        save: 结束后写入快照的路径。
        output: 结束后写入结果的路径。
        config: 应用配置，默认从环境变量与 config.toml 加载。
    """
    if (entry is None) == (resume is None):
        raise ValueError("Exactly one of entry or resume must be given")

    config = config or Config()
    templates = load_templates(templates_module)

    crawler = Nekopara(config.crawl_options)
    for name, func in templates.items():
        crawler.register(name, func)

    failures: list[Exception] = []
    crawler.on("fail", failures.append)

    try:
        if entry is not None:
            crawler.start(*entry)
        elif resume is not None:
            log.info(f"Resuming from snapshot {resume}.")
            crawler.start(resume.read_bytes())

        await crawler.join()

    except asyncio.CancelledError:
        log.info("Received cancellation; stopping crawl.")
        raise

    finally:
        await crawler.close()
        if save is not None:
            write_snapshot(crawler, save)

    results = crawler.get_results()
    log.info(
        f"Crawl finished: {len(results.items)} items, complete={results.complete}, {len(failures)} failed tasks."
    )

    if output is not None:
        write_results(results, output)

    return results


def setup_event_loop():
    if platform.system() != "Windows":
        try:
            import uvloop  # type: ignore

            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

        except ImportError:
            # 非关键依赖，降低为 debug
            log.debug("uvloop not installed; using default asyncio event loop.")

        except Exception as e:
            log.warning(f"Failed to set up uvloop; using default asyncio event loop. Error: {e}")

    else:
        log.info("Running on Windows, using the default ProactorEventLoop.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Nekopara recursive crawler")
    parser.add_argument(
        "--templates", required=True, help="Module exposing a TEMPLATES dict, e.g. examples.static_site"
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--entry", nargs=2, metavar=("TEMPLATE", "URL"), help="Start a new crawl from this entry.")
    source.add_argument("--resume", type=Path, metavar="SNAPSHOT", help="Resume a crawl from a snapshot file.")

    parser.add_argument("--save", type=Path, metavar="SNAPSHOT", help="Write the final snapshot to this file.")
    parser.add_argument("--output", type=Path, metavar="RESULTS", help="Write collected items to this JSON file.")
    parser.add_argument("--config", type=Path, help="Path to config.toml (default: ./config.toml).")
    parser.add_argument("--thread", type=int, help="Number of concurrent tasks.")
    parser.add_argument("--interval", type=float, help="Minimum interval between task starts, in milliseconds.")
    parser.add_argument("--no-distinct", action="store_true", help="Disable URL deduplication.")
    parser.add_argument("--log-level", help="Logging level (default: from config, LOG_LEVEL or INFO).")
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    if args.config is not None:
        os.environ[CONFIG_ENV] = str(args.config)

    crawler: dict[str, Any] = {}
    if args.thread is not None:
        crawler["thread"] = args.thread
    if args.interval is not None:
        crawler["interval"] = args.interval
    if args.no_distinct:
        crawler["distinct"] = False

    overrides: dict[str, Any] = {}
    if crawler:
        overrides["crawler"] = crawler
    if args.log_level:
        overrides["logging"] = {"level": args.log_level}
    return Config(**overrides)


def cli(argv: list[str] | None = None) -> int:
    """解析命令行参数并运行，返回进程退出码：完整爬完为0，否则为1。"""
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 2

    setup_logging(args.log_level or os.getenv("LOG_LEVEL") or config.log_level)
    setup_event_loop()

    entry = tuple(args.entry) if args.entry else None
    try:
        results = asyncio.run(
            main(
                args.templates,
                entry=entry,  # type: ignore[arg-type]
                resume=args.resume,
                save=args.save,
                output=args.output,
                config=config,
            )
        )
    except KeyboardInterrupt:
        log.info("Crawl stopped by user.")
        return 1

    return 0 if results.complete else 1


if __name__ == "__main__":
    sys.exit(cli())
