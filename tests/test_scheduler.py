"""Nekopara 调度器测试。"""

from __future__ import annotations

import asyncio
import time

import pytest
from pydantic import ValidationError

from nekopara import CrawlOptions, Nekopara
from nekopara.scraper import (
    AlreadyStartedError,
    Collector,
    CollectorClosedError,
    CrawlResults,
    DataNode,
    SnapshotFormatError,
    TaskNode,
    TaskState,
    TemplateAlreadyRegisteredError,
    TemplateNotFoundError,
    dumps,
    to_dict,
)

# ==================== 基本流程 ====================


@pytest.mark.asyncio
async def test_crawl_collects_data_in_tree_order(event_log):
    """root 产出数据1与任务 leaf，leaf 产出数据2"""
    async with Nekopara() as crawler:

        async def root(url, add):
            add.data(1)
            add.task("leaf", "b")

        async def leaf(url, add):
            add.data(2)

        crawler.register("root", root)
        crawler.register("leaf", leaf)
        events = event_log(crawler)

        crawler.start("root", "a")
        await crawler.join()

        assert crawler.get_results() == CrawlResults(items=[1, 2], complete=True)
        assert events.data == [1, 2]
        assert events.done == 1
        assert crawler.tree == TaskNode(
            "root", "a", TaskState.DONE, [DataNode(1), TaskNode("leaf", "b", TaskState.DONE, [DataNode(2)])]
        )


@pytest.mark.asyncio
async def test_failed_template_marks_node_and_emits_fail(event_log):
    async with Nekopara() as crawler:

        async def bad(url, add):
            raise ValueError(f"cannot crawl {url}")

        crawler.register("bad", bad)
        events = event_log(crawler)

        crawler.start("bad", "x")
        await crawler.join()

        assert crawler.tree.state is TaskState.FAIL
        assert len(events.fail) == 1
        assert isinstance(events.fail[0], ValueError)
        assert str(events.fail[0]) == "cannot crawl x"
        assert crawler.get_results().complete is False
        assert events.done == 1


@pytest.mark.asyncio
async def test_duplicate_urls_create_one_task_node():
    async with Nekopara() as crawler:

        @crawler.register("root")
        async def root(url, add):
            add.task("leaf", "b")
            add.task("leaf", "b")
            add.task("other", "a")

        @crawler.register("leaf")
        async def leaf(url, add):
            add.data(url)

        crawler.register("other", leaf)

        crawler.start("root", "a")
        await crawler.join()

        assert [c.url for c in crawler.tree.children] == ["b"]
        assert crawler.get_results() == CrawlResults(items=["b"], complete=True)


@pytest.mark.asyncio
async def test_duplicate_urls_kept_without_distinct():
    async with Nekopara(distinct=False) as crawler:

        async def root(url, add):
            add.task("leaf", "b")
            add.task("leaf", "b")

        async def leaf(url, add):
            add.data(url)

        crawler.register("root", root)
        crawler.register("leaf", leaf)

        crawler.start("root", "a")
        await crawler.join()

        assert [c.url for c in crawler.tree.children] == ["b", "b"]
        assert crawler.get_results().items == ["b", "b"]


@pytest.mark.asyncio
async def test_sync_template_is_supported():
    async with Nekopara() as crawler:
        crawler.register("root", lambda url, add: add.data(url.upper()))

        crawler.start("root", "a")
        await crawler.join()

        assert crawler.get_results() == CrawlResults(items=["A"], complete=True)


# ==================== 注册与启动 ====================


@pytest.mark.asyncio
async def test_unknown_template_fails_task(event_log):
    async with Nekopara() as crawler:
        events = event_log(crawler)

        crawler.start("missing", "a")
        await crawler.join()

        assert crawler.tree.state is TaskState.FAIL
        assert isinstance(events.fail[0], TemplateNotFoundError)
        assert events.fail[0].template == "missing"


def test_register_rejects_duplicates_and_non_callables():
    crawler = Nekopara()

    async def page(url, add):
        pass

    assert crawler.register("page", page) is page
    with pytest.raises(TemplateAlreadyRegisteredError):
        crawler.register("page", page)
    with pytest.raises(TypeError):
        crawler.register("other", "not callable")  # type: ignore[arg-type]
    assert crawler.templates == ("page",)


@pytest.mark.asyncio
async def test_start_only_once():
    async with Nekopara() as crawler:
        crawler.register("root", lambda url, add: None)
        crawler.start("root", "a")

        with pytest.raises(AlreadyStartedError):
            crawler.start("root", "b")
        await crawler.join()


@pytest.mark.asyncio
@pytest.mark.parametrize("args", [(), ("root", "a", "extra"), ("root", 1)])
async def test_start_rejects_bad_arguments(args):
    async with Nekopara() as crawler:
        with pytest.raises(TypeError):
            crawler.start(*args)
        assert not crawler.started


def test_start_requires_running_loop():
    crawler = Nekopara()
    with pytest.raises(RuntimeError):
        crawler.start("root", "a")
    assert not crawler.started


def test_invalid_options():
    with pytest.raises(ValidationError):
        Nekopara(thread=0)
    with pytest.raises(ValidationError):
        Nekopara(interval=-1)

    crawler = Nekopara(CrawlOptions(thread=4, interval=10), distinct=False)
    assert crawler.options == CrawlOptions(thread=4, interval=10, distinct=False)


# ==================== 快照 ====================


@pytest.mark.asyncio
async def test_children_committed_atomically():
    """模板执行期间快照中看不到其部分产出"""
    entered = asyncio.Event()
    release = asyncio.Event()

    async with Nekopara() as crawler:

        async def root(url, add):
            add.data(1)
            add.task("leaf", "b")
            entered.set()
            await release.wait()
            add.data(2)

        async def leaf(url, add):
            add.data("leaf")

        crawler.register("root", root)
        crawler.register("leaf", leaf)

        crawler.start("root", "a")
        await entered.wait()

        snap = crawler.snapshot()
        assert snap == TaskNode("root", "a", TaskState.WAITING)
        assert crawler.get_results() == CrawlResults(items=[], complete=False)

        release.set()
        await crawler.join()

        assert crawler.get_results() == CrawlResults(items=[1, "leaf", 2], complete=True)
        # 之前取得的快照不随爬行变化
        assert snap == TaskNode("root", "a", TaskState.WAITING)


@pytest.mark.asyncio
async def test_snapshot_is_independent_copy():
    async with Nekopara() as crawler:
        crawler.register("root", lambda url, add: add.data({"n": 1}))
        crawler.start("root", "a")
        await crawler.join()

        snap = crawler.snapshot()
        snap.children[0].data["n"] = 2
        snap.state = TaskState.FAIL

        assert crawler.tree.children[0].data == {"n": 1}
        assert crawler.get_results().complete is True


@pytest.mark.asyncio
async def test_results_and_snapshot_before_start():
    async with Nekopara() as crawler:
        assert crawler.get_results() == CrawlResults(items=[], complete=False)
        assert crawler.snapshot() is None
        assert crawler.tree is None


def _linked_site(links: dict[str, list[str]], broken: set[str], calls: list[str]):
    async def page(url: str, add: Collector):
        calls.append(url)
        if url in broken:
            raise ConnectionError(url)
        add.data(url)
        for link in links[url]:
            add.task("page", link)

    return page


LINKS = {"a": ["b", "c"], "b": ["c", "d"], "c": [], "d": []}


@pytest.mark.asyncio
async def test_resume_retries_failed_tasks_only(event_log):
    """续爬只重新执行失败的任务，已完成的兄弟节点保持不变，已爬行URL被重建"""
    first_calls: list[str] = []
    async with Nekopara() as first:
        first.register("page", _linked_site(LINKS, {"b"}, first_calls))
        first.start("page", "a")
        await first.join()

        assert first_calls == ["a", "b", "c"]
        assert first.get_results() == CrawlResults(items=["a", "c"], complete=False)
        saved = first.snapshot()

    second_calls: list[str] = []
    async with Nekopara() as second:
        second.register("page", _linked_site(LINKS, set(), second_calls))
        second.start(saved)
        events = event_log(second)
        await second.join()

        assert second_calls == ["b", "d"]
        assert second.get_results() == CrawlResults(items=["a", "b", "d", "c"], complete=True)
        assert events.done == 1
        assert [c.url for c in second.tree.children if isinstance(c, TaskNode)] == ["b", "c"]


@pytest.mark.asyncio
async def test_resume_complete_snapshot_is_idempotent(event_log):
    """已完成的快照续爬不执行任何模板，done 仍触发一次"""
    calls: list[str] = []
    async with Nekopara() as first:
        first.register("page", _linked_site(LINKS, set(), calls))
        first.start("page", "a")
        await first.join()
        saved = first.snapshot()
        results = first.get_results()

    calls.clear()
    async with Nekopara() as second:
        second.register("page", _linked_site(LINKS, set(), calls))
        second.start(saved)
        events = event_log(second)
        await second.join()

        assert calls == []
        assert events.done == 1
        assert second.get_results() == results
        assert second.tree == saved


@pytest.mark.asyncio
async def test_resume_from_dict_and_json_text():
    tree = TaskNode("page", "a", TaskState.DONE, [DataNode("a"), TaskNode("page", "d", TaskState.FAIL)])

    for snapshot in (to_dict(tree), dumps(tree), dumps(tree).encode("utf-8")):
        calls: list[str] = []
        async with Nekopara() as crawler:
            crawler.register("page", _linked_site(LINKS, set(), calls))
            crawler.start(snapshot)
            await crawler.join()

            assert calls == ["d"]
            assert crawler.get_results() == CrawlResults(items=["a", "d"], complete=True)


@pytest.mark.asyncio
async def test_resume_discards_children_of_unfinished_tasks():
    tree = TaskNode("page", "a", TaskState.DONE, [TaskNode("page", "d", TaskState.WAITING, [DataNode("stale")])])
    calls: list[str] = []

    async with Nekopara() as crawler:
        crawler.register("page", _linked_site(LINKS, set(), calls))
        crawler.start(tree)
        await crawler.join()

        assert crawler.get_results() == CrawlResults(items=["d"], complete=True)
        # 原快照对象不受影响
        assert tree.children[0].children == [DataNode("stale")]


@pytest.mark.asyncio
async def test_invalid_snapshot_does_not_start():
    async with Nekopara() as crawler:
        with pytest.raises(SnapshotFormatError):
            crawler.start({"kind": "data", "data": 1})
        with pytest.raises(SnapshotFormatError):
            crawler.start(None)
        with pytest.raises(SnapshotFormatError):
            crawler.start("{broken")
        assert not crawler.started

        crawler.register("root", lambda url, add: add.data(url))
        crawler.start("root", "a")
        await crawler.join()
        assert crawler.get_results().items == ["a"]


# ==================== 停止 ====================


@pytest.mark.asyncio
async def test_stop_skips_queued_tasks_and_suppresses_done(event_log):
    """停止后排队任务不再执行，执行中任务的产出照常提交，不触发 done"""
    entered = asyncio.Event()
    release = asyncio.Event()
    calls: list[str] = []

    async with Nekopara(thread=1) as crawler:

        async def page(url, add):
            calls.append(url)
            if url == "a":
                add.task("page", "b")
                add.task("page", "c")
                return
            entered.set()
            await release.wait()
            add.data(url)
            add.task("page", "d")

        crawler.register("page", page)
        events = event_log(crawler)

        crawler.start("page", "a")
        await entered.wait()
        crawler.stop()
        release.set()
        await crawler.join()

        assert crawler.stopped
        assert calls == ["a", "b"]
        assert events.done == 0
        assert events.data == ["b"]

        b, c = crawler.tree.children
        assert b == TaskNode("page", "b", TaskState.DONE, [DataNode("b"), TaskNode("page", "d")])
        assert c == TaskNode("page", "c", TaskState.WAITING)
        assert crawler.get_results() == CrawlResults(items=["b"], complete=False)


# ==================== 并发与限速 ====================


@pytest.mark.asyncio
async def test_concurrency_limit():
    running = 0
    peak = 0

    async with Nekopara(thread=2) as crawler:

        async def root(url, add):
            for i in range(6):
                add.task("leaf", f"{url}/{i}")

        async def leaf(url, add):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            add.data(url)

        crawler.register("root", root)
        crawler.register("leaf", leaf)
        crawler.start("root", "a")
        await crawler.join()

        assert peak == 2
        assert len(crawler.get_results().items) == 6


@pytest.mark.asyncio
async def test_interval_between_template_starts():
    """相邻两次模板执行的开始时间至少间隔 interval 毫秒"""
    starts: list[float] = []

    async with Nekopara(thread=4, interval=20) as crawler:

        async def root(url, add):
            starts.append(time.monotonic())
            for i in range(4):
                add.task("leaf", f"{url}/{i}")

        async def leaf(url, add):
            starts.append(time.monotonic())
            await asyncio.sleep(0.05)

        crawler.register("root", root)
        crawler.register("leaf", leaf)
        crawler.start("root", "a")
        await crawler.join()

    assert len(starts) == 5
    for prev, cur in zip(starts, starts[1:], strict=False):
        assert cur - prev >= 0.020 - 0.001


# ==================== 收集器与事件 ====================


@pytest.mark.asyncio
async def test_failed_template_discards_partial_output(event_log):
    calls: list[str] = []

    async with Nekopara() as crawler:

        async def root(url, add):
            add.data(1)
            add.task("leaf", "b")
            raise RuntimeError("late failure")

        async def leaf(url, add):
            calls.append(url)

        crawler.register("root", root)
        crawler.register("leaf", leaf)
        events = event_log(crawler)

        crawler.start("root", "a")
        await crawler.join()

        assert crawler.tree == TaskNode("root", "a", TaskState.FAIL)
        assert calls == []
        assert events.data == []
        assert len(events.fail) == 1


@pytest.mark.asyncio
async def test_collector_closed_after_template_settles():
    kept: list[Collector] = []

    async with Nekopara() as crawler:

        async def root(url, add):
            kept.append(add)

        crawler.register("root", root)
        crawler.start("root", "a")
        await crawler.join()

    with pytest.raises(CollectorClosedError):
        kept[0].data("late")


@pytest.mark.asyncio
async def test_async_and_failing_listeners(event_log):
    received: list[int] = []

    async with Nekopara() as crawler:

        async def root(url, add):
            add.data(1)
            add.data(2)

        async def slow_listener(value):
            await asyncio.sleep(0.01)
            received.append(value)

        def broken_listener(value):
            raise RuntimeError("listener failed")

        crawler.register("root", root)
        crawler.on("data", broken_listener)
        crawler.on("data", slow_listener)
        events = event_log(crawler)

        crawler.start("root", "a")
        await crawler.join()

        assert received == [1, 2]
        assert events.done == 1
        assert crawler.get_results().complete is True


@pytest.mark.asyncio
async def test_instances_are_independent():
    async with Nekopara() as first, Nekopara() as second:
        first.register("page", lambda url, add: add.data(f"first:{url}"))
        second.register("page", lambda url, add: add.data(f"second:{url}"))

        first.start("page", "a")
        second.start("page", "a")
        await asyncio.gather(first.join(), second.join())

        assert first.get_results().items == ["first:a"]
        assert second.get_results().items == ["second:a"]


@pytest.mark.asyncio
async def test_non_string_task_url_fails_node(event_log):
    """模板添加非字符串URL的任务时，该任务节点变为FAIL，已添加的内容全部丢弃"""
    calls: list[object] = []

    async with Nekopara() as crawler:

        async def root(url, add):
            if url == "a":
                add.task("root", "int")
                add.task("root", "list")
                return
            add.data(1)
            add.task("leaf", "b")
            add.task("leaf", 42 if url == "int" else ["c"])

        async def leaf(url, add):
            calls.append(url)

        crawler.register("root", root)
        crawler.register("leaf", leaf)
        events = event_log(crawler)

        crawler.start("root", "a")
        await crawler.join()

        assert crawler.tree.children == [
            TaskNode("root", "int", TaskState.FAIL),
            TaskNode("root", "list", TaskState.FAIL),
        ]
        assert calls == []
        assert events.data == []
        assert len(events.fail) == 2
        assert all(isinstance(e, TypeError) for e in events.fail)
        assert crawler.get_results() == CrawlResults(items=[], complete=False)
        # 快照仍然可以保存
        assert dumps(crawler.snapshot())
