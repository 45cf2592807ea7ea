"""无需联网的示例模板模块。

用内存中的假站点演示递归爬行、去重、失败与断点续爬::

    python main.py --templates examples.static_site --entry page / --save snapshot.json
    python main.py --templates examples.static_site --resume snapshot.json --output results.json

``BROKEN`` 中的页面会抛出异常，对应任务节点变为FAIL；
清空 ``BROKEN`` 后用快照续爬即可补全。
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nekopara import Collector

SITE: dict[str, dict] = {
    "/": {"title": "Home", "links": ["/docs", "/blog", "/broken"]},
    "/docs": {"title": "Docs", "links": ["/docs/intro", "/"]},
    "/docs/intro": {"title": "Introduction", "links": ["/docs"]},
    "/blog": {"title": "Blog", "links": ["/blog/1", "/blog/2", "/docs"]},
    "/blog/1": {"title": "First post", "tags": ["hello"], "links": []},
    "/blog/2": {"title": "Second post", "tags": ["news", "release"], "links": []},
    "/broken": {"title": "Recovered page", "links": ["/docs/intro"]},
}

BROKEN: set[str] = {"/broken"}

LATENCY = 0.01


async def fetch(url: str) -> dict:
    await asyncio.sleep(LATENCY)
    if url in BROKEN or url not in SITE:
        raise ConnectionError(f"Failed to fetch {url}")
    return SITE[url]


async def page(url: str, add: Collector) -> None:
    """普通页面：产出标题，博客文章交给 post 模板，其余链接继续用 page 模板。"""
    doc = await fetch(url)
    add.data({"url": url, "title": doc["title"]})
    for link in doc["links"]:
        add.task("post" if link.startswith("/blog/") else "page", link)


async def post(url: str, add: Collector) -> None:
    doc = await fetch(url)
    add.data({"url": url, "title": doc["title"], "tags": doc.get("tags", [])})


TEMPLATES = {"page": page, "post": post}
