"""快照序列化模块。

快照是爬行树的深拷贝，格式如下::

    {"kind": "task", "state": "waiting" | "done" | "fail", "template": str, "url": str, "children": [...]}
    {"kind": "data", "data": <任意可序列化的值>}

``to_dict`` / ``from_dict`` 在节点对象与上述结构之间转换，
``dumps`` / ``loads`` 在此基础上编解码为 JSON 文本（orjson）。
所有转换都使用显式栈，不受树深度限制。
"""

from __future__ import annotations

import copy
from typing import Any

import orjson

from ..utils.serialization import to_jsonable
from .errors import SnapshotFormatError
from .tree import DataNode, Node, NodeKind, TaskNode, TaskState

_TASK_KEYS = ("state", "template", "url", "children")


def to_dict(root: Node) -> dict[str, Any]:
    """将节点树转换为快照结构。数据内容会被深拷贝。"""
    result = _node_to_dict(root)
    if not isinstance(root, TaskNode):
        return result

    stack: list[tuple[TaskNode, list[dict[str, Any]]]] = [(root, result["children"])]
    while stack:
        node, out_children = stack.pop()
        for child in node.children:
            child_dict = _node_to_dict(child)
            out_children.append(child_dict)
            if isinstance(child, TaskNode):
                stack.append((child, child_dict["children"]))

    return result


def _node_to_dict(node: Node) -> dict[str, Any]:
    if isinstance(node, DataNode):
        return {"kind": NodeKind.DATA.value, "data": copy.deepcopy(node.data)}
    if isinstance(node, TaskNode):
        return {
            "kind": NodeKind.TASK.value,
            "state": TaskState(node.state).value,
            "template": node.template,
            "url": node.url,
            "children": [],
        }
    raise SnapshotFormatError(f"Unknown node type: {type(node).__name__}")


def from_dict(obj: Any) -> TaskNode:
    """将快照结构转换为节点树，根节点必须是任务节点。

    Raises:
        SnapshotFormatError: 快照结构不合法。
    """
    if obj is None:
        raise SnapshotFormatError("Snapshot is empty")

    root = _node_from_dict(obj, "$")
    if not isinstance(root, TaskNode):
        raise SnapshotFormatError("Snapshot root must be a task node")

    stack: list[tuple[TaskNode, list[Any], str]] = [(root, obj["children"], "$")]
    while stack:
        node, raw_children, path = stack.pop()
        for i, raw in enumerate(raw_children):
            child_path = f"{path}.children[{i}]"
            child = _node_from_dict(raw, child_path)
            node.children.append(child)
            if isinstance(child, TaskNode):
                stack.append((child, raw["children"], child_path))

    return root


def _node_from_dict(raw: Any, path: str) -> Node:
    if not isinstance(raw, dict):
        raise SnapshotFormatError(f"{path}: expected an object, got {type(raw).__name__}")

    kind = raw.get("kind")
    if kind == NodeKind.DATA:
        if "data" not in raw:
            raise SnapshotFormatError(f"{path}: data node without 'data'")
        return DataNode(copy.deepcopy(raw["data"]))

    if kind != NodeKind.TASK:
        raise SnapshotFormatError(f"{path}: unknown node kind {kind!r}")

    missing = [k for k in _TASK_KEYS if k not in raw]
    if missing:
        raise SnapshotFormatError(f"{path}: task node missing {', '.join(missing)}")

    try:
        state = TaskState(raw["state"])
    except ValueError:
        raise SnapshotFormatError(f"{path}: unknown task state {raw['state']!r}") from None

    template, url, children = raw["template"], raw["url"], raw["children"]
    if not isinstance(template, str) or not isinstance(url, str):
        raise SnapshotFormatError(f"{path}: 'template' and 'url' must be strings")
    if not isinstance(children, list):
        raise SnapshotFormatError(f"{path}: 'children' must be a list")

    return TaskNode(template=template, url=url, state=state)


def copy_tree(root: Node) -> TaskNode:
    """深拷贝节点树。"""
    return from_dict(to_dict(root))


def _encode(value: Any) -> str:
    return orjson.dumps(value, default=to_jsonable, option=orjson.OPT_NON_STR_KEYS).decode("utf-8")


def dumps(root: Node) -> str:
    """将节点树编码为JSON文本。

    逐个节点拼接输出，树的深度不受 orjson 嵌套层数限制。

    数据内容的编码是有损的，``loads(dumps(tree))`` 只对纯 JSON 数据（str、int、float、bool、
    None 以及由它们组成的 list / str 键 dict）保证还原：

    - 非字符串的 dict 键被转换为字符串
    - orjson 无法直接编码的值先经过 ``to_jsonable`` 转换，例如 set 变为 list、
      bytes 变为字符串，无法识别的对象变为 ``str(obj)``
    - datetime / dataclass 等由 orjson 直接编码的值解码后为字符串或 dict

    需要无损保存任意数据时请使用 ``snapshot()`` 返回的节点或 ``to_dict``。
    """
    parts: list[str] = []
    stack: list[Node | str] = [root]

    while stack:
        item = stack.pop()
        if isinstance(item, str):
            parts.append(item)
            continue

        if isinstance(item, DataNode):
            parts.append(f'{{"kind":"data","data":{_encode(item.data)}}}')
            continue

        if not isinstance(item, TaskNode):
            raise SnapshotFormatError(f"Unknown node type: {type(item).__name__}")

        parts.append(
            f'{{"kind":"task","state":{_encode(TaskState(item.state).value)},'
            f'"template":{_encode(item.template)},"url":{_encode(item.url)},"children":['
        )
        stack.append("]}")
        for i in range(len(item.children) - 1, -1, -1):
            stack.append(item.children[i])
            if i > 0:
                stack.append(",")

    return "".join(parts)


def loads(text: str | bytes) -> TaskNode:
    """从JSON文本解码节点树。"""
    try:
        obj = orjson.loads(text)
    except orjson.JSONDecodeError as e:
        raise SnapshotFormatError(f"Snapshot is not valid JSON: {e}") from e
    return from_dict(obj)
