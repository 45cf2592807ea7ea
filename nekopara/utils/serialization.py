from dataclasses import fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _is_jsonable(obj: Any) -> bool:
    return is_dataclass(obj) or isinstance(obj, (list, tuple, set, frozenset, dict, BaseModel))


def to_jsonable(obj: Any) -> Any:
    """将爬取到的数据转换为可JSON编码的结构。

    dataclass、pydantic 模型、容器类型会被递归转换，其余无法识别的对象退化为字符串。
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    if isinstance(obj, Enum):
        return to_jsonable(obj.value)

    if isinstance(obj, (datetime, date)):
        return obj.isoformat()

    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")

    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}

    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = to_jsonable(v) if _is_jsonable(v) else v
        return out

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(v) if _is_jsonable(v) else v for v in obj]

    try:
        return str(obj)
    except Exception:
        return repr(obj)
