from dataclasses import fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _is_jsonable(obj: Any) -> bool:
    return is_dataclass(obj) or isinstance(obj, (list, tuple, set, frozenset, dict, BaseModel, Enum, date))


def to_jsonable(obj: Any) -> Any:
    if obj is None or isinstance(obj, (bool, int, float, str)) and not isinstance(obj, Enum):
        return obj

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, (datetime, date)):
        return obj.isoformat()

    if isinstance(obj, BaseModel):
        return to_jsonable(obj.model_dump(mode="python"))

    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}

    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k.value if isinstance(k, Enum) else k)] = to_jsonable(v) if _is_jsonable(v) else v
        return out

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(v) if _is_jsonable(v) else v for v in obj]

    try:
        return str(obj)
    except Exception:
        return repr(obj)
