"""Convert domain dataclasses into JSON-ready dicts for API and tool results"""

from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any


def to_jsonable(value: Any) -> Any:
    """
    Recursively convert dataclasses, enums, and datetimes.

    Keys ending in ``_cents`` get a sibling dollar value without the suffix
    so the chat service can quote amounts directly.
    """
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            out[key] = to_jsonable(item)
            if key.endswith("_cents") and isinstance(item, int):
                out[key[: -len("_cents")]] = item / 100
        return out
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value
