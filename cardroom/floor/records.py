"""Conversion of floor dataclasses to plain dictionaries."""
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable


def plain(value: Any, iso_dates: bool = True) -> Any:
    """Convert a value to JSON-compatible primitives.

    Args:
        value: Enum, dataclass, datetime, container or primitive.
        iso_dates: Render datetimes as ISO strings (API) or keep them (database).
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat() if iso_dates else value
    if is_dataclass(value) and not isinstance(value, type):
        return record_values(value, iso_dates=iso_dates)
    if isinstance(value, dict):
        return {str(k): plain(v, iso_dates) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain(v, iso_dates) for v in value]
    return value


def record_values(obj: Any, iso_dates: bool = False, exclude: Iterable[str] = ()) -> dict:
    """Flatten a dataclass into a column -> value mapping.

    Nested dataclasses and dicts are kept as JSON-compatible structures so
    they can be stored in jsonb columns.
    """
    skip = set(exclude)
    result = {}
    for f in fields(obj):
        if f.name in skip:
            continue
        value = getattr(obj, f.name)
        if is_dataclass(value) or isinstance(value, (dict, list)):
            # nested structures always serialise dates as strings
            result[f.name] = plain(value, iso_dates=True)
        else:
            result[f.name] = plain(value, iso_dates=iso_dates)
    return result


def parse_datetime(value: Any) -> Any:
    """Accept datetimes or ISO strings from jsonb payloads."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
