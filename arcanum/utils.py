"""Dot-path helpers shared by the engine, the response parser and the CLI."""

import re
from typing import Any, Mapping, MutableMapping

_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def split_path(path: str) -> list[str]:
    """Split ``tasks[0].status`` into ``["tasks", "0", "status"]``."""
    normalized = _INDEX_PATTERN.sub(r".\1", path)
    return [part for part in normalized.split(".") if part]


def resolve_path(data: Any, path: str) -> Any:
    """Read a dot-path out of nested mappings/lists, ``None`` when absent."""
    value = data
    for part in split_path(path):
        if isinstance(value, Mapping):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit():
            index = int(part)
            value = value[index] if index < len(value) else None
        else:
            return None
        if value is None:
            return None
    return value


def set_path(
    data: MutableMapping[str, Any],
    path: str,
    value: Any,
    operation: str = "set",
) -> None:
    """
    Write ``value`` at a dot-path, creating intermediate mappings.

    Args:
        data: Mapping to mutate in place
        path: Dot-path, list indices allowed (``tasks[0].status``)
        value: Value to write
        operation: "set", "append" (to a list) or "remove"
    """
    parts = split_path(path)
    if not parts:
        raise ValueError("Empty path")

    current: Any = data
    for part in parts[:-1]:
        if isinstance(current, list) and part.isdigit():
            current = current[int(part)]
            continue
        if current.get(part) is None:
            current[part] = {}
        current = current[part]

    last = parts[-1]
    if isinstance(current, list) and last.isdigit():
        index = int(last)
        if operation == "remove":
            del current[index]
        else:
            current[index] = value
        return

    if operation == "set":
        current[last] = value
    elif operation == "append":
        existing = current.get(last)
        if isinstance(existing, list):
            existing.append(value)
        else:
            current[last] = [value]
    elif operation == "remove":
        current.pop(last, None)
    else:
        raise ValueError(f"Unknown operation: {operation}")


def to_display_string(value: Any) -> str:
    """
    String form used for loose comparisons in gates.

    Matches the conventions of the JSON documents protocols are written in:
    booleans are lowercase, ``None`` is ``null`` and integral floats drop
    their fractional part.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
