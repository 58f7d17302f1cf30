"""Dotted-path access into FHIR JSON.

``"subject"`` addresses ``resource["subject"]``; ``"performer.0"`` indexes a
list; an empty segment (``"contained..subject"``) is a wildcard over the list
at that point and yields one value per element.
"""

from __future__ import annotations

from typing import Any


def _step(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    if isinstance(node, list) and key.isdigit():
        index = int(key)
        return node[index] if index < len(node) else None
    return None


def get_path(obj: Any, path: str = "") -> Any:
    path = path.strip()
    if not path:
        return obj
    segments = path.split(".")
    result = obj
    while result is not None and segments:
        key = segments.pop(0)
        if not key and isinstance(result, list):
            rest = ".".join(segments)
            return [get_path(item, rest) for item in result]
        result = _step(result, key)
    return result


def set_path(obj: Any, path: str, value: Any) -> Any:
    """Assign ``value`` at ``path`` if every parent exists. Returns ``obj``."""
    segments = path.strip().split(".")
    parent = obj
    for key in segments[:-1]:
        parent = _step(parent, key)
        if parent is None:
            return obj
    last = segments[-1]
    if isinstance(parent, dict):
        parent[last] = value
    elif isinstance(parent, list) and last.isdigit() and int(last) < len(parent):
        parent[int(last)] = value
    return obj


def path_depth(path: str) -> int:
    return len(path.split("."))
