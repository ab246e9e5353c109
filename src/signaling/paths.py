"""Path and tree helpers shared by the signaling store backends.

Store values are JSON-like trees (dicts of dicts with scalar leaves) addressed by
slash-separated paths, the same shape the Realtime Database exposes.
"""

from __future__ import annotations

import copy
from typing import Any


def split_path(path: str) -> list[str]:
    return [part for part in path.strip("/").split("/") if part]


def join_path(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


def get_at(tree: Any, parts: list[str]) -> Any:
    node = tree
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def set_at(tree: dict[str, Any] | None, parts: list[str], value: Any) -> Any:
    """Return `tree` with `value` placed at `parts`.

    Setting ``None`` removes the key and prunes parents left empty, so an empty
    dict is never stored (the database has no notion of an empty node).
    """

    if not parts:
        return prune(copy.deepcopy(value))

    root = tree if isinstance(tree, dict) else {}
    node = root
    trail: list[tuple[dict[str, Any], str]] = []
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            if value is None:
                return root or None
            child = {}
            node[part] = child
        trail.append((node, part))
        node = child

    leaf = parts[-1]
    pruned = prune(copy.deepcopy(value))
    if pruned is None:
        node.pop(leaf, None)
    else:
        node[leaf] = pruned

    for parent, key in reversed(trail):
        if parent[key]:
            break
        del parent[key]

    return root or None


def prune(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned = {key: prune(item) for key, item in value.items()}
        cleaned = {key: item for key, item in cleaned.items() if item is not None}
        return cleaned or None
    return value


def filter_children(value: Any, order_by: str | None, equal_to: Any) -> Any:
    """Keep only children whose `order_by` field equals `equal_to`."""

    if order_by is None or not isinstance(value, dict):
        return value
    matched = {
        key: child
        for key, child in value.items()
        if isinstance(child, dict) and child.get(order_by) == equal_to
    }
    return matched or None
