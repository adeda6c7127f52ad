"""Document store interface: an async key/value tree addressed by slash paths."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol


def split_path(path: str) -> List[str]:
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments:
        raise ValueError("Document path cannot be empty.")
    return segments


def join_path(*segments: str) -> str:
    return "/".join(segment.strip("/") for segment in segments if segment and segment.strip("/"))


def descend(value: Any, segments: List[str]) -> Any:
    """Walk ``segments`` into a nested dict/list value; None when any step is missing."""
    current = value
    for segment in segments:
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return None
        if current is None:
            return None
    return current


def prune_tree(value: Any) -> Any:
    """Drop nulls and empty containers the way the hosted tree does."""
    if isinstance(value, Mapping):
        pruned = {str(key): prune_tree(child) for key, child in value.items()}
        pruned = {key: child for key, child in pruned.items() if child is not None}
        return pruned or None
    if isinstance(value, (list, tuple)):
        items = [prune_tree(child) for child in value]
        if all(child is None for child in items):
            return None
        return items
    return value


def write_into(node: Any, segments: List[str], value: Any) -> Any:
    """Return ``node`` with ``value`` placed at ``segments``; None when the result is empty."""
    if not segments:
        return value
    head, rest = segments[0], segments[1:]
    if isinstance(node, list):
        if head.isdigit() and int(head) < len(node):
            items = list(node)
            items[int(head)] = write_into(items[int(head)], rest, value)
            return None if all(item is None for item in items) else items
        # a non-index key turns the array into a keyed map
        node = {str(index): item for index, item in enumerate(node) if item is not None}
    children: Dict[str, Any] = dict(node) if isinstance(node, dict) else {}
    child = write_into(children.get(head), rest, value)
    if child is None:
        children.pop(head, None)
    else:
        children[head] = child
    return children or None


class DocumentStore(Protocol):
    """Read/write surface of the hosted document tree.

    ``set`` with ``None`` deletes the subtree. ``update`` writes each child of
    ``fields`` under ``path`` without touching siblings.
    """

    async def get(self, path: str) -> Optional[Any]:  # pragma: no cover - protocol definition
        ...

    async def set(self, path: str, value: Any) -> None:  # pragma: no cover - protocol definition
        ...

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:  # pragma: no cover - protocol definition
        ...

    async def exists(self, path: str) -> bool:  # pragma: no cover - protocol definition
        ...


__all__ = ["DocumentStore", "descend", "join_path", "prune_tree", "split_path", "write_into"]
