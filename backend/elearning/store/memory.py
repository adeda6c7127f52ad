"""In-process document tree used for tests and the ``memory`` backend."""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping, Optional

from .base import descend, prune_tree, split_path, write_into


class MemoryDocumentStore:
    """Nested dict/list tree. Lists are addressable by numeric segments."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._root: Dict[str, Any] = (prune_tree(copy.deepcopy(data)) or {}) if data else {}

    async def get(self, path: str) -> Optional[Any]:
        return copy.deepcopy(descend(self._root, split_path(path)))

    async def set(self, path: str, value: Any) -> None:
        self._write(path, value)

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        for key, value in fields.items():
            self._write(f"{path.rstrip('/')}/{key}", value)

    async def exists(self, path: str) -> bool:
        return descend(self._root, split_path(path)) is not None

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._root)

    def _write(self, path: str, value: Any) -> None:
        segments = split_path(path)
        self._root = write_into(self._root, segments, prune_tree(copy.deepcopy(value))) or {}


__all__ = ["MemoryDocumentStore"]
