"""Simple in-memory TTL cache for resolved entities."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from ..paths import EntityType, coerce_entity_type

CacheKey = Tuple[Hashable, ...]


def cache_key(entity_type: Union[EntityType, str], keys: Sequence[Any], **variant: Any) -> CacheKey:
    """Deterministic key for an entity lookup; variant flags are sorted by name."""
    kind = coerce_entity_type(entity_type)
    flags = tuple(sorted((name, value) for name, value in variant.items()))
    return (kind.value, tuple(str(key) for key in keys), flags)


def collection_key(entity_type: Union[EntityType, str], parent_keys: Sequence[Any], **variant: Any) -> CacheKey:
    kind = coerce_entity_type(entity_type)
    return cache_key(kind, parent_keys, collection=True, **variant)


def related_entities(entity_type: Union[EntityType, str], keys: Sequence[Any]) -> List[Tuple[EntityType, Tuple[str, ...]]]:
    """Entities whose cached views embed ``(entity_type, keys)``."""
    kind = coerce_entity_type(entity_type)
    keys = tuple(str(key) for key in keys)
    related: List[Tuple[EntityType, Tuple[str, ...]]] = [(kind, keys)]
    if kind is EntityType.MODULE:
        related.append((EntityType.COURSE, keys[:1]))
    elif kind in (EntityType.RESOURCE, EntityType.EVALUATION):
        related.append((EntityType.MODULE, keys[:2]))
        related.append((EntityType.COURSE, keys[:1]))
    elif kind is EntityType.ENROLLMENT:
        # the course-side index is keyed (courseId, userId)
        related.append((EntityType.ENROLLMENT, (keys[1], keys[0])))
    return related


class CacheBackend(Protocol):
    """Interface the resolver relies on; any last-write-wins store will do."""

    def get(self, key: CacheKey) -> Optional[Any]:  # pragma: no cover - protocol definition
        ...

    def set(self, key: CacheKey, value: Any) -> None:  # pragma: no cover - protocol definition
        ...

    def invalidate(self, key: CacheKey) -> None:  # pragma: no cover - protocol definition
        ...

    def invalidate_entity(self, entity_type: Union[EntityType, str], keys: Sequence[Any]) -> None:  # pragma: no cover
        ...

    def clear(self) -> None:  # pragma: no cover - protocol definition
        ...


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


def _copy(value: Any) -> Any:
    if hasattr(value, "model_copy"):
        return value.model_copy(deep=True)
    return value


class EntityCache:
    """Process-local cache; values are disposable and never the source of truth."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, _CacheEntry] = {}

    def get(self, key: CacheKey) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return _copy(entry.value)

    def set(self, key: CacheKey, value: Any) -> None:
        self._entries[key] = _CacheEntry(value=_copy(value), expires_at=self._clock() + self._ttl)

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def invalidate_entity(self, entity_type: Union[EntityType, str], keys: Sequence[Any]) -> None:
        """Drop every variant of the entity, its parent listing and the views that embed it."""
        targets = set()
        for kind, entity_keys in related_entities(entity_type, keys):
            targets.add((kind.value, entity_keys))
            targets.add((kind.value, entity_keys[:-1]))
        for key in list(self._entries):
            if (key[0], key[1]) in targets:
                self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> Iterable[CacheKey]:
        return list(self._entries)


__all__ = [
    "CacheBackend",
    "CacheKey",
    "EntityCache",
    "cache_key",
    "collection_key",
    "related_entities",
]
