"""Locate logical entities across the canonical and legacy trees.

Every lookup goes cache, canonical path, then the legacy candidates declared
in :mod:`elearning.paths`, in priority order. Records found outside the
canonical tree are normalized and copied back to their canonical path on a
best-effort basis; a failed copy is logged and the read still succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .cache import CacheBackend, EntityCache, cache_key, collection_key
from .errors import MalformedRecordError, MissingKeyError
from .models import CollectionResult, Document, ResolveResult
from .normalizer import finite_number, normalize_children, normalize_record
from .paths import Candidate, EntityType, PathRegistry, coerce_entity_type, get_registry
from .store import DocumentStore
from .telemetry import EventName, emit_event

logger = logging.getLogger(__name__)

EntityKind = Union[EntityType, str]

# stored as members of an embedded collection that may still be an array
_EMBEDDED_TYPES = frozenset({EntityType.MODULE, EntityType.RESOURCE, EntityType.EVALUATION})


def _copy_result(result: ResolveResult, source: Optional[str] = None) -> ResolveResult:
    return ResolveResult(
        data=result.data.model_copy(deep=True) if result.data is not None else None,
        provenance=list(result.provenance),
        found=result.found,
        source=source or result.source,
    )


def _copy_collection(result: CollectionResult) -> CollectionResult:
    return CollectionResult(
        items=[item.model_copy(deep=True) for item in result.items],
        provenance={item_id: list(paths) for item_id, paths in result.provenance.items()},
    )


def _find_member(raw: Any, member: str) -> Optional[Dict[str, Any]]:
    for child in normalize_children(raw):
        if child["id"] == member:
            return child
    return None


def _sort_key(record: Document) -> float:
    value = finite_number(getattr(record, "order", None))
    return float(value) if value is not None else 0.0


class EntityResolver:
    """Resolver bound to one store, cache and path registry."""

    def __init__(
        self,
        store: DocumentStore,
        cache: Optional[CacheBackend] = None,
        registry: Optional[PathRegistry] = None,
        *,
        write_back: bool = True,
    ) -> None:
        self.store = store
        self.cache: CacheBackend = cache if cache is not None else EntityCache()
        self.registry = registry or get_registry()
        self.write_back = write_back

    # single entities -----------------------------------------------------

    async def resolve(self, entity_type: EntityKind, keys: Sequence[Any]) -> ResolveResult:
        """Find one entity. Absence yields ``found=False``; bad keys raise MissingKeyError."""
        kind = coerce_entity_type(entity_type)
        key_tuple = tuple(self.registry.bind_keys(kind, keys).values())
        lookup_key = cache_key(kind, key_tuple)

        cached = self.cache.get(lookup_key)
        if cached is not None:
            return _copy_result(cached, source="cache")

        result = await self._resolve_uncached(kind, key_tuple)
        if result.found:
            self.cache.set(lookup_key, _copy_result(result))
        else:
            emit_event(EventName.ENTITY_RESOLVE_MISS, entity_type=kind, keys=key_tuple)
        return result

    async def resolve_many(self, entity_type: EntityKind, key_list: Iterable[Sequence[Any]]) -> List[ResolveResult]:
        kind = coerce_entity_type(entity_type)
        return list(await asyncio.gather(*(self.resolve(kind, keys) for keys in key_list)))

    async def _resolve_uncached(self, kind: EntityType, key_tuple: Tuple[str, ...]) -> ResolveResult:
        canonical = self.registry.canonical_path(kind, *key_tuple)
        raw = await self._read(canonical)
        if raw is not None:
            record = self._normalize(kind, raw, key_tuple, canonical)
            if record is not None:
                return ResolveResult(data=record, provenance=[canonical], found=True, source="canonical")

        first: Optional[Document] = None
        first_path = ""
        provenance: List[str] = []
        for candidate in self.registry.candidates(kind, *key_tuple):
            raw = await self._read_candidate(candidate)
            if raw is None:
                continue
            record = self._normalize(kind, raw, key_tuple, candidate.physical_path)
            if record is None:
                continue
            # later hits only contribute provenance
            provenance.append(candidate.physical_path)
            if first is None:
                first, first_path = record, candidate.physical_path

        if first is None:
            return await self._resolve_from_parent(kind, key_tuple)

        if self.write_back:
            await self._write_back(kind, key_tuple, first, first_path)
        return ResolveResult(data=first, provenance=provenance, found=True, source="legacy")

    async def _resolve_from_parent(self, kind: EntityType, key_tuple: Tuple[str, ...]) -> ResolveResult:
        parent = self.registry.layout(kind).parent
        if parent is None:
            return ResolveResult.missing()
        parent_type, field_name = parent
        parent_keys = key_tuple[: len(self.registry.layout(parent_type).key_names)]
        parent_result = await self.resolve(parent_type, parent_keys)
        if not parent_result.found or parent_result.data is None:
            return ResolveResult.missing()
        for child in getattr(parent_result.data, field_name, None) or []:
            if getattr(child, "id", None) != key_tuple[-1]:
                continue
            path = f"{parent_result.provenance[0]}/{field_name}/{key_tuple[-1]}"
            record = self._normalize(kind, child, key_tuple, path)
            if record is None:
                break
            if self.write_back and parent_result.source != "canonical":
                await self._write_back(kind, key_tuple, record, path)
            return ResolveResult(data=record, provenance=[path], found=True, source="parent")
        return ResolveResult.missing()

    # collections ---------------------------------------------------------

    async def resolve_collection(self, entity_type: EntityKind, *parent_keys: Any) -> CollectionResult:
        """All entities sharing ``parent_keys``, merged by id across every source collection.

        The canonical collection is read first, so its fields win for ids that
        also appear in legacy collections.
        """
        kind = coerce_entity_type(entity_type)
        canonical_collection = self.registry.collection_path(kind, *parent_keys)
        parent_tuple = tuple(str(key).strip() for key in parent_keys)
        listing_key = collection_key(kind, parent_tuple)
        cached = self.cache.get(listing_key)
        if cached is not None:
            return _copy_collection(cached)

        sources = [Candidate(path=canonical_collection)] + self.registry.legacy_collection_paths(kind, *parent_tuple)
        result, origins = await self._merge_sources(
            kind, sources, lambda item_id: self.registry.item_keys(kind, parent_tuple, item_id)
        )

        if self.write_back:
            # before the sibling write-backs below run concurrently
            try:
                await self._rekey_embedded_collection(kind, canonical_collection)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Rekeying %s by id failed: %s", canonical_collection, exc)
            pending = [
                self._write_back(kind, keys, record, physical)
                for record, (physical, keys) in zip(result.items, origins)
                if physical != self.registry.canonical_path(kind, *keys)
            ]
            if pending:
                await asyncio.gather(*pending)
        self.cache.set(listing_key, _copy_collection(result))
        return result

    async def resolve_index(self, entity_type: EntityKind, **owner_keys: Any) -> CollectionResult:
        """Read the mirror index owned by ``owner_keys`` (e.g. enrollments by course)."""
        kind = coerce_entity_type(entity_type)
        layout = self.registry.layout(kind)
        index_paths = self.registry.mirror_collection_paths(kind, **owner_keys)
        if not index_paths:
            raise MissingKeyError(f"{kind.value} has no index owned by {tuple(owner_keys)}")
        member_name = next(name for name in layout.key_names if name not in owner_keys)
        listing_key = collection_key(kind, tuple(str(value) for value in owner_keys.values()), index=member_name)
        cached = self.cache.get(listing_key)
        if cached is not None:
            return _copy_collection(cached)

        def keys_for(item_id: str) -> Tuple[str, ...]:
            bound = {name: str(value) for name, value in owner_keys.items()}
            bound[member_name] = item_id
            return tuple(bound[name] for name in layout.key_names)

        result, _ = await self._merge_sources(kind, [Candidate(path=path) for path in index_paths], keys_for)
        self.cache.set(listing_key, _copy_collection(result))
        return result

    async def _merge_sources(self, kind: EntityType, sources: List[Candidate], keys_for):
        raws = await asyncio.gather(*(self._read(source.path) for source in sources))
        records: Dict[str, Document] = {}
        provenance: Dict[str, List[str]] = {}
        origins: Dict[str, Tuple[str, Tuple[str, ...]]] = {}
        for source, raw in zip(sources, raws):
            for child in normalize_children(self._collection_entries(kind, raw)):
                item_id = child["id"]
                physical = f"{source.path}/{item_id}"
                if item_id in records:
                    if physical not in provenance[item_id]:
                        provenance[item_id].append(physical)
                    continue
                try:
                    keys = keys_for(item_id)
                    self.registry.bind_keys(kind, keys)
                except MissingKeyError as exc:
                    logger.warning("Skipping %s entry %r at %s: %s", kind.value, item_id, source.path, exc)
                    continue
                record = self._normalize(kind, {**child, **source.inject}, keys, physical)
                if record is None:
                    continue
                records[item_id] = record
                provenance[item_id] = [physical]
                origins[item_id] = (physical, keys)

        ordered = sorted(records, key=lambda item_id: _sort_key(records[item_id]))
        result = CollectionResult(
            items=[records[item_id] for item_id in ordered],
            provenance={item_id: provenance[item_id] for item_id in ordered},
        )
        return result, [origins[item_id] for item_id in ordered]

    @staticmethod
    def _collection_entries(kind: EntityType, raw: Any) -> Any:
        # enrollment indexes may hold a bare ``true`` per member
        if kind is EntityType.ENROLLMENT and isinstance(raw, Mapping):
            return {key: ({} if value is True else value) for key, value in raw.items()}
        return raw

    # writes --------------------------------------------------------------

    async def write(self, entity_type: EntityKind, keys: Sequence[Any], record: Union[Document, Mapping[str, Any]]) -> Document:
        """Normalize ``record`` and write it to the canonical path and every mirror."""
        kind = coerce_entity_type(entity_type)
        key_tuple = tuple(self.registry.bind_keys(kind, keys).values())
        normalized = normalize_record(kind, record, key_tuple)
        document = normalized.to_document()
        canonical = self.registry.canonical_path(kind, *key_tuple)
        await self._rekey_embedded_collection(kind, canonical.rsplit("/", 1)[0])
        paths = [canonical, *self.registry.mirror_paths(kind, *key_tuple)]
        await asyncio.gather(*(self.store.set(path, document) for path in paths))
        self.cache.invalidate_entity(kind, key_tuple)
        return normalized

    async def delete(self, entity_type: EntityKind, keys: Sequence[Any]) -> None:
        """Remove the canonical copy and mirrors. Legacy copies are left untouched."""
        kind = coerce_entity_type(entity_type)
        key_tuple = tuple(self.registry.bind_keys(kind, keys).values())
        paths = [self.registry.canonical_path(kind, *key_tuple), *self.registry.mirror_paths(kind, *key_tuple)]
        await asyncio.gather(*(self.store.set(path, None) for path in paths))
        self.cache.invalidate_entity(kind, key_tuple)

    async def _write_back(self, kind: EntityType, key_tuple: Tuple[str, ...], record: Document, source: str) -> bool:
        canonical = self.registry.canonical_path(kind, *key_tuple)
        try:
            document = record.to_document()
            await self._rekey_embedded_collection(kind, canonical.rsplit("/", 1)[0])
            for path in [canonical, *self.registry.mirror_paths(kind, *key_tuple)]:
                await self.store.set(path, document)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Write-back of %s %s from %s failed: %s", kind.value, key_tuple, source, exc)
            emit_event(
                EventName.ENTITY_WRITE_BACK,
                entity_type=kind,
                keys=key_tuple,
                source=source,
                status="failed",
                error=str(exc),
            )
            return False
        self.cache.invalidate_entity(kind, key_tuple)
        logger.debug("Copied %s %s from %s to %s", kind.value, key_tuple, source, canonical)
        emit_event(EventName.ENTITY_WRITE_BACK, entity_type=kind, keys=key_tuple, source=source, status="ok")
        return True

    async def _rekey_embedded_collection(self, kind: EntityType, collection: str) -> None:
        """Rewrite an array-form child collection as an id-keyed map.

        Writing a member id below an array would otherwise leave the index
        keys next to it and the stale element would shadow the new one.
        """
        if kind not in _EMBEDDED_TYPES:
            return
        raw = await self._read(collection)
        if not isinstance(raw, list):
            return
        children = {child["id"]: child for child in normalize_children(raw)}
        logger.debug("Rekeying array collection %s by id (%d children)", collection, len(children))
        await self.store.set(collection, children or None)

    # reads ---------------------------------------------------------------

    async def _read(self, path: str) -> Optional[Any]:
        try:
            return await self.store.get(path)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Read of %s failed, treating as a miss: %s", path, exc)
            return None

    async def _read_candidate(self, candidate: Candidate) -> Optional[Any]:
        raw = await self._read(candidate.path)
        if raw is None:
            return None
        if candidate.member is not None:
            raw = _find_member(raw, candidate.member)
            if raw is None:
                return None
        if candidate.inject and isinstance(raw, Mapping):
            raw = {**raw, **candidate.inject}
        return raw

    def _normalize(self, kind: EntityType, raw: Any, key_tuple: Tuple[str, ...], path: str) -> Optional[Document]:
        try:
            return normalize_record(kind, raw, key_tuple)
        except (MalformedRecordError, ValueError) as exc:
            logger.warning("Ignoring malformed %s record at %s: %s", kind.value, path, exc)
            return None


__all__ = ["EntityResolver"]
