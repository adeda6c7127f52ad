"""Path templates for every entity, in the canonical and legacy trees.

The canonical tree lives under a lowercase root (``elearning``) and is the
only place new data is written. The legacy tree lives under a capitalized
root (``Elearning``) with French collection names and, for several entities,
a different structure altogether. Layouts are plain data: one entry per
entity type listing its canonical template, optional mirror templates and the
ordered legacy candidates the resolver falls back to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from string import Formatter
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from .config import get_settings
from .errors import MissingKeyError, UnknownEntityTypeError


class EntityType(str, Enum):
    USER = "user"
    COURSE = "course"
    MODULE = "module"
    RESOURCE = "resource"
    EVALUATION = "evaluation"
    ENROLLMENT = "enrollment"
    PROGRESS = "progress"
    SPECIALTY = "specialty"
    DISCIPLINE = "discipline"
    MESSAGE = "message"


class EntityDescriptor(NamedTuple):
    entity_type: EntityType
    keys: Tuple[str, ...]


@dataclass(frozen=True)
class PathCandidate:
    """A legacy location template.

    When ``member_key`` is set, ``template`` names a collection (array or map)
    and the record is the member whose key or ``id`` equals that key's value.
    ``inject`` holds fields forced onto records read from this location.
    """

    template: str
    member_key: Optional[str] = None
    inject: Tuple[Tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class EntityLayout:
    key_names: Tuple[str, ...]
    canonical: str
    legacy: Tuple[PathCandidate, ...] = ()
    mirrors: Tuple[str, ...] = ()
    # (parent entity type, field holding the embedded children)
    parent: Optional[Tuple[EntityType, str]] = None


@dataclass(frozen=True)
class Candidate:
    """A rendered candidate location ready to be read from the store."""

    path: str
    member: Optional[str] = None
    inject: Dict[str, Any] = field(default_factory=dict)

    @property
    def physical_path(self) -> str:
        if self.member is None:
            return self.path
        return f"{self.path}/{self.member}"


_MODULE = "{root}/courses/{courseId}/modules/{moduleId}"

LAYOUTS: Dict[EntityType, EntityLayout] = {
    EntityType.USER: EntityLayout(
        key_names=("userId",),
        canonical="{root}/users/{userId}",
        legacy=(
            PathCandidate("{legacy}/Administrateurs/{userId}", inject=(("role", "admin"),)),
            PathCandidate("{legacy}/Formateurs/{userId}", inject=(("role", "instructor"),)),
            PathCandidate("{legacy}/Apprenants/{userId}", inject=(("role", "student"),)),
            PathCandidate("{legacy}/Utilisateurs/{userId}"),
        ),
    ),
    EntityType.COURSE: EntityLayout(
        key_names=("courseId",),
        canonical="{root}/courses/{courseId}",
        legacy=(PathCandidate("{legacy}/Cours/{courseId}"),),
    ),
    EntityType.MODULE: EntityLayout(
        key_names=("courseId", "moduleId"),
        canonical=_MODULE,
        legacy=(
            # embedded in a course document before standalone collections
            PathCandidate("{root}/courses/{courseId}/modules", member_key="moduleId"),
            PathCandidate("{legacy}/Cours/{courseId}/modules", member_key="moduleId"),
            PathCandidate("{legacy}/Cours/{courseId}/Modules", member_key="moduleId"),
            PathCandidate("{root}/modules/{courseId}", member_key="moduleId"),
            PathCandidate("{legacy}/Modules/{courseId}", member_key="moduleId"),
        ),
    ),
    EntityType.RESOURCE: EntityLayout(
        key_names=("courseId", "moduleId", "resourceId"),
        canonical=_MODULE + "/resources/{resourceId}",
        legacy=(
            PathCandidate(_MODULE + "/resources", member_key="resourceId"),
            PathCandidate("{root}/resources/{courseId}/{moduleId}", member_key="resourceId"),
            PathCandidate("{legacy}/Resources/{courseId}/{moduleId}", member_key="resourceId"),
        ),
        parent=(EntityType.MODULE, "resources"),
    ),
    EntityType.EVALUATION: EntityLayout(
        key_names=("courseId", "moduleId", "evaluationId"),
        canonical=_MODULE + "/evaluations/{evaluationId}",
        legacy=(
            PathCandidate(_MODULE + "/evaluations", member_key="evaluationId"),
            PathCandidate("{root}/evaluations/{moduleId}", member_key="evaluationId"),
            PathCandidate("{legacy}/Evaluations/{moduleId}", member_key="evaluationId"),
        ),
        parent=(EntityType.MODULE, "evaluations"),
    ),
    EntityType.ENROLLMENT: EntityLayout(
        key_names=("userId", "courseId"),
        canonical="{root}/enrollments/byUser/{userId}/{courseId}",
        mirrors=("{root}/enrollments/byCourse/{courseId}/{userId}",),
        legacy=(PathCandidate("{legacy}/Inscriptions/{userId}/{courseId}"),),
    ),
    EntityType.PROGRESS: EntityLayout(
        key_names=("userId", "courseId"),
        canonical="{root}/progress/{userId}/{courseId}",
        legacy=(PathCandidate("{legacy}/Progression/{userId}/{courseId}"),),
    ),
    EntityType.SPECIALTY: EntityLayout(
        key_names=("specialtyId",),
        canonical="{root}/specialites/{specialtyId}",
        legacy=(PathCandidate("{legacy}/Formations/{specialtyId}"),),
    ),
    EntityType.DISCIPLINE: EntityLayout(
        key_names=("disciplineId",),
        canonical="{root}/disciplines/{disciplineId}",
        legacy=(PathCandidate("{legacy}/Disciplines/{disciplineId}"),),
    ),
    EntityType.MESSAGE: EntityLayout(
        key_names=("userId",),
        canonical="{root}/messages/{userId}",
        legacy=(PathCandidate("{legacy}/Messages/{userId}"),),
    ),
}


def coerce_entity_type(entity_type: Union[EntityType, str]) -> EntityType:
    if isinstance(entity_type, EntityType):
        return entity_type
    try:
        return EntityType(entity_type)
    except ValueError as exc:
        raise UnknownEntityTypeError(f"Unknown entity type: {entity_type!r}") from exc


def _placeholders(template: str) -> List[str]:
    return [name for _, name, _, _ in Formatter().parse(template) if name]


def _strip_last_segment(template: str, key_name: str) -> str:
    suffix = "/{" + key_name + "}"
    if not template.endswith(suffix):
        raise ValueError(f"Template {template!r} does not end with {suffix!r}")
    return template[: -len(suffix)]


class PathRegistry:
    """Pure path builders bound to a canonical and a legacy root."""

    def __init__(self, root: str = "elearning", legacy_root: str = "Elearning") -> None:
        self.root = root.strip("/")
        self.legacy_root = legacy_root.strip("/")

    def layout(self, entity_type: Union[EntityType, str]) -> EntityLayout:
        kind = coerce_entity_type(entity_type)
        layout = LAYOUTS.get(kind)
        if layout is None:
            raise UnknownEntityTypeError(f"No path layout registered for {kind.value!r}")
        return layout

    def bind_keys(self, entity_type: Union[EntityType, str], keys: Sequence[Any]) -> Dict[str, str]:
        """Map positional keys onto the layout's key names, rejecting blanks."""
        layout = self.layout(entity_type)
        return self._bind(layout.key_names, keys, entity_type)

    def canonical_path(self, entity_type: Union[EntityType, str], *keys: Any) -> str:
        layout = self.layout(entity_type)
        bound = self._bind(layout.key_names, keys, entity_type)
        return self._render(layout.canonical, bound)

    def mirror_paths(self, entity_type: Union[EntityType, str], *keys: Any) -> List[str]:
        layout = self.layout(entity_type)
        bound = self._bind(layout.key_names, keys, entity_type)
        return [self._render(template, bound) for template in layout.mirrors]

    def candidates(self, entity_type: Union[EntityType, str], *keys: Any) -> List[Candidate]:
        """Rendered legacy candidates in priority order."""
        layout = self.layout(entity_type)
        bound = self._bind(layout.key_names, keys, entity_type)
        rendered: List[Candidate] = []
        for candidate in layout.legacy:
            rendered.append(
                Candidate(
                    path=self._render(candidate.template, bound),
                    member=bound[candidate.member_key] if candidate.member_key else None,
                    inject=dict(candidate.inject),
                )
            )
        return rendered

    def legacy_paths(self, entity_type: Union[EntityType, str], *keys: Any) -> List[str]:
        return [candidate.physical_path for candidate in self.candidates(entity_type, *keys)]

    def collection_path(self, entity_type: Union[EntityType, str], *parent_keys: Any) -> str:
        """Canonical collection holding every entity that shares ``parent_keys``."""
        layout = self.layout(entity_type)
        parent_names = layout.key_names[:-1]
        bound = self._bind(parent_names, parent_keys, entity_type)
        template = _strip_last_segment(layout.canonical, layout.key_names[-1])
        return self._render(template, bound)

    def legacy_collection_paths(self, entity_type: Union[EntityType, str], *parent_keys: Any) -> List[Candidate]:
        """Legacy collections for ``parent_keys``, deduplicated against the canonical one."""
        layout = self.layout(entity_type)
        parent_names = layout.key_names[:-1]
        bound = self._bind(parent_names, parent_keys, entity_type)
        seen = {self.collection_path(entity_type, *parent_keys)}
        collections: List[Candidate] = []
        for candidate in layout.legacy:
            if candidate.member_key:
                template = candidate.template
            else:
                template = _strip_last_segment(candidate.template, layout.key_names[-1])
            if any(name not in bound and name not in ("root", "legacy") for name in _placeholders(template)):
                continue
            path = self._render(template, bound)
            if path in seen:
                continue
            seen.add(path)
            collections.append(Candidate(path=path, inject=dict(candidate.inject)))
        return collections

    def mirror_collection_paths(self, entity_type: Union[EntityType, str], **owner_keys: Any) -> List[str]:
        """Mirror collections owned by ``owner_keys``, e.g. ``courseId`` for the by-course index."""
        layout = self.layout(entity_type)
        paths: List[str] = []
        for template in layout.mirrors:
            names = [name for name in _placeholders(template) if name not in ("root", "legacy")]
            owners = names[:-1]
            if set(owners) != set(owner_keys):
                continue
            bound = self._bind(owners, [owner_keys[name] for name in owners], entity_type)
            paths.append(self._render(_strip_last_segment(template, names[-1]), bound))
        return paths

    def item_keys(self, entity_type: Union[EntityType, str], parent_keys: Sequence[Any], item_id: str) -> Tuple[str, ...]:
        return tuple(str(key) for key in parent_keys) + (str(item_id),)

    def _bind(self, names: Sequence[str], keys: Sequence[Any], entity_type: Union[EntityType, str]) -> Dict[str, str]:
        if len(keys) != len(names):
            raise MissingKeyError(
                f"{coerce_entity_type(entity_type).value} expects keys {tuple(names)}, got {tuple(keys)!r}"
            )
        bound: Dict[str, str] = {}
        for name, value in zip(names, keys):
            text = "" if value is None else str(value).strip()
            if not text:
                raise MissingKeyError(f"Missing required key '{name}' for {coerce_entity_type(entity_type).value}")
            if "/" in text:
                raise MissingKeyError(f"Key '{name}' cannot contain '/': {text!r}")
            bound[name] = text
        return bound

    def _render(self, template: str, bound: Mapping[str, str]) -> str:
        return template.format(root=self.root, legacy=self.legacy_root, **bound)


@lru_cache
def get_registry() -> PathRegistry:
    settings = get_settings()
    return PathRegistry(settings.root_namespace, settings.legacy_namespace)


def canonical_path(entity_type: Union[EntityType, str], *keys: Any) -> str:
    return get_registry().canonical_path(entity_type, *keys)


def legacy_paths(entity_type: Union[EntityType, str], *keys: Any) -> List[str]:
    return get_registry().legacy_paths(entity_type, *keys)


__all__ = [
    "Candidate",
    "EntityDescriptor",
    "EntityLayout",
    "EntityType",
    "LAYOUTS",
    "PathCandidate",
    "PathRegistry",
    "canonical_path",
    "coerce_entity_type",
    "get_registry",
    "legacy_paths",
]
