"""Reshape raw store values into canonical records.

Child collections may be stored as arrays or as keyed maps, legacy writers
used French field names, and some maps carry stray boolean flags next to the
records. Everything is folded into one ordered-list representation here, at
the boundary, so nothing downstream has to branch on the stored shape.

All functions are pure and idempotent: feeding a normalized record (or its
stored document) back in yields an equal record.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from pydantic import BaseModel

from .errors import MalformedRecordError
from .models import (
    Course,
    Document,
    Enrollment,
    Evaluation,
    GenericRecord,
    Module,
    ModuleProgress,
    ProgressRecord,
    Resource,
    User,
    UserRole,
)
from .paths import EntityType, coerce_entity_type

logger = logging.getLogger(__name__)

DEFAULT_COURSE_TITLE = "Cours sans titre"
DEFAULT_MODULE_TITLE = "Module sans titre"
DEFAULT_RESOURCE_TITLE = "Ressource sans titre"
DEFAULT_EVALUATION_TITLE = "Évaluation sans titre"
DEFAULT_RESOURCE_TYPE = "document"
DEFAULT_EVALUATION_TYPE = "quiz"
DEFAULT_STATUS = "active"

TITLE_ALIASES = ("title", "titre")
DESCRIPTION_ALIASES = ("description",)
DURATION_ALIASES = ("duration", "duree")
ORDER_ALIASES = ("order", "ordre")
RESOURCES_ALIASES = ("resources", "ressources")
EVALUATIONS_ALIASES = ("evaluations",)
MODULES_ALIASES = ("modules", "Modules")
SPECIALTY_ALIASES = ("specialtyId", "specialiteId")
ROLE_ALIASES = ("role", "userType")

# Scalar fields of a progress record; any other mapping-valued key is a module entry.
PROGRESS_METADATA_KEYS = frozenset(
    {
        "courseId",
        "userId",
        "startDate",
        "progress",
        "completed",
        "lastUpdated",
        "details",
        "score",
        "modules",
    }
)

_ROLE_SYNONYMS = {
    "admin": UserRole.ADMIN,
    "administrateur": UserRole.ADMIN,
    "instructor": UserRole.INSTRUCTOR,
    "formateur": UserRole.INSTRUCTOR,
    "teacher": UserRole.INSTRUCTOR,
    "student": UserRole.STUDENT,
    "apprenant": UserRole.STUDENT,
    "learner": UserRole.STUDENT,
}

RawValue = Union[None, Mapping[str, Any], Sequence[Any], BaseModel, Any]


def _as_dict(raw: RawValue) -> Dict[str, Any]:
    if isinstance(raw, Document):
        return raw.to_document()
    if isinstance(raw, BaseModel):
        return raw.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(raw, Mapping):
        return dict(raw)
    raise MalformedRecordError(f"Expected a mapping record, got {type(raw).__name__}")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _take(data: Dict[str, Any], aliases: Iterable[str]) -> Any:
    """Pop every alias from ``data`` and return the first non-blank value by priority."""
    chosen = None
    for alias in aliases:
        value = data.pop(alias, None)
        if chosen is None and not _is_blank(value):
            chosen = value
    return chosen


def finite_number(value: Any) -> Optional[Union[int, float]]:
    """Return ``value`` when it is a finite int/float (booleans excluded), else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _order_value(child: Mapping[str, Any]) -> float:
    for alias in ORDER_ALIASES:
        value = finite_number(child.get(alias))
        if value is not None:
            return float(value)
    return 0.0


def _child_document(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, BaseModel):
        return _as_dict(value)
    if isinstance(value, Mapping):
        return dict(value)
    # array holes, stray inclusion flags and scalars are not records
    return None


def normalize_children(raw: RawValue) -> List[Dict[str, Any]]:
    """Fold an array, keyed map or absent value into an ordered list of child dicts.

    Array elements keep their position as id when they do not declare one; map
    keys become the id unless the child declares one. Non-record entries are
    dropped. Each id appears once: the entry stored under its own id wins,
    otherwise the first one seen. The result is stably sorted by ``order``.
    """
    if isinstance(raw, Mapping):
        entries = [(str(key), value) for key, value in raw.items()]
    elif isinstance(raw, (list, tuple)):
        entries = [(str(index), value) for index, value in enumerate(raw)]
    else:
        return []

    children: Dict[str, Dict[str, Any]] = {}
    keyed_by_id: Set[str] = set()
    for key, value in entries:
        child = _child_document(value)
        if child is None:
            continue
        declared = child.get("id")
        item_id = key if _is_blank(declared) else str(declared)
        child["id"] = item_id
        if item_id in children and (item_id in keyed_by_id or key != item_id):
            continue
        children[item_id] = child
        if key == item_id:
            keyed_by_id.add(item_id)
    return sorted(children.values(), key=_order_value)


def _order(data: Dict[str, Any]) -> Union[int, float]:
    value = finite_number(_take(data, ORDER_ALIASES))
    return 0 if value is None else value


def normalize_resource(raw: RawValue, resource_id: Optional[str] = None) -> Resource:
    data = _as_dict(raw)
    data["id"] = str(resource_id or data.get("id") or "")
    data["title"] = _take(data, TITLE_ALIASES) or DEFAULT_RESOURCE_TITLE
    data["description"] = _take(data, DESCRIPTION_ALIASES) or ""
    data["type"] = data.get("type") or DEFAULT_RESOURCE_TYPE
    data["duration"] = finite_number(_take(data, DURATION_ALIASES))
    data["order"] = _order(data)
    if not data["id"]:
        raise MalformedRecordError("Resource record has no id")
    return Resource.model_validate(data)


def normalize_evaluation(raw: RawValue, evaluation_id: Optional[str] = None) -> Evaluation:
    data = _as_dict(raw)
    data["id"] = str(evaluation_id or data.get("id") or "")
    data["title"] = _take(data, TITLE_ALIASES) or DEFAULT_EVALUATION_TITLE
    data["description"] = _take(data, DESCRIPTION_ALIASES) or ""
    data["type"] = data.get("type") or DEFAULT_EVALUATION_TYPE
    questions = data.get("questions")
    if isinstance(questions, Mapping):
        data["questions"] = list(questions.values())
    elif not isinstance(questions, list):
        data["questions"] = []
    data["maxScore"] = finite_number(data.pop("maxScore", None))
    data["order"] = _order(data)
    if not data["id"]:
        raise MalformedRecordError("Evaluation record has no id")
    return Evaluation.model_validate(data)


def normalize_module(raw: RawValue, course_id: Optional[str] = None, module_id: Optional[str] = None) -> Module:
    data = _as_dict(raw)
    data["id"] = str(module_id or data.get("id") or "")
    if not data["id"]:
        raise MalformedRecordError("Module record has no id")
    data["courseId"] = course_id or data.get("courseId")
    data["title"] = _take(data, TITLE_ALIASES) or DEFAULT_MODULE_TITLE
    data["description"] = _take(data, DESCRIPTION_ALIASES) or ""
    data["duration"] = finite_number(_take(data, DURATION_ALIASES))
    data["order"] = _order(data)
    data["status"] = data.get("status") or DEFAULT_STATUS
    data["resources"] = [normalize_resource(child) for child in normalize_children(_take(data, RESOURCES_ALIASES))]
    data["evaluations"] = [
        normalize_evaluation(child) for child in normalize_children(_take(data, EVALUATIONS_ALIASES))
    ]
    data["score"] = finite_number(data.get("score"))
    data["progress"] = finite_number(data.get("progress"))
    completed = data.get("completed")
    data["completed"] = completed if isinstance(completed, bool) else None
    return Module.model_validate(data)


def normalize_course(raw: RawValue, course_id: Optional[str] = None) -> Course:
    data = _as_dict(raw)
    data["id"] = str(course_id or data.get("id") or "")
    if not data["id"]:
        raise MalformedRecordError("Course record has no id")
    data["title"] = _take(data, TITLE_ALIASES) or DEFAULT_COURSE_TITLE
    data["description"] = _take(data, DESCRIPTION_ALIASES) or ""
    data["specialtyId"] = _take(data, SPECIALTY_ALIASES)
    data["status"] = data.get("status") or DEFAULT_STATUS
    data["modules"] = [
        normalize_module(child, course_id=data["id"]) for child in normalize_children(_take(data, MODULES_ALIASES))
    ]
    return Course.model_validate(data)


def coerce_role(value: Any) -> Optional[UserRole]:
    if isinstance(value, UserRole):
        return value
    if isinstance(value, str):
        return _ROLE_SYNONYMS.get(value.strip().lower())
    return None


def normalize_user(raw: RawValue, user_id: Optional[str] = None) -> User:
    data = _as_dict(raw)
    data["id"] = str(user_id or data.get("id") or "")
    if not data["id"]:
        raise MalformedRecordError("User record has no id")
    role_value = _take(data, ROLE_ALIASES)
    role = coerce_role(role_value)
    if role is None and role_value is not None:
        logger.warning("Dropping unrecognised role %r for user %s", role_value, data["id"])
    data["role"] = role
    return User.model_validate(data)


def normalize_enrollment(raw: RawValue, user_id: str, course_id: str) -> Enrollment:
    # legacy indexes sometimes stored a bare ``true`` per enrolled course
    data = {} if isinstance(raw, bool) else _as_dict(raw)
    data.pop("id", None)
    data["userId"] = user_id
    data["courseId"] = course_id
    data["status"] = data.get("status") or DEFAULT_STATUS
    progress = finite_number(data.get("progress"))
    data["progress"] = 0 if progress is None else progress
    return Enrollment.model_validate(data)


def normalize_module_progress(raw: RawValue, module_id: Optional[str] = None) -> ModuleProgress:
    data = _as_dict(raw)
    declared = data.pop("id", None)
    data["moduleId"] = str(module_id or data.get("moduleId") or declared or "")
    if not data["moduleId"]:
        raise MalformedRecordError("Module progress entry has no module id")
    data["completed"] = data.get("completed") is True or data.get("status") == "completed"
    data["score"] = finite_number(data.get("score"))
    data["progress"] = finite_number(data.get("progress"))
    return ModuleProgress.model_validate(data)


def normalize_progress(raw: RawValue, user_id: str, course_id: str) -> ProgressRecord:
    """Build a ProgressRecord, lifting module entries into the explicit ``modules`` map.

    Older writers stored module entries as siblings of the scalar fields, so
    any mapping-valued key outside ``PROGRESS_METADATA_KEYS`` is read as a
    module entry. This is the only place that key set is consulted.
    """
    data = _as_dict(raw)
    # listings attach the course id as ``id``; the record is keyed by courseId
    data.pop("id", None)
    modules: Dict[str, ModuleProgress] = {}
    for child in normalize_children(data.pop("modules", None)):
        entry = normalize_module_progress(child, module_id=child.get("moduleId") or child["id"])
        modules[entry.module_id] = entry
    for key in list(data):
        if key in PROGRESS_METADATA_KEYS:
            continue
        value = data[key]
        if isinstance(value, Mapping):
            entry = normalize_module_progress(value, module_id=key)
            modules.setdefault(entry.module_id, entry)
            del data[key]
    data["userId"] = user_id
    data["courseId"] = course_id
    progress = finite_number(data.get("progress"))
    data["progress"] = 0 if progress is None else progress
    data["completed"] = data.get("completed") is True
    data["score"] = finite_number(data.get("score"))
    details = data.get("details")
    data["details"] = dict(details) if isinstance(details, Mapping) else None
    data["modules"] = modules
    return ProgressRecord.model_validate(data)


def normalize_generic(raw: RawValue, record_id: Optional[str] = None) -> GenericRecord:
    data = _as_dict(raw)
    if record_id:
        data["id"] = record_id
    return GenericRecord.model_validate(data)


def normalize_record(entity_type: Union[EntityType, str], raw: RawValue, keys: Sequence[str]) -> Document:
    """Dispatch to the record normalizer for ``entity_type`` using its key tuple."""
    kind = coerce_entity_type(entity_type)
    if kind is EntityType.USER:
        return normalize_user(raw, keys[0])
    if kind is EntityType.COURSE:
        return normalize_course(raw, keys[0])
    if kind is EntityType.MODULE:
        return normalize_module(raw, course_id=keys[0], module_id=keys[1])
    if kind is EntityType.RESOURCE:
        return normalize_resource(raw, keys[2])
    if kind is EntityType.EVALUATION:
        return normalize_evaluation(raw, keys[2])
    if kind is EntityType.ENROLLMENT:
        return normalize_enrollment(raw, keys[0], keys[1])
    if kind is EntityType.PROGRESS:
        return normalize_progress(raw, keys[0], keys[1])
    return normalize_generic(raw, keys[-1])


__all__ = [
    "DEFAULT_COURSE_TITLE",
    "DEFAULT_EVALUATION_TITLE",
    "DEFAULT_MODULE_TITLE",
    "DEFAULT_RESOURCE_TITLE",
    "PROGRESS_METADATA_KEYS",
    "coerce_role",
    "finite_number",
    "normalize_children",
    "normalize_course",
    "normalize_enrollment",
    "normalize_evaluation",
    "normalize_generic",
    "normalize_module",
    "normalize_module_progress",
    "normalize_progress",
    "normalize_record",
    "normalize_resource",
    "normalize_user",
]
