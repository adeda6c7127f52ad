"""Course-level statistics derived from module collections.

Inputs may be arrays, keyed maps or absent, may contain stray boolean flags
next to the module records, and may hold pydantic models or raw dicts. They
are reduced to a list of module mappings before anything is computed. An
empty collection scores 0, progresses 0 and is never complete.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel

from .models import CourseStats, Number, OverallProgress, ProgressRecord
from .normalizer import finite_number

ModuleCollection = Union[None, Mapping[str, Any], Iterable[Any]]


class ScoreState(str, Enum):
    """A stored score is either absent, exactly zero, or a positive value."""

    UNSET = "unset"
    ZERO = "zero"
    POSITIVE = "positive"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_state(value: Any) -> ScoreState:
    number = finite_number(value)
    if number is None:
        return ScoreState.UNSET
    return ScoreState.ZERO if number == 0 else ScoreState.POSITIVE


def _as_mapping(entry: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(entry, BaseModel):
        return entry.model_dump(by_alias=True)
    if isinstance(entry, Mapping):
        return entry
    return None


def module_entries(modules: ModuleCollection) -> List[Mapping[str, Any]]:
    """Module records of ``modules`` with booleans, holes and scalars dropped."""
    if modules is None or isinstance(modules, (str, bytes, bool)):
        return []
    if isinstance(modules, Mapping):
        values: Iterable[Any] = modules.values()
    elif isinstance(modules, Iterable):
        values = modules
    else:
        return []
    entries: List[Mapping[str, Any]] = []
    for value in values:
        entry = _as_mapping(value)
        if entry is not None:
            entries.append(entry)
    return entries


def is_module_completed(module: Any) -> bool:
    entry = _as_mapping(module)
    if entry is None:
        return False
    return (
        entry.get("completed") is True
        or entry.get("status") == "completed"
        or finite_number(entry.get("progress")) == 100
    )


def calculate_course_score(modules: ModuleCollection) -> int:
    """Rounded mean of every finite module score; 0 when none is set."""
    scores = [finite_number(entry.get("score")) for entry in module_entries(modules)]
    scores = [score for score in scores if score is not None]
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))


def calculate_course_progress(modules: ModuleCollection) -> int:
    """Completed share of modules as a percentage.

    With nothing completed, falls back to the rounded mean of the modules'
    own ``progress`` values.
    """
    entries = module_entries(modules)
    if not entries:
        return 0
    completed = sum(1 for entry in entries if is_module_completed(entry))
    if completed == 0:
        progresses = [finite_number(entry.get("progress")) for entry in entries]
        progresses = [value for value in progresses if value is not None]
        if progresses:
            return round_half_up(sum(progresses) / len(progresses))
        return 0
    return round_half_up(completed / len(entries) * 100)


def is_course_completed(modules: ModuleCollection) -> bool:
    entries = module_entries(modules)
    if not entries:
        return False
    return all(is_module_completed(entry) for entry in entries)


def summarize_course(modules: ModuleCollection) -> CourseStats:
    entries = module_entries(modules)
    module_scores: Dict[str, Number] = {}
    for index, entry in enumerate(entries):
        score = finite_number(entry.get("score"))
        if score is not None:
            key = entry.get("id") or entry.get("moduleId") or str(index)
            module_scores[str(key)] = score
    return CourseStats(
        score=calculate_course_score(entries),
        progress=calculate_course_progress(entries),
        completed=is_course_completed(entries),
        total_modules=len(entries),
        completed_modules=sum(1 for entry in entries if is_module_completed(entry)),
        module_scores=module_scores,
    )


def summarize_progress(record: ProgressRecord) -> ProgressRecord:
    """Return ``record`` with its course-level fields recomputed from ``record.modules``.

    Only completed modules count towards the score. A zero score is a real
    score and is averaged in; an unset one is skipped.
    """
    modules = list(record.modules.values())
    total = len(modules)
    completed = [module for module in modules if is_module_completed(module)]
    scored = [module.score for module in completed if score_state(module.score) is not ScoreState.UNSET]
    module_scores = {
        module.module_id: module.score
        for module in modules
        if module.score is not None and score_state(module.score) is not ScoreState.UNSET
    }
    return record.model_copy(
        update={
            "progress": round_half_up(len(completed) / total * 100) if total else 0,
            "completed": total > 0 and len(completed) == total,
            "score": round_half_up(sum(scored) / len(scored)) if scored else 0,
            "details": {
                "totalModules": total,
                "completedModules": len(completed),
                "moduleScores": module_scores,
            },
        },
        deep=True,
    )


def overall_progress(records: Iterable[Union[ProgressRecord, Mapping[str, Any]]]) -> OverallProgress:
    """Roll per-course progress up to enrolled/completed counts and a mean percentage."""
    entries = [entry for entry in (_as_mapping(record) for record in records) if entry is not None]
    if not entries:
        return OverallProgress()
    progresses = [finite_number(entry.get("progress")) or 0 for entry in entries]
    return OverallProgress(
        enrolled_courses=len(entries),
        completed_courses=sum(1 for entry in entries if entry.get("completed") is True),
        overall_progress=round_half_up(sum(progresses) / len(entries)),
    )


__all__ = [
    "ScoreState",
    "calculate_course_progress",
    "calculate_course_score",
    "is_course_completed",
    "is_module_completed",
    "module_entries",
    "overall_progress",
    "round_half_up",
    "score_state",
    "summarize_course",
    "summarize_progress",
]
