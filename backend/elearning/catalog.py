"""Read/write operations the UI layer calls into.

Thin orchestration over :class:`~elearning.resolver.EntityResolver`: lookups
of independent entities are fanned out concurrently, derived statistics come
from :mod:`elearning.aggregation`, and every write targets canonical paths.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .aggregation import overall_progress as summarize_overall
from .aggregation import summarize_course, summarize_progress
from .models import (
    CollectionResult,
    Course,
    CourseStats,
    Enrollment,
    Evaluation,
    Module,
    ModuleProgress,
    OverallProgress,
    ProgressRecord,
    Resource,
    ResolveResult,
)
from .paths import EntityType
from .resolver import EntityResolver

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


class CourseDetail(BaseModel):
    course: Course
    stats: CourseStats
    provenance: List[str] = Field(default_factory=list)


class EnrollmentDetail(BaseModel):
    enrollment: Enrollment
    course: Optional[Course] = None


class Catalog:
    def __init__(self, resolver: EntityResolver, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self.resolver = resolver
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)

    def _now_iso(self) -> str:
        return self.clock().astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    # courses and modules -------------------------------------------------

    async def fetch_course(self, course_id: str, with_modules: bool = True) -> Optional[CourseDetail]:
        result = await self.resolver.resolve(EntityType.COURSE, (course_id,))
        if not result.found or not isinstance(result.data, Course):
            return None
        course = result.data
        if with_modules:
            modules = await self.fetch_course_modules(course_id)
            course = course.model_copy(update={"modules": list(modules.items)})
        return CourseDetail(course=course, stats=summarize_course(course.modules), provenance=result.provenance)

    async def fetch_course_modules(self, course_id: str) -> CollectionResult:
        return await self.resolver.resolve_collection(EntityType.MODULE, course_id)

    async def fetch_module(self, course_id: str, module_id: str) -> ResolveResult:
        """Module with its resources and evaluations merged from every known location."""
        result = await self.resolver.resolve(EntityType.MODULE, (course_id, module_id))
        if not result.found or result.data is None:
            return result
        resources, evaluations = await asyncio.gather(
            self.fetch_module_resources(course_id, module_id),
            self.fetch_module_evaluations(course_id, module_id),
        )
        result.data = result.data.model_copy(
            update={
                "resources": _merge_children(getattr(result.data, "resources", []), resources.items),
                "evaluations": _merge_children(getattr(result.data, "evaluations", []), evaluations.items),
            }
        )
        return result

    async def fetch_module_resources(self, course_id: str, module_id: str) -> CollectionResult:
        return await self.resolver.resolve_collection(EntityType.RESOURCE, course_id, module_id)

    async def fetch_module_evaluations(self, course_id: str, module_id: str) -> CollectionResult:
        return await self.resolver.resolve_collection(EntityType.EVALUATION, course_id, module_id)

    # users and enrollments -----------------------------------------------

    async def fetch_user(self, user_id: str) -> ResolveResult:
        return await self.resolver.resolve(EntityType.USER, (user_id,))

    async def fetch_user_enrollments(self, user_id: str, with_course_details: bool = False) -> List[EnrollmentDetail]:
        listing = await self.resolver.resolve_collection(EntityType.ENROLLMENT, user_id)
        enrollments = [item for item in listing.items if isinstance(item, Enrollment)]
        if not with_course_details:
            return [EnrollmentDetail(enrollment=enrollment) for enrollment in enrollments]
        courses = await self.resolver.resolve_many(
            EntityType.COURSE, [(enrollment.course_id,) for enrollment in enrollments]
        )
        return [
            EnrollmentDetail(enrollment=enrollment, course=course.data if course.found else None)
            for enrollment, course in zip(enrollments, courses)
        ]

    async def fetch_course_enrollments(self, course_id: str) -> CollectionResult:
        return await self.resolver.resolve_index(EntityType.ENROLLMENT, courseId=course_id)

    async def count_enrollments(self, course_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(course_ids)
        listings = await asyncio.gather(*(self.fetch_course_enrollments(course_id) for course_id in ids))
        return {course_id: len(listing.items) for course_id, listing in zip(ids, listings)}

    async def enroll_user(self, user_id: str, course_id: str) -> Enrollment:
        existing = await self.resolver.resolve(EntityType.ENROLLMENT, (user_id, course_id))
        if existing.found and isinstance(existing.data, Enrollment):
            return existing.data
        record = Enrollment(user_id=user_id, course_id=course_id, enrolled_at=self._now_ms())
        written = await self.resolver.write(EntityType.ENROLLMENT, (user_id, course_id), record)
        logger.info("Enrolled user %s in course %s", user_id, course_id)
        return written  # type: ignore[return-value]

    # progress ------------------------------------------------------------

    async def fetch_user_progress(
        self,
        user_id: str,
        course_id: str,
        create_if_missing: bool = False,
    ) -> Optional[ProgressRecord]:
        result = await self.resolver.resolve(EntityType.PROGRESS, (user_id, course_id))
        if result.found and isinstance(result.data, ProgressRecord):
            return result.data
        if not create_if_missing:
            return None
        return await self._start_progress(user_id, course_id)

    async def _start_progress(self, user_id: str, course_id: str) -> ProgressRecord:
        """Write a fresh record with every course module marked not completed."""
        modules = await self.fetch_course_modules(course_id)
        now = self._now_iso()
        record = ProgressRecord(
            user_id=user_id,
            course_id=course_id,
            start_date=now,
            last_updated=now,
            modules={
                module_id: ModuleProgress(module_id=module_id, completed=False, last_updated=now)
                for module_id in modules.ids()
            },
        )
        return await self.resolver.write(EntityType.PROGRESS, (user_id, course_id), record)  # type: ignore[return-value]

    async def update_module_progress(
        self,
        user_id: str,
        course_id: str,
        module_id: str,
        *,
        completed: Optional[bool] = None,
        score: Optional[float] = None,
        progress: Optional[float] = None,
        status: Optional[str] = None,
    ) -> ProgressRecord:
        """Record one module's progress and recompute the course-level fields."""
        record = await self.fetch_user_progress(user_id, course_id)
        if record is None:
            record = await self._start_progress(user_id, course_id)
        now = self._now_iso()
        entry = record.modules.get(module_id) or ModuleProgress(module_id=module_id)
        changes: Dict[str, Any] = {"last_updated": now}
        if completed is not None:
            changes["completed"] = completed
        if status is not None:
            changes["status"] = status
            if status == "completed":
                changes["completed"] = True
        if score is not None:
            changes["score"] = score
        if progress is not None:
            changes["progress"] = progress
        modules = dict(record.modules)
        modules[module_id] = entry.model_copy(update=changes)
        updated = summarize_progress(record.model_copy(update={"modules": modules, "last_updated": now}))
        return await self.resolver.write(EntityType.PROGRESS, (user_id, course_id), updated)  # type: ignore[return-value]

    async def user_overall_progress(self, user_id: str) -> OverallProgress:
        listing = await self.resolver.resolve_collection(EntityType.PROGRESS, user_id)
        return summarize_overall(listing.items)

    # authoring -----------------------------------------------------------

    async def add_module_to_course(self, course_id: str, module: Mapping[str, Any]) -> Module:
        existing = await self.fetch_course_modules(course_id)
        data = dict(module)
        module_id = str(data.get("id") or _new_id("module"))
        data.setdefault("order", len(existing.items) + 1)
        data.setdefault("createdAt", self._now_ms())
        data["updatedAt"] = self._now_ms()
        written = await self.resolver.write(EntityType.MODULE, (course_id, module_id), data)
        logger.info("Added module %s to course %s", module_id, course_id)
        return written  # type: ignore[return-value]

    async def add_resource_to_module(self, course_id: str, module_id: str, resource: Mapping[str, Any]) -> Resource:
        return await self._add_child(EntityType.RESOURCE, course_id, module_id, resource, "resource")  # type: ignore[return-value]

    async def add_evaluation_to_module(self, course_id: str, module_id: str, evaluation: Mapping[str, Any]) -> Evaluation:
        return await self._add_child(EntityType.EVALUATION, course_id, module_id, evaluation, "evaluation")  # type: ignore[return-value]

    async def _add_child(
        self,
        entity_type: EntityType,
        course_id: str,
        module_id: str,
        payload: Mapping[str, Any],
        prefix: str,
    ):
        parent = await self.resolver.resolve(EntityType.MODULE, (course_id, module_id))
        if not parent.found:
            logger.warning("Adding %s to module %s/%s which does not resolve yet", prefix, course_id, module_id)
        siblings = await self.resolver.resolve_collection(entity_type, course_id, module_id)
        data = dict(payload)
        child_id = str(data.get("id") or _new_id(prefix))
        data.setdefault("order", len(siblings.items) + 1)
        return await self.resolver.write(entity_type, (course_id, module_id, child_id), data)


def _merge_children(embedded: Iterable[Any], merged: Iterable[Any]) -> List[Any]:
    """Collection items first, then embedded children the collections did not see."""
    items = list(merged)
    seen = {getattr(item, "id", None) for item in items}
    items.extend(child for child in embedded if getattr(child, "id", None) not in seen)
    return items


__all__ = ["Catalog", "CourseDetail", "EnrollmentDetail"]
