from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from elearning.cache import EntityCache
from elearning.catalog import Catalog
from elearning.paths import PathRegistry
from elearning.resolver import EntityResolver
from elearning.store import MemoryDocumentStore

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)

CANONICAL_COURSE = {
    "elearning": {
        "courses": {
            "c1": {
                "title": "Python",
                "modules": {
                    "m1": {"title": "A", "order": 1, "resources": {"r1": {"title": "Embedded", "order": 1}}},
                    "m2": {"title": "B", "order": 2},
                },
            }
        }
    }
}


def _catalog(data=None) -> tuple[Catalog, MemoryDocumentStore]:
    store = MemoryDocumentStore(data)
    resolver = EntityResolver(store, EntityCache(), PathRegistry())
    return Catalog(resolver, clock=lambda: NOW), store


def test_course_details_merge_modules_from_every_location() -> None:
    catalog, _ = _catalog(
        {
            "Elearning": {
                "Cours": {"c1": {"titre": "Python", "modules": {"m1": {"titre": "Intro", "score": 80, "completed": True, "ordre": 1}}}},
                "Modules": {"c1": {"m2": {"titre": "Suite", "score": 60, "ordre": 2}}},
            }
        }
    )
    detail = asyncio.run(catalog.fetch_course("c1"))

    assert detail is not None
    assert detail.provenance == ["Elearning/Cours/c1"]
    assert [module.id for module in detail.course.modules] == ["m1", "m2"]
    assert detail.stats.score == 70
    assert detail.stats.progress == 50
    assert detail.stats.completed is False
    assert detail.stats.total_modules == 2

    assert asyncio.run(catalog.fetch_course("missing")) is None


def test_module_progress_updates_recompute_the_course() -> None:
    catalog, store = _catalog(CANONICAL_COURSE)

    async def scenario():
        first = await catalog.update_module_progress("u1", "c1", "m1", completed=True, score=90)
        second = await catalog.update_module_progress("u1", "c1", "m2", status="completed", score=0)
        return first, second

    first, second = asyncio.run(scenario())

    assert (first.progress, first.score, first.completed) == (50, 90, False)
    assert (second.progress, second.score, second.completed) == (100, 45, True)
    stored = store.snapshot()["elearning"]["progress"]["u1"]["c1"]
    assert stored["details"] == {
        "totalModules": 2,
        "completedModules": 2,
        "moduleScores": {"m1": 90, "m2": 0},
    }
    assert stored["startDate"] == "2024-01-01T00:00:00.000Z"


def test_progress_is_only_created_on_request() -> None:
    catalog, _ = _catalog(CANONICAL_COURSE)
    assert asyncio.run(catalog.fetch_user_progress("u1", "c1")) is None

    record = asyncio.run(catalog.fetch_user_progress("u1", "c1", create_if_missing=True))
    assert sorted(record.modules) == ["m1", "m2"]
    assert all(entry.completed is False and entry.score is None for entry in record.modules.values())


def test_module_progress_starts_a_record_for_an_unknown_course() -> None:
    catalog, store = _catalog()
    record = asyncio.run(catalog.update_module_progress("u1", "c9", "m1", completed=True))

    assert record.course_id == "c9"
    assert sorted(record.modules) == ["m1"]
    assert record.modules["m1"].completed is True
    assert store.snapshot()["elearning"]["progress"]["u1"]["c9"]["startDate"] == "2024-01-01T00:00:00.000Z"


def test_enrollments_are_counted_from_the_course_index() -> None:
    catalog, _ = _catalog()

    async def scenario():
        first = await catalog.enroll_user("u1", "c1")
        again = await catalog.enroll_user("u1", "c1")
        await catalog.enroll_user("u2", "c1")
        counts = await catalog.count_enrollments(["c1", "c2"])
        return first, again, counts

    first, again, counts = asyncio.run(scenario())
    assert first.enrolled_at == 1704067200000
    assert again.enrolled_at == first.enrolled_at
    assert counts == {"c1": 2, "c2": 0}


def test_user_enrollments_can_carry_course_details() -> None:
    catalog, _ = _catalog({**CANONICAL_COURSE, "Elearning": {"Inscriptions": {"u1": {"c1": True, "c9": True}}}})
    details = asyncio.run(catalog.fetch_user_enrollments("u1", with_course_details=True))

    courses = {detail.enrollment.course_id: detail.course for detail in details}
    assert sorted(courses) == ["c1", "c9"]
    assert courses["c1"].title == "Python"
    assert courses["c9"] is None

    bare = asyncio.run(catalog.fetch_user_enrollments("u1"))
    assert all(detail.course is None for detail in bare)


def test_overall_progress_rolls_up_every_course() -> None:
    catalog, _ = _catalog(
        {"elearning": {"progress": {"u1": {"c1": {"progress": 100, "completed": True}, "c2": {"progress": 50}}}}}
    )
    summary = asyncio.run(catalog.user_overall_progress("u1"))
    assert summary.enrolled_courses == 2
    assert summary.completed_courses == 1
    assert summary.overall_progress == 75


def test_new_modules_are_appended_to_the_course() -> None:
    catalog, store = _catalog(CANONICAL_COURSE)

    async def scenario():
        module = await catalog.add_module_to_course("c1", {"title": "New"})
        listing = await catalog.fetch_course_modules("c1")
        return module, listing

    module, listing = asyncio.run(scenario())
    assert module.id.startswith("module_")
    assert module.order == 3
    assert listing.ids()[-1] == module.id
    assert store.snapshot()["elearning"]["courses"]["c1"]["modules"][module.id]["title"] == "New"


def test_module_children_are_merged_across_locations() -> None:
    catalog, _ = _catalog(
        {**CANONICAL_COURSE, "Elearning": {"Resources": {"c1": {"m1": {"r2": {"titre": "Legacy", "ordre": 2}}}}}}
    )

    async def scenario():
        fetched = await catalog.fetch_module("c1", "m1")
        added = await catalog.add_resource_to_module("c1", "m1", {"title": "Video", "type": "video"})
        return fetched, added

    fetched, added = asyncio.run(scenario())
    assert fetched.source == "canonical"
    assert [resource.id for resource in fetched.data.resources] == ["r1", "r2"]
    assert added.id.startswith("resource_")
    assert added.order == 3
    assert added.type == "video"
