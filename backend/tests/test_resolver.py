from __future__ import annotations

import asyncio

import pytest

from elearning.aggregation import summarize_course
from elearning.cache import EntityCache
from elearning.errors import MissingKeyError, StoreError
from elearning.models import UserRole
from elearning.paths import EntityType, PathRegistry
from elearning.resolver import EntityResolver
from elearning.store import MemoryDocumentStore
from elearning.telemetry import clear_listeners, register_listener

LEGACY_COURSE = {"Elearning": {"Cours": {"c1": {"titre": "Python", "description": "Bases"}}}}

DUPLICATED_MODULE = {
    "Elearning": {
        "Cours": {"c1": {"titre": "Python", "modules": {"m1": {"titre": "Intro", "description": "Embedded"}}}},
        "Modules": {
            "c1": {
                "m1": {"titre": "Intro", "description": "Standalone"},
                "m2": {"titre": "Suite", "ordre": 2},
            }
        },
    }
}


def _resolver(store, **kwargs) -> EntityResolver:
    return EntityResolver(store, EntityCache(), PathRegistry(), **kwargs)


class _ReadOnlyStore(MemoryDocumentStore):
    async def set(self, path, value) -> None:
        raise StoreError(f"{path} is read-only")


class _FlakyCanonicalStore(MemoryDocumentStore):
    async def get(self, path):
        if path.startswith("elearning/"):
            raise StoreError("connection reset")
        return await super().get(path)


def test_legacy_record_is_copied_to_its_canonical_path() -> None:
    store = MemoryDocumentStore(LEGACY_COURSE)
    resolver = _resolver(store)

    result = asyncio.run(resolver.resolve(EntityType.COURSE, ["c1"]))
    assert result.found
    assert result.source == "legacy"
    assert result.provenance == ["Elearning/Cours/c1"]
    assert result.data.title == "Python"

    canonical = store.snapshot()["elearning"]["courses"]["c1"]
    assert canonical["title"] == "Python"
    assert canonical["description"] == "Bases"
    assert "titre" not in canonical
    # the legacy copy is left in place
    assert store.snapshot()["Elearning"]["Cours"]["c1"]["titre"] == "Python"

    again = asyncio.run(resolver.resolve(EntityType.COURSE, ["c1"]))
    assert again.source == "cache"

    fresh = asyncio.run(_resolver(store).resolve(EntityType.COURSE, ["c1"]))
    assert fresh.source == "canonical"
    assert fresh.provenance == ["elearning/courses/c1"]


def test_every_legacy_location_is_reported_and_the_first_wins() -> None:
    store = MemoryDocumentStore(DUPLICATED_MODULE)
    result = asyncio.run(_resolver(store).resolve(EntityType.MODULE, ["c1", "m1"]))

    assert result.provenance == ["Elearning/Cours/c1/modules/m1", "Elearning/Modules/c1/m1"]
    assert result.data.description == "Embedded"
    assert result.data.course_id == "c1"
    assert store.snapshot()["elearning"]["courses"]["c1"]["modules"]["m1"]["description"] == "Embedded"


def test_collections_merge_every_source_by_id() -> None:
    store = MemoryDocumentStore(DUPLICATED_MODULE)
    listing = asyncio.run(_resolver(store, write_back=False).resolve_collection(EntityType.MODULE, "c1"))

    assert listing.ids() == ["m1", "m2"]
    assert listing.items[0].description == "Embedded"
    assert listing.provenance == {
        "m1": ["Elearning/Cours/c1/modules/m1", "Elearning/Modules/c1/m1"],
        "m2": ["Elearning/Modules/c1/m2"],
    }
    assert "elearning" not in store.snapshot()


def test_collection_items_outside_the_canonical_tree_are_written_back() -> None:
    store = MemoryDocumentStore(DUPLICATED_MODULE)
    resolver = _resolver(store)
    asyncio.run(resolver.resolve_collection(EntityType.MODULE, "c1"))

    modules = store.snapshot()["elearning"]["courses"]["c1"]["modules"]
    assert sorted(modules) == ["m1", "m2"]
    assert modules["m2"]["order"] == 2

    listing = asyncio.run(_resolver(store).resolve_collection(EntityType.MODULE, "c1"))
    assert listing.provenance["m2"] == ["elearning/courses/c1/modules/m2", "Elearning/Modules/c1/m2"]


def test_failed_write_back_does_not_fail_the_read() -> None:
    events = []
    register_listener(events.append)
    try:
        store = _ReadOnlyStore(LEGACY_COURSE)
        result = asyncio.run(_resolver(store).resolve(EntityType.COURSE, ["c1"]))
    finally:
        clear_listeners()

    assert result.found
    assert result.data.title == "Python"
    write_backs = [event for event in events if event.name == "entity_write_back"]
    assert len(write_backs) == 1
    assert write_backs[0].payload["status"] == "failed"
    assert write_backs[0].payload["entity_type"] == "course"


def test_failed_reads_count_as_misses() -> None:
    store = _FlakyCanonicalStore(LEGACY_COURSE)
    result = asyncio.run(_resolver(store, write_back=False).resolve(EntityType.COURSE, ["c1"]))
    assert result.found
    assert result.source == "legacy"


def test_malformed_canonical_record_falls_through_to_legacy() -> None:
    store = MemoryDocumentStore({**LEGACY_COURSE, "elearning": {"courses": {"c1": "corrupted"}}})
    result = asyncio.run(_resolver(store, write_back=False).resolve(EntityType.COURSE, ["c1"]))
    assert result.source == "legacy"
    assert result.data.title == "Python"


def test_blank_keys_raise_instead_of_missing() -> None:
    resolver = _resolver(MemoryDocumentStore())
    with pytest.raises(MissingKeyError):
        asyncio.run(resolver.resolve(EntityType.MODULE, ["c1", " "]))


def test_absent_entities_are_not_found_and_not_cached() -> None:
    events = []
    register_listener(events.append)
    try:
        resolver = _resolver(MemoryDocumentStore())
        result = asyncio.run(resolver.resolve(EntityType.COURSE, ["nope"]))
    finally:
        clear_listeners()

    assert result.found is False
    assert result.data is None
    assert result.provenance == []
    assert list(resolver.cache.keys()) == []
    assert [event.name for event in events] == ["entity_resolve_miss"]


def test_role_collections_force_the_role() -> None:
    store = MemoryDocumentStore(
        {
            "Elearning": {
                "Formateurs": {"u1": {"firstName": "Ada", "role": "student"}},
                "Utilisateurs": {"u1": {"firstName": "Ada", "role": "student"}},
            }
        }
    )
    result = asyncio.run(_resolver(store, write_back=False).resolve(EntityType.USER, ["u1"]))
    assert result.data.role is UserRole.INSTRUCTOR
    assert result.provenance == ["Elearning/Formateurs/u1", "Elearning/Utilisateurs/u1"]


def test_children_fall_back_to_their_parent_module() -> None:
    store = MemoryDocumentStore(
        {
            "Elearning": {
                "Modules": {
                    "c1": [{"id": "m1", "titre": "Intro", "ressources": [{"id": "r1", "titre": "Slides"}]}],
                }
            }
        }
    )
    result = asyncio.run(_resolver(store, write_back=False).resolve(EntityType.RESOURCE, ["c1", "m1", "r1"]))
    assert result.found
    assert result.source == "parent"
    assert result.data.title == "Slides"
    assert result.provenance == ["Elearning/Modules/c1/m1/resources/r1"]

    missing = asyncio.run(_resolver(store, write_back=False).resolve(EntityType.RESOURCE, ["c1", "m1", "r9"]))
    assert missing.found is False


def test_resolve_many_keeps_input_order() -> None:
    resolver = _resolver(MemoryDocumentStore(LEGACY_COURSE), write_back=False)
    results = asyncio.run(resolver.resolve_many(EntityType.COURSE, [("c2",), ("c1",)]))
    assert [result.found for result in results] == [False, True]


def test_writes_fill_mirrors_and_invalidate_listings() -> None:
    store = MemoryDocumentStore()
    resolver = _resolver(store)

    async def scenario() -> None:
        assert (await resolver.resolve_collection(EntityType.ENROLLMENT, "u1")).items == []
        assert (await resolver.resolve_index(EntityType.ENROLLMENT, courseId="c1")).items == []

        await resolver.write(EntityType.ENROLLMENT, ("u1", "c1"), {"status": "active", "enrolledAt": 1})

        by_user = await resolver.resolve_collection(EntityType.ENROLLMENT, "u1")
        by_course = await resolver.resolve_index(EntityType.ENROLLMENT, courseId="c1")
        assert [item.course_id for item in by_user.items] == ["c1"]
        assert [item.user_id for item in by_course.items] == ["u1"]

    asyncio.run(scenario())
    snapshot = store.snapshot()["elearning"]["enrollments"]
    assert snapshot["byUser"]["u1"]["c1"] == snapshot["byCourse"]["c1"]["u1"]


def test_delete_leaves_legacy_copies_alone() -> None:
    store = MemoryDocumentStore(LEGACY_COURSE)
    resolver = _resolver(store)

    async def scenario() -> None:
        await resolver.resolve(EntityType.COURSE, ["c1"])
        assert await store.exists("elearning/courses/c1")
        await resolver.delete(EntityType.COURSE, ["c1"])
        assert not await store.exists("elearning/courses/c1")
        assert await store.exists("Elearning/Cours/c1")

    asyncio.run(scenario())


def test_write_back_can_be_disabled() -> None:
    store = MemoryDocumentStore(LEGACY_COURSE)
    result = asyncio.run(_resolver(store, write_back=False).resolve(EntityType.COURSE, ["c1"]))
    assert result.found
    assert "elearning" not in store.snapshot()


def test_bare_enrollment_flags_are_listed() -> None:
    store = MemoryDocumentStore(
        {"Elearning": {"Inscriptions": {"u1": {"c1": True, "c2": {"status": "completed", "progress": 100}}}}}
    )
    listing = asyncio.run(_resolver(store).resolve_collection(EntityType.ENROLLMENT, "u1"))

    assert sorted(item.course_id for item in listing.items) == ["c1", "c2"]
    assert listing.provenance["c1"] == ["Elearning/Inscriptions/u1/c1"]
    statuses = {item.course_id: item.status for item in listing.items}
    assert statuses == {"c1": "active", "c2": "completed"}
    assert store.snapshot()["elearning"]["enrollments"]["byCourse"]["c2"]["u1"]["progress"] == 100


ARRAY_COURSE = {
    "elearning": {
        "courses": {
            "c1": {
                "title": "Python",
                "modules": [{"id": "m1", "title": "Old"}, {"id": "m2", "title": "Two", "order": 2}],
            }
        }
    }
}


def test_array_module_lists_are_rekeyed_before_member_writes() -> None:
    store = MemoryDocumentStore(ARRAY_COURSE)
    resolver = _resolver(store)

    found = asyncio.run(resolver.resolve(EntityType.MODULE, ["c1", "m1"]))
    assert found.data.title == "Old"
    assert sorted(store.snapshot()["elearning"]["courses"]["c1"]["modules"]) == ["m1", "m2"]

    asyncio.run(resolver.write(EntityType.MODULE, ["c1", "m1"], {"title": "New"}))
    assert asyncio.run(resolver.resolve(EntityType.MODULE, ["c1", "m1"])).data.title == "New"

    listing = asyncio.run(resolver.resolve_collection(EntityType.MODULE, "c1"))
    assert [(item.id, item.title) for item in listing.items] == [("m1", "New"), ("m2", "Two")]

    course = asyncio.run(resolver.resolve(EntityType.COURSE, ["c1"])).data
    assert [(module.id, module.title) for module in course.modules] == [("m1", "New"), ("m2", "Two")]


def test_writes_into_an_array_module_list_keep_every_sibling() -> None:
    store = MemoryDocumentStore(ARRAY_COURSE)
    resolver = _resolver(store)

    asyncio.run(resolver.write(EntityType.MODULE, ["c1", "m3"], {"title": "Three", "order": 3}))

    modules = store.snapshot()["elearning"]["courses"]["c1"]["modules"]
    assert sorted(modules) == ["m1", "m2", "m3"]
    course = asyncio.run(resolver.resolve(EntityType.COURSE, ["c1"])).data
    assert summarize_course(course.modules).total_modules == 3


def test_collection_write_backs_rekey_an_array_canonical_list() -> None:
    store = MemoryDocumentStore(
        {
            "elearning": {"courses": {"c1": {"title": "Python", "modules": [{"id": "m1", "title": "Old"}]}}},
            "Elearning": {"Modules": {"c1": {"m2": {"titre": "Suite", "ordre": 2}}}},
        }
    )
    listing = asyncio.run(_resolver(store).resolve_collection(EntityType.MODULE, "c1"))

    assert listing.ids() == ["m1", "m2"]
    modules = store.snapshot()["elearning"]["courses"]["c1"]["modules"]
    assert sorted(modules) == ["m1", "m2"]
    assert modules["m2"]["title"] == "Suite"
