from __future__ import annotations

import pytest

from elearning.config import get_settings
from elearning.errors import MissingKeyError, UnknownEntityTypeError
from elearning.paths import EntityType, PathRegistry, canonical_path, get_registry, legacy_paths

registry = PathRegistry("elearning", "Elearning")


def test_canonical_paths_live_under_lowercase_root() -> None:
    assert registry.canonical_path(EntityType.USER, "u1") == "elearning/users/u1"
    assert registry.canonical_path("course", "c1") == "elearning/courses/c1"
    assert registry.canonical_path(EntityType.MODULE, "c1", "m1") == "elearning/courses/c1/modules/m1"
    assert (
        registry.canonical_path(EntityType.EVALUATION, "c1", "m1", "e1")
        == "elearning/courses/c1/modules/m1/evaluations/e1"
    )
    assert registry.canonical_path(EntityType.PROGRESS, "u1", "c1") == "elearning/progress/u1/c1"
    assert registry.canonical_path(EntityType.SPECIALTY, "s1") == "elearning/specialites/s1"


def test_user_legacy_paths_follow_role_collections_first() -> None:
    assert registry.legacy_paths(EntityType.USER, "u1") == [
        "Elearning/Administrateurs/u1",
        "Elearning/Formateurs/u1",
        "Elearning/Apprenants/u1",
        "Elearning/Utilisateurs/u1",
    ]
    candidates = registry.candidates(EntityType.USER, "u1")
    assert candidates[0].inject == {"role": "admin"}
    assert candidates[2].inject == {"role": "student"}
    assert candidates[3].inject == {}


def test_module_candidates_try_embedded_before_standalone() -> None:
    candidates = registry.candidates(EntityType.MODULE, "c1", "m1")
    assert [candidate.path for candidate in candidates] == [
        "elearning/courses/c1/modules",
        "Elearning/Cours/c1/modules",
        "Elearning/Cours/c1/Modules",
        "elearning/modules/c1",
        "Elearning/Modules/c1",
    ]
    assert all(candidate.member == "m1" for candidate in candidates)
    assert candidates[-1].physical_path == "Elearning/Modules/c1/m1"


def test_enrollments_are_mirrored_by_course() -> None:
    assert registry.canonical_path(EntityType.ENROLLMENT, "u1", "c1") == "elearning/enrollments/byUser/u1/c1"
    assert registry.mirror_paths(EntityType.ENROLLMENT, "u1", "c1") == ["elearning/enrollments/byCourse/c1/u1"]
    assert registry.mirror_collection_paths(EntityType.ENROLLMENT, courseId="c1") == [
        "elearning/enrollments/byCourse/c1"
    ]
    assert registry.legacy_paths(EntityType.ENROLLMENT, "u1", "c1") == ["Elearning/Inscriptions/u1/c1"]


def test_collection_paths_skip_the_canonical_collection() -> None:
    assert registry.collection_path(EntityType.MODULE, "c1") == "elearning/courses/c1/modules"
    assert [candidate.path for candidate in registry.legacy_collection_paths(EntityType.MODULE, "c1")] == [
        "Elearning/Cours/c1/modules",
        "Elearning/Cours/c1/Modules",
        "elearning/modules/c1",
        "Elearning/Modules/c1",
    ]
    assert [candidate.path for candidate in registry.legacy_collection_paths(EntityType.RESOURCE, "c1", "m1")] == [
        "elearning/resources/c1/m1",
        "Elearning/Resources/c1/m1",
    ]
    users = registry.legacy_collection_paths(EntityType.USER)
    assert users[1].path == "Elearning/Formateurs"
    assert users[1].inject == {"role": "instructor"}


def test_unknown_entity_type_fails_loudly() -> None:
    with pytest.raises(UnknownEntityTypeError):
        registry.canonical_path("invoice", "x")


@pytest.mark.parametrize(
    "keys",
    [
        ("c1",),
        ("c1", ""),
        ("c1", "   "),
        ("c1", None),
        ("c1", "m/1"),
    ],
)
def test_missing_or_invalid_keys_raise(keys) -> None:
    with pytest.raises(MissingKeyError):
        registry.canonical_path(EntityType.MODULE, *keys)


def test_module_level_helpers_follow_settings(monkeypatch) -> None:
    monkeypatch.setenv("ELEARNING_ROOT_NAMESPACE", "lms")
    monkeypatch.setenv("ELEARNING_LEGACY_NAMESPACE", "LMS")
    get_settings.cache_clear()
    get_registry.cache_clear()
    try:
        assert canonical_path("course", "c1") == "lms/courses/c1"
        assert legacy_paths("course", "c1") == ["LMS/Cours/c1"]
    finally:
        get_settings.cache_clear()
        get_registry.cache_clear()
