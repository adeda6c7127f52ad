from __future__ import annotations

import pytest

from elearning.aggregation import (
    ScoreState,
    calculate_course_progress,
    calculate_course_score,
    is_course_completed,
    overall_progress,
    round_half_up,
    score_state,
    summarize_course,
    summarize_progress,
)
from elearning.models import ModuleProgress, ProgressRecord
from elearning.normalizer import normalize_module


@pytest.mark.parametrize("modules", [None, [], {}])
def test_empty_collections_score_nothing(modules) -> None:
    assert calculate_course_score(modules) == 0
    assert calculate_course_progress(modules) == 0
    assert is_course_completed(modules) is False


def test_score_averages_finite_scores_only() -> None:
    modules = [{"score": 80}, {"score": 60}, {"score": "x"}, {"title": "no score"}]
    assert calculate_course_score(modules) == 70


def test_scores_round_half_up() -> None:
    assert calculate_course_score([{"score": 70}, {"score": 71}]) == 71
    assert round_half_up(2.5) == 3
    assert round_half_up(49.4) == 49


def test_keyed_maps_with_stray_flags_are_filtered() -> None:
    modules = {
        "m1": {"score": 90, "completed": True},
        "m2": {"score": 50, "status": "completed"},
        "published": True,
    }
    assert calculate_course_score(modules) == 70
    assert calculate_course_progress(modules) == 100
    assert is_course_completed(modules) is True


def test_progress_counts_completed_modules() -> None:
    modules = [{"completed": True}, {"progress": 100}, {"completed": False}]
    assert calculate_course_progress(modules) == 67
    assert is_course_completed(modules) is False


def test_progress_falls_back_to_mean_module_progress() -> None:
    assert calculate_course_progress([{"progress": 40}, {"progress": 61}, {}]) == 51


def test_pydantic_modules_are_accepted() -> None:
    modules = [
        normalize_module({"score": 80, "completed": True}, course_id="c1", module_id="m1"),
        normalize_module({"score": 60}, course_id="c1", module_id="m2"),
    ]
    stats = summarize_course(modules)
    assert stats.score == 70
    assert stats.progress == 50
    assert stats.completed is False
    assert stats.total_modules == 2
    assert stats.completed_modules == 1
    assert stats.module_scores == {"m1": 80, "m2": 60}


def test_score_state_keeps_zero_distinct_from_unset() -> None:
    assert score_state(None) is ScoreState.UNSET
    assert score_state(True) is ScoreState.UNSET
    assert score_state(0) is ScoreState.ZERO
    assert score_state(12.5) is ScoreState.POSITIVE


def test_summarize_progress_counts_zero_scores_of_completed_modules() -> None:
    record = ProgressRecord(
        user_id="u1",
        course_id="c1",
        modules={
            "m1": ModuleProgress(module_id="m1", completed=True, score=80),
            "m2": ModuleProgress(module_id="m2", completed=True, score=0),
            "m3": ModuleProgress(module_id="m3", completed=False),
        },
    )
    summary = summarize_progress(record)
    assert summary.progress == 67
    assert summary.score == 40
    assert summary.completed is False
    assert summary.details == {
        "totalModules": 3,
        "completedModules": 2,
        "moduleScores": {"m1": 80, "m2": 0},
    }
    # the input record is left untouched
    assert record.progress == 0
    assert record.details is None


def test_summarize_progress_completes_when_every_module_is_done() -> None:
    record = ProgressRecord(
        user_id="u1",
        course_id="c1",
        modules={"m1": ModuleProgress(module_id="m1", status="completed")},
    )
    summary = summarize_progress(record)
    assert summary.progress == 100
    assert summary.completed is True
    assert summary.score == 0


def test_overall_progress_rolls_up_course_records() -> None:
    records = [
        ProgressRecord(user_id="u1", course_id="c1", progress=100, completed=True),
        {"progress": 50, "completed": False},
        "not a record",
    ]
    summary = overall_progress(records)
    assert summary.enrolled_courses == 2
    assert summary.completed_courses == 1
    assert summary.overall_progress == 75


def test_overall_progress_of_nothing_is_zero() -> None:
    summary = overall_progress([])
    assert summary.enrolled_courses == 0
    assert summary.overall_progress == 0
