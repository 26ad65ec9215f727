import pytest

from config.settings import settings
from models.mock_exams import MockSession
from services.errors import IncompleteSubjectSet, InvalidComponentScore, RecordNotFound
from services.mock_aggregate import (
    compute_mock_aggregate,
    mock_grade_point,
    mock_rankings,
    rank_mock_aggregates,
    save_mock_scores,
)

FULL = {
    "mathematics": 82, "english": 71, "social": 66, "science": 58,
    "rme": 90, "ict": 49, "french": 77,
}


@pytest.mark.parametrize("score, point", [
    (100, 1), (80, 1), (79.9, 2), (70, 2), (65, 3), (60, 4), (55, 5), (50, 6), (45, 7), (35, 8), (34.9, 9), (0, 9),
])
def test_grade_point_table(score, point):
    assert mock_grade_point(score) == point


def test_aggregate_uses_core_plus_best_optional():
    aggregate = compute_mock_aggregate(1, FULL)
    # core 1 + 2 + 3 + 5, best optional rme (1) and french (2)
    assert aggregate.selected == ["mathematics", "english", "social", "science", "rme", "french"]
    assert aggregate.aggregate == 14
    assert aggregate.raw_total == 493.0
    assert aggregate.raw_average == 70.43


def test_equal_optional_points_prefer_higher_score():
    scores = {"mathematics": 80, "english": 80, "social": 80, "science": 80, "rme": 71, "ict": 78, "french": 72}
    assert compute_mock_aggregate(1, scores).selected[-2:] == ["ict", "french"]


def test_missing_core_subject_is_incomplete():
    scores = dict(FULL)
    del scores["science"]
    with pytest.raises(IncompleteSubjectSet) as exc:
        compute_mock_aggregate(1, scores)
    assert exc.value.missing == ["science"]


def test_too_few_optional_subjects_is_incomplete():
    scores = {"mathematics": 80, "english": 80, "social": 80, "science": 80, "rme": 90}
    with pytest.raises(IncompleteSubjectSet) as exc:
        compute_mock_aggregate(1, scores)
    assert exc.value.optional_shortfall == 1


def test_scores_outside_percentage_range_are_rejected():
    with pytest.raises(InvalidComponentScore):
        compute_mock_aggregate(1, {**FULL, "rme": 120})


@pytest.mark.parametrize("subject", ["mathematics", "english", "social", "science", "rme", "french", "ict"])
def test_improving_a_subject_never_worsens_the_aggregate(subject):
    baseline = compute_mock_aggregate(1, FULL).aggregate
    for better in range(int(FULL[subject]), 101, 3):
        assert compute_mock_aggregate(1, {**FULL, subject: better}).aggregate <= baseline


def test_custom_scheme():
    aggregate = compute_mock_aggregate(
        1, {"maths": 80, "art": 50, "music": 65}, core=["maths"], optional=["art", "music"], optional_count=1,
    )
    assert aggregate.selected == ["maths", "music"]
    assert aggregate.aggregate == 4


def test_rank_ascending_with_shared_positions():
    aggregates = [
        compute_mock_aggregate(1, FULL),
        compute_mock_aggregate(2, {**FULL, "science": 90}),
        compute_mock_aggregate(3, FULL),
    ]
    assert rank_mock_aggregates(aggregates) == {2: 1, 1: 2, 3: 2}


def test_rankings_from_stored_scores(db, school):
    session = MockSession(name="BECE Mock 1", academic_year="2024/2025")
    db.add(session)
    db.commit()
    first, second, third = school.students

    save_mock_scores(db, session.id, first.id, FULL)
    save_mock_scores(db, session.id, second.id, {**FULL, "mathematics": 40})
    save_mock_scores(db, session.id, third.id, {"mathematics": 90, "english": 90})

    entries = mock_rankings(db, session.id)
    assert [(e.student_id, e.position) for e in entries] == [(first.id, 1), (second.id, 2), (third.id, None)]
    assert entries[0].student_name == "Ama Mensah"
    assert entries[2].excluded_reason.startswith("Incomplete subject set")


def test_saving_none_removes_a_subject(db, school):
    session = MockSession(name="BECE Mock 2", academic_year="2024/2025")
    db.add(session)
    db.commit()
    student = school.students[0]

    save_mock_scores(db, session.id, student.id, FULL)
    assert mock_rankings(db, session.id)[0].position == 1
    save_mock_scores(db, session.id, student.id, {"Science": None})
    assert mock_rankings(db, session.id)[0].position is None


def test_unknown_session(db, school):
    with pytest.raises(RecordNotFound):
        save_mock_scores(db, 999, school.students[0].id, FULL)
    with pytest.raises(RecordNotFound):
        mock_rankings(db, 999)


def test_core_subjects_come_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "MOCK_CORE_SUBJECTS", ["mathematics", "english"])
    monkeypatch.setattr(settings, "MOCK_OPTIONAL_SUBJECTS", ["science", "french"])
    monkeypatch.setattr(settings, "MOCK_OPTIONAL_COUNT", 1)

    aggregate = compute_mock_aggregate(1, {"mathematics": 82, "english": 71, "science": 58, "french": 77})
    assert aggregate.selected == ["mathematics", "english", "french"]
    assert aggregate.aggregate == 1 + 2 + 2
