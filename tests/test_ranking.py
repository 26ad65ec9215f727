import pytest

from config.settings import settings
from models.grading_scales import GradingBand
from models.results import Result
from models.subject_marks import SubjectMark
from schemas.common import ordinal
from schemas.grading import GradingBandIn
from services.errors import ConfigurationError
from services.grading import grade_resolver
from services.ranking import RankingService, competition_rank, ranking_service, refresh_result_totals
from services.results import results_service


def _result(db, school, student):
    result, _ = results_service.upsert_result(
        db, student.id, "first", "2024/2025", {"class_id": school.school_class.id},
    )
    db.commit()
    return result


def _enter(db, school, result, maths, english):
    results_service.record_subject_mark(db, result.id, school.mathematics.id, {"score": maths})
    results_service.record_subject_mark(db, result.id, school.english.id, {"score": english})


def test_competition_rank_shares_ties_and_skips():
    assert competition_rank([("a", 180), ("b", 180), ("c", 175)]) == {"a": 1, "b": 1, "c": 3}
    assert competition_rank([(1, 3), (2, 1), (3, 1)], descending=False) == {2: 1, 3: 1, 1: 3}
    assert competition_rank([]) == {}


def test_new_top_score_shifts_others_by_one_slot():
    before = competition_rank([("a", 90), ("b", 80), ("c", 80), ("d", 70)])
    after = competition_rank([("a", 90), ("b", 80), ("c", 80), ("d", 70), ("e", 99)])
    assert after["e"] == 1
    assert all(after[k] == v + 1 for k, v in before.items())


def test_tied_totals_share_position(db, school):
    results = [_result(db, school, s) for s in school.students]
    _enter(db, school, results[0], 90, 90)   # 180
    _enter(db, school, results[1], 100, 80)  # 180
    _enter(db, school, results[2], 95, 80)   # 175

    positions = ranking_service.positions(db, school.ranking_scope)
    assert [positions[r.id] for r in results] == [1, 1, 3]


def test_ranking_is_idempotent(db, school):
    results = [_result(db, school, s) for s in school.students]
    for result, (m, e) in zip(results, [(60, 70), (80, 55), (45, 90)]):
        _enter(db, school, result, m, e)

    first = ranking_service.positions(db, school.ranking_scope)
    ranking_service.clear()
    second = ranking_service.positions(db, school.ranking_scope)
    assert first == second


def test_write_invalidates_cached_positions(db, school):
    results = [_result(db, school, s) for s in school.students[:2]]
    _enter(db, school, results[0], 80, 80)
    _enter(db, school, results[1], 70, 70)
    assert ranking_service.positions(db, school.ranking_scope)[results[1].id] == 2

    results_service.record_subject_mark(db, results[1].id, school.mathematics.id, {"score": 100})
    positions = ranking_service.positions(db, school.ranking_scope)
    assert positions[results[1].id] == 1
    assert positions[results[0].id] == 2


def test_results_without_marks_are_unranked(db, school):
    ranked = _result(db, school, school.students[0])
    unranked = _result(db, school, school.students[1])
    _enter(db, school, ranked, 50, 50)

    views = results_service.result_view(db, school.ranking_scope)
    assert [v.result_id for v in views] == [ranked.id, unranked.id]
    assert views[0].position == 1 and views[0].position_label == "1st"
    assert views[1].position is None and views[1].position_label == ""
    assert views[0].class_size == 1


def test_result_totals_and_subject_positions(db, school):
    results = [_result(db, school, s) for s in school.students[:2]]
    _enter(db, school, results[0], 92, 60)
    _enter(db, school, results[1], 74, 80)

    view = results_service.get_result_view(db, results[0].id)
    assert view.total_score == 152.0
    assert view.total_marks == 200.0
    assert view.average_score == 76.0
    by_subject = {s.subject_name: s for s in view.subjects}
    assert by_subject["Mathematics"].grade == "A"
    assert by_subject["Mathematics"].position == 1
    assert by_subject["English"].grade == "F"
    assert by_subject["English"].position == 2


def test_deleting_a_result_reranks_siblings(db, school):
    results = [_result(db, school, s) for s in school.students[:2]]
    _enter(db, school, results[0], 90, 90)
    _enter(db, school, results[1], 50, 50)
    assert ranking_service.positions(db, school.ranking_scope)[results[1].id] == 2

    results_service.delete_result(db, results[0].id)
    assert ranking_service.positions(db, school.ranking_scope) == {results[1].id: 1}
    assert db.query(Result).count() == 1


def test_ordinal_labels():
    assert [ordinal(n) for n in (1, 2, 3, 4, 11, 12, 13, 21, 22, 101, 111)] == [
        "1st", "2nd", "3rd", "4th", "11th", "12th", "13th", "21st", "22nd", "101st", "111th",
    ]
    assert ordinal(None) == ""


def test_recompute_scope_applies_new_scale(db, school):
    result = _result(db, school, school.students[0])
    _enter(db, school, result, 80, 60)
    assert {m.grade for m in results_service.get_result(db, result.id).subject_marks} == {"B", "F"}

    grade_resolver.save_scale(db, school.grading_scope, [
        GradingBandIn(from_percentage=80, to_percentage=100, grade="A", remark="Excellent"),
        GradingBandIn(from_percentage=0, to_percentage=79, grade="C", remark="Credit"),
    ])
    assert results_service.recompute_scope(db, school.grading_scope) == 2
    assert {m.grade for m in results_service.get_result(db, result.id).subject_marks} == {"A", "C"}


def test_refresh_result_totals_skips_unscored_marks():
    result = Result(subject_marks=[
        SubjectMark(total_score=80.0, max_possible=100.0),
        SubjectMark(total_score=45.5, max_possible=60.0),
        SubjectMark(total_score=None, max_possible=100.0),
    ])
    refresh_result_totals(result)
    assert result.total_score == 125.5
    assert result.total_marks == 160.0
    assert result.average_score == 62.75

    result.subject_marks = []
    refresh_result_totals(result)
    assert result.total_score is None and result.average_score is None


class _InterleavedWrite(RankingService):
    """Simulates a write landing while positions are being computed."""

    def _compute(self, db, scope, subject_id):
        computed = super()._compute(db, scope, subject_id)
        self.invalidate(scope)
        return computed


def test_positions_computed_across_an_invalidation_are_not_cached(db, school):
    result = _result(db, school, school.students[0])
    _enter(db, school, result, 70, 70)

    service = _InterleavedWrite()
    assert service.positions(db, school.ranking_scope) == {result.id: 1}
    assert service._cache == {}

    plain = RankingService()
    plain.positions(db, school.ranking_scope)
    assert (school.ranking_scope, None) in plain._cache


GAPPED_BANDS = [
    GradingBandIn(from_percentage=90, to_percentage=100, grade="A", remark="Excellent"),
    GradingBandIn(from_percentage=0, to_percentage=70, grade="F", remark="Fail"),
]


def test_scale_that_leaves_marks_ungraded_is_not_saved(db, school):
    result = _result(db, school, school.students[0])
    _enter(db, school, result, 80, 60)

    with pytest.raises(ConfigurationError) as exc:
        results_service.replace_scale(db, school.grading_scope, GAPPED_BANDS)
    assert "no longer fit" in exc.value.message

    assert db.query(GradingBand).filter_by(**school.grading_scope.model_dump()).count() == 3
    assert {m.grade for m in results_service.get_result(db, result.id).subject_marks} == {"B", "F"}
    assert grade_resolver.resolve_grade(db, 80, school.grading_scope).grade == "B"


def test_replacing_a_scale_regrades_marks_in_the_same_commit(db, school, monkeypatch):
    monkeypatch.setattr(settings, "GRADE_OUT_OF_RANGE_POLICY", "clamp")
    result = _result(db, school, school.students[0])
    _enter(db, school, result, 95, 60)

    saved, recomputed = results_service.replace_scale(db, school.grading_scope, GAPPED_BANDS)

    assert (len(saved), recomputed) == (2, 2)
    assert {m.grade for m in results_service.get_result(db, result.id).subject_marks} == {"A", "F"}
    assert db.query(GradingBand).filter_by(**school.grading_scope.model_dump()).count() == 2
