"""
services/results.py

Result / subject mark writes and the ranked class view.
Every write goes through RankingService.writing() so the scope's positions are
invalidated while readers are held off.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from models.assessment_types import AssessmentType
from models.classes import SchoolClass
from models.grading_scales import GradingBand
from models.results import Result
from models.students import Student
from models.subject_marks import SubjectMark
from models.subjects import Subject
from schemas.assessments import AssessmentConfig
from schemas.common import ordinal
from schemas.grading import GradingBandIn, GradingScope, RankingScope
from schemas.results import ApprovalIn, ResultView, SubjectMarkView
from services.errors import ConfigurationError, RangeError, RecordNotFound, ValidationError
from services.ranking import RankingService, ranking_service, refresh_result_totals, scope_of
from services.scoring import (
    RAW_SUBJECT_CONFIG,
    SubjectScoreCalculator,
    calculator,
    load_assessment_config,
    save_assessment_config,
)
from services.store import SQLAlchemyRecordStore, store_errors

logger = logging.getLogger(__name__)


class ResultsService:
    def __init__(self, score_calculator: SubjectScoreCalculator = None, rankings: RankingService = None):
        self.calculator = score_calculator or calculator
        self.rankings = rankings or ranking_service

    # ==========================================================
    # [1] scopes
    # ==========================================================

    def grading_scope(self, db: Session, result: Result) -> GradingScope:
        school_class = result.school_class or db.get(SchoolClass, result.class_id)
        if school_class is None:
            raise RecordNotFound(f"Class {result.class_id} not found", class_id=result.class_id)
        return GradingScope(
            department=school_class.department.name,
            academic_year=result.academic_year,
            term=result.term,
        )

    def get_result(self, db: Session, result_id: int) -> Result:
        with store_errors(db):
            result = db.get(Result, result_id)
        if result is None:
            raise RecordNotFound(f"Result {result_id} not found", result_id=result_id)
        return result

    # ==========================================================
    # [2] writes
    # ==========================================================

    def upsert_result(self, db: Session, student_id: int, term: str, academic_year: str,
                      fields: Mapping) -> Tuple[Result, bool]:
        """
        Natural key (student, term, academic_year). Flushes, does not commit.
        Callers hold rankings.writing() over write_scopes() until they commit.
        """
        store = SQLAlchemyRecordStore(db, Result, ("student_id", "term", "academic_year"))
        key = {"student_id": student_id, "term": term, "academic_year": academic_year}
        return store.upsert(key, dict(fields))

    def write_scopes(self, db: Session, student_id: int, term: str, academic_year: str,
                     class_id: int) -> List[RankingScope]:
        """Ranking scopes touched by upserting this result into class_id (old and new on a class change)."""
        scopes = [RankingScope(class_id=class_id, term=term, academic_year=academic_year)]
        existing = SQLAlchemyRecordStore(db, Result, ("student_id", "term", "academic_year")).find(
            {"student_id": student_id, "term": term, "academic_year": academic_year}
        )
        if existing is not None and existing.class_id != class_id:
            scopes.append(scope_of(existing))
        return scopes

    def apply_subject_mark(self, db: Session, result: Result, subject_id: int,
                           components: Mapping[str, Optional[float]],
                           assessment_type: Optional[str] = None) -> Tuple[SubjectMark, bool]:
        """Compute and upsert one subject mark, refresh the result totals. Flushes, does not commit."""
        name = assessment_type or result.assessment_type or RAW_SUBJECT_CONFIG.name
        scope = self.grading_scope(db, result)
        config = load_assessment_config(db, scope, name)
        score = self.calculator.compute_subject_score(db, components, config, scope)

        store = SQLAlchemyRecordStore(db, SubjectMark, ("result_id", "subject_id"))
        mark, created = store.upsert(
            {"result_id": result.id, "subject_id": subject_id},
            {
                "components": {k.lower(): v for k, v in components.items()},
                "total_score": score.total,
                "max_possible": score.max_possible,
                "grade": score.grade,
                "remark": score.remark,
            },
        )
        result.assessment_type = name
        db.expire(result, ["subject_marks"])
        refresh_result_totals(result)
        db.flush()
        return mark, created

    def record_subject_mark(self, db: Session, result_id: int, subject_id: int,
                            components: Mapping[str, Optional[float]],
                            assessment_type: Optional[str] = None) -> SubjectMark:
        result = self.get_result(db, result_id)
        if db.get(Subject, subject_id) is None:
            raise RecordNotFound(f"Subject {subject_id} not found", subject_id=subject_id)
        with self.rankings.writing(scope_of(result)), store_errors(db, (result_id, subject_id)):
            try:
                mark, _ = self.apply_subject_mark(db, result, subject_id, components, assessment_type)
            except Exception:
                db.rollback()
                raise
            db.commit()
        logger.info(f"Subject {subject_id} recorded for result {result_id}: {mark.total_score} ({mark.grade})")
        return mark

    def delete_result(self, db: Session, result_id: int) -> None:
        result = self.get_result(db, result_id)
        with self.rankings.writing(scope_of(result)), store_errors(db, result_id):
            db.delete(result)
            db.commit()
        logger.info(f"Result {result_id} deleted")

    def set_approval(self, db: Session, result_id: int, approval: ApprovalIn) -> Result:
        result = self.get_result(db, result_id)
        with store_errors(db, result_id):
            for name, value in approval.model_dump(exclude_none=True).items():
                setattr(result, name, value)
            db.commit()
        return result

    def _scope_results(self, db: Session, scope: GradingScope) -> List[Result]:
        with store_errors(db):
            return (
                db.query(Result)
                .join(SchoolClass, SchoolClass.id == Result.class_id)
                .filter(
                    SchoolClass.department.has(name=scope.department),
                    Result.academic_year == scope.academic_year,
                    Result.term == scope.term,
                )
                .all()
            )

    def _rederive(self, db: Session, results: List[Result]) -> int:
        count = 0
        for result in results:
            for mark in list(result.subject_marks):
                self.apply_subject_mark(db, result, mark.subject_id, dict(mark.components or {}))
                count += 1
        return count

    def recompute_scope(self, db: Session, scope: GradingScope) -> int:
        """
        Re-derive every subject mark of a grading scope from its stored components.
        Configuration errors abort this scope only.
        """
        results = self._scope_results(db, scope)
        with self.rankings.writing(*{scope_of(r) for r in results}), store_errors(db):
            try:
                count = self._rederive(db, results)
            except Exception:
                db.rollback()
                raise
            db.commit()
        logger.info(f"Recomputed {count} subject marks for {scope.label()}")
        return count

    def _reconfigure(self, db: Session, scope: GradingScope, save: Callable[[], Any], what: str) -> Tuple[Any, int]:
        """
        Save new scope configuration and re-derive the scope's marks in one
        transaction. Nothing is committed when a stored mark no longer fits.
        """
        resolver = self.calculator.resolver
        results = self._scope_results(db, scope)
        with self.rankings.writing(*{scope_of(r) for r in results}), store_errors(db):
            try:
                saved = save()
                count = self._rederive(db, results)
            except (ValidationError, RangeError) as e:
                db.rollback()
                resolver.invalidate(scope)
                logger.warning(f"{what} for {scope.label()} rejected, stored marks no longer fit: {e.message}")
                raise ConfigurationError(
                    f"{what} for {scope.label()} rejected: stored marks no longer fit ({e.message})",
                    scope=scope,
                ) from e
            except Exception:
                db.rollback()
                resolver.invalidate(scope)
                raise
            db.commit()
        # a reader may have cached the previous bands while this transaction was open
        resolver.invalidate(scope)
        logger.info(f"{what} saved for {scope.label()}, {count} subject marks recomputed")
        return saved, count

    def replace_scale(self, db: Session, scope: GradingScope,
                      bands: Sequence[GradingBandIn]) -> Tuple[List[GradingBand], int]:
        """New bands for a scope plus every mark regraded against them, or neither."""
        return self._reconfigure(
            db, scope,
            lambda: self.calculator.resolver.save_scale(db, scope, bands, commit=False),
            "Grading scale",
        )

    def replace_assessment_type(self, db: Session, scope: GradingScope,
                                config: AssessmentConfig) -> Tuple[AssessmentType, int]:
        """New / changed assessment type plus every mark recomputed against it, or neither."""
        return self._reconfigure(
            db, scope,
            lambda: save_assessment_config(db, scope, config, commit=False),
            f"Assessment type '{config.name}'",
        )

    # ==========================================================
    # [3] ranked views
    # ==========================================================

    def _view(self, db: Session, result: Result, positions: Dict[int, int],
              subject_positions: Dict[int, Dict[int, int]]) -> ResultView:
        student = result.student or db.get(Student, result.student_id)
        position = positions.get(result.id)
        marks = sorted(result.subject_marks, key=lambda m: m.subject.name if m.subject else "")
        return ResultView(
            result_id=result.id,
            student_id=result.student_id,
            student_number=student.student_number if student else "",
            student_name=student.full_name if student else "",
            total_marks=result.total_marks,
            total_score=result.total_score,
            average_score=result.average_score,
            position=position,
            position_label=ordinal(position),
            class_size=len(positions),
            teacher_approved=result.teacher_approved,
            admin_approved=result.admin_approved,
            subjects=[
                SubjectMarkView(
                    subject_id=m.subject_id,
                    subject_name=m.subject.name if m.subject else "",
                    components=m.components or {},
                    total_score=m.total_score,
                    grade=m.grade,
                    remark=m.remark,
                    position=subject_positions.get(m.subject_id, {}).get(result.id),
                )
                for m in marks
            ],
        )

    def result_view(self, db: Session, scope: RankingScope) -> List[ResultView]:
        """Every result of the scope, best position first, unranked results last."""
        with store_errors(db):
            results = (
                db.query(Result)
                .filter(
                    Result.class_id == scope.class_id,
                    Result.term == scope.term,
                    Result.academic_year == scope.academic_year,
                )
                .all()
            )
        positions = self.rankings.positions(db, scope)
        subject_ids = {m.subject_id for r in results for m in r.subject_marks}
        subject_positions = {sid: self.rankings.subject_positions(db, scope, sid) for sid in subject_ids}

        views = [self._view(db, r, positions, subject_positions) for r in results]
        views.sort(key=lambda v: (v.position is None, v.position or 0, v.student_name))
        return views

    def get_result_view(self, db: Session, result_id: int) -> ResultView:
        result = self.get_result(db, result_id)
        scope = scope_of(result)
        positions = self.rankings.positions(db, scope)
        subject_positions = {
            m.subject_id: self.rankings.subject_positions(db, scope, m.subject_id)
            for m in result.subject_marks
        }
        return self._view(db, result, positions, subject_positions)


# ✅ shared service
results_service = ResultsService()
