"""
services/mock_aggregate.py

Terminal mock examination aggregate (lower is better):
  percentage → grade point via a fixed table (1 best … 9 worst),
  aggregate = core subjects + best N optional subjects.
Students missing part of the required subject set are excluded from ranking.
Rankings are recomputed on every read.
"""

import logging
import math
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from config.settings import settings
from models.mock_exams import MockScore, MockSession
from models.students import Student
from schemas.mock_exams import MockAggregate, MockRankingEntry
from services.errors import IncompleteSubjectSet, InvalidComponentScore, RecordNotFound
from services.ranking import competition_rank
from services.store import SQLAlchemyRecordStore, store_errors

logger = logging.getLogger(__name__)

# (minimum percentage, grade point); anything below the last row is 9
GRADE_POINT_TABLE = (
    (80, 1),
    (70, 2),
    (65, 3),
    (60, 4),
    (55, 5),
    (50, 6),
    (45, 7),
    (35, 8),
)
WORST_GRADE_POINT = 9


def mock_grade_point(score: float) -> int:
    for minimum, point in GRADE_POINT_TABLE:
        if score >= minimum:
            return point
    return WORST_GRADE_POINT


def _checked(subject: str, raw) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidComponentScore(subject, raw, "not a number")
    if math.isnan(value) or not 0 <= value <= 100:
        raise InvalidComponentScore(subject, raw, "must be between 0 and 100")
    return value


def compute_mock_aggregate(
    student_id: int,
    scores: Mapping[str, Optional[float]],
    core: Sequence[str] = None,
    optional: Sequence[str] = None,
    optional_count: int = None,
) -> MockAggregate:
    core = [s.lower() for s in (core if core is not None else settings.MOCK_CORE_SUBJECTS)]
    optional = [s.lower() for s in (optional if optional is not None else settings.MOCK_OPTIONAL_SUBJECTS)]
    optional_count = settings.MOCK_OPTIONAL_COUNT if optional_count is None else optional_count

    present = {
        key.strip().lower(): _checked(key, value)
        for key, value in scores.items()
        if value is not None
    }
    grade_points = {key: mock_grade_point(value) for key, value in present.items()}

    missing = [s for s in core if s not in present]
    # best = lowest grade point, then highest score, then subject key
    candidates = sorted(
        (s for s in optional if s in present),
        key=lambda s: (grade_points[s], -present[s], s),
    )
    shortfall = max(0, optional_count - len(candidates))
    if missing or shortfall:
        raise IncompleteSubjectSet(missing, shortfall)

    selected = core + candidates[:optional_count]
    raw_total = round(sum(present.values()), 2)
    return MockAggregate(
        student_id=student_id,
        grade_points=grade_points,
        selected=selected,
        aggregate=sum(grade_points[s] for s in selected),
        raw_total=raw_total,
        raw_average=round(raw_total / len(present), 2) if present else 0.0,
    )


def rank_mock_aggregates(aggregates: Iterable[MockAggregate]) -> Dict[int, int]:
    """student_id → position, ascending aggregate, ties share"""
    return competition_rank(((a.student_id, a.aggregate) for a in aggregates), descending=False)


# ==========================================================
# storage
# ==========================================================

def save_mock_scores(db: Session, session_id: int, student_id: int,
                     scores: Mapping[str, Optional[float]]) -> int:
    """Upsert one student's subject scores for a session; None deletes that subject. Commits."""
    store = SQLAlchemyRecordStore(db, MockScore, ("session_id", "student_id", "subject_key"))
    written = 0
    key_base = {"session_id": session_id, "student_id": student_id}
    with store_errors(db, key_base):
        if db.get(MockSession, session_id) is None:
            raise RecordNotFound(f"Mock session {session_id} not found", session_id=session_id)
        for subject_key, value in scores.items():
            key = {**key_base, "subject_key": subject_key.strip().lower()}
            if value is None:
                store.delete_many([key])
                continue
            store.upsert(key, {"score": _checked(subject_key, value)})
            written += 1
        db.commit()
    return written


def mock_rankings(db: Session, session_id: int, **scheme) -> List[MockRankingEntry]:
    if db.get(MockSession, session_id) is None:
        raise RecordNotFound(f"Mock session {session_id} not found", session_id=session_id)
    rows = SQLAlchemyRecordStore(db, MockScore, ()).get({"session_id": session_id})
    by_student: Dict[int, Dict[str, float]] = defaultdict(dict)
    for row in rows:
        by_student[row.student_id][row.subject_key] = row.score

    names = {
        s.id: s.full_name
        for s in db.query(Student).filter(Student.id.in_(list(by_student))).all()
    } if by_student else {}

    aggregates: List[MockAggregate] = []
    excluded: List[MockRankingEntry] = []
    for student_id, scores in by_student.items():
        try:
            aggregates.append(compute_mock_aggregate(student_id, scores, **scheme))
        except IncompleteSubjectSet as e:
            logger.info(f"Mock session {session_id}: student {student_id} excluded ({e.message})")
            excluded.append(MockRankingEntry(
                student_id=student_id,
                student_name=names.get(student_id),
                raw_total=round(sum(scores.values()), 2),
                excluded_reason=e.message,
            ))

    positions = rank_mock_aggregates(aggregates)
    ranked = [
        MockRankingEntry(
            student_id=a.student_id,
            student_name=names.get(a.student_id),
            aggregate=a.aggregate,
            position=positions[a.student_id],
            selected=a.selected,
            raw_total=a.raw_total,
        )
        for a in aggregates
    ]
    ranked.sort(key=lambda e: (e.position, e.student_id))
    excluded.sort(key=lambda e: e.student_id)
    return ranked + excluded
