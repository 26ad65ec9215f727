"""
services/ranking.py

Standard (competition) ranking of results inside (class, term, academic year).

Positions are derived values. They are kept in a per-scope cache that every
write to the scope invalidates; reads recompute on a miss. Each scope carries a
generation counter so a recomputation that overlapped an invalidation is
returned to its caller but never cached.
"""

import logging
import threading
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from typing import Dict, Hashable, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from models.results import Result
from models.subject_marks import SubjectMark
from schemas.grading import RankingScope
from services.store import store_errors
from utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


def competition_rank(items: Iterable[Tuple[Hashable, float]], descending: bool = True) -> Dict[Hashable, int]:
    """
    Standard competition ranking: equal values share a position and the next
    distinct value skips the shared slots (180, 180, 175 → 1, 1, 3).
    Equal values are ordered by id so the output is deterministic.
    """
    ordered = sorted(items, key=lambda kv: ((-kv[1] if descending else kv[1]), kv[0]))
    positions: Dict[Hashable, int] = {}
    previous = None
    position = 0
    for index, (item_id, value) in enumerate(ordered, start=1):
        if value != previous:
            position = index
            previous = value
        positions[item_id] = position
    return positions


def scope_of(result: Result) -> RankingScope:
    return RankingScope(class_id=result.class_id, term=result.term, academic_year=result.academic_year)


def refresh_result_totals(result: Result) -> Result:
    """Re-derive total score / total marks / average from the result's subject marks (no flush)."""
    scored = [m for m in result.subject_marks if m.total_score is not None]
    if not scored:
        result.total_score = None
        result.total_marks = None
        result.average_score = None
        return result
    result.total_score = round(sum(m.total_score for m in scored), 2)
    result.total_marks = round(sum(m.max_possible or 100.0 for m in scored), 2)
    result.average_score = round(result.total_score / len(scored), 2)
    return result


class RankingService:
    def __init__(self):
        self._guard = threading.Lock()
        self._cache: Dict[Tuple[RankingScope, Optional[int]], Dict[int, int]] = {}
        self._generation: Dict[RankingScope, int] = defaultdict(int)
        self._scope_locks = KeyedLocks()

    # ------------------------------------------------------
    # invalidation
    # ------------------------------------------------------
    def invalidate(self, scope: RankingScope):
        with self._guard:
            self._generation[scope] += 1
            for key in [k for k in self._cache if k[0] == scope]:
                del self._cache[key]
        logger.debug(f"Positions invalidated for {scope.label()}")

    @contextmanager
    def writing(self, *scopes: RankingScope):
        """Hold the scopes while a write commits; readers wait, then see a cold cache."""
        ordered = sorted(set(scopes), key=lambda s: (s.class_id, s.academic_year, s.term))
        with ExitStack() as stack:
            for scope in ordered:
                stack.enter_context(self._scope_locks.hold(scope))
            try:
                yield
            finally:
                for scope in ordered:
                    self.invalidate(scope)

    def clear(self):
        with self._guard:
            for scope in list(self._generation):
                self._generation[scope] += 1
            self._cache.clear()

    # ------------------------------------------------------
    # reads
    # ------------------------------------------------------
    def positions(self, db: Session, scope: RankingScope) -> Dict[int, int]:
        """result_id → overall position. Results without subject marks are left out."""
        return self._cached(db, scope, None)

    def subject_positions(self, db: Session, scope: RankingScope, subject_id: int) -> Dict[int, int]:
        """result_id → position of that result's mark in subject_id."""
        return self._cached(db, scope, subject_id)

    def _cached(self, db: Session, scope: RankingScope, subject_id: Optional[int]) -> Dict[int, int]:
        key = (scope, subject_id)
        with self._scope_locks.hold(scope):
            with self._guard:
                hit = self._cache.get(key)
                generation = self._generation[scope]
            if hit is not None:
                return dict(hit)

            computed = self._compute(db, scope, subject_id)
            with self._guard:
                if self._generation[scope] == generation:
                    self._cache[key] = computed
            return dict(computed)

    def _compute(self, db: Session, scope: RankingScope, subject_id: Optional[int]) -> Dict[int, int]:
        filters = (
            Result.class_id == scope.class_id,
            Result.term == scope.term,
            Result.academic_year == scope.academic_year,
        )
        with store_errors():
            if subject_id is None:
                rows = (
                    db.query(Result.id, Result.total_score)
                    .filter(*filters, Result.total_score.isnot(None))
                    .all()
                )
            else:
                rows = (
                    db.query(SubjectMark.result_id, SubjectMark.total_score)
                    .join(Result, Result.id == SubjectMark.result_id)
                    .filter(*filters, SubjectMark.subject_id == subject_id, SubjectMark.total_score.isnot(None))
                    .all()
                )
        return competition_rank((row_id, round(total, 2)) for row_id, total in rows)


# ✅ shared position cache
ranking_service = RankingService()
