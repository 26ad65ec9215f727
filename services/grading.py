"""
services/grading.py

Grading scale resolver: percentage → (grade, remark) for one
(department, academic year, term) scope.

- Bands are authored with inclusive edges in whole numbers (75–89, 90–100).
  A score between two such bands (89.5) belongs to the lower band as long as the
  seam is no wider than one point. Wider seams are real gaps.
- Scores outside every band follow the configured policy:
  reject → ScoreOutOfRange, clamp → nearest band.
- Bands are validated strictly when a scale is saved and re-checked cheaply when
  loaded; bad stored configuration is reported, never repaired.
"""

import logging
import math
import threading
from bisect import bisect_right
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from config.settings import settings
from models.grading_scales import GradingBand
from schemas.grading import GradeResolution, GradingBandIn, GradingScope
from services.errors import ConfigurationError, NoScaleConfigured, ScoreOutOfRange
from services.store import SQLAlchemyRecordStore, store_errors

logger = logging.getLogger(__name__)

# widest seam between two integer-authored bands that still counts as contiguous
BAND_SEAM = 1.0

# WAEC style nine-point scale, used to seed departments without a scale
DEFAULT_BANDS = [
    GradingBandIn(from_percentage=80, to_percentage=100, grade="A1", remark="Excellent"),
    GradingBandIn(from_percentage=70, to_percentage=79, grade="B2", remark="Very Good"),
    GradingBandIn(from_percentage=65, to_percentage=69, grade="B3", remark="Good"),
    GradingBandIn(from_percentage=60, to_percentage=64, grade="C4", remark="Credit"),
    GradingBandIn(from_percentage=55, to_percentage=59, grade="C5", remark="Credit"),
    GradingBandIn(from_percentage=50, to_percentage=54, grade="C6", remark="Credit"),
    GradingBandIn(from_percentage=45, to_percentage=49, grade="D7", remark="Pass"),
    GradingBandIn(from_percentage=40, to_percentage=44, grade="E8", remark="Pass"),
    GradingBandIn(from_percentage=0, to_percentage=39, grade="F9", remark="Fail"),
]


# ==========================================================
# [1] validation
# ==========================================================

def validate_bands(bands: Sequence[GradingBandIn], strict: bool = True) -> List[str]:
    """
    Return every problem found in a scale (empty list → valid).
    strict=True is the save-time check (labels required, bounds within 0..100);
    strict=False is the cheap load-time check (non-negative, ordered, no overlap).
    """
    problems: List[str] = []
    for band in bands:
        label = f"{band.from_percentage:g}-{band.to_percentage:g}%"
        if strict:
            if not (band.grade or "").strip():
                problems.append(f"{label}: grade is required")
            if not (band.remark or "").strip():
                problems.append(f"{label}: remark is required")
            if not 0 <= band.from_percentage <= 100 or not 0 <= band.to_percentage <= 100:
                problems.append(f"{label}: bounds must be between 0 and 100")
        if band.from_percentage < 0 or band.to_percentage < 0:
            problems.append(f"{label}: bounds must not be negative")
        if band.from_percentage > band.to_percentage:
            problems.append(f"{label}: from percentage cannot be greater than to percentage")

    ordered = sorted(bands, key=lambda b: b.from_percentage)
    for current, nxt in zip(ordered, ordered[1:]):
        if nxt.from_percentage <= current.to_percentage:
            problems.append(
                f"Overlapping ranges: {current.from_percentage:g}-{current.to_percentage:g}% "
                f"and {nxt.from_percentage:g}-{nxt.to_percentage:g}%"
            )
    return problems


# ==========================================================
# [2] lookup table
# ==========================================================

class ScaleTable:
    """Bands of one scope sorted ascending, with a bisect index on the lower bounds."""

    def __init__(self, scope: GradingScope, bands: Iterable[GradingBandIn]):
        self.scope = scope
        self.bands = sorted(bands, key=lambda b: b.from_percentage)
        self.starts = [b.from_percentage for b in self.bands]

    def lookup(self, score: float) -> Optional[GradingBandIn]:
        i = bisect_right(self.starts, score) - 1
        if i < 0:
            return None
        band = self.bands[i]
        if score <= band.to_percentage:
            return band
        if i + 1 < len(self.bands) and self.bands[i + 1].from_percentage - band.to_percentage <= BAND_SEAM:
            return band
        return None

    def nearest(self, score: float) -> GradingBandIn:
        if score < self.bands[0].from_percentage:
            return self.bands[0]
        if score > self.bands[-1].to_percentage:
            return self.bands[-1]
        # inside a gap: pick the closer edge, the lower band on a tie
        i = bisect_right(self.starts, score) - 1
        lower, upper = self.bands[i], self.bands[i + 1]
        if upper.from_percentage - score < score - lower.to_percentage:
            return upper
        return lower


# ==========================================================
# [3] resolver
# ==========================================================

class GradingScaleResolver:
    def __init__(self, policy: Optional[str] = None):
        self._policy = policy
        self._tables: Dict[GradingScope, ScaleTable] = {}
        self._lock = threading.Lock()

    @property
    def policy(self) -> str:
        return self._policy or settings.GRADE_OUT_OF_RANGE_POLICY

    def invalidate(self, scope: Optional[GradingScope] = None):
        with self._lock:
            if scope is None:
                self._tables.clear()
            else:
                self._tables.pop(scope, None)

    def table(self, db: Session, scope: GradingScope) -> ScaleTable:
        with self._lock:
            cached = self._tables.get(scope)
        if cached is not None:
            return cached

        rows = SQLAlchemyRecordStore(db, GradingBand, ()).get(scope.model_dump())
        if not rows:
            raise NoScaleConfigured(scope)
        bands = [GradingBandIn.model_validate(r) for r in rows]
        problems = validate_bands(bands, strict=False)
        if problems:
            raise ConfigurationError(
                f"Grading scale for {scope.label()} is invalid: " + "; ".join(problems),
                scope=scope, problems=problems,
            )

        table = ScaleTable(scope, bands)
        with self._lock:
            self._tables[scope] = table
        return table

    def resolve_grade(self, db: Session, score: float, scope: GradingScope,
                      policy: Optional[str] = None) -> GradeResolution:
        table = self.table(db, scope)
        score = float(score)
        if math.isnan(score):
            raise ScoreOutOfRange(score, scope)

        band = table.lookup(score)
        if band is not None:
            return GradeResolution(grade=band.grade, remark=band.remark)

        if (policy or self.policy) == "clamp":
            band = table.nearest(score)
            logger.debug(f"Score {score} clamped to {band.grade} for {scope.label()}")
            return GradeResolution(grade=band.grade, remark=band.remark, clamped=True)
        raise ScoreOutOfRange(score, scope)

    # ------------------------------------------------------
    # authoring
    # ------------------------------------------------------
    def save_scale(self, db: Session, scope: GradingScope, bands: Sequence[GradingBandIn],
                   commit: bool = True) -> List[GradingBand]:
        """Replace the scope's bands after strict validation. commit=False only flushes."""
        problems = validate_bands(bands, strict=True)
        if not bands:
            problems.append("A grading scale needs at least one band")
        if problems:
            raise ConfigurationError(
                f"Grading scale for {scope.label()} rejected: " + "; ".join(problems),
                scope=scope, problems=problems,
            )

        store = SQLAlchemyRecordStore(
            db, GradingBand, ("department", "academic_year", "term", "from_percentage"),
        )
        key = scope.model_dump()
        with store_errors(db, key):
            store.delete_many([key])
            saved = []
            for band in bands:
                record, _ = store.upsert(
                    {**key, "from_percentage": band.from_percentage},
                    {"to_percentage": band.to_percentage, "grade": band.grade.strip(), "remark": band.remark.strip()},
                )
                saved.append(record)
            if commit:
                db.commit()

        self.invalidate(scope)
        logger.info(f"Grading scale saved for {scope.label()} ({len(saved)} bands)")
        return saved

    def ensure_default_scale(self, db: Session, scope: GradingScope) -> bool:
        """Seed DEFAULT_BANDS when the scope has no scale yet. Returns True when seeded."""
        if SQLAlchemyRecordStore(db, GradingBand, ()).get(scope.model_dump()):
            return False
        self.save_scale(db, scope, DEFAULT_BANDS)
        return True


# ✅ shared resolver (cache is process wide)
grade_resolver = GradingScaleResolver()
